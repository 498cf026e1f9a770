import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from app.core.config import settings
from app.models.appointment import Appointment

logger = logging.getLogger(__name__)


class EmailNotConfigured(RuntimeError):
    pass


def send_email_sync(to_email: str, subject: str, html_body: str, text_body: str | None = None) -> None:
    """Send email via SMTP (blocking). Run it in a worker thread from async code.

    Raises on failure so the caller can record the outcome.
    """
    if not settings.email_enabled:
        raise EmailNotConfigured("Email channel is not configured (SMTP settings missing)")
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.from_name} <{settings.from_email}>"
    msg["To"] = to_email
    if text_body:
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.from_email, [to_email], msg.as_string())
    logger.info("Email sent to %s", to_email)


def _html_escape(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def build_reminder_text(appointment: Appointment) -> str:
    """Plain reminder used for every channel; SMS and WhatsApp send it as is."""
    when = appointment.slot_date.strftime("%A, %B %d, %Y")
    kind = appointment.appointment_type.replace("-", " ")
    return (
        f"Reminder: you have a {kind} appointment on {when} at {appointment.slot_time}. "
        f"Reference #{appointment.id}. If you cannot attend, please cancel so the slot can be released."
    )


def build_reminder_html(message: str) -> str:
    safe_message = _html_escape(message)
    return f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Appointment Reminder</title>
</head>
<body style="margin:0;padding:0;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,Oxygen,Ubuntu,sans-serif;background-color:#f3f4f6;">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="background-color:#f3f4f6;">
    <tr>
      <td align="center" style="padding:40px 16px;">
        <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width:560px;background:#ffffff;border-radius:12px;overflow:hidden;">
          <tr>
            <td style="padding:32px;">
              <h1 style="margin:0 0 8px 0;font-size:22px;font-weight:600;color:#111827;">Appointment Reminder</h1>
              <p style="margin:0 0 24px 0;font-size:15px;color:#374151;">{safe_message}</p>
            </td>
          </tr>
          <tr>
            <td style="padding:24px 32px 32px 32px;background:#f9fafb;border-top:1px solid #e5e7eb;">
              <p style="margin:0;font-size:13px;font-weight:600;color:#111827;">{_html_escape(settings.site_name)}</p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>
"""
