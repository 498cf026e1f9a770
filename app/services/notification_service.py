"""
Outbound notification dispatch for appointment reminders.
Email goes through SMTP, SMS and WhatsApp through the Twilio REST API.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

from app.core.config import settings
from app.services.email_service import build_reminder_html, send_email_sync
from app.services.rate_limiter import FixedWindowRateLimiter, get_redis_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    channel: str
    recipient: str
    message: str
    scheduled_for: datetime | None = None


@dataclass(frozen=True)
class DispatchResult:
    ok: bool
    error: str | None = None


class NotificationDispatcher:
    def __init__(
        self,
        rate_limiter: FixedWindowRateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            get_redis_client(), settings.notification_rate_limit, settings.notification_rate_window_seconds
        )
        self._transport = transport
        self._timeout = timeout

    async def send(self, notification: Notification) -> DispatchResult:
        """Deliver one notification. Never raises; the outcome is in the result."""
        if not await self.rate_limiter.hit(notification.recipient):
            return DispatchResult(False, "Rate limit exceeded for recipient")
        try:
            if notification.channel == "email":
                return await self._send_email(notification)
            if notification.channel == "sms":
                return await self._send_twilio(notification.recipient, notification.message, whatsapp=False)
            if notification.channel == "whatsapp":
                return await self._send_twilio(notification.recipient, notification.message, whatsapp=True)
            return DispatchResult(False, f"Unknown channel {notification.channel}")
        except Exception as e:
            logger.exception("Failed to send %s to %s: %s", notification.channel, notification.recipient, e)
            return DispatchResult(False, f"{type(e).__name__}: {e}")

    async def _send_email(self, notification: Notification) -> DispatchResult:
        if not settings.email_enabled:
            return DispatchResult(False, "Email channel not configured")
        await asyncio.to_thread(
            send_email_sync,
            notification.recipient,
            f"{settings.site_name} – Appointment Reminder",
            build_reminder_html(notification.message),
            notification.message,
        )
        return DispatchResult(True)

    async def _send_twilio(self, phone: str, message: str, whatsapp: bool) -> DispatchResult:
        if not settings.twilio_enabled:
            return DispatchResult(False, "Twilio not configured")
        if not phone.startswith("+"):
            return DispatchResult(False, "Phone number must be in E.164 format (e.g., +254712345678)")
        sender = settings.twilio_whatsapp_number if whatsapp else settings.twilio_phone_number
        if not sender:
            return DispatchResult(False, "No Twilio sender number configured")
        data = {
            "To": f"whatsapp:{phone}" if whatsapp else phone,
            "From": f"whatsapp:{sender}" if whatsapp else sender,
            "Body": message,
        }
        url = f"{settings.twilio_api_base}/Accounts/{settings.twilio_account_sid}/Messages.json"
        async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
            resp = await client.post(
                url,
                data=data,
                auth=(settings.twilio_account_sid, settings.twilio_auth_token),
            )
        if resp.status_code not in (200, 201):
            logger.warning("Twilio send failed: status=%s body=%s", resp.status_code, resp.text[:500])
            return DispatchResult(False, f"Twilio error {resp.status_code}")
        logger.info("%s sent to %s", "WhatsApp" if whatsapp else "SMS", phone)
        return DispatchResult(True)
