from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from backend project root so it loads regardless of cwd
_BACKEND_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _BACKEND_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = False

    # JWT (tokens are issued by the identity provider, we only verify them)
    secret_key: str
    access_token_expire_minutes: int = 15
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Scheduling rules
    default_appointment_duration_minutes: int = 30
    auto_confirm_bookings: bool = False

    # Reminders
    default_reminder_intervals: list[int] = [24, 1]
    default_reminder_channels: list[str] = ["email"]
    reminder_poller_enabled: bool = True
    reminder_poll_interval_seconds: int = 60
    reminder_batch_size: int = 100

    # Redis holds the per-recipient notification counters shared by all workers
    redis_url: str = "redis://localhost:6379/0"

    # Outbound notification limit per recipient (10 per hour)
    notification_rate_limit: int = 10
    notification_rate_window_seconds: int = 3600

    # Env
    env: str = "development"

    # Email (SMTP). Leave smtp_host empty to disable the email channel.
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    from_name: str = "Afya Care"
    site_name: str = "Afya Care"

    # Twilio (SMS / WhatsApp). Leave account sid empty to disable.
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    twilio_whatsapp_number: str = ""
    twilio_api_base: str = "https://api.twilio.com/2010-04-01"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password and self.from_email)

    @property
    def twilio_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token)


settings = Settings()
