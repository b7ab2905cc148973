"""Application configuration via environment variables."""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings

log = logging.getLogger("classroom_booking.config")


class Settings(BaseSettings):
    # Booking store
    store_backend: str = "memory"  # "memory" or "firestore"
    firestore_project: str = ""
    google_service_account_json: str = ""

    # Email notifications (Formspree)
    formspree_form_id: str = ""
    email_from: str = ""
    email_max_retries: int = 3
    email_retry_delay: float = 2.0
    teacher_emails: list[str] = []
    app_url: str = "http://localhost:8080"

    # Cleanup sweeper
    cleanup_interval_seconds: float = 300.0
    school_timezone: str = "UTC"

    # Service auth (trusted front end that signs teachers in)
    service_api_key: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def email_configured(self) -> bool:
        return bool(self.formspree_form_id) and self.formspree_form_id not in _PLACEHOLDERS

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []

        if self.store_backend not in ("memory", "firestore"):
            raise ValueError(
                f"STORE_BACKEND must be 'memory' or 'firestore', got {self.store_backend!r}."
            )

        try:
            ZoneInfo(self.school_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"SCHOOL_TIMEZONE {self.school_timezone!r} is not a known time zone."
            ) from None

        if self.store_backend == "firestore":
            if not self.firestore_project and not self.google_service_account_json:
                raise ValueError(
                    "FIRESTORE_PROJECT or GOOGLE_SERVICE_ACCOUNT_JSON must be set "
                    "when STORE_BACKEND=firestore."
                )
            if self.google_service_account_json in _PLACEHOLDERS:
                raise ValueError(
                    "GOOGLE_SERVICE_ACCOUNT_JSON is still a placeholder. "
                    "Set it in .env to use Firestore."
                )
        else:
            warnings.append(
                "STORE_BACKEND=memory. Bookings are lost when the process exits."
            )

        if not self.email_configured:
            warnings.append(
                "FORMSPREE_FORM_ID not set. Booking notifications are disabled."
            )
        elif not self.teacher_emails:
            warnings.append("TEACHER_EMAILS is empty. Nobody will be notified.")

        if not self.service_api_key:
            if self.debug:
                warnings.append(
                    "SERVICE_API_KEY not set. Sign-in is open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "SERVICE_API_KEY not set. Sign-in is locked in production. "
                    "Set SERVICE_API_KEY in .env to enable it."
                )

        return warnings


_PLACEHOLDERS = {"YOUR_FORMSPREE_FORM_ID", "path/to/service-account.json"}

settings = Settings()
