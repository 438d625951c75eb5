from __future__ import annotations
import os

from .errors import ConfigurationError


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///preorder.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    APP_ENV = os.environ.get("APP_ENV", "development")

    # Shared secret for the external cron trigger. Empty means "reject all".
    CRON_SECRET = os.environ.get("CRON_SECRET", "")

    # Venue wall clock; batch windows and pickup days are computed in this zone
    VENUE_TIMEZONE = os.environ.get("VENUE_TIMEZONE", "Asia/Jakarta")

    PAYMENT_DEADLINE_HOURS = float(os.environ.get("PAYMENT_DEADLINE_HOURS", "24"))
    PAYMENT_REMINDER_AFTER_HOURS = float(os.environ.get("PAYMENT_REMINDER_AFTER_HOURS", "1"))
    PAYMENT_WARNING_LEAD_HOURS = float(os.environ.get("PAYMENT_WARNING_LEAD_HOURS", "2"))

    PICKUP_VERIFY_BASE_URL = os.environ.get("PICKUP_VERIFY_BASE_URL", "http://localhost:5000")

    SESSION_HOURS = int(os.environ.get("SESSION_HOURS", "24"))

    # Upper bound on orders scanned per maintenance pass
    MAINTENANCE_BATCH_SIZE = int(os.environ.get("MAINTENANCE_BATCH_SIZE", "200"))

    # Testing-only auth bypass; production refuses to start with it enabled
    AUTH_BYPASS_ENABLED = _env_bool("AUTH_BYPASS_ENABLED")
    AUTH_BYPASS_USER_ID = int(os.environ["AUTH_BYPASS_USER_ID"]) if os.environ.get("AUTH_BYPASS_USER_ID") else None


def validate_config(config) -> None:
    """
    Reject configurations the app must not start with.

    Called from create_app after all overrides are applied.
    """
    if config.get("AUTH_BYPASS_ENABLED"):
        if config.get("APP_ENV") == "production":
            raise ConfigurationError("AUTH_BYPASS_ENABLED must not be set when APP_ENV=production")
        if not config.get("AUTH_BYPASS_USER_ID"):
            raise ConfigurationError("AUTH_BYPASS_ENABLED requires AUTH_BYPASS_USER_ID")

    if config.get("PAYMENT_WARNING_LEAD_HOURS", 0) >= config.get("PAYMENT_DEADLINE_HOURS", 0):
        raise ConfigurationError("PAYMENT_WARNING_LEAD_HOURS must be smaller than PAYMENT_DEADLINE_HOURS")

    # Reminders go out between the reminder threshold and the warning zone
    warning_start = config.get("PAYMENT_DEADLINE_HOURS", 0) - config.get("PAYMENT_WARNING_LEAD_HOURS", 0)
    if config.get("PAYMENT_REMINDER_AFTER_HOURS", 0) >= warning_start:
        raise ConfigurationError(
            "PAYMENT_REMINDER_AFTER_HOURS must be smaller than "
            "PAYMENT_DEADLINE_HOURS - PAYMENT_WARNING_LEAD_HOURS"
        )

    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
    try:
        ZoneInfo(config.get("VENUE_TIMEZONE", ""))
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(f"Unknown VENUE_TIMEZONE: {config.get('VENUE_TIMEZONE')!r}")
