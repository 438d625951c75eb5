"""
Configuration validation tests.
"""

import pytest

from storefront import create_app
from storefront.config import validate_config
from storefront.errors import ConfigurationError


BASE = {
    "APP_ENV": "development",
    "AUTH_BYPASS_ENABLED": False,
    "AUTH_BYPASS_USER_ID": None,
    "PAYMENT_DEADLINE_HOURS": 24,
    "PAYMENT_REMINDER_AFTER_HOURS": 1,
    "PAYMENT_WARNING_LEAD_HOURS": 2,
    "VENUE_TIMEZONE": "Asia/Jakarta",
}


def _config(**overrides):
    config = dict(BASE)
    config.update(overrides)
    return config


class TestValidateConfig:

    def test_defaults_are_valid(self):
        validate_config(_config())

    def test_bypass_allowed_outside_production(self):
        validate_config(_config(AUTH_BYPASS_ENABLED=True, AUTH_BYPASS_USER_ID=1))

    def test_bypass_refused_in_production(self):
        with pytest.raises(ConfigurationError):
            validate_config(_config(APP_ENV="production", AUTH_BYPASS_ENABLED=True, AUTH_BYPASS_USER_ID=1))

    def test_bypass_needs_a_user(self):
        with pytest.raises(ConfigurationError):
            validate_config(_config(AUTH_BYPASS_ENABLED=True))

    def test_warning_lead_must_fit_in_deadline(self):
        with pytest.raises(ConfigurationError):
            validate_config(_config(PAYMENT_WARNING_LEAD_HOURS=24))

    def test_reminder_must_come_before_the_warning_zone(self):
        with pytest.raises(ConfigurationError):
            validate_config(_config(PAYMENT_REMINDER_AFTER_HOURS=22))

    def test_reminder_threshold_inside_range(self):
        validate_config(_config(PAYMENT_REMINDER_AFTER_HOURS=21.5))

    def test_unknown_timezone(self):
        with pytest.raises(ConfigurationError):
            validate_config(_config(VENUE_TIMEZONE="Mars/Olympus_Mons"))

    def test_app_refuses_to_start_with_production_bypass(self):
        with pytest.raises(ConfigurationError):
            create_app({
                "APP_ENV": "production",
                "AUTH_BYPASS_ENABLED": True,
                "AUTH_BYPASS_USER_ID": 1,
                "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            })
