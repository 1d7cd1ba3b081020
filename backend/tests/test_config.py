from __future__ import annotations

import os

from reminder_scheduler.config import Settings, get_settings, runtime_config_issues


def _set_env(overrides: dict[str, str | None]) -> dict[str, str | None]:
    previous: dict[str, str | None] = {}
    for key, value in overrides.items():
        previous[key] = os.environ.get(key)
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    return previous


def _restore_env(previous: dict[str, str | None]) -> None:
    for key, value in previous.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


def test_get_settings_reads_environment() -> None:
    previous = _set_env(
        {
            "PUBLIC_APP_URL": "https://app.example.com/",
            "DEFAULT_TIMEZONE": "America/New_York",
            "RECORD_STORE_BACKEND": "POSTGRES",
            "DATABASE_URL": "postgresql+psycopg://localhost/reminders",
            "TRANSPORT_TYPE": "resend",
            "TRANSPORT_ENABLED": "yes",
            "RESEND_API_KEY": "re_key",
            "INVOICE_REMINDER_THRESHOLDS": "2, 4, 8",
            "SELECTION_MODE": "catch_up",
            "RUN_LOCK_TTL_SECONDS": "120",
            "LOG_LEVEL": "debug",
        }
    )
    try:
        settings = get_settings()
    finally:
        _restore_env(previous)

    assert settings.app_base_url == "https://app.example.com"
    assert settings.default_timezone == "America/New_York"
    assert settings.record_store_backend == "postgres"
    assert settings.transport_type == "resend"
    assert settings.transport_enabled is True
    assert settings.invoice_reminder_thresholds == (2, 4, 8)
    assert settings.account_nudge_thresholds == (3, 5, 7, 30)
    assert settings.selection_mode == "catch_up"
    assert settings.run_lock_ttl_seconds == 120
    assert settings.log_level == "DEBUG"
    assert runtime_config_issues(settings) == ()


def test_invalid_values_fall_back_to_defaults() -> None:
    previous = _set_env(
        {
            "RECORD_STORE_BACKEND": "mongo",
            "TRANSPORT_ENABLED": "maybe",
            "INVOICE_REMINDER_THRESHOLDS": "one,three",
            "SELECTION_MODE": "sometimes",
            "ACCOUNT_NUDGE_RECURRENCE_DAYS": "monthly",
        }
    )
    try:
        settings = get_settings()
    finally:
        _restore_env(previous)

    assert settings.record_store_backend == "inmemory"
    assert settings.transport_enabled is False
    assert settings.invoice_reminder_thresholds == (1, 3, 7)
    assert settings.selection_mode == "exact"
    assert settings.account_nudge_recurrence_days == 30


def test_runtime_config_issues_lists_each_problem() -> None:
    settings = Settings(
        public_app_url="  ",
        record_store_backend="postgres",
        database_url="",
        transport_type="resend",
        resend_api_key="",
        invoice_reminder_thresholds=(3, 1),
        account_nudge_thresholds=(0, 5),
        account_nudge_recurrence_days=0,
    )

    issues = runtime_config_issues(settings)

    assert "PUBLIC_APP_URL is not set; notification links cannot be built" in issues
    assert "DATABASE_URL is required when RECORD_STORE_BACKEND=postgres" in issues
    assert "RESEND_API_KEY is required when TRANSPORT_TYPE=resend" in issues
    assert "ACCOUNT_NUDGE_RECURRENCE_DAYS must be positive" in issues
    assert "INVOICE_REMINDER_THRESHOLDS day offsets must be strictly increasing" in issues
    assert "ACCOUNT_NUDGE_THRESHOLDS day offsets must be positive" in issues


def test_default_settings_only_miss_public_url() -> None:
    assert runtime_config_issues(Settings()) == (
        "PUBLIC_APP_URL is not set; notification links cannot be built",
    )
