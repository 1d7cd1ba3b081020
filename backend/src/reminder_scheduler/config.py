from __future__ import annotations

import os
from dataclasses import dataclass


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _as_csv_tuple(value: str | None) -> tuple[str, ...]:
    if value is None:
        return ()
    items = [item.strip() for item in value.split(",")]
    return tuple(item for item in items if item)


def _as_int_tuple(value: str | None, default: tuple[int, ...]) -> tuple[int, ...]:
    items = _as_csv_tuple(value)
    if not items:
        return default
    try:
        return tuple(int(item) for item in items)
    except ValueError:
        return default


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _as_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _normalize_mode(value: str | None, *, default: str, allowed: set[str]) -> str:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized if normalized in allowed else default


@dataclass(frozen=True)
class Settings:
    app_name: str = "X Invoice Reminder Scheduler"
    api_prefix: str = "/api/v1"
    public_app_url: str = ""
    default_timezone: str = "UTC"
    record_store_backend: str = "inmemory"
    database_url: str = ""
    transport_type: str = "stub"
    transport_enabled: bool = False
    transport_timeout_seconds: float = 30.0
    resend_api_key: str = ""
    resend_api_base_url: str = "https://api.resend.com"
    product_name: str = "X Invoice"
    invoice_reminder_from: str = "no-reply@xinvoice.app"
    account_nudge_from: str = "X Invoice <reminders@xinvoice.app>"
    default_sender_name: str = "Billing"
    default_sender_email: str = "noreply@resend.dev"
    invoice_reminder_thresholds: tuple[int, ...] = (1, 3, 7)
    account_nudge_thresholds: tuple[int, ...] = (3, 5, 7, 30)
    account_nudge_recurrence_days: int = 30
    selection_mode: str = "exact"
    run_lock_ttl_seconds: int = 3600
    config_guard_mode: str = "warn"
    log_level: str = "INFO"

    @property
    def app_base_url(self) -> str:
        return self.public_app_url.strip().rstrip("/")


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "X Invoice Reminder Scheduler"),
        api_prefix=os.getenv("API_PREFIX", "/api/v1"),
        public_app_url=os.getenv("PUBLIC_APP_URL", ""),
        default_timezone=os.getenv("DEFAULT_TIMEZONE", "UTC"),
        record_store_backend=_normalize_mode(
            os.getenv("RECORD_STORE_BACKEND"),
            default="inmemory",
            allowed={"inmemory", "postgres"},
        ),
        database_url=os.getenv("DATABASE_URL", ""),
        transport_type=_normalize_mode(
            os.getenv("TRANSPORT_TYPE"),
            default="stub",
            allowed={"stub", "resend"},
        ),
        transport_enabled=_as_bool(os.getenv("TRANSPORT_ENABLED"), False),
        transport_timeout_seconds=_as_float(os.getenv("TRANSPORT_TIMEOUT_SECONDS"), 30.0),
        resend_api_key=os.getenv("RESEND_API_KEY", ""),
        resend_api_base_url=os.getenv("RESEND_API_BASE_URL", "https://api.resend.com"),
        product_name=os.getenv("PRODUCT_NAME", "X Invoice"),
        invoice_reminder_from=os.getenv("INVOICE_REMINDER_FROM", "no-reply@xinvoice.app"),
        account_nudge_from=os.getenv("ACCOUNT_NUDGE_FROM", "X Invoice <reminders@xinvoice.app>"),
        default_sender_name=os.getenv("DEFAULT_SENDER_NAME", "Billing"),
        default_sender_email=os.getenv("DEFAULT_SENDER_EMAIL", "noreply@resend.dev"),
        invoice_reminder_thresholds=_as_int_tuple(os.getenv("INVOICE_REMINDER_THRESHOLDS"), (1, 3, 7)),
        account_nudge_thresholds=_as_int_tuple(os.getenv("ACCOUNT_NUDGE_THRESHOLDS"), (3, 5, 7, 30)),
        account_nudge_recurrence_days=_as_int(os.getenv("ACCOUNT_NUDGE_RECURRENCE_DAYS"), 30),
        selection_mode=_normalize_mode(
            os.getenv("SELECTION_MODE"),
            default="exact",
            allowed={"exact", "catch_up"},
        ),
        run_lock_ttl_seconds=_as_int(os.getenv("RUN_LOCK_TTL_SECONDS"), 3600),
        config_guard_mode=_normalize_mode(
            os.getenv("CONFIG_GUARD_MODE"),
            default="warn",
            allowed={"off", "warn", "enforce"},
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )


def _threshold_issue(name: str, thresholds: tuple[int, ...]) -> str | None:
    if not thresholds:
        return f"{name} must list at least one day offset"
    if any(offset <= 0 for offset in thresholds):
        return f"{name} day offsets must be positive"
    if any(later <= earlier for earlier, later in zip(thresholds, thresholds[1:])):
        return f"{name} day offsets must be strictly increasing"
    return None


def runtime_config_issues(settings: Settings) -> tuple[str, ...]:
    issues: list[str] = []
    if not settings.app_base_url:
        issues.append("PUBLIC_APP_URL is not set; notification links cannot be built")
    if settings.record_store_backend == "postgres" and not settings.database_url.strip():
        issues.append("DATABASE_URL is required when RECORD_STORE_BACKEND=postgres")
    if settings.transport_type == "resend" and not settings.resend_api_key.strip():
        issues.append("RESEND_API_KEY is required when TRANSPORT_TYPE=resend")
    if settings.transport_timeout_seconds <= 0:
        issues.append("TRANSPORT_TIMEOUT_SECONDS must be positive")
    if settings.account_nudge_recurrence_days <= 0:
        issues.append("ACCOUNT_NUDGE_RECURRENCE_DAYS must be positive")
    for name, thresholds in (
        ("INVOICE_REMINDER_THRESHOLDS", settings.invoice_reminder_thresholds),
        ("ACCOUNT_NUDGE_THRESHOLDS", settings.account_nudge_thresholds),
    ):
        issue = _threshold_issue(name, thresholds)
        if issue is not None:
            issues.append(issue)
    return tuple(issues)
