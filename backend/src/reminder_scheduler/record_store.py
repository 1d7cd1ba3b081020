from __future__ import annotations

import json
from collections.abc import Collection
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, String, Text, and_, create_engine, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .errors import UnknownCampaignError
from .models import AuditLogItem, AuditStatus, CampaignName


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_optional_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return _coerce_utc(value)


def _dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class TenantPolicyRecord:
    tenant_id: str
    timezone: str | None = None
    invoice_reminders_enabled: bool = True
    account_nudges_enabled: bool = True

    def campaign_enabled(self, campaign: str) -> bool:
        if campaign == "invoice_reminders":
            return self.invoice_reminders_enabled
        if campaign == "account_nudges":
            return self.account_nudges_enabled
        raise UnknownCampaignError(f"unknown campaign: {campaign}")


@dataclass(frozen=True)
class SenderProfile:
    tenant_id: str
    name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class ClientRecord:
    client_id: str
    tenant_id: str
    name: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class InvoiceRecord:
    invoice_id: str
    tenant_id: str
    invoice_number: str
    due_date: date
    total_amount: float = 0.0
    client_id: str | None = None
    payment_status: str = "unpaid"
    payment_link_id: str | None = None
    reminder_count: int = 0
    last_reminder_at: datetime | None = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status.strip().lower() == "paid"


@dataclass(frozen=True)
class AccountRecord:
    account_id: str
    email: str | None
    registered_on: date
    full_name: str | None = None
    has_created_first_invoice: bool = False
    nudge_step: int = 0
    last_nudge_at: datetime | None = None


@dataclass(frozen=True)
class TrackedEntity:
    """Campaign-neutral view of an invoice or account the scheduler may notify."""

    tenant_id: str
    entity_id: str
    anchor_date: date
    escalation_step: int
    last_sent_at: datetime | None
    contact_target: str | None
    contact_name: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditEntry:
    run_id: str
    tenant_id: str
    entity_id: str | None
    campaign: CampaignName
    function_name: str
    entity_type: str
    status: AuditStatus
    attempt: int = 0
    message: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now_utc)


@dataclass(frozen=True)
class AuditLogRecord:
    log_id: int
    run_id: str
    tenant_id: str
    entity_id: str | None
    campaign: CampaignName
    function_name: str
    entity_type: str
    status: AuditStatus
    attempt: int
    message: str | None
    error: str | None
    metadata: dict[str, Any]
    created_at: datetime

    def to_item(self) -> AuditLogItem:
        return AuditLogItem(
            log_id=self.log_id,
            run_id=self.run_id,
            tenant_id=self.tenant_id,
            entity_id=self.entity_id,
            campaign=self.campaign,
            function_name=self.function_name,
            entity_type=self.entity_type,
            status=self.status,
            attempt=self.attempt,
            message=self.message,
            error=self.error,
            metadata=self.metadata,
            created_at=self.created_at,
        )


@dataclass(frozen=True)
class RunLockRecord:
    lock_name: str
    holder: str
    acquired_at: datetime
    expires_at: datetime


def _require_campaign(campaign: str) -> None:
    if campaign not in {"invoice_reminders", "account_nudges"}:
        raise UnknownCampaignError(f"unknown campaign: {campaign}")


def _invoice_entity(invoice: InvoiceRecord, client: ClientRecord | None) -> TrackedEntity:
    contact = client.email.strip() if client is not None and client.email else None
    return TrackedEntity(
        tenant_id=invoice.tenant_id,
        entity_id=invoice.invoice_id,
        anchor_date=invoice.due_date,
        escalation_step=invoice.reminder_count,
        last_sent_at=_coerce_optional_utc(invoice.last_reminder_at),
        contact_target=contact or None,
        contact_name=client.name if client is not None else None,
        details={
            "invoice_number": invoice.invoice_number,
            "total_amount": float(invoice.total_amount or 0.0),
            "payment_link_id": invoice.payment_link_id,
            "client_id": invoice.client_id,
        },
    )


def _account_entity(account: AccountRecord) -> TrackedEntity:
    contact = account.email.strip() if account.email else None
    return TrackedEntity(
        tenant_id=account.account_id,
        entity_id=account.account_id,
        anchor_date=account.registered_on,
        escalation_step=account.nudge_step,
        last_sent_at=_coerce_optional_utc(account.last_nudge_at),
        contact_target=contact or None,
        contact_name=account.full_name,
        details={"full_name": account.full_name},
    )


class RecordStore(Protocol):
    def reset(self) -> None: ...

    def upsert_tenant_policy(self, record: TenantPolicyRecord) -> None: ...
    def upsert_sender_profile(self, profile: SenderProfile) -> None: ...
    def upsert_client(self, record: ClientRecord) -> None: ...
    def upsert_invoice(self, record: InvoiceRecord) -> None: ...
    def upsert_account(self, record: AccountRecord) -> None: ...
    def get_invoice(self, invoice_id: str) -> InvoiceRecord | None: ...
    def get_account(self, account_id: str) -> AccountRecord | None: ...

    def list_tenant_policies(self, campaign: str) -> list[TenantPolicyRecord]: ...

    def get_sender_profile(self, tenant_id: str) -> SenderProfile | None: ...

    def list_entities_by_anchor_dates(
        self, campaign: str, tenant_id: str, anchor_dates: Collection[date]
    ) -> list[TrackedEntity]: ...

    def list_entities_anchored_on_or_before(
        self, campaign: str, tenant_id: str, cutoff: date, *, max_step: int
    ) -> list[TrackedEntity]: ...

    def list_recurring_due(
        self, campaign: str, tenant_id: str, *, completed_step: int, sent_on_or_before: datetime
    ) -> list[TrackedEntity]: ...

    def advance_escalation(
        self,
        campaign: str,
        entity_id: str,
        *,
        expected_step: int,
        next_step: int,
        previous_sent_at: datetime | None,
        sent_at: datetime,
    ) -> bool: ...

    def append_audit(self, entry: AuditEntry) -> AuditLogRecord: ...

    def list_audit(
        self,
        *,
        tenant_id: str | None = None,
        campaign: str | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditLogRecord]: ...

    def acquire_run_lock(self, lock_name: str, *, holder: str, now: datetime, ttl_seconds: int) -> bool: ...
    def release_run_lock(self, lock_name: str, *, holder: str) -> None: ...


class InMemoryRecordStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._policies: dict[str, TenantPolicyRecord] = {}
        self._senders: dict[str, SenderProfile] = {}
        self._clients: dict[str, ClientRecord] = {}
        self._invoices: dict[str, InvoiceRecord] = {}
        self._accounts: dict[str, AccountRecord] = {}
        self._audit: list[AuditLogRecord] = []
        self._audit_counter = 1
        self._run_locks: dict[str, RunLockRecord] = {}

    def reset(self) -> None:
        with self._lock:
            self._policies.clear()
            self._senders.clear()
            self._clients.clear()
            self._invoices.clear()
            self._accounts.clear()
            self._audit.clear()
            self._audit_counter = 1
            self._run_locks.clear()

    def upsert_tenant_policy(self, record: TenantPolicyRecord) -> None:
        with self._lock:
            self._policies[record.tenant_id] = record

    def upsert_sender_profile(self, profile: SenderProfile) -> None:
        with self._lock:
            self._senders[profile.tenant_id] = profile

    def upsert_client(self, record: ClientRecord) -> None:
        with self._lock:
            self._clients[record.client_id] = record

    def upsert_invoice(self, record: InvoiceRecord) -> None:
        with self._lock:
            self._invoices[record.invoice_id] = record

    def upsert_account(self, record: AccountRecord) -> None:
        with self._lock:
            self._accounts[record.account_id] = record

    def get_invoice(self, invoice_id: str) -> InvoiceRecord | None:
        with self._lock:
            return self._invoices.get(invoice_id)

    def get_account(self, account_id: str) -> AccountRecord | None:
        with self._lock:
            return self._accounts.get(account_id)

    def list_tenant_policies(self, campaign: str) -> list[TenantPolicyRecord]:
        _require_campaign(campaign)
        with self._lock:
            policies = dict(self._policies)
            if campaign == "account_nudges":
                for account_id in self._accounts:
                    policies.setdefault(account_id, TenantPolicyRecord(tenant_id=account_id))
        return [policies[key] for key in sorted(policies) if policies[key].campaign_enabled(campaign)]

    def get_sender_profile(self, tenant_id: str) -> SenderProfile | None:
        with self._lock:
            return self._senders.get(tenant_id)

    def _client_for(self, invoice: InvoiceRecord) -> ClientRecord | None:
        if not invoice.client_id:
            return None
        client = self._clients.get(invoice.client_id)
        if client is None or client.tenant_id != invoice.tenant_id:
            return None
        return client

    def _open_entities(self, campaign: str, tenant_id: str) -> list[TrackedEntity]:
        _require_campaign(campaign)
        with self._lock:
            if campaign == "invoice_reminders":
                entities = [
                    _invoice_entity(invoice, self._client_for(invoice))
                    for invoice in self._invoices.values()
                    if invoice.tenant_id == tenant_id and not invoice.is_paid
                ]
            else:
                account = self._accounts.get(tenant_id)
                entities = []
                if account is not None and not account.has_created_first_invoice:
                    entities.append(_account_entity(account))
        return sorted(entities, key=lambda entity: entity.entity_id)

    def list_entities_by_anchor_dates(
        self, campaign: str, tenant_id: str, anchor_dates: Collection[date]
    ) -> list[TrackedEntity]:
        wanted = set(anchor_dates)
        return [entity for entity in self._open_entities(campaign, tenant_id) if entity.anchor_date in wanted]

    def list_entities_anchored_on_or_before(
        self, campaign: str, tenant_id: str, cutoff: date, *, max_step: int
    ) -> list[TrackedEntity]:
        return [
            entity
            for entity in self._open_entities(campaign, tenant_id)
            if entity.anchor_date <= cutoff and entity.escalation_step < max_step
        ]

    def list_recurring_due(
        self, campaign: str, tenant_id: str, *, completed_step: int, sent_on_or_before: datetime
    ) -> list[TrackedEntity]:
        cutoff = _coerce_utc(sent_on_or_before)
        return [
            entity
            for entity in self._open_entities(campaign, tenant_id)
            if entity.escalation_step >= completed_step
            and entity.last_sent_at is not None
            and entity.last_sent_at <= cutoff
        ]

    def advance_escalation(
        self,
        campaign: str,
        entity_id: str,
        *,
        expected_step: int,
        next_step: int,
        previous_sent_at: datetime | None,
        sent_at: datetime,
    ) -> bool:
        _require_campaign(campaign)
        sent_at = _coerce_utc(sent_at)
        previous_sent_at = _coerce_optional_utc(previous_sent_at)
        with self._lock:
            if campaign == "invoice_reminders":
                invoice = self._invoices.get(entity_id)
                if invoice is None or invoice.reminder_count != expected_step:
                    return False
                if _coerce_optional_utc(invoice.last_reminder_at) != previous_sent_at:
                    return False
                self._invoices[entity_id] = replace(invoice, reminder_count=next_step, last_reminder_at=sent_at)
                return True
            account = self._accounts.get(entity_id)
            if account is None or account.nudge_step != expected_step:
                return False
            if _coerce_optional_utc(account.last_nudge_at) != previous_sent_at:
                return False
            self._accounts[entity_id] = replace(account, nudge_step=next_step, last_nudge_at=sent_at)
            return True

    def append_audit(self, entry: AuditEntry) -> AuditLogRecord:
        with self._lock:
            record = AuditLogRecord(
                log_id=self._audit_counter,
                run_id=entry.run_id,
                tenant_id=entry.tenant_id,
                entity_id=entry.entity_id,
                campaign=entry.campaign,
                function_name=entry.function_name,
                entity_type=entry.entity_type,
                status=entry.status,
                attempt=entry.attempt,
                message=entry.message,
                error=entry.error,
                metadata=json.loads(_dump_json(entry.metadata)),
                created_at=_coerce_utc(entry.created_at),
            )
            self._audit_counter += 1
            self._audit.append(record)
            return record

    def list_audit(
        self,
        *,
        tenant_id: str | None = None,
        campaign: str | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditLogRecord]:
        with self._lock:
            rows = [
                record
                for record in reversed(self._audit)
                if (tenant_id is None or record.tenant_id == tenant_id)
                and (campaign is None or record.campaign == campaign)
                and (run_id is None or record.run_id == run_id)
            ]
        return rows[:limit]

    def acquire_run_lock(self, lock_name: str, *, holder: str, now: datetime, ttl_seconds: int) -> bool:
        now = _coerce_utc(now)
        with self._lock:
            existing = self._run_locks.get(lock_name)
            if existing is not None and existing.holder != holder and existing.expires_at > now:
                return False
            self._run_locks[lock_name] = RunLockRecord(
                lock_name=lock_name,
                holder=holder,
                acquired_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
            return True

    def release_run_lock(self, lock_name: str, *, holder: str) -> None:
        with self._lock:
            existing = self._run_locks.get(lock_name)
            if existing is not None and existing.holder == holder:
                del self._run_locks[lock_name]


class RecordStoreBase(DeclarativeBase):
    pass


class _TenantPolicyRow(RecordStoreBase):
    __tablename__ = "tenant_notification_policies"

    tenant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    invoice_reminders_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    account_nudges_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class _SenderProfileRow(RecordStoreBase):
    __tablename__ = "sender_profiles"

    tenant_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)


class _ClientRow(RecordStoreBase):
    __tablename__ = "clients"

    client_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)


class _InvoiceRow(RecordStoreBase):
    __tablename__ = "invoices"

    invoice_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    client_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    invoice_number: Mapped[str] = mapped_column(String(64), nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False, default="unpaid")
    payment_link_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reminder_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class _AccountRow(RecordStoreBase):
    __tablename__ = "accounts"

    account_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    registered_on: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    has_created_first_invoice: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    nudge_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_nudge_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class _ReminderLogRow(RecordStoreBase):
    __tablename__ = "reminder_logs"

    log_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    campaign: Mapped[str] = mapped_column(String(32), nullable=False)
    function_name: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class _RunLockRow(RecordStoreBase):
    __tablename__ = "scheduler_run_locks"

    lock_name: Mapped[str] = mapped_column(String(128), primary_key=True)
    holder: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _policy_from_row(row: _TenantPolicyRow) -> TenantPolicyRecord:
    return TenantPolicyRecord(
        tenant_id=row.tenant_id,
        timezone=row.timezone,
        invoice_reminders_enabled=row.invoice_reminders_enabled,
        account_nudges_enabled=row.account_nudges_enabled,
    )


def _client_from_row(row: _ClientRow) -> ClientRecord:
    return ClientRecord(client_id=row.client_id, tenant_id=row.tenant_id, name=row.name, email=row.email)


def _invoice_from_row(row: _InvoiceRow) -> InvoiceRecord:
    return InvoiceRecord(
        invoice_id=row.invoice_id,
        tenant_id=row.tenant_id,
        invoice_number=row.invoice_number,
        due_date=row.due_date,
        total_amount=row.total_amount,
        client_id=row.client_id,
        payment_status=row.payment_status,
        payment_link_id=row.payment_link_id,
        reminder_count=row.reminder_count,
        last_reminder_at=_coerce_optional_utc(row.last_reminder_at),
    )


def _account_from_row(row: _AccountRow) -> AccountRecord:
    return AccountRecord(
        account_id=row.account_id,
        email=row.email,
        registered_on=row.registered_on,
        full_name=row.full_name,
        has_created_first_invoice=row.has_created_first_invoice,
        nudge_step=row.nudge_step,
        last_nudge_at=_coerce_optional_utc(row.last_nudge_at),
    )


def _audit_from_row(row: _ReminderLogRow) -> AuditLogRecord:
    return AuditLogRecord(
        log_id=row.log_id,
        run_id=row.run_id,
        tenant_id=row.tenant_id,
        entity_id=row.entity_id,
        campaign=row.campaign,  # type: ignore[arg-type]
        function_name=row.function_name,
        entity_type=row.entity_type,
        status=row.status,  # type: ignore[arg-type]
        attempt=row.attempt,
        message=row.message,
        error=row.error,
        metadata=json.loads(row.metadata_json or "{}"),
        created_at=_coerce_utc(row.created_at),
    )


def _matches_sent_at(column, value: datetime | None):
    if value is None:
        return column.is_(None)
    return column == value


class SqlAlchemyRecordStore:
    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for RECORD_STORE_BACKEND=postgres")
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        if database_url.startswith("sqlite"):
            RecordStoreBase.metadata.create_all(self._engine)

    def _session(self):
        return self._session_factory()

    def reset(self) -> None:
        with self._session() as session:
            with session.begin():
                session.query(_RunLockRow).delete()
                session.query(_ReminderLogRow).delete()
                session.query(_AccountRow).delete()
                session.query(_InvoiceRow).delete()
                session.query(_ClientRow).delete()
                session.query(_SenderProfileRow).delete()
                session.query(_TenantPolicyRow).delete()

    def upsert_tenant_policy(self, record: TenantPolicyRecord) -> None:
        with self._session() as session:
            with session.begin():
                session.merge(
                    _TenantPolicyRow(
                        tenant_id=record.tenant_id,
                        timezone=record.timezone,
                        invoice_reminders_enabled=record.invoice_reminders_enabled,
                        account_nudges_enabled=record.account_nudges_enabled,
                        updated_at=_now_utc(),
                    )
                )

    def upsert_sender_profile(self, profile: SenderProfile) -> None:
        with self._session() as session:
            with session.begin():
                session.merge(_SenderProfileRow(tenant_id=profile.tenant_id, name=profile.name, email=profile.email))

    def upsert_client(self, record: ClientRecord) -> None:
        with self._session() as session:
            with session.begin():
                session.merge(
                    _ClientRow(
                        client_id=record.client_id,
                        tenant_id=record.tenant_id,
                        name=record.name,
                        email=record.email,
                    )
                )

    def upsert_invoice(self, record: InvoiceRecord) -> None:
        with self._session() as session:
            with session.begin():
                session.merge(
                    _InvoiceRow(
                        invoice_id=record.invoice_id,
                        tenant_id=record.tenant_id,
                        client_id=record.client_id,
                        invoice_number=record.invoice_number,
                        total_amount=float(record.total_amount),
                        due_date=record.due_date,
                        payment_status=record.payment_status,
                        payment_link_id=record.payment_link_id,
                        reminder_count=record.reminder_count,
                        last_reminder_at=_coerce_optional_utc(record.last_reminder_at),
                    )
                )

    def upsert_account(self, record: AccountRecord) -> None:
        with self._session() as session:
            with session.begin():
                session.merge(
                    _AccountRow(
                        account_id=record.account_id,
                        email=record.email,
                        full_name=record.full_name,
                        registered_on=record.registered_on,
                        has_created_first_invoice=record.has_created_first_invoice,
                        nudge_step=record.nudge_step,
                        last_nudge_at=_coerce_optional_utc(record.last_nudge_at),
                    )
                )

    def get_invoice(self, invoice_id: str) -> InvoiceRecord | None:
        with self._session() as session:
            row = session.get(_InvoiceRow, invoice_id)
            return _invoice_from_row(row) if row is not None else None

    def get_account(self, account_id: str) -> AccountRecord | None:
        with self._session() as session:
            row = session.get(_AccountRow, account_id)
            return _account_from_row(row) if row is not None else None

    def list_tenant_policies(self, campaign: str) -> list[TenantPolicyRecord]:
        _require_campaign(campaign)
        with self._session() as session:
            policies = {
                row.tenant_id: _policy_from_row(row)
                for row in session.scalars(select(_TenantPolicyRow)).all()
            }
            if campaign == "account_nudges":
                for account_id in session.scalars(select(_AccountRow.account_id)).all():
                    policies.setdefault(account_id, TenantPolicyRecord(tenant_id=account_id))
        return [policies[key] for key in sorted(policies) if policies[key].campaign_enabled(campaign)]

    def get_sender_profile(self, tenant_id: str) -> SenderProfile | None:
        with self._session() as session:
            row = session.get(_SenderProfileRow, tenant_id)
            if row is None:
                return None
            return SenderProfile(tenant_id=row.tenant_id, name=row.name, email=row.email)

    def _select_invoices(self, tenant_id: str, *conditions) -> list[TrackedEntity]:
        statement = (
            select(_InvoiceRow, _ClientRow)
            .outerjoin(
                _ClientRow,
                and_(_ClientRow.client_id == _InvoiceRow.client_id, _ClientRow.tenant_id == _InvoiceRow.tenant_id),
            )
            .where(_InvoiceRow.tenant_id == tenant_id)
            .where(func.lower(_InvoiceRow.payment_status) != "paid")
            .where(*conditions)
            .order_by(_InvoiceRow.invoice_id)
        )
        with self._session() as session:
            rows = session.execute(statement).all()
            return [
                _invoice_entity(_invoice_from_row(invoice), _client_from_row(client) if client is not None else None)
                for invoice, client in rows
            ]

    def _select_accounts(self, tenant_id: str, *conditions) -> list[TrackedEntity]:
        statement = (
            select(_AccountRow)
            .where(_AccountRow.account_id == tenant_id)
            .where(_AccountRow.has_created_first_invoice.is_(False))
            .where(*conditions)
        )
        with self._session() as session:
            return [_account_entity(_account_from_row(row)) for row in session.scalars(statement).all()]

    def list_entities_by_anchor_dates(
        self, campaign: str, tenant_id: str, anchor_dates: Collection[date]
    ) -> list[TrackedEntity]:
        _require_campaign(campaign)
        wanted = sorted(set(anchor_dates))
        if not wanted:
            return []
        if campaign == "invoice_reminders":
            return self._select_invoices(tenant_id, _InvoiceRow.due_date.in_(wanted))
        return self._select_accounts(tenant_id, _AccountRow.registered_on.in_(wanted))

    def list_entities_anchored_on_or_before(
        self, campaign: str, tenant_id: str, cutoff: date, *, max_step: int
    ) -> list[TrackedEntity]:
        _require_campaign(campaign)
        if campaign == "invoice_reminders":
            return self._select_invoices(
                tenant_id, _InvoiceRow.due_date <= cutoff, _InvoiceRow.reminder_count < max_step
            )
        return self._select_accounts(tenant_id, _AccountRow.registered_on <= cutoff, _AccountRow.nudge_step < max_step)

    def list_recurring_due(
        self, campaign: str, tenant_id: str, *, completed_step: int, sent_on_or_before: datetime
    ) -> list[TrackedEntity]:
        _require_campaign(campaign)
        cutoff = _coerce_utc(sent_on_or_before)
        if campaign == "invoice_reminders":
            return self._select_invoices(
                tenant_id,
                _InvoiceRow.reminder_count >= completed_step,
                _InvoiceRow.last_reminder_at.is_not(None),
                _InvoiceRow.last_reminder_at <= cutoff,
            )
        return self._select_accounts(
            tenant_id,
            _AccountRow.nudge_step >= completed_step,
            _AccountRow.last_nudge_at.is_not(None),
            _AccountRow.last_nudge_at <= cutoff,
        )

    def advance_escalation(
        self,
        campaign: str,
        entity_id: str,
        *,
        expected_step: int,
        next_step: int,
        previous_sent_at: datetime | None,
        sent_at: datetime,
    ) -> bool:
        _require_campaign(campaign)
        sent_at = _coerce_utc(sent_at)
        previous_sent_at = _coerce_optional_utc(previous_sent_at)
        if campaign == "invoice_reminders":
            statement = (
                update(_InvoiceRow)
                .where(_InvoiceRow.invoice_id == entity_id, _InvoiceRow.reminder_count == expected_step)
                .where(_matches_sent_at(_InvoiceRow.last_reminder_at, previous_sent_at))
                .values(reminder_count=next_step, last_reminder_at=sent_at)
            )
        else:
            statement = (
                update(_AccountRow)
                .where(_AccountRow.account_id == entity_id, _AccountRow.nudge_step == expected_step)
                .where(_matches_sent_at(_AccountRow.last_nudge_at, previous_sent_at))
                .values(nudge_step=next_step, last_nudge_at=sent_at)
            )
        with self._session() as session:
            with session.begin():
                result = session.execute(statement)
                return result.rowcount == 1

    def append_audit(self, entry: AuditEntry) -> AuditLogRecord:
        with self._session() as session:
            with session.begin():
                row = _ReminderLogRow(
                    run_id=entry.run_id,
                    tenant_id=entry.tenant_id,
                    entity_id=entry.entity_id,
                    campaign=entry.campaign,
                    function_name=entry.function_name,
                    entity_type=entry.entity_type,
                    status=entry.status,
                    attempt=entry.attempt,
                    message=entry.message,
                    error=entry.error,
                    metadata_json=_dump_json(entry.metadata),
                    created_at=_coerce_utc(entry.created_at),
                )
                session.add(row)
                session.flush()
                return _audit_from_row(row)

    def list_audit(
        self,
        *,
        tenant_id: str | None = None,
        campaign: str | None = None,
        run_id: str | None = None,
        limit: int = 100,
    ) -> list[AuditLogRecord]:
        statement = select(_ReminderLogRow)
        if tenant_id is not None:
            statement = statement.where(_ReminderLogRow.tenant_id == tenant_id)
        if campaign is not None:
            statement = statement.where(_ReminderLogRow.campaign == campaign)
        if run_id is not None:
            statement = statement.where(_ReminderLogRow.run_id == run_id)
        statement = statement.order_by(_ReminderLogRow.log_id.desc()).limit(limit)
        with self._session() as session:
            return [_audit_from_row(row) for row in session.scalars(statement).all()]

    def acquire_run_lock(self, lock_name: str, *, holder: str, now: datetime, ttl_seconds: int) -> bool:
        now = _coerce_utc(now)
        expires_at = now + timedelta(seconds=ttl_seconds)
        try:
            with self._session() as session:
                with session.begin():
                    row = session.get(_RunLockRow, lock_name, with_for_update=True)
                    if row is None:
                        session.add(
                            _RunLockRow(lock_name=lock_name, holder=holder, acquired_at=now, expires_at=expires_at)
                        )
                        return True
                    if row.holder != holder and _coerce_utc(row.expires_at) > now:
                        return False
                    row.holder = holder
                    row.acquired_at = now
                    row.expires_at = expires_at
                    return True
        except IntegrityError:
            return False

    def release_run_lock(self, lock_name: str, *, holder: str) -> None:
        with self._session() as session:
            with session.begin():
                row = session.get(_RunLockRow, lock_name)
                if row is not None and row.holder == holder:
                    session.delete(row)


def create_record_store(*, backend: str, database_url: str) -> RecordStore:
    normalized = backend.strip().lower()
    if normalized == "postgres":
        return SqlAlchemyRecordStore(database_url)
    return InMemoryRecordStore()
