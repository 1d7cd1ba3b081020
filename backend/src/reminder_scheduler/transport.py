from __future__ import annotations

import json
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Protocol

from .config import Settings

TransportStatus = Literal["sent", "failed"]


@dataclass(frozen=True)
class OutboundMessage:
    sender: str
    to: str
    subject: str
    html: str


@dataclass(frozen=True)
class TransportResult:
    status: TransportStatus
    attempted_at: datetime
    provider_message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None


class MessageTransport(Protocol):
    def send(self, message: OutboundMessage) -> TransportResult: ...


class StubTransport:
    """In-process transport for local runs and tests.

    Delivery is refused while disabled, and any recipient containing ``fail``
    is rejected so failure paths can be exercised end to end.
    """

    def __init__(self, *, enabled: bool) -> None:
        self._enabled = enabled
        self.sent: list[OutboundMessage] = []

    def send(self, message: OutboundMessage) -> TransportResult:
        attempted_at = datetime.now(timezone.utc)

        if not self._enabled:
            return TransportResult(
                status="failed",
                attempted_at=attempted_at,
                error_code="transport_disabled",
                error_message="Live delivery is disabled",
            )

        if "fail" in message.to.lower():
            return TransportResult(
                status="failed",
                attempted_at=attempted_at,
                error_code="stub_delivery_failed",
                error_message="Stub transport forced failure for recipient",
            )

        self.sent.append(message)
        message_id = f"stub-{len(self.sent)}-{int(attempted_at.timestamp())}"
        return TransportResult(status="sent", attempted_at=attempted_at, provider_message_id=message_id)


class _TransportSendError(Exception):
    """Internal error raised when an HTTP delivery request fails."""

    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class ResendHttpTransport:
    """Delivers email through the Resend HTTP API."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.resend.com",
        timeout_seconds: float = 30.0,
    ) -> None:
        stripped_url = base_url.strip().rstrip("/")
        stripped_key = api_key.strip()
        if not stripped_url:
            raise ValueError("base_url must not be empty")
        if not stripped_key:
            raise ValueError("api_key must not be empty")
        self._base_url = stripped_url
        self._api_key = stripped_key
        self._timeout_seconds = timeout_seconds

    def send(self, message: OutboundMessage) -> TransportResult:
        attempted_at = datetime.now(timezone.utc)
        request_payload = {
            "from": message.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        try:
            response_data = self._post(request_payload)
        except _TransportSendError as exc:
            return TransportResult(
                status="failed",
                attempted_at=attempted_at,
                error_code=exc.error_code,
                error_message=f"{exc.message} (recipient: {mask_contact_target(message.to)})",
            )
        message_id = response_data.get("id")
        return TransportResult(
            status="sent",
            attempted_at=attempted_at,
            provider_message_id=str(message_id) if message_id is not None else None,
        )

    def _post(self, body: dict[str, object]) -> dict[str, object]:
        url = f"{self._base_url}/emails"
        data = json.dumps(body).encode("utf-8")
        request = urllib.request.Request(
            url,
            data=data,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            raise _TransportSendError(
                error_code=f"http_{exc.code}",
                message=f"HTTP {exc.code}: {exc.reason}",
            ) from exc
        except urllib.error.URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise _TransportSendError(
                    error_code="timeout",
                    message=f"Request timed out: {exc.reason}",
                ) from exc
            raise _TransportSendError(
                error_code="connection_error",
                message=f"Connection error: {exc.reason}",
            ) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise _TransportSendError(
                error_code="timeout",
                message=f"Request timed out: {exc}",
            ) from exc

        try:
            parsed = json.loads(raw) if raw else {}
        except ValueError as exc:
            raise _TransportSendError(
                error_code="invalid_response",
                message="Provider returned a non-JSON response",
            ) from exc
        if not isinstance(parsed, dict):
            raise _TransportSendError(
                error_code="invalid_response",
                message="Provider returned an unexpected payload",
            )
        return parsed


def mask_contact_target(contact_target: str | None) -> str:
    normalized = (contact_target or "").strip()
    if not normalized:
        return "***"

    if "@" in normalized:
        local, domain = normalized.split("@", 1)
        if len(local) <= 1:
            return f"*@{domain}"
        return f"{local[0]}***@{domain}"

    if len(normalized) <= 4:
        return "*" * len(normalized)

    return f"{normalized[:2]}***{normalized[-2:]}"


def create_transport(settings: Settings) -> MessageTransport:
    if settings.transport_type == "resend":
        return ResendHttpTransport(
            api_key=settings.resend_api_key,
            base_url=settings.resend_api_base_url,
            timeout_seconds=settings.transport_timeout_seconds,
        )
    return StubTransport(enabled=settings.transport_enabled)
