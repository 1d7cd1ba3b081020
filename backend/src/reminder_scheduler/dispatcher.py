from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from .templates import RenderedMessage
from .transport import MessageTransport, OutboundMessage, mask_contact_target

logger = logging.getLogger(__name__)

DispatchStatus = Literal["sent", "failed"]


@dataclass(frozen=True)
class DispatchOutcome:
    status: DispatchStatus
    attempted_at: datetime
    provider_message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def sent(self) -> bool:
        return self.status == "sent"


class Dispatcher:
    """Hands one rendered message to the transport and reports a typed outcome.

    Never raises: transport exceptions become ``failed`` outcomes.
    """

    def __init__(self, transport: MessageTransport) -> None:
        self._transport = transport

    def dispatch(self, *, sender: str, target: str, message: RenderedMessage) -> DispatchOutcome:
        outbound = OutboundMessage(sender=sender, to=target, subject=message.subject, html=message.html)
        try:
            result = self._transport.send(outbound)
        except Exception as exc:
            logger.exception("transport raised while sending to %s", mask_contact_target(target))
            return DispatchOutcome(
                status="failed",
                attempted_at=datetime.now(timezone.utc),
                error_code="transport_error",
                error_message=str(exc) or exc.__class__.__name__,
            )
        if result.status != "sent":
            return DispatchOutcome(
                status="failed",
                attempted_at=result.attempted_at,
                error_code=result.error_code or "delivery_failed",
                error_message=result.error_message,
            )
        return DispatchOutcome(
            status="sent",
            attempted_at=result.attempted_at,
            provider_message_id=result.provider_message_id,
        )
