from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from .models import AuditStatus, CampaignName
from .record_store import AuditEntry, RecordStore

logger = logging.getLogger(__name__)


class AuditLogger:
    """Best-effort writer for the append-only reminder log.

    A failed write is logged and dropped; it never interrupts the run.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        run_id: str,
        campaign: CampaignName,
        function_name: str,
        entity_type: str,
    ) -> None:
        self._store = store
        self._run_id = run_id
        self._campaign = campaign
        self._function_name = function_name
        self._entity_type = entity_type
        self.write_failures = 0

    def log(
        self,
        *,
        tenant_id: str,
        entity_id: str | None,
        status: AuditStatus,
        attempt: int = 0,
        message: str | None = None,
        error: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        entry = AuditEntry(
            run_id=self._run_id,
            tenant_id=tenant_id,
            entity_id=entity_id,
            campaign=self._campaign,
            function_name=self._function_name,
            entity_type=self._entity_type,
            status=status,
            attempt=attempt,
            message=message,
            error=error,
            metadata=dict(metadata or {}),
            created_at=datetime.now(timezone.utc),
        )
        try:
            self._store.append_audit(entry)
        except Exception:
            self.write_failures += 1
            logger.warning(
                "failed to write %s audit entry for tenant=%s entity=%s",
                status,
                tenant_id,
                entity_id,
                exc_info=True,
            )
            return
        logger.debug("audit %s tenant=%s entity=%s attempt=%d", status, tenant_id, entity_id, attempt)
