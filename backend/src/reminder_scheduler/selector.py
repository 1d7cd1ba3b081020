from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, tzinfo

from .clock import local_date_days_ago, local_days_between
from .models import SelectionMode
from .policy import EscalationPolicy, RecurringEscalationPolicy
from .record_store import RecordStore, TrackedEntity


@dataclass(frozen=True)
class SelectedEntity:
    entity: TrackedEntity
    elapsed_days: int
    recurring: bool = False


def threshold_dates(policy: EscalationPolicy, now: datetime, zone: tzinfo) -> dict[date, int]:
    """Map each threshold's local calendar date to its day offset."""
    return {local_date_days_ago(now, offset, zone): offset for offset in policy.thresholds}


class EntitySelector:
    """Finds the entities of one tenant that sit on (or past) a threshold today.

    ``exact`` mode only matches anchors that fall exactly on a threshold date,
    so a run skipped on that day misses the step. ``catch_up`` matches every
    open entity whose next threshold has been reached and lets the state
    machine decide which step is next.
    """

    def __init__(self, store: RecordStore, *, mode: SelectionMode = "exact") -> None:
        self._store = store
        self._mode = mode

    @property
    def mode(self) -> SelectionMode:
        return self._mode

    def select(
        self,
        campaign: str,
        policy: EscalationPolicy,
        tenant_id: str,
        *,
        now: datetime,
        zone: tzinfo,
    ) -> list[SelectedEntity]:
        selected: dict[str, SelectedEntity] = {}

        if self._mode == "catch_up":
            cutoff = local_date_days_ago(now, policy.first_threshold, zone)
            candidates = self._store.list_entities_anchored_on_or_before(
                campaign, tenant_id, cutoff, max_step=policy.max_step
            )
            for entity in candidates:
                elapsed = local_days_between(entity.anchor_date, now, zone)
                # Entities waiting on their next threshold stay out of the run.
                step = entity.escalation_step
                if 0 <= step < policy.max_step and elapsed < policy.threshold_for(step):
                    continue
                selected[entity.entity_id] = SelectedEntity(entity=entity, elapsed_days=elapsed)
        else:
            dates = threshold_dates(policy, now, zone)
            for entity in self._store.list_entities_by_anchor_dates(campaign, tenant_id, dates.keys()):
                selected[entity.entity_id] = SelectedEntity(entity=entity, elapsed_days=dates[entity.anchor_date])

        if isinstance(policy, RecurringEscalationPolicy):
            due = self._store.list_recurring_due(
                campaign,
                tenant_id,
                completed_step=policy.max_step,
                sent_on_or_before=policy.recurrence_cutoff(now),
            )
            for entity in due:
                selected[entity.entity_id] = SelectedEntity(
                    entity=entity,
                    elapsed_days=local_days_between(entity.anchor_date, now, zone),
                    recurring=True,
                )

        return [selected[key] for key in sorted(selected)]
