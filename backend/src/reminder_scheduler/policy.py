from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


def _coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class EscalationPolicy:
    """Ordered day offsets; step ``k`` fires once the anchor is ``thresholds[k]`` days old."""

    name: str
    thresholds: tuple[int, ...]

    def __post_init__(self) -> None:
        if not self.thresholds:
            raise ValueError(f"{self.name}: thresholds must not be empty")
        if any(offset <= 0 for offset in self.thresholds):
            raise ValueError(f"{self.name}: thresholds must be positive day offsets")
        if any(later <= earlier for earlier, later in zip(self.thresholds, self.thresholds[1:])):
            raise ValueError(f"{self.name}: thresholds must be strictly increasing")

    @property
    def max_step(self) -> int:
        return len(self.thresholds)

    @property
    def first_threshold(self) -> int:
        return self.thresholds[0]

    def is_complete(self, step: int) -> bool:
        return step >= self.max_step

    def threshold_for(self, step: int) -> int:
        if step < 0 or step >= self.max_step:
            raise IndexError(f"{self.name}: no threshold for step {step}")
        return self.thresholds[step]


@dataclass(frozen=True)
class RecurringEscalationPolicy(EscalationPolicy):
    """Escalation policy whose completed entities are re-notified on a fixed cadence.

    The recurring step is keyed off the last successful send rather than the
    anchor date, so it never depends on an exact calendar match.
    """

    recurrence_days: int = 30

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.recurrence_days <= 0:
            raise ValueError(f"{self.name}: recurrence_days must be positive")

    @property
    def recurrence(self) -> timedelta:
        return timedelta(days=self.recurrence_days)

    def next_due_at(self, last_sent_at: datetime) -> datetime:
        return _coerce_utc(last_sent_at) + self.recurrence

    def recurrence_cutoff(self, now: datetime) -> datetime:
        """Entities last notified at or before this instant are due again."""
        return _coerce_utc(now) - self.recurrence

    def is_recurrence_due(self, last_sent_at: datetime | None, now: datetime) -> bool:
        if last_sent_at is None:
            return False
        return _coerce_utc(now) >= self.next_due_at(last_sent_at)


def build_policy(
    name: str,
    thresholds: tuple[int, ...],
    *,
    recurrence_days: int | None = None,
) -> EscalationPolicy:
    if recurrence_days is None:
        return EscalationPolicy(name=name, thresholds=tuple(thresholds))
    return RecurringEscalationPolicy(
        name=name,
        thresholds=tuple(thresholds),
        recurrence_days=recurrence_days,
    )
