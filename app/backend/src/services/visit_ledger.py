"""Visit ledger: the bounded, ordered sequence of visits embedded in a job."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, replace
from datetime import date
from typing import Any

import structlog

from app.backend.src.core.exceptions import (
    AlreadyTerminal,
    CapacityExceeded,
    JobClosed,
    SlotOutOfOrder,
    VisitNotFound,
)
from app.backend.src.models import Job
from app.backend.src.models.enums import VisitStatus, VisitType

LOGGER = structlog.get_logger(__name__)

MAX_VISITS = 5

_TERMINAL_VISIT_STATUSES = frozenset({VisitStatus.COMPLETED, VisitStatus.CANCELLED})


@dataclass(frozen=True)
class VisitSlot:
    """One scheduled appointment within a job."""

    date: date | None
    type: VisitType
    status: VisitStatus

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL_VISIT_STATUSES

    def to_record(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat() if self.date else None,
            "type": self.type.value,
            "status": self.status.value,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "VisitSlot":
        raw_date = record.get("date")
        return cls(
            date=date.fromisoformat(raw_date) if raw_date else None,
            type=VisitType(record["type"]),
            status=VisitStatus(record["status"]),
        )


class VisitLedger:
    """Fixed-capacity ordered visit slots with no gaps.

    Slot indexes are 1-based. A ledger is immutable: every mutation returns a
    new ledger, so a failed check never leaves a half-applied change behind.
    Cancelled slots stay populated and count towards contiguity.
    """

    __slots__ = ("_slots", "_job_id")

    def __init__(self, slots: Sequence[VisitSlot] = (), *, job_id: str | None = None) -> None:
        if len(slots) > MAX_VISITS:
            raise CapacityExceeded(job_id, len(slots), MAX_VISITS)
        self._slots: tuple[VisitSlot, ...] = tuple(slots)
        self._job_id = job_id

    @classmethod
    def from_job(cls, job: Job) -> "VisitLedger":
        records = job.visits or []
        return cls([VisitSlot.from_record(record) for record in records], job_id=job.id)

    def to_records(self) -> list[dict[str, Any]]:
        return [slot.to_record() for slot in self._slots]

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[VisitSlot]:
        return iter(self._slots)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VisitLedger):
            return NotImplemented
        return self._slots == other._slots

    @property
    def visit_count(self) -> int:
        return len(self._slots)

    @property
    def has_capacity(self) -> bool:
        return len(self._slots) < MAX_VISITS

    def slot(self, slot_index: int) -> VisitSlot:
        """Return the populated slot at ``slot_index`` (1-based)."""

        if slot_index < 1 or slot_index > len(self._slots):
            raise VisitNotFound(self._job_id, slot_index)
        return self._slots[slot_index - 1]

    def latest(self) -> VisitSlot | None:
        """Return the populated slot with the highest index.

        Slot order is workflow order, so this ignores calendar dates.
        """

        return self._slots[-1] if self._slots else None

    def any_completed(self) -> bool:
        return any(slot.status is VisitStatus.COMPLETED for slot in self._slots)

    def schedule(self, slot_index: int, visit_date: date | None, visit_type: VisitType) -> "VisitLedger":
        """Populate the next slot, or reschedule an open one in place."""

        if slot_index > MAX_VISITS:
            raise CapacityExceeded(self._job_id, slot_index, MAX_VISITS)
        if slot_index < 1 or slot_index > len(self._slots) + 1:
            raise SlotOutOfOrder(self._job_id, slot_index, len(self._slots))

        slot = VisitSlot(date=visit_date, type=visit_type, status=VisitStatus.SCHEDULED)
        if slot_index == len(self._slots) + 1:
            return VisitLedger((*self._slots, slot), job_id=self._job_id)

        existing = self._slots[slot_index - 1]
        if existing.is_terminal:
            raise AlreadyTerminal(self._job_id, slot_index, existing.status.value)
        return self._with_slot(slot_index, slot)

    def complete(self, slot_index: int) -> "VisitLedger":
        existing = self.slot(slot_index)
        if existing.is_terminal:
            raise AlreadyTerminal(self._job_id, slot_index, existing.status.value)
        return self._with_slot(slot_index, replace(existing, status=VisitStatus.COMPLETED))

    def cancel(self, slot_index: int) -> "VisitLedger":
        existing = self.slot(slot_index)
        if existing.is_terminal:
            raise AlreadyTerminal(self._job_id, slot_index, existing.status.value)
        return self._with_slot(slot_index, replace(existing, status=VisitStatus.CANCELLED))

    def mark_no_show(self, slot_index: int) -> "VisitLedger":
        existing = self.slot(slot_index)
        if existing.status is not VisitStatus.SCHEDULED:
            raise AlreadyTerminal(self._job_id, slot_index, existing.status.value)
        return self._with_slot(slot_index, replace(existing, status=VisitStatus.NO_SHOW))

    def _with_slot(self, slot_index: int, slot: VisitSlot) -> "VisitLedger":
        slots = list(self._slots)
        slots[slot_index - 1] = slot
        return VisitLedger(slots, job_id=self._job_id)


def _ensure_open(job: Job, operation: str) -> None:
    if job.is_closed:
        raise JobClosed(job.id, job.job_stage, operation)


def _store(job: Job, ledger: VisitLedger) -> None:
    job.visits = ledger.to_records()
    job.visit_count = ledger.visit_count


def schedule_visit(job: Job, slot_index: int, visit_date: date | None, visit_type: VisitType | str) -> VisitSlot:
    """Schedule a visit in ``slot_index`` and return the stored slot."""

    _ensure_open(job, "schedule_visit")
    ledger = VisitLedger.from_job(job).schedule(slot_index, visit_date, VisitType(visit_type))
    _store(job, ledger)
    LOGGER.info(
        "visit_scheduled",
        job_id=job.id,
        slot_index=slot_index,
        visit_type=VisitType(visit_type).value,
        visit_count=ledger.visit_count,
    )
    return ledger.slot(slot_index)


def complete_visit(job: Job, slot_index: int) -> VisitSlot:
    _ensure_open(job, "complete_visit")
    ledger = VisitLedger.from_job(job).complete(slot_index)
    _store(job, ledger)
    LOGGER.info("visit_completed", job_id=job.id, slot_index=slot_index)
    return ledger.slot(slot_index)


def cancel_visit(job: Job, slot_index: int) -> VisitSlot:
    _ensure_open(job, "cancel_visit")
    ledger = VisitLedger.from_job(job).cancel(slot_index)
    _store(job, ledger)
    LOGGER.info("visit_cancelled", job_id=job.id, slot_index=slot_index)
    return ledger.slot(slot_index)


def mark_no_show(job: Job, slot_index: int) -> VisitSlot:
    _ensure_open(job, "mark_no_show")
    ledger = VisitLedger.from_job(job).mark_no_show(slot_index)
    _store(job, ledger)
    LOGGER.info("visit_no_show", job_id=job.id, slot_index=slot_index)
    return ledger.slot(slot_index)


__all__ = [
    "MAX_VISITS",
    "VisitLedger",
    "VisitSlot",
    "cancel_visit",
    "complete_visit",
    "mark_no_show",
    "schedule_visit",
]
