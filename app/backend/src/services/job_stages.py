"""Job state machine: stage transitions and derived current status."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from app.backend.src.core.exceptions import InvalidTransition, JobClosed
from app.backend.src.models import Job
from app.backend.src.models.enums import (
    JobStage,
    JobStatus,
    PaymentStatus,
    VisitStatus,
)

from .visit_ledger import MAX_VISITS, VisitLedger

LOGGER = structlog.get_logger(__name__)

STAGE_ORDER: tuple[JobStage, ...] = (
    JobStage.INTAKE,
    JobStage.DIAGNOSIS,
    JobStage.AWAITING_PARTS,
    JobStage.SCHEDULED_REPAIR,
    JobStage.REPAIR_IN_PROGRESS,
    JobStage.PAYMENT,
    JobStage.COMPLETE,
)
TERMINAL_STAGES = frozenset({JobStage.COMPLETE, JobStage.CANCELLED})
SETTLED_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.OVERPAID})

# Status a stage change implies until the next recompute.
_STAGE_ENTRY_STATUS = {
    JobStage.REPAIR_IN_PROGRESS: JobStatus.IN_PROGRESS,
    JobStage.COMPLETE: JobStatus.COMPLETED,
    JobStage.CANCELLED: JobStatus.CANCELLED,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def next_stage(stage: JobStage | str) -> JobStage | None:
    """Return the immediate successor of ``stage`` or ``None`` when terminal."""

    current = JobStage(stage)
    if current in TERMINAL_STAGES:
        return None
    return STAGE_ORDER[STAGE_ORDER.index(current) + 1]


def _enter_stage(job: Job, target: JobStage, when: datetime) -> None:
    job.job_stage = target.value
    job.stage_changed_at = when
    entry_status = _STAGE_ENTRY_STATUS.get(target)
    if entry_status is not None:
        job.current_status = entry_status.value
    if target is JobStage.COMPLETE:
        job.completed_at = when


def advance_stage(job: Job, target_stage: JobStage | str, *, when: datetime | None = None) -> JobStage:
    """Move ``job`` to ``target_stage`` which must be its immediate successor.

    Returns the previous stage.
    """

    current = JobStage(job.job_stage)
    target = JobStage(target_stage)
    if current in TERMINAL_STAGES:
        raise JobClosed(job.id, current.value, "advance_stage")
    if target is not next_stage(current):
        raise InvalidTransition(job.id, current.value, target.value)

    _enter_stage(job, target, when or _now())
    LOGGER.info(
        "job_stage_advanced",
        job_id=job.id,
        from_stage=current.value,
        to_stage=target.value,
    )
    return current


def cancel_job(job: Job, *, when: datetime | None = None) -> JobStage:
    """Move a non-terminal job to Cancelled and return the previous stage."""

    current = JobStage(job.job_stage)
    if current in TERMINAL_STAGES:
        raise JobClosed(job.id, current.value, "cancel_job")
    _enter_stage(job, JobStage.CANCELLED, when or _now())
    LOGGER.info("job_cancelled", job_id=job.id, from_stage=current.value)
    return current


def derive_status(ledger: VisitLedger, payment_status: PaymentStatus | str) -> JobStatus:
    """Derive the current status from visits and payment state.

    First matching rule wins:

    1. the only visit is Cancelled -> Cancelled
    2. payment settled and every non-cancelled visit Completed -> Completed
    3. most recent visit Completed, payment not settled -> Awaiting Payment
    4. nothing is booked and a slot is free -> New
    5. otherwise -> Scheduled
    """

    payment = PaymentStatus(payment_status)
    latest = ledger.latest()

    if ledger.visit_count == 1 and latest is not None and latest.status is VisitStatus.CANCELLED:
        return JobStatus.CANCELLED

    live = [slot for slot in ledger if slot.status is not VisitStatus.CANCELLED]
    if (
        payment in SETTLED_PAYMENT_STATUSES
        and live
        and all(slot.status is VisitStatus.COMPLETED for slot in live)
    ):
        return JobStatus.COMPLETED

    if latest is not None and latest.status is VisitStatus.COMPLETED:
        return JobStatus.AWAITING_PAYMENT

    booked = latest is not None and latest.status is VisitStatus.SCHEDULED
    if not booked and ledger.visit_count < MAX_VISITS:
        return JobStatus.NEW

    return JobStatus.SCHEDULED


def recompute_status(
    job: Job, *, invoice_pending: bool = False, when: datetime | None = None
) -> JobStatus:
    """Refresh ``current_status`` from the ledger and payment state.

    Idempotent: without an intervening mutation a second call changes nothing.
    A Completed status forces the stage to Complete. While ``invoice_pending``
    is set the payment never counts as settled, since a charge billed on the
    job's invoice has not been recorded yet.
    """

    payment = PaymentStatus.UNPAID if invoice_pending else job.payment_status
    status = derive_status(VisitLedger.from_job(job), payment)
    previous = job.current_status
    job.current_status = status.value

    if status is JobStatus.COMPLETED and job.job_stage != JobStage.COMPLETE.value:
        LOGGER.info("job_stage_forced_complete", job_id=job.id, from_stage=job.job_stage)
        _enter_stage(job, JobStage.COMPLETE, when or _now())

    if previous != status.value:
        LOGGER.info(
            "job_status_recomputed",
            job_id=job.id,
            from_status=previous,
            to_status=status.value,
        )
    return status


__all__ = [
    "STAGE_ORDER",
    "TERMINAL_STAGES",
    "advance_stage",
    "cancel_job",
    "derive_status",
    "next_stage",
    "recompute_status",
]
