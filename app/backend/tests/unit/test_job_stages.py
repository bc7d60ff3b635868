"""Unit tests for the job state machine."""

from __future__ import annotations

import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

import pytest

from app.backend.src.core.exceptions import InvalidTransition, JobClosed
from app.backend.src.models import Job
from app.backend.src.models.enums import (
    JobStage,
    JobStatus,
    PaymentStatus,
    VisitType,
)
from app.backend.src.services import job_stages
from app.backend.src.services.visit_ledger import VisitLedger


def _ledger(*actions: str) -> VisitLedger:
    """Build a ledger from ``schedule``/``complete``/``cancel``/``no_show`` steps."""

    ledger = VisitLedger()
    for action in actions:
        if action == "schedule":
            ledger = ledger.schedule(ledger.visit_count + 1, None, VisitType.REPAIR)
        elif action == "complete":
            ledger = ledger.complete(ledger.visit_count)
        elif action == "cancel":
            ledger = ledger.cancel(ledger.visit_count)
        elif action == "no_show":
            ledger = ledger.mark_no_show(ledger.visit_count)
    return ledger


def test_advance_follows_stage_order() -> None:
    job = Job(id="J-0001")

    for target in job_stages.STAGE_ORDER[1:]:
        previous = job_stages.advance_stage(job, target)
        assert job.job_stage == target.value
        assert previous is not target

    assert job.current_status == JobStatus.COMPLETED.value
    assert job.completed_at is not None


def test_skipping_a_stage_is_rejected() -> None:
    job = Job(id="J-0001")

    with pytest.raises(InvalidTransition) as exc_info:
        job_stages.advance_stage(job, JobStage.PAYMENT)

    assert exc_info.value.current_stage == "Intake"
    assert job.job_stage == JobStage.INTAKE.value


def test_backward_transition_is_rejected() -> None:
    job = Job(id="J-0001", job_stage=JobStage.AWAITING_PARTS.value)

    with pytest.raises(InvalidTransition):
        job_stages.advance_stage(job, JobStage.DIAGNOSIS)


@pytest.mark.parametrize("stage", [JobStage.COMPLETE, JobStage.CANCELLED])
def test_terminal_stages_are_closed(stage: JobStage) -> None:
    job = Job(id="J-0001", job_stage=stage.value)

    with pytest.raises(JobClosed) as exc_info:
        job_stages.advance_stage(job, JobStage.DIAGNOSIS)

    assert isinstance(exc_info.value, InvalidTransition)
    with pytest.raises(JobClosed):
        job_stages.cancel_job(job)


def test_repair_in_progress_sets_status() -> None:
    job = Job(id="J-0001", job_stage=JobStage.SCHEDULED_REPAIR.value)

    job_stages.advance_stage(job, JobStage.REPAIR_IN_PROGRESS)

    assert job.current_status == JobStatus.IN_PROGRESS.value


def test_cancel_job_moves_to_cancelled() -> None:
    job = Job(id="J-0001", job_stage=JobStage.DIAGNOSIS.value)

    previous = job_stages.cancel_job(job)

    assert previous is JobStage.DIAGNOSIS
    assert job.job_stage == JobStage.CANCELLED.value
    assert job.current_status == JobStatus.CANCELLED.value


@pytest.mark.parametrize(
    ("actions", "payment", "expected"),
    [
        ((), PaymentStatus.UNPAID, JobStatus.NEW),
        (("schedule",), PaymentStatus.UNPAID, JobStatus.SCHEDULED),
        (("schedule", "cancel"), PaymentStatus.UNPAID, JobStatus.CANCELLED),
        (("schedule", "complete"), PaymentStatus.UNPAID, JobStatus.AWAITING_PAYMENT),
        (("schedule", "complete"), PaymentStatus.PARTIAL, JobStatus.AWAITING_PAYMENT),
        (("schedule", "complete"), PaymentStatus.PAID, JobStatus.COMPLETED),
        (("schedule", "complete"), PaymentStatus.OVERPAID, JobStatus.COMPLETED),
        (("schedule", "complete", "schedule"), PaymentStatus.PAID, JobStatus.SCHEDULED),
        (("schedule", "complete", "schedule", "cancel"), PaymentStatus.PAID, JobStatus.COMPLETED),
        (("schedule", "no_show"), PaymentStatus.UNPAID, JobStatus.NEW),
        (("schedule", "cancel", "schedule"), PaymentStatus.UNPAID, JobStatus.SCHEDULED),
    ],
)
def test_derive_status(actions: tuple[str, ...], payment: PaymentStatus, expected: JobStatus) -> None:
    assert job_stages.derive_status(_ledger(*actions), payment) is expected


def test_full_ledger_with_open_slot_is_scheduled() -> None:
    ledger = _ledger("schedule", "cancel", "schedule", "cancel", "schedule", "cancel", "schedule", "cancel", "schedule", "no_show")

    assert ledger.visit_count == 5
    assert job_stages.derive_status(ledger, PaymentStatus.UNPAID) is JobStatus.SCHEDULED


def test_recompute_is_idempotent_and_forces_complete() -> None:
    job = Job(
        id="J-0001",
        job_stage=JobStage.DIAGNOSIS.value,
        visits=[{"date": None, "type": "Diagnosis", "status": "Completed"}],
        visit_count=1,
        payment_status=PaymentStatus.PAID.value,
    )

    first = job_stages.recompute_status(job)
    snapshot = (job.job_stage, job.current_status, job.completed_at)
    second = job_stages.recompute_status(job)

    assert first is second is JobStatus.COMPLETED
    assert job.job_stage == JobStage.COMPLETE.value
    assert (job.job_stage, job.current_status, job.completed_at) == snapshot


def test_pending_invoice_holds_settlement() -> None:
    job = Job(
        id="J-0002",
        job_stage=JobStage.REPAIR_IN_PROGRESS.value,
        visits=[{"date": None, "type": "Repair", "status": "Completed"}],
        visit_count=1,
        payment_status=PaymentStatus.OVERPAID.value,
    )

    held = job_stages.recompute_status(job, invoice_pending=True)

    assert held is JobStatus.AWAITING_PAYMENT
    assert job.job_stage == JobStage.REPAIR_IN_PROGRESS.value
    assert job.completed_at is None
    assert job_stages.recompute_status(job) is JobStatus.COMPLETED
