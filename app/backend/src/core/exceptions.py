"""Typed errors raised by the job workflow engine.

Every error carries a machine-readable ``code`` class attribute plus the
structured values needed to explain it, so callers branch on the type and the
API layer can render a stable payload without parsing messages.

    WorkflowError
    +-- JobNotFound
    +-- InvalidTransition
    |   +-- JobClosed
    +-- SlotOutOfOrder
    +-- CapacityExceeded
    +-- VisitNotFound
    +-- AlreadyTerminal
    +-- StageMismatch
    +-- PrematureInvoice
    +-- InvalidAmount
    +-- NotSameSite
    +-- JobNotEligible
    +-- ConcurrentModification

None of these are retried by the engine. ``ConcurrentModification`` is the only
one a caller is expected to retry, after re-reading the job.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class WorkflowError(Exception):
    """Base exception for all workflow engine errors."""

    code: str = "WORKFLOW_ERROR"

    def __init__(self, message: str, *, job_id: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(message)

    def context(self) -> dict[str, Any]:
        """Return structured details suitable for logs and API responses."""

        details = {
            key: value
            for key, value in vars(self).items()
            if not key.startswith("_") and value is not None
        }
        return {
            key: str(value) if isinstance(value, Decimal) else value
            for key, value in details.items()
        }


class JobNotFound(WorkflowError):
    """No job exists with the given identifier."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}", job_id=job_id)


class InvalidTransition(WorkflowError):
    """Requested stage is not the immediate successor of the current stage."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        job_id: str | None,
        current_stage: str,
        target_stage: str,
        message: str | None = None,
    ) -> None:
        self.current_stage = current_stage
        self.target_stage = target_stage
        super().__init__(
            message or f"Cannot move job {job_id} from {current_stage} to {target_stage}",
            job_id=job_id,
        )


class JobClosed(InvalidTransition):
    """Job is Complete or Cancelled and accepts no further mutations."""

    code: str = "JOB_CLOSED"

    def __init__(self, job_id: str | None, current_stage: str, operation: str) -> None:
        self.operation = operation
        super().__init__(
            job_id,
            current_stage,
            current_stage,
            message=f"Job {job_id} is {current_stage}; {operation} is not permitted",
        )


class SlotOutOfOrder(WorkflowError):
    """Visit slots must be filled contiguously starting at slot 1."""

    code: str = "SLOT_OUT_OF_ORDER"

    def __init__(self, job_id: str | None, slot_index: int, visit_count: int) -> None:
        self.slot_index = slot_index
        self.visit_count = visit_count
        super().__init__(
            f"Slot {slot_index} cannot be scheduled while {visit_count} slot(s) are populated",
            job_id=job_id,
        )


class CapacityExceeded(WorkflowError):
    """Slot index is beyond the fixed visit capacity."""

    code: str = "CAPACITY_EXCEEDED"

    def __init__(self, job_id: str | None, slot_index: int, capacity: int) -> None:
        self.slot_index = slot_index
        self.capacity = capacity
        super().__init__(
            f"Slot {slot_index} exceeds the maximum of {capacity} visits",
            job_id=job_id,
        )


class VisitNotFound(WorkflowError):
    """The addressed visit slot is not populated."""

    code: str = "VISIT_NOT_FOUND"

    def __init__(self, job_id: str | None, slot_index: int) -> None:
        self.slot_index = slot_index
        super().__init__(f"Visit slot {slot_index} is not populated", job_id=job_id)


class AlreadyTerminal(WorkflowError):
    """The addressed visit is already Completed or Cancelled."""

    code: str = "ALREADY_TERMINAL"

    def __init__(self, job_id: str | None, slot_index: int, status: str) -> None:
        self.slot_index = slot_index
        self.status = status
        super().__init__(f"Visit slot {slot_index} is already {status}", job_id=job_id)


class StageMismatch(WorkflowError):
    """Operation is not permitted in the job's current stage."""

    code: str = "STAGE_MISMATCH"

    def __init__(
        self, job_id: str | None, current_stage: str, allowed_stages: list[str], operation: str
    ) -> None:
        self.current_stage = current_stage
        self.allowed_stages = allowed_stages
        self.operation = operation
        super().__init__(
            f"{operation} requires stage in {allowed_stages}, job is {current_stage}",
            job_id=job_id,
        )


class PrematureInvoice(WorkflowError):
    """An invoice needs at least one completed visit."""

    code: str = "PREMATURE_INVOICE"

    def __init__(self, job_id: str | None) -> None:
        super().__init__(
            f"Job {job_id} has no completed visit to invoice", job_id=job_id
        )


class InvalidAmount(WorkflowError):
    """Monetary amount is negative or otherwise not accepted."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, job_id: str | None, amount: Decimal, reason: str) -> None:
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}", job_id=job_id)


class NotSameSite(WorkflowError):
    """Jobs can only share an invoice when they share a site visit."""

    code: str = "NOT_SAME_SITE"

    def __init__(
        self, job_id: str | None, primary_job_id: str, site_key: str | None, primary_site_key: str | None
    ) -> None:
        self.primary_job_id = primary_job_id
        self.site_key = site_key
        self.primary_site_key = primary_site_key
        super().__init__(
            f"Job {job_id} and {primary_job_id} do not share a site visit",
            job_id=job_id,
        )


class JobNotEligible(WorkflowError):
    """Job does not meet the preconditions of a cross-job operation."""

    code: str = "JOB_NOT_ELIGIBLE"

    def __init__(self, job_id: str | None, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Job {job_id} is not eligible: {reason}", job_id=job_id)


class ConcurrentModification(WorkflowError):
    """The job changed since the caller last read it."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self, job_id: str | None, expected_version: int | None, actual_version: int | None
    ) -> None:
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Job {job_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            job_id=job_id,
        )


__all__ = [
    "AlreadyTerminal",
    "CapacityExceeded",
    "ConcurrentModification",
    "InvalidAmount",
    "InvalidTransition",
    "JobClosed",
    "JobNotEligible",
    "JobNotFound",
    "NotSameSite",
    "PrematureInvoice",
    "SlotOutOfOrder",
    "StageMismatch",
    "VisitNotFound",
    "WorkflowError",
]
