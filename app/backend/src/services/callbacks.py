"""Callback linker: spawn follow-up jobs from completed ones."""

from __future__ import annotations

import structlog

from app.backend.src.core.exceptions import JobNotEligible
from app.backend.src.models import Job
from app.backend.src.models.enums import JobStage, JobStatus, Priority

LOGGER = structlog.get_logger(__name__)

# Intake details carried from the original job onto its callback.
_INHERITED_FIELDS = (
    "customer_id",
    "appliance_type",
    "brand",
    "model_number",
    "serial_number",
    "site_key",
)


def check_callback_eligible(original: Job, *, max_depth: int) -> int:
    """Validate ``original`` can spawn a callback and return the new depth."""

    if original.job_stage != JobStage.COMPLETE.value:
        raise JobNotEligible(
            original.id, f"callbacks require a Complete job, stage is {original.job_stage}"
        )
    depth = (original.callback_depth or 0) + 1
    if depth > max_depth:
        raise JobNotEligible(
            original.id, f"callback depth {depth} exceeds the maximum of {max_depth}"
        )
    return depth


def build_callback_job(
    original: Job,
    callback_id: str,
    reason: str,
    *,
    max_depth: int,
    priority: Priority | str | None = None,
    issue_description: str | None = None,
) -> Job:
    """Create the callback job and bump ``original.callback_count``.

    Both records change together; callers persist them in one transaction.
    """

    depth = check_callback_eligible(original, max_depth=max_depth)
    inherited = {field: getattr(original, field) for field in _INHERITED_FIELDS}
    callback = Job(
        id=callback_id,
        job_stage=JobStage.INTAKE.value,
        current_status=JobStatus.NEW.value,
        priority=Priority(priority).value if priority else original.priority,
        is_callback=True,
        original_job_id=original.id,
        callback_reason=reason,
        callback_depth=depth,
        visit_count=0,
        visits=[],
        issue_description=issue_description
        or f"Callback: {reason} - {original.issue_description or ''}".rstrip(" -"),
        **inherited,
    )
    original.callback_count = (original.callback_count or 0) + 1
    LOGGER.info(
        "callback_linked",
        original_job_id=original.id,
        callback_job_id=callback_id,
        callback_count=original.callback_count,
        depth=depth,
    )
    return callback


__all__ = ["build_callback_job", "check_callback_eligible"]
