"""Customer notifications derived from workflow events."""

from __future__ import annotations

import structlog

from app.backend.src.models.enums import EventType
from app.backend.src.schemas.event import WorkflowEvent

LOGGER = structlog.get_logger(__name__)

_SUBJECTS = {
    EventType.JOB_STAGE_CHANGED: "Your repair moved to {job_stage}",
    EventType.VISIT_COMPLETED: "Technician visit #{slot_index} completed",
    EventType.PAYMENT_RECORDED: "Payment of {amount} received",
    EventType.CALLBACK_RAISED: "Follow-up job opened for {original_job_id}",
}


def subject_for(event: WorkflowEvent) -> str:
    try:
        return _SUBJECTS[event.event_type].format(**event.data)
    except KeyError:
        return f"Update on repair job {event.job_id}"


def notify_customer(event: WorkflowEvent) -> str:
    """Log the customer message an event would trigger and return its subject."""

    subject = subject_for(event)
    LOGGER.info(
        "customer_notification_sent",
        job_id=event.job_id,
        event_id=event.event_id,
        event_type=event.event_type.value,
        subject=subject,
    )
    return subject
