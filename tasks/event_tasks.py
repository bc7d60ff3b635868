"""Celery tasks for workflow event delivery."""

from __future__ import annotations

from typing import Any

import structlog

from app.backend.src.db import get_session_factory
from app.backend.src.schemas.event import WorkflowEvent
from app.backend.src.services.events import get_publisher, publish_pending
from app.backend.src.services.metrics import workflow_events_total
from app.backend.src.services.notifications import notify_customer
from .worker import celery

LOGGER = structlog.get_logger(__name__)


@celery.task(name="tasks.deliver_job_event")
def deliver_job_event(payload: dict[str, Any]) -> dict[str, Any]:
    """Hand a committed workflow event to the notification integration."""

    event = WorkflowEvent.model_validate(payload)
    try:
        subject = notify_customer(event)
    except Exception as exc:  # pragma: no cover - logged and re-raised
        workflow_events_total.labels(event_type=event.event_type.value, outcome="delivery_failed").inc()
        LOGGER.error("workflow_event_delivery_failure", event_id=event.event_id, error=str(exc))
        raise
    workflow_events_total.labels(event_type=event.event_type.value, outcome="delivered").inc()
    LOGGER.info(
        "workflow_event_delivered",
        event_id=event.event_id,
        event_type=event.event_type.value,
        job_id=event.job_id,
    )
    return {"event_id": event.event_id, "subject": subject}


@celery.task(name="tasks.flush_outbox")
def flush_outbox(limit: int = 100) -> dict[str, int]:
    """Re-publish outbox rows left pending by a failed dispatch."""

    delivered = publish_pending(get_session_factory(), get_publisher(), limit=limit)
    LOGGER.info("workflow_outbox_flushed", delivered=delivered, limit=limit)
    return {"delivered": delivered}


__all__ = ["deliver_job_event", "flush_outbox"]
