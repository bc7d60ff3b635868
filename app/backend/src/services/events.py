"""Publishing of committed workflow events.

The engine writes events to the outbox inside the mutating transaction and
only publishes them once that transaction committed, so a failing integration
can never roll back a job change. Undelivered rows stay ``pending`` and are
picked up again by :func:`flush_outbox`.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.core.config import Settings, get_settings
from app.backend.src.models import OutboxEvent
from app.backend.src.schemas.event import WorkflowEvent

from .metrics import workflow_events_total

LOGGER = structlog.get_logger(__name__)


class EventPublisher(Protocol):
    """Hands a committed event to downstream integrations."""

    def publish(self, event: WorkflowEvent) -> None: ...


class LoggingEventPublisher:
    """Publisher that only records the event in the service log."""

    def publish(self, event: WorkflowEvent) -> None:
        LOGGER.info(
            "workflow_event_published",
            event_id=event.event_id,
            event_type=event.event_type.value,
            job_id=event.job_id,
        )


class CeleryEventPublisher:
    """Publisher that enqueues delivery on the Celery worker."""

    def publish(self, event: WorkflowEvent) -> None:
        from tasks.event_tasks import deliver_job_event

        deliver_job_event.delay(event.model_dump(mode="json"))


def get_publisher(settings: Settings | None = None) -> EventPublisher:
    """Return the publisher selected by ``EVENT_DISPATCH``."""

    settings = settings or get_settings()
    if settings.event_dispatch == "celery":
        return CeleryEventPublisher()
    return LoggingEventPublisher()


def publish_pending(
    session_factory: Callable[[], Session],
    publisher: EventPublisher,
    event_ids: Iterable[str] | None = None,
    *,
    limit: int = 100,
) -> int:
    """Publish pending outbox rows and return how many were delivered.

    With ``event_ids`` only those rows are considered; otherwise the oldest
    pending rows up to ``limit``.
    """

    session = session_factory()
    delivered = 0
    try:
        query = select(OutboxEvent).where(OutboxEvent.status == "pending")
        if event_ids is not None:
            ids = list(event_ids)
            if not ids:
                return 0
            query = query.where(OutboxEvent.event_id.in_(ids))
        rows = session.scalars(query.order_by(OutboxEvent.id).limit(limit)).all()

        for row in rows:
            event = WorkflowEvent.from_outbox(row)
            row.attempts += 1
            try:
                publisher.publish(event)
            except Exception as exc:
                row.last_error = str(exc)
                workflow_events_total.labels(event_type=row.event_type, outcome="failed").inc()
                LOGGER.warning(
                    "workflow_event_publish_failed",
                    event_id=row.event_id,
                    event_type=row.event_type,
                    job_id=row.job_id,
                    error=str(exc),
                )
                continue
            row.status = "dispatched"
            row.dispatched_at = datetime.now(timezone.utc)
            row.last_error = None
            delivered += 1
            workflow_events_total.labels(event_type=row.event_type, outcome="dispatched").inc()
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
    return delivered


__all__ = [
    "CeleryEventPublisher",
    "EventPublisher",
    "LoggingEventPublisher",
    "get_publisher",
    "publish_pending",
]
