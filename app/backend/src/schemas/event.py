"""Outbound workflow event schema."""

from __future__ import annotations

import datetime as dt
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from app.backend.src.models import OutboxEvent
from app.backend.src.models.enums import EventType


class WorkflowEvent(BaseModel):
    """Event published to notification and payment integrations after commit."""

    event_id: str = Field(default_factory=lambda: uuid4().hex)
    event_type: EventType
    job_id: str
    occurred_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict)

    def to_outbox(self) -> OutboxEvent:
        return OutboxEvent(
            event_id=self.event_id,
            event_type=self.event_type.value,
            job_id=self.job_id,
            payload=self.model_dump(mode="json"),
            status="pending",
            attempts=0,
        )

    @classmethod
    def from_outbox(cls, row: OutboxEvent) -> "WorkflowEvent":
        return cls.model_validate(row.payload)


__all__ = ["WorkflowEvent"]
