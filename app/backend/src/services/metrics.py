"""Prometheus metric definitions for the job workflow engine."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

workflow_operations_total = Counter(
    "workflow_operations_total",
    "Workflow engine operations by name and outcome.",
    labelnames=["operation", "outcome"],
)

workflow_operation_seconds = Histogram(
    "workflow_operation_seconds",
    "Duration of workflow engine transactions in seconds.",
    labelnames=["operation"],
)

workflow_events_total = Counter(
    "workflow_events_total",
    "Outbound workflow events by type and delivery outcome.",
    labelnames=["event_type", "outcome"],
)

__all__ = [
    "workflow_events_total",
    "workflow_operation_seconds",
    "workflow_operations_total",
]
