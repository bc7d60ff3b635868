"""Enumerations shared by the job models and the workflow services."""

from __future__ import annotations

from enum import Enum


class JobStage(str, Enum):
    INTAKE = "Intake"
    DIAGNOSIS = "Diagnosis"
    AWAITING_PARTS = "Awaiting Parts"
    SCHEDULED_REPAIR = "Scheduled Repair"
    REPAIR_IN_PROGRESS = "Repair In Progress"
    PAYMENT = "Payment"
    COMPLETE = "Complete"
    CANCELLED = "Cancelled"


class JobStatus(str, Enum):
    NEW = "New"
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    AWAITING_PAYMENT = "Awaiting Payment"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class Priority(str, Enum):
    NORMAL = "Normal"
    HIGH = "High"
    URGENT = "Urgent"


class VisitType(str, Enum):
    DIAGNOSIS = "Diagnosis"
    REPAIR = "Repair"
    FOLLOW_UP = "Follow-up"
    INSPECTION = "Inspection"
    DELIVERY = "Delivery"


class VisitStatus(str, Enum):
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No-show"


class PaymentStatus(str, Enum):
    UNPAID = "Unpaid"
    PARTIAL = "Partial"
    PAID = "Paid"
    OVERPAID = "Overpaid"


class PhotoKind(str, Enum):
    SITE = "site"
    DIAGNOSIS = "diagnosis"
    REPAIR = "repair"


class EventType(str, Enum):
    JOB_STAGE_CHANGED = "JobStageChanged"
    VISIT_COMPLETED = "VisitCompleted"
    PAYMENT_RECORDED = "PaymentRecorded"
    CALLBACK_RAISED = "CallbackRaised"


__all__ = [
    "EventType",
    "JobStage",
    "JobStatus",
    "PaymentStatus",
    "PhotoKind",
    "Priority",
    "VisitStatus",
    "VisitType",
]
