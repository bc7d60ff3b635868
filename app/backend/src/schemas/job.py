"""Job API schemas."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.backend.src.models import Callback, Job, JobHistory
from app.backend.src.models.enums import PhotoKind, Priority, VisitType


class VisitRead(BaseModel):
    """A populated visit slot."""

    slot_index: int
    date: dt.date | None
    type: str
    status: str


class JobRead(BaseModel):
    """Snapshot of a job as returned by every workflow operation.

    ``invoice_total``/``amount_paid`` are the reported figures: zero for a job
    combined into another, own plus combined members for a primary job.
    """

    id: str
    version: int
    job_stage: str
    current_status: str
    priority: str
    customer_id: str | None
    appliance_type: str | None
    brand: str | None
    model_number: str | None
    serial_number: str | None
    issue_description: str | None
    site_key: str | None
    is_callback: bool
    original_job_id: str | None
    callback_reason: str | None
    callback_count: int
    visit_count: int
    visits: list[VisitRead]
    primary_job: bool
    added_on_site: bool
    combined_invoice: bool
    combined_into_job_id: str | None
    photo_count: int
    has_site_photos: bool
    has_diagnosis_photos: bool
    has_repair_photos: bool
    quote_total: Decimal | None
    invoice_total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    own_invoice_total: Decimal
    own_amount_paid: Decimal
    payment_status: str
    payment_method: str | None
    payment_date: dt.date | None
    invoiced_at: dt.datetime | None
    stage_changed_at: dt.datetime | None
    completed_at: dt.datetime | None
    created_at: dt.datetime | None
    updated_at: dt.datetime | None

    @classmethod
    def from_job(cls, job: Job) -> "JobRead":
        visits = [
            VisitRead(
                slot_index=index,
                date=record.get("date"),
                type=record["type"],
                status=record["status"],
            )
            for index, record in enumerate(job.visits or [], start=1)
        ]
        balance = max(job.reported_invoice_total - job.reported_amount_paid, Decimal("0.00"))
        return cls(
            id=job.id,
            version=job.version,
            job_stage=job.job_stage,
            current_status=job.current_status,
            priority=job.priority,
            customer_id=job.customer_id,
            appliance_type=job.appliance_type,
            brand=job.brand,
            model_number=job.model_number,
            serial_number=job.serial_number,
            issue_description=job.issue_description,
            site_key=job.site_key,
            is_callback=job.is_callback,
            original_job_id=job.original_job_id,
            callback_reason=job.callback_reason,
            callback_count=job.callback_count,
            visit_count=job.visit_count,
            visits=visits,
            primary_job=job.primary_job,
            added_on_site=job.added_on_site,
            combined_invoice=job.combined_invoice,
            combined_into_job_id=job.combined_into_job_id,
            photo_count=job.photo_count,
            has_site_photos=job.has_site_photos,
            has_diagnosis_photos=job.has_diagnosis_photos,
            has_repair_photos=job.has_repair_photos,
            quote_total=job.quote_total,
            invoice_total=job.reported_invoice_total,
            amount_paid=job.reported_amount_paid,
            balance_due=balance,
            own_invoice_total=job.invoice_total,
            own_amount_paid=job.amount_paid,
            payment_status=job.payment_status,
            payment_method=job.payment_method,
            payment_date=job.payment_date,
            invoiced_at=job.invoiced_at,
            stage_changed_at=job.stage_changed_at,
            completed_at=job.completed_at,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class JobHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    job_id: str
    field_changed: str
    old_value: str | None
    new_value: str | None
    notes: str | None
    changed_by: str
    created_at: dt.datetime | None

    @classmethod
    def from_history(cls, entry: JobHistory) -> "JobHistoryRead":
        return cls.model_validate(entry)


class CallbackRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    original_job_id: str
    callback_job_id: str
    callback_reason: str
    callback_date: dt.date
    resolution: str | None

    @classmethod
    def from_callback(cls, callback: Callback) -> "CallbackRead":
        return cls.model_validate(callback)


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class JobCreate(BaseModel):
    """Intake payload for a new job."""

    customer_id: str | None = None
    appliance_type: str | None = None
    brand: str | None = None
    model_number: str | None = None
    serial_number: str | None = None
    issue_description: str | None = None
    site_key: str | None = None
    priority: Priority | None = None
    added_on_site: bool = False


class VersionedPayload(BaseModel):
    """Base for write payloads; ``expected_version`` is the last observed version."""

    expected_version: int | None = Field(default=None, ge=1)


class StageAdvance(VersionedPayload):
    target_stage: str


class JobCancel(VersionedPayload):
    reason: str | None = None


class VisitSchedule(VersionedPayload):
    date: dt.date | None = None
    type: VisitType


class VisitAction(VersionedPayload):
    pass


class QuoteRecord(VersionedPayload):
    amount: Decimal = Field(ge=0)


class InvoiceRecord(VersionedPayload):
    amount: Decimal = Field(ge=0)


class PaymentRecord(VersionedPayload):
    amount: Decimal = Field(gt=0)
    method: str | None = None
    date: dt.date | None = None


class CombineRequest(VersionedPayload):
    primary_job_id: str
    primary_expected_version: int | None = Field(default=None, ge=1)


class CallbackRequest(VersionedPayload):
    reason: str = Field(min_length=1)
    priority: Priority | None = None
    issue_description: str | None = None


class PhotoEvidence(VersionedPayload):
    kind: PhotoKind
    count: int = Field(default=1, ge=1)


__all__ = [
    "CallbackRead",
    "CallbackRequest",
    "CombineRequest",
    "InvoiceRecord",
    "JobCancel",
    "JobCreate",
    "JobHistoryRead",
    "JobRead",
    "PaymentRecord",
    "PhotoEvidence",
    "QuoteRecord",
    "StageAdvance",
    "VersionedPayload",
    "VisitAction",
    "VisitRead",
    "VisitSchedule",
]
