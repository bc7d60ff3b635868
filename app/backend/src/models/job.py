"""Field-service repair job model."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .enums import JobStage, JobStatus, PaymentStatus, Priority

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .job_history import JobHistory

MONEY = Numeric(10, 2)
ZERO = Decimal("0.00")

# Python-side defaults so in-memory jobs behave like persisted ones.
_JOB_DEFAULTS: dict[str, Any] = {
    "job_stage": JobStage.INTAKE.value,
    "current_status": JobStatus.NEW.value,
    "priority": Priority.NORMAL.value,
    "is_callback": False,
    "callback_count": 0,
    "callback_depth": 0,
    "visit_count": 0,
    "primary_job": True,
    "added_on_site": False,
    "combined_invoice": False,
    "photo_count": 0,
    "has_site_photos": False,
    "has_diagnosis_photos": False,
    "has_repair_photos": False,
    "invoice_total": ZERO,
    "amount_paid": ZERO,
    "reported_invoice_total": ZERO,
    "reported_amount_paid": ZERO,
    "payment_status": PaymentStatus.UNPAID.value,
}


class Job(Base):
    """One repair engagement tracked from intake to closure.

    Visits live in ``visits`` as an ordered list of at most five slot records
    (``{"date", "type", "status"}``); ``visit_count`` mirrors its length.
    ``invoice_total``/``amount_paid`` are the job's own figures while the
    ``reported_*`` columns hold the totals after combined invoicing is applied.
    ``invoiced_at`` is set once the job's own invoice has been recorded.
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    customer_id: Mapped[str | None] = mapped_column(String(64), index=True)
    appliance_type: Mapped[str | None] = mapped_column(String(50))
    brand: Mapped[str | None] = mapped_column(String(100))
    model_number: Mapped[str | None] = mapped_column(String(100))
    serial_number: Mapped[str | None] = mapped_column(String(100))
    issue_description: Mapped[str | None] = mapped_column(Text)
    site_key: Mapped[str | None] = mapped_column(String(128), index=True)

    job_stage: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    current_status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    stage_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    priority: Mapped[str] = mapped_column(String(20), nullable=False)

    is_callback: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)
    original_job_id: Mapped[str | None] = mapped_column(
        ForeignKey("jobs.id"), nullable=True, index=True
    )
    callback_reason: Mapped[str | None] = mapped_column(String(255))
    callback_count: Mapped[int] = mapped_column(Integer, nullable=False)
    callback_depth: Mapped[int] = mapped_column(Integer, nullable=False)

    visits: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    visit_count: Mapped[int] = mapped_column(Integer, nullable=False)

    primary_job: Mapped[bool] = mapped_column(Boolean, nullable=False)
    added_on_site: Mapped[bool] = mapped_column(Boolean, nullable=False)
    combined_invoice: Mapped[bool] = mapped_column(Boolean, nullable=False)
    combined_into_job_id: Mapped[str | None] = mapped_column(
        ForeignKey("jobs.id"), nullable=True, index=True
    )

    photo_count: Mapped[int] = mapped_column(Integer, nullable=False)
    has_site_photos: Mapped[bool] = mapped_column(Boolean, nullable=False)
    has_diagnosis_photos: Mapped[bool] = mapped_column(Boolean, nullable=False)
    has_repair_photos: Mapped[bool] = mapped_column(Boolean, nullable=False)

    quote_total: Mapped[Decimal | None] = mapped_column(MONEY)
    invoice_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    reported_invoice_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    reported_amount_paid: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_status: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_method: Mapped[str | None] = mapped_column(String(50))
    payment_date: Mapped[date | None] = mapped_column(Date)
    invoiced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    history: Mapped[list["JobHistory"]] = relationship(
        "JobHistory",
        back_populates="job",
        order_by="JobHistory.id",
    )

    __mapper_args__ = {"version_id_col": version}

    def __init__(self, **kwargs: Any) -> None:
        for key, value in _JOB_DEFAULTS.items():
            kwargs.setdefault(key, value)
        kwargs.setdefault("visits", [])
        super().__init__(**kwargs)

    @property
    def is_closed(self) -> bool:
        """Return ``True`` once the job reached a terminal stage."""

        return self.job_stage in (JobStage.COMPLETE.value, JobStage.CANCELLED.value)

    def __repr__(self) -> str:
        return f"<Job id={self.id!r} stage={self.job_stage!r} status={self.current_status!r}>"


__all__ = ["Job", "MONEY", "ZERO"]
