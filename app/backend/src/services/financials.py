"""Financial reconciliation: quotes, invoices, payments and combined invoicing."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

import structlog

from app.backend.src.core.exceptions import (
    InvalidAmount,
    JobClosed,
    JobNotEligible,
    NotSameSite,
    PrematureInvoice,
    StageMismatch,
)
from app.backend.src.models import Job
from app.backend.src.models.enums import JobStage, PaymentStatus
from app.backend.src.models.job import ZERO

from .visit_ledger import VisitLedger

LOGGER = structlog.get_logger(__name__)

CENT = Decimal("0.01")
QUOTE_STAGES: tuple[JobStage, ...] = (JobStage.DIAGNOSIS, JobStage.AWAITING_PARTS)


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Normalise ``value`` to a two-decimal amount."""

    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def payment_status_for(invoice_total: Decimal, amount_paid: Decimal) -> PaymentStatus:
    """Derive the payment status for the given totals."""

    invoice_total = to_money(invoice_total)
    amount_paid = to_money(amount_paid)
    if amount_paid == ZERO:
        return PaymentStatus.UNPAID
    if amount_paid > invoice_total:
        return PaymentStatus.OVERPAID
    if amount_paid == invoice_total:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIAL


def _ensure_open(job: Job, operation: str) -> None:
    if job.is_closed:
        raise JobClosed(job.id, job.job_stage, operation)


def _ensure_invoice_open(job: Job, primary: Job | None, operation: str) -> None:
    """A member's charges can no longer move once its primary has closed."""

    _ensure_open(job, operation)
    if primary is not None and primary.id != job.id:
        _ensure_open(primary, operation)


def _non_negative(job: Job, amount: Decimal | int | float | str) -> Decimal:
    value = to_money(amount)
    if value < ZERO:
        raise InvalidAmount(job.id, value, "amount must not be negative")
    return value


def record_quote(job: Job, amount: Decimal | int | float | str) -> Decimal:
    """Set the quote total; only allowed while diagnosing or awaiting parts."""

    _ensure_open(job, "record_quote")
    if job.job_stage not in {stage.value for stage in QUOTE_STAGES}:
        raise StageMismatch(
            job.id, job.job_stage, [stage.value for stage in QUOTE_STAGES], "record_quote"
        )
    value = _non_negative(job, amount)
    job.quote_total = value
    LOGGER.info("quote_recorded", job_id=job.id, quote_total=str(value))
    return value


def record_invoice(
    job: Job, amount: Decimal | int | float | str, *, primary: Job | None = None
) -> Decimal:
    """Set the job's own invoice total once at least one visit is completed.

    ``primary`` is the job whose invoice carries this one after combining.
    """

    _ensure_invoice_open(job, primary, "record_invoice")
    if not VisitLedger.from_job(job).any_completed():
        raise PrematureInvoice(job.id)
    value = _non_negative(job, amount)
    job.invoice_total = value
    job.invoiced_at = datetime.now(timezone.utc)
    LOGGER.info("invoice_recorded", job_id=job.id, invoice_total=str(value))
    return value


def record_payment(
    job: Job,
    amount: Decimal | int | float | str,
    method: str | None,
    paid_on: date | None,
    *,
    group: Sequence[Job] = (),
    primary: Job | None = None,
    allow_overpayment: bool = True,
) -> Decimal:
    """Accumulate a payment into the job's own ``amount_paid``.

    ``group`` holds the other jobs sharing the invoice (primary and combined
    members); the overpayment check runs against the whole group's totals.
    A payment taken before any invoice is recorded is kept as a deposit.
    """

    _ensure_invoice_open(job, primary, "record_payment")
    value = to_money(amount)
    if value <= ZERO:
        raise InvalidAmount(job.id, value, "payment must be positive")

    invoiced = to_money(job.invoice_total) + sum(
        (to_money(other.invoice_total) for other in group), ZERO
    )
    paid = to_money(job.amount_paid) + sum((to_money(other.amount_paid) for other in group), ZERO)
    if paid + value > invoiced:
        if not allow_overpayment:
            raise InvalidAmount(job.id, value, f"payment exceeds balance of {invoiced - paid}")
        LOGGER.warning(
            "payment_overpaid",
            job_id=job.id,
            amount=str(value),
            invoice_total=str(invoiced),
            amount_paid=str(paid + value),
        )

    job.amount_paid = to_money(job.amount_paid) + value
    job.payment_method = method
    job.payment_date = paid_on
    LOGGER.info(
        "payment_recorded",
        job_id=job.id,
        amount=str(value),
        method=method,
        amount_paid=str(job.amount_paid),
    )
    return value


@dataclass(frozen=True)
class Rollup:
    """Totals reported on a primary job after combined invoicing."""

    invoice_total: Decimal
    amount_paid: Decimal
    payment_status: PaymentStatus


def apply_rollup(primary: Job, members: Sequence[Job] = ()) -> Rollup:
    """Recompute reported totals for ``primary`` and the jobs combined into it.

    The primary reports its own totals plus every member's; members report
    zero and mirror the primary's payment status since their charges are
    settled on its invoice. Closed jobs keep the figures they closed with.
    """

    invoice_total = to_money(primary.invoice_total) + sum(
        (to_money(member.invoice_total) for member in members), ZERO
    )
    amount_paid = to_money(primary.amount_paid) + sum(
        (to_money(member.amount_paid) for member in members), ZERO
    )
    status = payment_status_for(invoice_total, amount_paid)

    if not primary.is_closed:
        primary.reported_invoice_total = invoice_total
        primary.reported_amount_paid = amount_paid
        primary.payment_status = status.value
    for member in members:
        if member.is_closed:
            continue
        member.reported_invoice_total = ZERO
        member.reported_amount_paid = ZERO
        member.payment_status = status.value
    return Rollup(invoice_total=invoice_total, amount_paid=amount_paid, payment_status=status)


class SiteKeyResolver(Protocol):
    """Supplies the site/visit correlation key used to group jobs."""

    def site_key(self, job: Job) -> str | None: ...


class JobSiteKeyResolver:
    """Reads the correlation key captured on the job at intake."""

    def site_key(self, job: Job) -> str | None:
        return job.site_key


def combine_into(
    job: Job,
    primary: Job,
    *,
    job_has_members: bool,
    resolver: SiteKeyResolver,
) -> None:
    """Fold ``job``'s invoice into ``primary``. Callers re-run :func:`apply_rollup`."""

    if job.id == primary.id:
        raise JobNotEligible(job.id, "a job cannot be combined into itself")
    _ensure_open(job, "combine_into")
    _ensure_open(primary, "combine_into")
    if job.combined_invoice:
        raise JobNotEligible(job.id, f"already combined into {job.combined_into_job_id}")
    if job_has_members:
        raise JobNotEligible(job.id, "job is already a combination target")
    if primary.combined_invoice:
        raise JobNotEligible(primary.id, "a combined job cannot be a combination target")

    site_key = resolver.site_key(job)
    primary_site_key = resolver.site_key(primary)
    if site_key is None or site_key != primary_site_key:
        raise NotSameSite(job.id, primary.id, site_key, primary_site_key)

    job.combined_invoice = True
    job.combined_into_job_id = primary.id
    job.primary_job = False
    primary.primary_job = True
    LOGGER.info("job_combined", job_id=job.id, primary_job_id=primary.id, site_key=site_key)


__all__ = [
    "JobSiteKeyResolver",
    "QUOTE_STAGES",
    "Rollup",
    "SiteKeyResolver",
    "apply_rollup",
    "combine_into",
    "payment_status_for",
    "record_invoice",
    "record_payment",
    "record_quote",
    "to_money",
]
