"""Unit tests for quote, invoice, payment and combined-invoice rules."""

from __future__ import annotations

import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

import pytest

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
from app.backend.src.services import financials

COMPLETED_VISIT = {"date": "2025-01-10", "type": "Repair", "status": "Completed"}


def _job(job_id: str = "J-0001", **overrides) -> Job:  # type: ignore[no-untyped-def]
    return Job(id=job_id, **overrides)


@pytest.mark.parametrize(
    ("invoice", "paid", "expected"),
    [
        ("0", "0", PaymentStatus.UNPAID),
        ("100", "0", PaymentStatus.UNPAID),
        ("100", "40", PaymentStatus.PARTIAL),
        ("100", "100.00", PaymentStatus.PAID),
        ("100", "100.01", PaymentStatus.OVERPAID),
        ("0", "5", PaymentStatus.OVERPAID),
    ],
)
def test_payment_status_for(invoice: str, paid: str, expected: PaymentStatus) -> None:
    assert financials.payment_status_for(Decimal(invoice), Decimal(paid)) is expected


def test_to_money_rounds_to_cents() -> None:
    assert financials.to_money("10.005") == Decimal("10.01")
    assert financials.to_money(None) == Decimal("0.00")


@pytest.mark.parametrize("stage", [JobStage.DIAGNOSIS, JobStage.AWAITING_PARTS])
def test_quote_allowed_while_diagnosing(stage: JobStage) -> None:
    job = _job(job_stage=stage.value)

    financials.record_quote(job, "180")

    assert job.quote_total == Decimal("180.00")


def test_quote_outside_diagnosis_is_stage_mismatch() -> None:
    job = _job(job_stage=JobStage.SCHEDULED_REPAIR.value)

    with pytest.raises(StageMismatch) as exc_info:
        financials.record_quote(job, 50)

    assert exc_info.value.allowed_stages == ["Diagnosis", "Awaiting Parts"]
    assert job.quote_total is None


def test_invoice_requires_completed_visit() -> None:
    job = _job(visits=[{"date": None, "type": "Repair", "status": "Scheduled"}], visit_count=1)

    with pytest.raises(PrematureInvoice):
        financials.record_invoice(job, 250)


def test_negative_invoice_is_rejected() -> None:
    job = _job(visits=[COMPLETED_VISIT], visit_count=1)

    with pytest.raises(InvalidAmount):
        financials.record_invoice(job, "-1")

    assert job.invoice_total == Decimal("0.00")


def test_payments_accumulate() -> None:
    job = _job(visits=[COMPLETED_VISIT], visit_count=1, invoice_total=Decimal("250.00"))

    financials.record_payment(job, "100", "card", date(2025, 1, 11))
    financials.record_payment(job, "150", "cash", date(2025, 1, 12))

    assert job.amount_paid == Decimal("250.00")
    assert job.payment_method == "cash"
    assert job.payment_date == date(2025, 1, 12)


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_non_positive_payment_is_rejected(amount: str) -> None:
    job = _job(invoice_total=Decimal("10.00"))

    with pytest.raises(InvalidAmount):
        financials.record_payment(job, amount, None, None)


def test_overpayment_can_be_disallowed() -> None:
    job = _job(invoice_total=Decimal("100.00"), amount_paid=Decimal("80.00"))

    with pytest.raises(InvalidAmount):
        financials.record_payment(job, "30", None, None, allow_overpayment=False)

    financials.record_payment(job, "30", None, None)
    assert job.amount_paid == Decimal("110.00")


def test_overpayment_check_covers_the_group() -> None:
    member = _job("J-0002", invoice_total=Decimal("50.00"))
    primary = _job("J-0001", invoice_total=Decimal("100.00"))

    financials.record_payment(primary, "150", None, None, group=[member], allow_overpayment=False)

    assert primary.amount_paid == Decimal("150.00")


def test_payment_on_closed_job_is_rejected() -> None:
    job = _job(job_stage=JobStage.CANCELLED.value, invoice_total=Decimal("10.00"))

    with pytest.raises(JobClosed):
        financials.record_payment(job, "10", None, None)


def test_rollup_reports_group_totals_on_primary() -> None:
    primary = _job("J-0001", invoice_total=Decimal("100.00"), amount_paid=Decimal("100.00"))
    member = _job("J-0002", invoice_total=Decimal("60.00"), amount_paid=Decimal("20.00"))

    rollup = financials.apply_rollup(primary, [member])

    assert rollup.invoice_total == Decimal("160.00")
    assert primary.reported_invoice_total == Decimal("160.00")
    assert primary.reported_amount_paid == Decimal("120.00")
    assert primary.payment_status == PaymentStatus.PARTIAL.value
    assert member.reported_invoice_total == Decimal("0.00")
    assert member.reported_amount_paid == Decimal("0.00")
    assert member.payment_status == PaymentStatus.PARTIAL.value
    # own figures are untouched
    assert member.invoice_total == Decimal("60.00")


def test_rollup_leaves_closed_jobs_alone() -> None:
    primary = _job(
        "J-0001",
        job_stage=JobStage.COMPLETE.value,
        invoice_total=Decimal("100.00"),
        amount_paid=Decimal("100.00"),
        reported_invoice_total=Decimal("100.00"),
        reported_amount_paid=Decimal("100.00"),
        payment_status=PaymentStatus.PAID.value,
    )
    member = _job("J-0002", invoice_total=Decimal("50.00"))

    rollup = financials.apply_rollup(primary, [member])

    assert rollup.payment_status is PaymentStatus.PARTIAL
    assert primary.reported_invoice_total == Decimal("100.00")
    assert primary.payment_status == PaymentStatus.PAID.value
    assert member.payment_status == PaymentStatus.PARTIAL.value


def test_invoice_records_when_it_was_set() -> None:
    job = _job(visits=[COMPLETED_VISIT], visit_count=1)
    assert job.invoiced_at is None

    financials.record_invoice(job, "80")

    assert job.invoiced_at is not None


def test_member_charges_rejected_once_primary_closed() -> None:
    primary = _job("J-0001", job_stage=JobStage.COMPLETE.value)
    member = _job(
        "J-0002",
        visits=[COMPLETED_VISIT],
        visit_count=1,
        combined_invoice=True,
        combined_into_job_id="J-0001",
    )

    with pytest.raises(JobClosed) as exc_info:
        financials.record_invoice(member, "50", primary=primary)
    with pytest.raises(JobClosed):
        financials.record_payment(member, "50", None, None, group=[primary], primary=primary)

    assert exc_info.value.job_id == "J-0001"
    assert member.invoice_total == Decimal("0.00")
    assert member.invoiced_at is None
    assert member.amount_paid == Decimal("0.00")


def test_combine_into_same_site() -> None:
    primary = _job("J-0001", site_key="12 Elm St")
    rider = _job("J-0002", site_key="12 Elm St", added_on_site=True)

    financials.combine_into(
        rider, primary, job_has_members=False, resolver=financials.JobSiteKeyResolver()
    )

    assert rider.combined_invoice is True
    assert rider.combined_into_job_id == "J-0001"
    assert rider.primary_job is False
    assert primary.primary_job is True


def test_combine_into_other_site_is_rejected() -> None:
    primary = _job("J-0001", site_key="12 Elm St")
    rider = _job("J-0002", site_key="9 Oak Ave")

    with pytest.raises(NotSameSite):
        financials.combine_into(
            rider, primary, job_has_members=False, resolver=financials.JobSiteKeyResolver()
        )

    assert rider.combined_invoice is False


def test_combine_requires_a_site_key() -> None:
    primary = _job("J-0001")
    rider = _job("J-0002")

    with pytest.raises(NotSameSite):
        financials.combine_into(
            rider, primary, job_has_members=False, resolver=financials.JobSiteKeyResolver()
        )


def test_combine_is_not_transitive() -> None:
    resolver = financials.JobSiteKeyResolver()
    first = _job("J-0001", site_key="A")
    second = _job("J-0002", site_key="A", combined_invoice=True, combined_into_job_id="J-0001")
    third = _job("J-0003", site_key="A")

    with pytest.raises(JobNotEligible):
        financials.combine_into(third, second, job_has_members=False, resolver=resolver)
    with pytest.raises(JobNotEligible):
        financials.combine_into(first, third, job_has_members=True, resolver=resolver)
    with pytest.raises(JobNotEligible):
        financials.combine_into(first, first, job_has_members=False, resolver=resolver)


def test_custom_site_resolver() -> None:
    class CustomerResolver:
        def site_key(self, job: Job) -> str | None:
            return job.customer_id

    primary = _job("J-0001", customer_id="C-1")
    rider = _job("J-0002", customer_id="C-1")

    financials.combine_into(rider, primary, job_has_members=False, resolver=CustomerResolver())

    assert rider.combined_into_job_id == "J-0001"
