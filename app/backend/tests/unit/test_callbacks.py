"""Unit tests for callback linking."""

from __future__ import annotations

import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

import pytest

from app.backend.src.core.exceptions import JobNotEligible
from app.backend.src.models import Job
from app.backend.src.models.enums import JobStage, JobStatus
from app.backend.src.services import callbacks


def _completed_job(**overrides) -> Job:  # type: ignore[no-untyped-def]
    fields = {
        "id": "J-0001",
        "job_stage": JobStage.COMPLETE.value,
        "current_status": JobStatus.COMPLETED.value,
        "customer_id": "CUST-1",
        "appliance_type": "Dishwasher",
        "brand": "Bosch",
        "site_key": "12 Elm St",
        "issue_description": "Leaking",
        "priority": "High",
    }
    fields.update(overrides)
    return Job(**fields)


def test_callback_links_to_original() -> None:
    original = _completed_job()

    callback = callbacks.build_callback_job(original, "J-0002", "leak returned", max_depth=1)

    assert callback.id == "J-0002"
    assert callback.is_callback is True
    assert callback.original_job_id == "J-0001"
    assert callback.callback_reason == "leak returned"
    assert callback.job_stage == JobStage.INTAKE.value
    assert callback.current_status == JobStatus.NEW.value
    assert callback.visit_count == 0
    assert callback.visits == []
    assert callback.callback_depth == 1
    assert original.callback_count == 1


def test_callback_inherits_intake_details() -> None:
    callback = callbacks.build_callback_job(_completed_job(), "J-0002", "noise", max_depth=1)

    assert callback.customer_id == "CUST-1"
    assert callback.appliance_type == "Dishwasher"
    assert callback.site_key == "12 Elm St"
    assert callback.priority == "High"
    assert callback.issue_description.startswith("Callback: noise")


def test_callback_priority_override() -> None:
    callback = callbacks.build_callback_job(
        _completed_job(), "J-0002", "noise", max_depth=1, priority="Urgent"
    )

    assert callback.priority == "Urgent"


def test_repeated_callbacks_increment_count() -> None:
    original = _completed_job()

    callbacks.build_callback_job(original, "J-0002", "first", max_depth=1)
    callbacks.build_callback_job(original, "J-0003", "second", max_depth=1)

    assert original.callback_count == 2


@pytest.mark.parametrize("stage", [JobStage.INTAKE, JobStage.PAYMENT, JobStage.CANCELLED])
def test_callback_requires_complete_stage(stage: JobStage) -> None:
    original = _completed_job(job_stage=stage.value)

    with pytest.raises(JobNotEligible):
        callbacks.build_callback_job(original, "J-0002", "leak", max_depth=1)

    assert original.callback_count == 0


def test_callback_of_callback_respects_depth() -> None:
    callback_job = _completed_job(id="J-0002", is_callback=True, callback_depth=1)

    with pytest.raises(JobNotEligible):
        callbacks.check_callback_eligible(callback_job, max_depth=1)

    assert callbacks.check_callback_eligible(callback_job, max_depth=2) == 2
