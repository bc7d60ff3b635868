"""Seed the development database with a few demo jobs."""

from datetime import date, timedelta

from app.backend.src.db import get_engine, get_session_factory
from app.backend.src.models import *  # noqa
from app.backend.src.models.base import Base
from app.backend.src.models.enums import JobStage, VisitType
from app.backend.src.services.workflow_engine import WorkflowEngine


def main() -> None:
    """Create tables (if needed) and walk demo jobs through the workflow."""

    Base.metadata.create_all(bind=get_engine())
    engine = WorkflowEngine.from_settings(get_session_factory())
    today = date.today()

    intake = engine.create_job(
        customer_id="CUST-100",
        appliance_type="Refrigerator",
        brand="Whirlpool",
        issue_description="Not cooling",
        site_key="123 Main St",
    )

    finished = engine.create_job(
        customer_id="CUST-200",
        appliance_type="Washer",
        brand="LG",
        issue_description="Drum does not spin",
        site_key="45 Oak Ave",
    )
    engine.advance_stage(finished.id, JobStage.DIAGNOSIS)
    engine.schedule_visit(finished.id, 1, today - timedelta(days=3), VisitType.DIAGNOSIS)
    engine.complete_visit(finished.id, 1)
    engine.record_invoice(finished.id, "145.00")
    finished = engine.record_payment(finished.id, "145.00", "card", today)

    rider = engine.create_job(
        customer_id="CUST-200",
        appliance_type="Dryer",
        brand="LG",
        issue_description="No heat",
        site_key="45 Oak Ave",
        added_on_site=True,
    )

    print("✅ Development data ready!")
    for job in (intake, finished, rider):
        print(f"{job.id}: {job.appliance_type} [{job.job_stage} / {job.current_status}]")


if __name__ == "__main__":
    main()
