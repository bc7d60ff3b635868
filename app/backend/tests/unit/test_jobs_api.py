"""API tests for the job workflow endpoints."""

from __future__ import annotations

import os
import sys
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_workflow.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("EVENT_DISPATCH", "log")

import pytest
from fastapi.testclient import TestClient

from app.backend.src.api.jobs import get_workflow_engine
from app.backend.src.db import get_engine, get_session_factory
from app.backend.src.main import app
from app.backend.src.models.base import Base
from app.backend.src.services.events import LoggingEventPublisher
from app.backend.src.services.workflow_engine import WorkflowEngine


@pytest.fixture(autouse=True)
def setup_database() -> None:  # type: ignore[no-untyped-def]
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client() -> TestClient:  # type: ignore[no-untyped-def]
    engine = WorkflowEngine(get_session_factory(), publisher=LoggingEventPublisher())
    app.dependency_overrides[get_workflow_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.pop(get_workflow_engine, None)


def _create(client: TestClient, **payload) -> dict:  # type: ignore[no-untyped-def]
    response = client.post("/api/jobs", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_liveness_endpoint(client: TestClient) -> None:
    response = client.get("/api/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "live"


def test_readiness_reports_pending_events(client: TestClient) -> None:
    response = client.get("/api/health/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ready", "pending_events": 0}


def test_metrics_endpoint(client: TestClient) -> None:
    _create(client)

    response = client.get("/api/metrics")

    assert response.status_code == 200
    assert "workflow_operations_total" in response.text


def test_job_lifecycle_over_http(client: TestClient) -> None:
    job = _create(client, customer_id="CUST-1", appliance_type="Washer", site_key="12 Elm St")
    assert job["id"] == "J-0001"
    assert job["job_stage"] == "Intake"
    assert job["version"] == 1

    response = client.put(
        f"/api/jobs/{job['id']}/visits/1",
        json={"date": "2025-01-10", "type": "Diagnosis", "expected_version": 1},
    )
    assert response.status_code == 200, response.text
    scheduled = response.json()
    assert scheduled["current_status"] == "Scheduled"
    assert scheduled["visits"] == [
        {"slot_index": 1, "date": "2025-01-10", "type": "Diagnosis", "status": "Scheduled"}
    ]

    response = client.post(
        f"/api/jobs/{job['id']}/visits/1/complete",
        json={"expected_version": scheduled["version"]},
    )
    assert response.status_code == 200, response.text
    assert response.json()["current_status"] == "Awaiting Payment"

    response = client.post(f"/api/jobs/{job['id']}/invoice", json={"amount": "250.00"})
    assert response.status_code == 200, response.text

    response = client.post(
        f"/api/jobs/{job['id']}/payments",
        json={"amount": "250.00", "method": "card", "date": "2025-01-11"},
    )
    assert response.status_code == 200, response.text
    paid = response.json()
    assert paid["payment_status"] == "Paid"
    assert paid["current_status"] == "Completed"
    assert paid["job_stage"] == "Complete"
    assert Decimal(paid["amount_paid"]) == Decimal("250")

    response = client.post(f"/api/jobs/{job['id']}/callbacks", json={"reason": "leak returned"})
    assert response.status_code == 201, response.text
    callback = response.json()
    assert callback["original_job_id"] == job["id"]
    assert callback["is_callback"] is True

    links = client.get(f"/api/jobs/{job['id']}/callbacks").json()
    assert [link["callback_job_id"] for link in links] == [callback["id"]]

    refreshed = client.get(f"/api/jobs/{job['id']}").json()
    assert refreshed["callback_count"] == 1


def test_stale_version_returns_conflict(client: TestClient) -> None:
    job = _create(client)
    client.post(f"/api/jobs/{job['id']}/stage", json={"target_stage": "Diagnosis"})

    response = client.post(
        f"/api/jobs/{job['id']}/quote",
        json={"amount": "90.00", "expected_version": job["version"]},
    )

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "CONCURRENT_MODIFICATION"
    assert body["expected_version"] == 1
    assert body["actual_version"] == 2


def test_unknown_job_returns_not_found(client: TestClient) -> None:
    response = client.get("/api/jobs/J-9999")

    assert response.status_code == 404
    assert response.json()["error"] == "JOB_NOT_FOUND"


def test_invalid_transition_returns_conflict(client: TestClient) -> None:
    job = _create(client)

    response = client.post(f"/api/jobs/{job['id']}/stage", json={"target_stage": "Payment"})

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "INVALID_TRANSITION"
    assert body["current_stage"] == "Intake"
    assert body["target_stage"] == "Payment"


def test_business_rule_violation_returns_unprocessable(client: TestClient) -> None:
    job = _create(client)

    premature = client.post(f"/api/jobs/{job['id']}/invoice", json={"amount": "10"})
    out_of_order = client.put(f"/api/jobs/{job['id']}/visits/2", json={"type": "Repair"})

    assert premature.status_code == 422
    assert premature.json()["error"] == "PREMATURE_INVOICE"
    assert out_of_order.status_code == 422
    assert out_of_order.json()["error"] == "SLOT_OUT_OF_ORDER"


def test_payload_validation(client: TestClient) -> None:
    job = _create(client)

    response = client.post(f"/api/jobs/{job['id']}/payments", json={"amount": "0"})

    assert response.status_code == 422


def test_list_and_history(client: TestClient) -> None:
    first = _create(client, priority="Urgent")
    _create(client)
    client.post(f"/api/jobs/{first['id']}/photos", json={"kind": "site", "count": 2})

    urgent = client.get("/api/jobs", params={"priority": "Urgent"}).json()
    history = client.get(f"/api/jobs/{first['id']}/history").json()

    assert [job["id"] for job in urgent] == [first["id"]]
    assert urgent[0]["photo_count"] == 2
    assert urgent[0]["has_site_photos"] is True
    assert history[0]["field_changed"] == "photo_count"
    assert history[-1]["field_changed"] == "created"
