"""Job workflow endpoints."""

from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, Depends, Query, status

from app.backend.src.db import get_session_factory
from app.backend.src.models.enums import JobStage, Priority
from app.backend.src.schemas.job import (
    CallbackRead,
    CallbackRequest,
    CombineRequest,
    InvoiceRecord,
    JobCancel,
    JobCreate,
    JobHistoryRead,
    JobRead,
    PaymentRecord,
    PhotoEvidence,
    QuoteRecord,
    StageAdvance,
    VisitAction,
    VisitSchedule,
)
from app.backend.src.services.workflow_engine import WorkflowEngine

router = APIRouter(prefix="/jobs", tags=["jobs"])


@lru_cache()
def get_workflow_engine() -> WorkflowEngine:
    """Return the process-wide workflow engine."""

    return WorkflowEngine.from_settings(get_session_factory())


@router.post("", response_model=JobRead, status_code=status.HTTP_201_CREATED)
def create_job(payload: JobCreate, engine: WorkflowEngine = Depends(get_workflow_engine)) -> JobRead:
    return engine.create_job(payload)


@router.get("", response_model=list[JobRead])
def list_jobs(
    stage: JobStage | None = Query(default=None),
    job_status: str | None = Query(default=None, alias="status"),
    is_callback: bool | None = Query(default=None),
    priority: Priority | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> list[JobRead]:
    """Return the most recent jobs matching the given filters."""

    return engine.list_jobs(
        stage=stage,
        status=job_status,
        is_callback=is_callback,
        priority=priority,
        limit=limit,
    )


@router.get("/{job_id}", response_model=JobRead)
def query_job(job_id: str, engine: WorkflowEngine = Depends(get_workflow_engine)) -> JobRead:
    return engine.query_job(job_id)


@router.get("/{job_id}/history", response_model=list[JobHistoryRead])
def job_history(job_id: str, engine: WorkflowEngine = Depends(get_workflow_engine)) -> list[JobHistoryRead]:
    return engine.job_history(job_id)


@router.post("/{job_id}/stage", response_model=JobRead)
def advance_stage(
    job_id: str, payload: StageAdvance, engine: WorkflowEngine = Depends(get_workflow_engine)
) -> JobRead:
    return engine.advance_stage(job_id, payload.target_stage, expected_version=payload.expected_version)


@router.post("/{job_id}/cancel", response_model=JobRead)
def cancel_job(job_id: str, payload: JobCancel, engine: WorkflowEngine = Depends(get_workflow_engine)) -> JobRead:
    return engine.cancel_job(job_id, payload.reason, expected_version=payload.expected_version)


@router.put("/{job_id}/visits/{slot_index}", response_model=JobRead)
def schedule_visit(
    job_id: str,
    slot_index: int,
    payload: VisitSchedule,
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> JobRead:
    return engine.schedule_visit(
        job_id,
        slot_index,
        payload.date,
        payload.type,
        expected_version=payload.expected_version,
    )


@router.post("/{job_id}/visits/{slot_index}/complete", response_model=JobRead)
def complete_visit(
    job_id: str,
    slot_index: int,
    payload: VisitAction,
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> JobRead:
    return engine.complete_visit(job_id, slot_index, expected_version=payload.expected_version)


@router.post("/{job_id}/visits/{slot_index}/cancel", response_model=JobRead)
def cancel_visit(
    job_id: str,
    slot_index: int,
    payload: VisitAction,
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> JobRead:
    return engine.cancel_visit(job_id, slot_index, expected_version=payload.expected_version)


@router.post("/{job_id}/visits/{slot_index}/no-show", response_model=JobRead)
def mark_no_show(
    job_id: str,
    slot_index: int,
    payload: VisitAction,
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> JobRead:
    return engine.mark_no_show(job_id, slot_index, expected_version=payload.expected_version)


@router.post("/{job_id}/quote", response_model=JobRead)
def record_quote(
    job_id: str, payload: QuoteRecord, engine: WorkflowEngine = Depends(get_workflow_engine)
) -> JobRead:
    return engine.record_quote(job_id, payload.amount, expected_version=payload.expected_version)


@router.post("/{job_id}/invoice", response_model=JobRead)
def record_invoice(
    job_id: str, payload: InvoiceRecord, engine: WorkflowEngine = Depends(get_workflow_engine)
) -> JobRead:
    return engine.record_invoice(job_id, payload.amount, expected_version=payload.expected_version)


@router.post("/{job_id}/payments", response_model=JobRead)
def record_payment(
    job_id: str, payload: PaymentRecord, engine: WorkflowEngine = Depends(get_workflow_engine)
) -> JobRead:
    """Record a payment; payment webhooks land here as separate events."""

    return engine.record_payment(
        job_id,
        payload.amount,
        payload.method,
        payload.date,
        expected_version=payload.expected_version,
    )


@router.post("/{job_id}/combine", response_model=JobRead)
def combine_into(
    job_id: str, payload: CombineRequest, engine: WorkflowEngine = Depends(get_workflow_engine)
) -> JobRead:
    return engine.combine_into(
        job_id,
        payload.primary_job_id,
        expected_version=payload.expected_version,
        primary_expected_version=payload.primary_expected_version,
    )


@router.post("/{job_id}/callbacks", response_model=JobRead, status_code=status.HTTP_201_CREATED)
def raise_callback(
    job_id: str, payload: CallbackRequest, engine: WorkflowEngine = Depends(get_workflow_engine)
) -> JobRead:
    """Create a callback job for a completed job and return the new job."""

    return engine.raise_callback(
        job_id,
        payload.reason,
        priority=payload.priority,
        issue_description=payload.issue_description,
        expected_version=payload.expected_version,
    )


@router.get("/{job_id}/callbacks", response_model=list[CallbackRead])
def list_callbacks(job_id: str, engine: WorkflowEngine = Depends(get_workflow_engine)) -> list[CallbackRead]:
    return engine.list_callbacks(job_id)


@router.post("/{job_id}/photos", response_model=JobRead)
def record_photo_evidence(
    job_id: str, payload: PhotoEvidence, engine: WorkflowEngine = Depends(get_workflow_engine)
) -> JobRead:
    return engine.record_photo_evidence(
        job_id, payload.kind, payload.count, expected_version=payload.expected_version
    )
