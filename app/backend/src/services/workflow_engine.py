"""Workflow engine: the single gateway for job mutations.

Every operation runs as one database transaction while holding the in-process
write lock of each job it touches (acquired in ascending identifier order).
Callers pass the version they last observed; a mismatch, or a concurrent
writer detected by the version column at flush time, fails with
:class:`ConcurrentModification` and leaves the stored jobs unchanged.

Events describing the change are written to the outbox in the same
transaction and published only after commit.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from time import perf_counter
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.backend.src.core.config import Settings, get_settings
from app.backend.src.core.exceptions import (
    ConcurrentModification,
    JobNotFound,
    WorkflowError,
)
from app.backend.src.core.locks import JobLockRegistry
from app.backend.src.core.redis_cache import RedisSnapshotCache, get_snapshot_cache
from app.backend.src.models import Callback, Job, JobHistory
from app.backend.src.models.enums import (
    EventType,
    JobStage,
    PhotoKind,
    Priority,
    VisitType,
)
from app.backend.src.schemas.event import WorkflowEvent
from app.backend.src.schemas.job import CallbackRead, JobCreate, JobHistoryRead, JobRead

from . import callbacks, financials, job_stages, visit_ledger
from .events import EventPublisher, LoggingEventPublisher, get_publisher, publish_pending
from .metrics import workflow_operation_seconds, workflow_operations_total

LOGGER = structlog.get_logger(__name__)

INTAKE_LOCK = "__intake__"

_PHOTO_FLAGS = {
    PhotoKind.SITE: "has_site_photos",
    PhotoKind.DIAGNOSIS: "has_diagnosis_photos",
    PhotoKind.REPAIR: "has_repair_photos",
}


@dataclass(frozen=True)
class WorkflowPolicy:
    """Construction-time defaults for the engine."""

    default_priority: Priority = Priority.NORMAL
    max_callback_depth: int = 1
    job_number_prefix: str = "J-"
    allow_overpayment: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkflowPolicy":
        return cls(
            default_priority=Priority(settings.default_priority),
            max_callback_depth=settings.max_callback_depth,
            job_number_prefix=settings.job_number_prefix,
            allow_overpayment=settings.allow_overpayment,
        )


@dataclass
class UnitOfWork:
    """State collected while one engine transaction runs."""

    session: Session
    actor: str
    touched: dict[str, Job] = field(default_factory=dict)
    event_ids: list[str] = field(default_factory=list)

    def touch(self, *jobs: Job) -> None:
        for job in jobs:
            self.touched[job.id] = job

    def record(
        self,
        job: Job,
        field_changed: str,
        old_value: Any = None,
        new_value: Any = None,
        notes: str | None = None,
    ) -> None:
        self.session.add(
            JobHistory(
                job_id=job.id,
                field_changed=field_changed,
                old_value=None if old_value is None else str(old_value),
                new_value=None if new_value is None else str(new_value),
                notes=notes,
                changed_by=self.actor,
            )
        )

    def emit(self, event_type: EventType, job: Job, **data: Any) -> None:
        event = WorkflowEvent(
            event_type=event_type,
            job_id=job.id,
            data={
                "job_stage": job.job_stage,
                "current_status": job.current_status,
                "payment_status": job.payment_status,
                **data,
            },
        )
        self.session.add(event.to_outbox())
        self.event_ids.append(event.event_id)


class WorkflowEngine:
    """Orchestrates the visit ledger, state machine, financials and callbacks."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        *,
        policy: WorkflowPolicy | None = None,
        publisher: EventPublisher | None = None,
        site_resolver: financials.SiteKeyResolver | None = None,
        locks: JobLockRegistry | None = None,
        snapshot_cache: RedisSnapshotCache | None = None,
        actor: str = "system",
    ) -> None:
        self._session_factory = session_factory
        self.policy = policy or WorkflowPolicy()
        self._publisher = publisher or LoggingEventPublisher()
        self._site_resolver = site_resolver or financials.JobSiteKeyResolver()
        self._locks = locks or JobLockRegistry()
        self._cache = snapshot_cache
        self._actor = actor

    @classmethod
    def from_settings(
        cls,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        settings: Settings | None = None,
        **overrides: Any,
    ) -> "WorkflowEngine":
        settings = settings or get_settings()
        overrides.setdefault("policy", WorkflowPolicy.from_settings(settings))
        overrides.setdefault("publisher", get_publisher(settings))
        overrides.setdefault("locks", JobLockRegistry(timeout=settings.lock_timeout_seconds))
        overrides.setdefault("snapshot_cache", get_snapshot_cache())
        return cls(session_factory, **overrides)

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------
    def _execute(
        self,
        operation: str,
        job_id: str | None,
        lock_ids: Iterable[str],
        work: Callable[[UnitOfWork], Job],
    ) -> JobRead:
        start = perf_counter()
        lock_ids = tuple(lock_ids)
        try:
            with self._locks.hold(*lock_ids):
                session = self._session_factory()
                unit = UnitOfWork(session=session, actor=self._actor)
                try:
                    result = work(unit)
                    session.commit()
                    snapshots = {touched_id: JobRead.from_job(job) for touched_id, job in unit.touched.items()}
                    snapshot = snapshots.get(result.id) or JobRead.from_job(result)
                except StaleDataError as exc:
                    session.rollback()
                    raise ConcurrentModification(job_id, None, None) from exc
                except IntegrityError as exc:
                    session.rollback()
                    LOGGER.warning("workflow_integrity_conflict", operation=operation, error=str(exc.orig))
                    raise ConcurrentModification(job_id, None, None) from exc
                except Exception:
                    session.rollback()
                    raise
                finally:
                    session.close()
                # Cache writes stay under the job locks so they land in commit order.
                self._cache_snapshots(snapshots)
        except WorkflowError as exc:
            workflow_operations_total.labels(operation=operation, outcome=exc.code.lower()).inc()
            LOGGER.info(
                "workflow_operation_rejected",
                code=exc.code,
                **{**exc.context(), "operation": operation},
            )
            raise
        finally:
            workflow_operation_seconds.labels(operation=operation).observe(perf_counter() - start)

        workflow_operations_total.labels(operation=operation, outcome="ok").inc()
        self._publish(unit.event_ids)
        return snapshot

    def _cache_snapshots(self, snapshots: dict[str, JobRead]) -> None:
        if self._cache is None:
            return
        for job_id, snapshot in snapshots.items():
            self._cache.store(job_id, snapshot.model_dump(mode="json"))

    def _publish(self, event_ids: Sequence[str]) -> None:
        if not event_ids:
            return
        try:
            publish_pending(self._session_factory, self._publisher, event_ids)
        except Exception as exc:
            LOGGER.warning("workflow_event_dispatch_deferred", event_ids=list(event_ids), error=str(exc))

    @staticmethod
    def _load(session: Session, job_id: str, expected_version: int | None = None) -> Job:
        job = session.get(Job, job_id, with_for_update=True)
        if job is None:
            raise JobNotFound(job_id)
        if expected_version is not None and job.version != expected_version:
            raise ConcurrentModification(job_id, expected_version, job.version)
        return job

    def _peek(self, job_id: str) -> Job:
        session = self._session_factory()
        try:
            job = session.get(Job, job_id)
            if job is None:
                raise JobNotFound(job_id)
            session.expunge(job)
            return job
        finally:
            session.close()

    def _next_job_id(self, session: Session) -> str:
        prefix = self.policy.job_number_prefix
        last_id = session.scalars(
            select(Job.id)
            .where(Job.id.like(f"{prefix}%"))
            .order_by(func.length(Job.id).desc(), Job.id.desc())
            .limit(1)
        ).first()
        number = 1
        if last_id:
            suffix = last_id[len(prefix):]
            number = int(suffix) + 1 if suffix.isdigit() else 1
        return f"{prefix}{number:04d}"

    @staticmethod
    def _group_ids(session: Session, job: Job) -> tuple[str, list[str]]:
        primary_id = job.combined_into_job_id or job.id
        member_ids = list(
            session.scalars(
                select(Job.id).where(Job.combined_into_job_id == primary_id).order_by(Job.id)
            )
        )
        return primary_id, member_ids

    @staticmethod
    def _invoice_pending(session: Session, job: Job, members: Sequence[Job] | None = None) -> bool:
        """Whether a charge billed on ``job``'s invoice is still unrecorded.

        A combined member waits for its own invoice only; a primary also waits
        for every open member combined into it.
        """

        if job.invoiced_at is None:
            return True
        if job.combined_invoice:
            return False
        if members is None:
            with session.no_autoflush:
                members = session.scalars(select(Job).where(Job.combined_into_job_id == job.id)).all()
        return any(member.invoiced_at is None and not member.is_closed for member in members)

    def _refresh_status(self, unit: UnitOfWork, job: Job, *, invoice_pending: bool | None = None) -> None:
        """Recompute status and record a forced stage change."""

        if job.is_closed:
            return
        if invoice_pending is None:
            invoice_pending = self._invoice_pending(unit.session, job)
        stage_before = job.job_stage
        status_before = job.current_status
        job_stages.recompute_status(job, invoice_pending=invoice_pending)
        if job.current_status != status_before:
            unit.record(job, "current_status", status_before, job.current_status)
        if job.job_stage != stage_before:
            unit.record(job, "job_stage", stage_before, job.job_stage, "Stage derived from visits and payment")
            unit.emit(EventType.JOB_STAGE_CHANGED, job, previous_stage=stage_before)
        unit.touch(job)

    def _reconcile_group(self, unit: UnitOfWork, job: Job) -> list[Job]:
        """Re-run the invoice rollup for ``job``'s group and refresh statuses."""

        session = unit.session
        primary_id, member_ids = self._group_ids(session, job)
        primary = job if job.id == primary_id else self._load(session, primary_id)
        members = [job if member_id == job.id else self._load(session, member_id) for member_id in member_ids]
        financials.apply_rollup(primary, members)
        self._refresh_status(
            unit, primary, invoice_pending=self._invoice_pending(session, primary, members)
        )
        for member in members:
            self._refresh_status(unit, member)
        group = [primary, *members]
        unit.touch(*group)
        return group

    def _primary_of(self, session: Session, job: Job) -> Job:
        if job.combined_into_job_id is None:
            return job
        return self._load(session, job.combined_into_job_id)

    def _group_lock_ids(self, job_id: str) -> list[str]:
        """Identifiers to lock for a financial change on ``job_id``."""

        job = self._peek(job_id)
        session = self._session_factory()
        try:
            primary_id, member_ids = self._group_ids(session, job)
        finally:
            session.close()
        return sorted({job_id, primary_id, *member_ids})

    @staticmethod
    def _ensure_group_unchanged(session: Session, job: Job, lock_ids: Sequence[str]) -> None:
        primary_id, member_ids = WorkflowEngine._group_ids(session, job)
        if not {primary_id, *member_ids} <= set(lock_ids):
            raise ConcurrentModification(job.id, None, job.version)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------
    def create_job(self, payload: JobCreate | None = None, **fields: Any) -> JobRead:
        """Create a job in Intake with no visits."""

        data = (payload or JobCreate(**fields)).model_dump()
        priority = Priority(data.pop("priority") or self.policy.default_priority)
        added_on_site = data.pop("added_on_site")

        def work(unit: UnitOfWork) -> Job:
            job = Job(
                id=self._next_job_id(unit.session),
                priority=priority.value,
                added_on_site=added_on_site,
                primary_job=not added_on_site,
                **data,
            )
            unit.session.add(job)
            unit.session.flush()
            unit.record(job, "created", None, job.id, "Job created")
            unit.touch(job)
            LOGGER.info("job_created", job_id=job.id, priority=job.priority, site_key=job.site_key)
            return job

        return self._execute("create_job", None, [INTAKE_LOCK], work)

    # ------------------------------------------------------------------
    # Job state machine
    # ------------------------------------------------------------------
    def advance_stage(
        self, job_id: str, target_stage: JobStage | str, *, expected_version: int | None = None
    ) -> JobRead:
        def work(unit: UnitOfWork) -> Job:
            job = self._load(unit.session, job_id, expected_version)
            previous = job_stages.advance_stage(job, target_stage)
            unit.record(job, "job_stage", previous.value, job.job_stage)
            unit.emit(EventType.JOB_STAGE_CHANGED, job, previous_stage=previous.value)
            unit.touch(job)
            return job

        return self._execute("advance_stage", job_id, [job_id], work)

    def cancel_job(
        self, job_id: str, reason: str | None = None, *, expected_version: int | None = None
    ) -> JobRead:
        def work(unit: UnitOfWork) -> Job:
            job = self._load(unit.session, job_id, expected_version)
            previous = job_stages.cancel_job(job)
            unit.record(job, "job_stage", previous.value, job.job_stage, reason or "Job cancelled")
            unit.emit(EventType.JOB_STAGE_CHANGED, job, previous_stage=previous.value, reason=reason)
            unit.touch(job)
            return job

        return self._execute("cancel_job", job_id, [job_id], work)

    # ------------------------------------------------------------------
    # Visit ledger
    # ------------------------------------------------------------------
    def schedule_visit(
        self,
        job_id: str,
        slot_index: int,
        visit_date: date | None,
        visit_type: VisitType | str,
        *,
        expected_version: int | None = None,
    ) -> JobRead:
        def work(unit: UnitOfWork) -> Job:
            job = self._load(unit.session, job_id, expected_version)
            slot = visit_ledger.schedule_visit(job, slot_index, visit_date, visit_type)
            unit.record(
                job,
                f"visit_{slot_index}",
                None,
                f"{slot.type.value} {slot.status.value} {slot.date or ''}".strip(),
                f"Visit #{slot_index} scheduled",
            )
            self._refresh_status(unit, job)
            return job

        return self._execute("schedule_visit", job_id, [job_id], work)

    def complete_visit(self, job_id: str, slot_index: int, *, expected_version: int | None = None) -> JobRead:
        def work(unit: UnitOfWork) -> Job:
            job = self._load(unit.session, job_id, expected_version)
            slot = visit_ledger.complete_visit(job, slot_index)
            unit.record(job, f"visit_{slot_index}_status", None, slot.status.value)
            self._refresh_status(unit, job)
            unit.emit(
                EventType.VISIT_COMPLETED,
                job,
                slot_index=slot_index,
                visit_type=slot.type.value,
                visit_date=slot.date.isoformat() if slot.date else None,
            )
            return job

        return self._execute("complete_visit", job_id, [job_id], work)

    def cancel_visit(self, job_id: str, slot_index: int, *, expected_version: int | None = None) -> JobRead:
        def work(unit: UnitOfWork) -> Job:
            job = self._load(unit.session, job_id, expected_version)
            slot = visit_ledger.cancel_visit(job, slot_index)
            unit.record(job, f"visit_{slot_index}_status", None, slot.status.value)
            self._refresh_status(unit, job)
            return job

        return self._execute("cancel_visit", job_id, [job_id], work)

    def mark_no_show(self, job_id: str, slot_index: int, *, expected_version: int | None = None) -> JobRead:
        def work(unit: UnitOfWork) -> Job:
            job = self._load(unit.session, job_id, expected_version)
            slot = visit_ledger.mark_no_show(job, slot_index)
            unit.record(job, f"visit_{slot_index}_status", None, slot.status.value)
            self._refresh_status(unit, job)
            return job

        return self._execute("mark_no_show", job_id, [job_id], work)

    # ------------------------------------------------------------------
    # Financial reconciliation
    # ------------------------------------------------------------------
    def record_quote(
        self, job_id: str, amount: Decimal | int | float | str, *, expected_version: int | None = None
    ) -> JobRead:
        def work(unit: UnitOfWork) -> Job:
            job = self._load(unit.session, job_id, expected_version)
            previous = job.quote_total
            financials.record_quote(job, amount)
            unit.record(job, "quote_total", previous, job.quote_total)
            unit.touch(job)
            return job

        return self._execute("record_quote", job_id, [job_id], work)

    def record_invoice(
        self, job_id: str, amount: Decimal | int | float | str, *, expected_version: int | None = None
    ) -> JobRead:
        lock_ids = self._group_lock_ids(job_id)

        def work(unit: UnitOfWork) -> Job:
            job = self._load(unit.session, job_id, expected_version)
            self._ensure_group_unchanged(unit.session, job, lock_ids)
            previous = job.invoice_total
            financials.record_invoice(job, amount, primary=self._primary_of(unit.session, job))
            unit.record(job, "invoice_total", previous, job.invoice_total)
            self._reconcile_group(unit, job)
            return job

        return self._execute("record_invoice", job_id, lock_ids, work)

    def record_payment(
        self,
        job_id: str,
        amount: Decimal | int | float | str,
        method: str | None = None,
        paid_on: date | None = None,
        *,
        expected_version: int | None = None,
    ) -> JobRead:
        lock_ids = self._group_lock_ids(job_id)

        def work(unit: UnitOfWork) -> Job:
            job = self._load(unit.session, job_id, expected_version)
            self._ensure_group_unchanged(unit.session, job, lock_ids)
            primary_id, member_ids = self._group_ids(unit.session, job)
            others = [
                self._load(unit.session, other_id)
                for other_id in sorted({primary_id, *member_ids} - {job.id})
            ]
            previous_status = job.payment_status
            value = financials.record_payment(
                job,
                amount,
                method,
                paid_on or datetime.now(timezone.utc).date(),
                group=others,
                primary=self._primary_of(unit.session, job),
                allow_overpayment=self.policy.allow_overpayment,
            )
            self._reconcile_group(unit, job)
            unit.record(
                job,
                "payment_status",
                previous_status,
                job.payment_status,
                f"Payment of {value} via {method or 'unspecified'}",
            )
            unit.emit(
                EventType.PAYMENT_RECORDED,
                job,
                amount=str(value),
                method=method,
                amount_paid=str(job.amount_paid),
            )
            return job

        return self._execute("record_payment", job_id, lock_ids, work)

    def combine_into(
        self,
        job_id: str,
        primary_job_id: str,
        *,
        expected_version: int | None = None,
        primary_expected_version: int | None = None,
    ) -> JobRead:
        """Fold ``job_id``'s invoice into ``primary_job_id`` atomically."""

        primary_group = self._group_lock_ids(primary_job_id)
        lock_ids = sorted({job_id, *primary_group})

        def work(unit: UnitOfWork) -> Job:
            session = unit.session
            versions = {primary_job_id: primary_expected_version, job_id: expected_version}
            loaded = {lock_id: self._load(session, lock_id, versions.get(lock_id)) for lock_id in lock_ids}
            job, primary = loaded[job_id], loaded[primary_job_id]
            self._ensure_group_unchanged(session, primary, lock_ids)

            _, job_members = self._group_ids(session, job)
            financials.combine_into(
                job,
                primary,
                job_has_members=bool(job_members),
                resolver=self._site_resolver,
            )
            session.flush()
            unit.record(job, "combined_invoice", False, True, f"Combined into {primary.id}")
            unit.record(primary, "combined_job_added", None, job.id)
            self._reconcile_group(unit, primary)
            return job

        return self._execute("combine_into", job_id, lock_ids, work)

    # ------------------------------------------------------------------
    # Callback linker
    # ------------------------------------------------------------------
    def raise_callback(
        self,
        job_id: str,
        reason: str,
        *,
        priority: Priority | str | None = None,
        issue_description: str | None = None,
        expected_version: int | None = None,
    ) -> JobRead:
        """Create a callback job for a completed job; returns the new job."""

        def work(unit: UnitOfWork) -> Job:
            session = unit.session
            original = self._load(session, job_id, expected_version)
            callback = callbacks.build_callback_job(
                original,
                self._next_job_id(session),
                reason,
                max_depth=self.policy.max_callback_depth,
                priority=priority,
                issue_description=issue_description,
            )
            session.add(callback)
            session.flush()
            session.add(
                Callback(
                    original_job_id=original.id,
                    callback_job_id=callback.id,
                    callback_reason=reason,
                    callback_date=datetime.now(timezone.utc).date(),
                )
            )
            unit.record(callback, "created", None, callback.id, f"Callback of {original.id}: {reason}")
            unit.record(
                original,
                "callback_created",
                original.callback_count - 1,
                callback.id,
                f"Callback job created: {reason}",
            )
            unit.emit(
                EventType.CALLBACK_RAISED,
                callback,
                original_job_id=original.id,
                reason=reason,
                callback_count=original.callback_count,
            )
            unit.touch(original, callback)
            return callback

        return self._execute("raise_callback", job_id, [INTAKE_LOCK, job_id], work)

    # ------------------------------------------------------------------
    # Advisory fields
    # ------------------------------------------------------------------
    def record_photo_evidence(
        self,
        job_id: str,
        kind: PhotoKind | str,
        count: int = 1,
        *,
        expected_version: int | None = None,
    ) -> JobRead:
        """Increment photo counters; never affects stage or status."""

        photo_kind = PhotoKind(kind)

        def work(unit: UnitOfWork) -> Job:
            job = self._load(unit.session, job_id, expected_version)
            previous = job.photo_count
            job.photo_count = previous + max(count, 0)
            setattr(job, _PHOTO_FLAGS[photo_kind], True)
            unit.record(job, "photo_count", previous, job.photo_count, f"{photo_kind.value} photos")
            unit.touch(job)
            return job

        return self._execute("record_photo_evidence", job_id, [job_id], work)

    # ------------------------------------------------------------------
    # Reads (lock-free)
    # ------------------------------------------------------------------
    def query_job(self, job_id: str, *, use_cache: bool = True) -> JobRead:
        if use_cache and self._cache is not None:
            cached = self._cache.get(job_id)
            if cached is not None:
                return JobRead.model_validate(cached)
        return JobRead.from_job(self._peek(job_id))

    def list_jobs(
        self,
        *,
        stage: JobStage | str | None = None,
        status: str | None = None,
        is_callback: bool | None = None,
        priority: Priority | str | None = None,
        limit: int = 50,
    ) -> list[JobRead]:
        query = select(Job).order_by(Job.created_at.desc(), Job.id.desc())
        if stage is not None:
            query = query.where(Job.job_stage == JobStage(stage).value)
        if status is not None:
            query = query.where(Job.current_status == status)
        if is_callback is not None:
            query = query.where(Job.is_callback == is_callback)
        if priority is not None:
            query = query.where(Job.priority == Priority(priority).value)
        session = self._session_factory()
        try:
            return [JobRead.from_job(job) for job in session.scalars(query.limit(limit))]
        finally:
            session.close()

    def job_history(self, job_id: str) -> list[JobHistoryRead]:
        session = self._session_factory()
        try:
            if session.get(Job, job_id) is None:
                raise JobNotFound(job_id)
            entries = session.scalars(
                select(JobHistory)
                .where(JobHistory.job_id == job_id)
                .order_by(JobHistory.id.desc())
            )
            return [JobHistoryRead.from_history(entry) for entry in entries]
        finally:
            session.close()

    def list_callbacks(self, job_id: str) -> list[CallbackRead]:
        session = self._session_factory()
        try:
            if session.get(Job, job_id) is None:
                raise JobNotFound(job_id)
            rows = session.scalars(
                select(Callback)
                .where(Callback.original_job_id == job_id)
                .order_by(Callback.id)
            )
            return [CallbackRead.from_callback(row) for row in rows]
        finally:
            session.close()


__all__ = ["INTAKE_LOCK", "UnitOfWork", "WorkflowEngine", "WorkflowPolicy"]
