"""Celery application delivering committed workflow events."""

from __future__ import annotations

import ssl
from pathlib import Path
from typing import Any

import structlog
from celery import Celery, signals
from kombu import Queue

from app.backend.src.core.config import get_settings
from app.backend.src.core.logging import configure_logging

LOGGER = structlog.get_logger(__name__)
PROJECT_ROOT = Path(__file__).resolve().parents[1]
EVENT_QUEUE = "events"

settings = get_settings()
configure_logging()


def _ca_cert_path(path: str | None) -> str | None:
    """Return the configured Redis CA bundle as an absolute path, if present.

    redis-py needs an absolute ``ssl_ca_certs`` path; relative values are taken
    from the project root. A missing file falls back to the system trust store.
    """

    if not path:
        return None

    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = PROJECT_ROOT / candidate
    if candidate.is_file():
        return str(candidate)

    LOGGER.warning("redis_ca_certificate_missing", configured_path=path, resolved_path=str(candidate))
    return None


def _redis_ssl_options() -> dict[str, Any]:
    options: dict[str, Any] = {"ssl_cert_reqs": ssl.CERT_REQUIRED}
    ca_certs = _ca_cert_path(settings.redis_ca_cert_path)
    if ca_certs:
        options["ssl_ca_certs"] = ca_certs
    return options


def _check_broker(app: Celery) -> None:
    """Fail worker startup when the broker or result backend is unreachable.

    Otherwise the worker idles while committed events stay pending in the outbox.
    """

    try:
        with app.connection_for_read() as connection:
            connection.ensure_connection(max_retries=1)
    except Exception as exc:  # pragma: no cover - requires broker connectivity
        LOGGER.error("celery_broker_unavailable", broker=settings.broker_url, error=str(exc))
        raise

    client = getattr(app.backend, "client", None)
    if client is None:
        return
    try:
        client.ping()
    except Exception as exc:  # pragma: no cover - requires backend connectivity
        LOGGER.error("celery_backend_unavailable", backend=settings.result_backend, error=str(exc))
        raise


celery = Celery(
    "repair_workflow",
    broker=settings.broker_url,
    backend=settings.result_backend,
    include=["tasks.event_tasks"],
)

celery_conf: dict[str, object] = {
    "task_default_queue": EVENT_QUEUE,
    "task_queues": (Queue(EVENT_QUEUE),),
    "task_routes": {"tasks.*": {"queue": EVENT_QUEUE}},
    "beat_schedule": {
        "flush-outbox": {
            "task": "tasks.flush_outbox",
            "schedule": settings.outbox_flush_interval_seconds,
        },
    },
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "task_acks_late": True,
    "worker_prefetch_multiplier": 1,
    "broker_transport_options": {"global_keyprefix": "repair-workflow-broker:"},
    "result_backend_transport_options": {"global_keyprefix": "repair-workflow-result:"},
    "broker_connection_retry_on_startup": True,
}

if settings.broker_url.startswith("rediss://"):
    celery_conf["broker_use_ssl"] = _redis_ssl_options()
if settings.result_backend.startswith("rediss://"):
    celery_conf["redis_backend_use_ssl"] = _redis_ssl_options()

celery.conf.update(**celery_conf)

LOGGER.info("celery_bootstrap_ready", broker=settings.broker_url, backend=settings.result_backend)

# Register the event tasks for workers started from any entrypoint.
from . import event_tasks  # noqa: F401  # isort: skip


@signals.worker_ready.connect
def _log_worker_ready(sender: Any | None = None, **_: Any) -> None:
    app = sender.app if sender is not None else celery
    _check_broker(app)
    LOGGER.info(
        "celery_worker_configuration",
        default_queue=app.conf.task_default_queue,
        registered_tasks=sorted(name for name in app.tasks if name.startswith("tasks.")),
    )


@signals.task_prerun.connect
def _log_task_prerun(
    sender: Any | None = None,
    task_id: str | None = None,
    task: Any | None = None,
    args: tuple[Any, ...] = (),
    **_: Any,
) -> None:
    task_name = getattr(task, "name", "") or ""
    if not task_name.startswith("tasks."):
        return
    payload = args[0] if args and isinstance(args[0], dict) else {}
    LOGGER.info(
        "celery_task_prerun",
        task_id=task_id,
        task_name=task_name,
        event_id=payload.get("event_id"),
        job_id=payload.get("job_id"),
    )


@signals.task_postrun.connect
def _log_task_postrun(
    sender: Any | None = None,
    task_id: str | None = None,
    task: Any | None = None,
    retval: Any | None = None,
    state: str | None = None,
    **_: Any,
) -> None:
    task_name = getattr(task, "name", "") or ""
    if not task_name.startswith("tasks."):
        return
    LOGGER.info(
        "celery_task_postrun",
        task_id=task_id,
        task_name=task_name,
        state=state,
        result=retval if state == "SUCCESS" and isinstance(retval, dict) else None,
    )


__all__ = ["EVENT_QUEUE", "celery"]
