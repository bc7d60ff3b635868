"""Translate workflow errors into HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.backend.src.core.exceptions import WorkflowError

_STATUS_BY_CODE: dict[str, int] = {
    "JOB_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "VISIT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "CONCURRENT_MODIFICATION": status.HTTP_409_CONFLICT,
    "JOB_CLOSED": status.HTTP_409_CONFLICT,
    "INVALID_TRANSITION": status.HTTP_409_CONFLICT,
    "ALREADY_TERMINAL": status.HTTP_409_CONFLICT,
}


def status_for(exc: WorkflowError) -> int:
    return _STATUS_BY_CODE.get(exc.code, status.HTTP_422_UNPROCESSABLE_ENTITY)


async def workflow_error_handler(_request: Request, exc: WorkflowError) -> JSONResponse:
    body = {"error": exc.code, "detail": str(exc), **exc.context()}
    return JSONResponse(status_code=status_for(exc), content=body)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WorkflowError, workflow_error_handler)


__all__ = ["register_exception_handlers", "status_for"]
