"""Public API routers exposed by the FastAPI application."""

from . import errors, health, jobs

__all__ = [
    "errors",
    "health",
    "jobs",
]
