"""Callback link between an original job and its follow-up job."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Callback(Base):
    """Represents a callback raised against a completed job."""

    __tablename__ = "callbacks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    original_job_id: Mapped[str] = mapped_column(ForeignKey("jobs.id"), nullable=False, index=True)
    callback_job_id: Mapped[str] = mapped_column(
        ForeignKey("jobs.id"), nullable=False, unique=True
    )
    callback_reason: Mapped[str] = mapped_column(String(255), nullable=False)
    callback_date: Mapped[date] = mapped_column(Date, nullable=False)
    resolution: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


__all__ = ["Callback"]
