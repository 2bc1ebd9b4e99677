"""ORM models for pace history and telemetry events."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text, func

from .database import Base


class PaceSampleRow(Base):
    __tablename__ = "pace_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider_id = Column(String(64), nullable=False)
    window_label = Column(String(64), nullable=False)
    ts = Column(DateTime(timezone=True), nullable=False)
    used = Column(Float, nullable=False)

    __table_args__ = (
        Index("ix_pace_samples_series_ts", "provider_id", "window_label", "ts"),
    )


class UsageEvent(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ts = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    level = Column(String(16), nullable=False)
    kind = Column(String(64), nullable=False)
    cycle_id = Column(String(64))
    provider_id = Column(String(64))
    source_from = Column(String(16))
    source_to = Column(String(16))
    error_code = Column(String(128))
    message = Column(String(512))
    meta = Column(Text)

    __table_args__ = (
        Index("ix_events_ts", "ts"),
        Index("ix_events_kind_ts", "kind", "ts"),
    )
