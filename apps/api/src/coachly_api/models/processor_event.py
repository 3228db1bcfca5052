"""Processed-event ledger rows for payment processor webhooks."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum as SqlEnum, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from coachly_api.db.base import Base


class ProcessorProviderEnum(str, Enum):
    STRIPE = "stripe"


class ProcessorEvent(Base):
    """One row per processor event id.

    ``processed_at`` is set only once a handler ran to completion; redeliveries
    of such an event are acknowledged without touching domain state.
    """

    __tablename__ = "processor_events"
    __table_args__ = (UniqueConstraint("provider", "external_id", name="uq_processor_event_provider_external"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    provider = Column(SqlEnum(ProcessorProviderEnum, name="processor_provider_enum"), nullable=False)
    external_id = Column(String(128), nullable=False)
    event_type = Column(String(128), nullable=False)
    payload_hash = Column(String(128), nullable=False)
    payload_json = Column("payload", JSON, nullable=True)
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    outcome = Column(String(64), nullable=True)
    last_error = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = ["ProcessorEvent", "ProcessorProviderEnum"]
