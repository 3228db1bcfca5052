"""Idempotency ledger backing webhook deduplication."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.models.processor_event import ProcessorEvent, ProcessorProviderEnum

MAX_ERROR_LENGTH = 2000


@dataclass(slots=True)
class LedgerEntry:
    event: ProcessorEvent
    created: bool

    @property
    def already_processed(self) -> bool:
        return self.event.processed_at is not None


class ProcessedEventLedger:
    """Records processor event ids and the outcome of each handling attempt."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find(self, provider: ProcessorProviderEnum, external_id: str) -> ProcessorEvent | None:
        stmt = (
            select(ProcessorEvent)
            .where(ProcessorEvent.provider == provider, ProcessorEvent.external_id == external_id)
            .execution_options(populate_existing=True)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def record(
        self,
        *,
        provider: ProcessorProviderEnum,
        external_id: str,
        event_type: str,
        payload_hash: str,
        payload: dict[str, Any] | None,
    ) -> LedgerEntry:
        """Insert the event row unless it exists; a concurrent insert resolves to the winner's row."""

        existing = await self.find(provider, external_id)
        if existing is not None:
            return LedgerEntry(event=existing, created=False)

        event = ProcessorEvent(
            provider=provider,
            external_id=external_id,
            event_type=event_type,
            payload_hash=payload_hash,
            payload_json=payload,
            attempts=0,
        )
        self._session.add(event)
        try:
            await self._session.flush()
        except IntegrityError:
            await self._session.rollback()
            winner = await self.find(provider, external_id)
            if winner is None:
                raise
            return LedgerEntry(event=winner, created=False)
        return LedgerEntry(event=event, created=True)

    async def mark_attempt(
        self,
        event: ProcessorEvent,
        *,
        attempted_at: datetime,
        outcome: str | None = None,
        error: str | None = None,
    ) -> ProcessorEvent:
        """Count an attempt; only an attempt without ``error`` marks the event processed."""

        await self._session.refresh(event)
        event.attempts = (event.attempts or 0) + 1
        event.last_error = error[:MAX_ERROR_LENGTH] if error else None
        if error is None:
            event.processed_at = attempted_at
            event.outcome = outcome
        await self._session.flush()
        return event


__all__ = ["LedgerEntry", "ProcessedEventLedger"]
