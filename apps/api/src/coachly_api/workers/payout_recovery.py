"""Worker that settles withdrawals left in ``processing`` by an interrupted payout."""

from __future__ import annotations

import asyncio
from typing import Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.core.settings import settings
from coachly_api.models.withdrawal import WithdrawalStatusEnum
from coachly_api.services.errors import CommerceError, ExternalServiceError, OutcomeUnknownError
from coachly_api.services.notifications import EmailNotifier
from coachly_api.services.withdrawals import WithdrawalPipeline

from .coupon_sync import ProviderFactory, SessionFactory, default_stripe_provider


class PayoutRecoveryWorker:
    """Periodically re-issues stalled payouts under their original idempotency key."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        provider_factory: ProviderFactory | None = None,
        notifier: EmailNotifier | None = None,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider_factory = provider_factory or default_stripe_provider
        self._notifier = notifier
        self.interval_seconds = interval_seconds or settings.payout_recovery_interval_seconds
        self._batch_size = batch_size or settings.payout_recovery_batch_size
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Payout recovery worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self._batch_size,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Payout recovery worker stopped")

    async def run_once(self) -> Dict[str, int]:
        summary = {"paid": 0, "restored": 0, "unresolved": 0}
        provider = self._provider_factory()
        if provider is None:
            logger.info("Payout recovery skipped", reason="stripe provider not configured")
            return summary

        session = await self._ensure_session()
        async with session as managed_session:
            pipeline = WithdrawalPipeline(managed_session, provider=provider, notifier=self._notifier)
            stalled = await pipeline.list_stalled(limit=self._batch_size)
            for withdrawal_id in [withdrawal.id for withdrawal in stalled]:
                try:
                    settled = await pipeline.process(withdrawal_id)
                except OutcomeUnknownError:
                    summary["unresolved"] += 1
                except ExternalServiceError:
                    summary["restored"] += 1
                except CommerceError as exc:
                    summary["unresolved"] += 1
                    logger.warning(
                        "Stalled withdrawal could not be resumed",
                        withdrawal_id=str(withdrawal_id),
                        reason=exc.reason,
                        error=exc.message,
                    )
                else:
                    if settled.status == WithdrawalStatusEnum.PAID:
                        summary["paid"] += 1

        logger.info("Payout recovery sweep completed", **summary)
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - keep the loop alive
                logger.exception("Payout recovery iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["PayoutRecoveryWorker"]
