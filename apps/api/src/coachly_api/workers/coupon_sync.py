"""Worker wiring for promo code expiry sweeps and Stripe coupon reconciliation."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from coachly_api.core.settings import settings
from coachly_api.services.billing.providers import StripeCommerceProvider
from coachly_api.services.promotions import CouponMirror, PromoCodeStore

SessionFactory = Callable[[], Awaitable[AsyncSession]] | Callable[[], AsyncSession]
ProviderFactory = Callable[[], StripeCommerceProvider | None]


def default_stripe_provider() -> StripeCommerceProvider | None:
    if not settings.stripe_secret_key:
        return None
    return StripeCommerceProvider.from_settings()


class CouponSyncWorker:
    """Periodically expires lapsed codes and retries pending coupon mirrors."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        provider_factory: ProviderFactory | None = None,
        interval_seconds: int | None = None,
        batch_size: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider_factory = provider_factory or default_stripe_provider
        self.interval_seconds = interval_seconds or settings.coupon_sync_interval_seconds
        self._batch_size = batch_size or settings.coupon_sync_batch_size
        self._max_attempts = max_attempts or settings.coupon_sync_max_attempts
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
            "Coupon sync worker started",
            interval_seconds=self.interval_seconds,
            batch_size=self._batch_size,
            max_attempts=self._max_attempts,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Coupon sync worker stopped")

    async def run_once(self) -> Dict[str, int]:
        """Expire lapsed codes, then push a batch of unsynced codes to Stripe."""

        provider = self._provider_factory()
        session = await self._ensure_session()
        async with session as managed_session:
            expired = await PromoCodeStore(managed_session).expire_lapsed()
            summary = await CouponMirror(managed_session, provider).sync_pending(
                limit=self._batch_size,
                max_attempts=self._max_attempts,
            )

        summary = {"expired": expired, **summary}
        logger.info("Coupon sync sweep completed", **summary)
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - keep the loop alive
                logger.exception("Coupon sync iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session


__all__ = ["CouponSyncWorker"]
