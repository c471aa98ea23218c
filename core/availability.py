# core/availability.py
"""Background polling of generator availability."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

from config import settings

logger = structlog.get_logger(__name__)

Probe = Callable[[], Awaitable[bool | None]]


class AvailabilityMonitor:
    """Maintain an advisory "provider is up" flag.

    A background task calls ``probe`` every ``check_interval`` seconds while
    the provider is up and every ``down_interval`` seconds while it is down.
    Readers get the cached flag while it is younger than ``status_ttl`` and
    trigger a direct probe otherwise.
    """

    def __init__(
        self,
        probe: Probe,
        check_interval: float = settings.AVAILABILITY_CHECK_INTERVAL_SECONDS,
        down_interval: float = settings.AVAILABILITY_DOWN_CHECK_INTERVAL_SECONDS,
        status_ttl: float = settings.AVAILABILITY_STATUS_TTL_SECONDS,
        max_wait_delay: float = settings.AVAILABILITY_WAIT_MAX_DELAY_SECONDS,
    ) -> None:
        self._probe = probe
        self.check_interval = check_interval
        self.down_interval = down_interval
        self.status_ttl = status_ttl
        self.max_wait_delay = max_wait_delay
        self._available = True
        self._checked_at: float | None = None
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @property
    def last_known(self) -> bool:
        return self._available

    def _is_stale(self) -> bool:
        return (
            self._checked_at is None
            or time.monotonic() - self._checked_at > self.status_ttl
        )

    def mark(self, available: bool) -> None:
        if available != self._available:
            logger.info(
                "Generator availability changed.",
                available=available,
            )
        self._available = available
        self._checked_at = time.monotonic()

    async def check_now(self) -> bool:
        """Probe the provider directly and update the shared flag."""
        try:
            result = await self._probe()
        except Exception as e:  # probe failures are advisory only
            logger.warning("Availability probe raised.", error=str(e))
            result = None
        self.mark(result is True)
        return self._available

    async def is_available(self) -> bool:
        if self._is_stale():
            return await self.check_now()
        return self._available

    async def wait_for_availability(self, timeout: float) -> bool:
        """Wait until the provider is up; ``False`` if ``timeout`` elapses first."""
        deadline = time.monotonic() + timeout
        delay = 1.0
        while True:
            if await self.is_available():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("Timed out waiting for generator availability.")
                return False
            logger.info("Generator unavailable; waiting before re-check.", delay=delay)
            await asyncio.sleep(min(delay, remaining))
            # Force a fresh probe on the next iteration.
            self._checked_at = None
            delay = min(delay * 1.5, self.max_wait_delay)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            await self.check_now()
            interval = self.check_interval if self._available else self.down_interval
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
