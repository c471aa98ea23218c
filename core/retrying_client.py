# core/retrying_client.py
"""Overload-aware retry wrapper around the generator client."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from config import settings
from core.errors import GeneratorOverloadedError, GeneratorUnavailableError
from core.usage import TokenUsage, TokenUsageTracker

if TYPE_CHECKING:  # pragma: no cover - type hint import
    from core.availability import AvailabilityMonitor

logger = structlog.get_logger(__name__)

GenerateFn = Callable[[str, str], Awaitable[tuple[str, TokenUsage | None]]]


class RetryingGeneratorClient:
    """Retry overloaded generator calls with capped exponential backoff.

    Only :class:`GeneratorOverloadedError` is retried. Every other error
    propagates on the first occurrence.
    """

    def __init__(
        self,
        generate: GenerateFn,
        model_id: str | None = None,
        max_retries: int = settings.GENERATOR_MAX_RETRIES,
        initial_delay: float = settings.GENERATOR_RETRY_INITIAL_DELAY_SECONDS,
        max_delay: float = settings.GENERATOR_RETRY_MAX_DELAY_SECONDS,
        availability: AvailabilityMonitor | None = None,
        availability_timeout: float = settings.AVAILABILITY_WAIT_TIMEOUT_SECONDS,
        token_tracker: TokenUsageTracker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._generate = generate
        self.model_id = model_id or settings.GENERATOR_MODEL or ""
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.availability = availability
        self.availability_timeout = availability_timeout
        self.token_tracker = token_tracker
        self._sleep = sleep

    def backoff_delay(self, retry: int) -> float:
        """Delay before retry number ``retry`` (0-based)."""
        return min(self.initial_delay * (2**retry), self.max_delay)

    async def _ensure_available(self) -> None:
        if self.availability is None:
            return
        if await self.availability.is_available():
            return
        logger.warning("Generator reported down; waiting before calling.")
        if not await self.availability.wait_for_availability(self.availability_timeout):
            raise GeneratorUnavailableError(
                f"Generator unavailable for {self.availability_timeout:.0f}s"
            )

    async def call(
        self, prompt: str, operation: str = "generation"
    ) -> tuple[str, TokenUsage | None]:
        """Generate text for ``prompt`` and record usage under ``operation``."""
        retry = 0
        while True:
            await self._ensure_available()
            try:
                text, usage = await self._generate(self.model_id, prompt)
            except GeneratorOverloadedError as e:
                if retry >= self.max_retries:
                    logger.error(
                        "Generator still overloaded after retries.",
                        operation=operation,
                        retries=retry,
                    )
                    raise
                delay = self.backoff_delay(retry)
                retry += 1
                logger.warning(
                    "Generator overloaded; backing off.",
                    operation=operation,
                    attempt=retry,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(e),
                )
                await self._sleep(delay)
                continue
            if self.token_tracker is not None:
                self.token_tracker.record(operation, usage)
            return text, usage
