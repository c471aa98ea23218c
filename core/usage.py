# core/usage.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    """Generator token usage metrics."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def add(self, usage: TokenUsage | dict[str, int] | None) -> None:
        """Accumulate usage values from another instance or dictionary."""
        if not usage:
            return
        if isinstance(usage, TokenUsage):
            self.prompt_tokens += usage.prompt_tokens
            self.completion_tokens += usage.completion_tokens
        else:
            self.prompt_tokens += usage.get(
                "prompt_tokens", usage.get("input_tokens", 0)
            )
            self.completion_tokens += usage.get(
                "completion_tokens", usage.get("output_tokens", 0)
            )

    def __bool__(self) -> bool:
        return bool(self.prompt_tokens or self.completion_tokens)


class TokenUsageTracker:
    """Accumulate token usage across all phases of a run.

    Counters only ever grow. Access is guarded by a lock so callers on
    different threads or tasks can share one tracker.
    """

    def __init__(
        self,
        input_cost_per_million: float = 3.0,
        output_cost_per_million: float = 15.0,
    ) -> None:
        self._lock = threading.Lock()
        self._totals = TokenUsage()
        self._operation_totals: dict[str, TokenUsage] = {}
        self.input_cost_per_million = input_cost_per_million
        self.output_cost_per_million = output_cost_per_million

    def record(self, operation: str, usage: TokenUsage | dict[str, int] | None) -> None:
        """Record token usage for an operation."""
        if not usage:
            logger.debug("No usage reported for '%s'.", operation)
            return
        with self._lock:
            self._totals.add(usage)
            self._operation_totals.setdefault(operation, TokenUsage()).add(usage)
            total = self._totals.total_tokens
        logger.info(
            "Tokens from '%s' recorded. Total tokens this run: %s",
            operation,
            total,
        )

    @property
    def total_prompt_tokens(self) -> int:
        with self._lock:
            return self._totals.prompt_tokens

    @property
    def total_completion_tokens(self) -> int:
        with self._lock:
            return self._totals.completion_tokens

    @property
    def total_tokens(self) -> int:
        with self._lock:
            return self._totals.total_tokens

    def get_operation_usage(self, operation: str) -> TokenUsage:
        """Return a copy of the accumulated usage for ``operation``."""
        with self._lock:
            usage = self._operation_totals.get(operation, TokenUsage())
            return TokenUsage(usage.prompt_tokens, usage.completion_tokens)

    def estimated_cost(self, usage: TokenUsage | None = None) -> float:
        """Return the USD cost of ``usage`` or of the whole run."""
        if usage is None:
            with self._lock:
                usage = TokenUsage(
                    self._totals.prompt_tokens, self._totals.completion_tokens
                )
        return (
            usage.prompt_tokens / 1_000_000 * self.input_cost_per_million
            + usage.completion_tokens / 1_000_000 * self.output_cost_per_million
        )

    def format_usage(self, usage: TokenUsage | None = None) -> str:
        """Render usage as the text stored in metadata sections."""
        if usage is None:
            with self._lock:
                usage = TokenUsage(
                    self._totals.prompt_tokens, self._totals.completion_tokens
                )
        return (
            f"Prompt tokens: {usage.prompt_tokens}, "
            f"Completion tokens: {usage.completion_tokens}, "
            f"Total tokens: {usage.total_tokens}, "
            f"Estimated cost: ${self.estimated_cost(usage):.4f}"
        )
