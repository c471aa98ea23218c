# storage/summary_cache.py
"""Disk cache of temporary summaries keyed by a context fingerprint."""

from __future__ import annotations

import hashlib
import os
from collections.abc import Awaitable, Callable
from datetime import datetime

import structlog
from pydantic import ValidationError

from core.errors import ProjectIOError, SerializationError
from models import TemporarySummary
from storage.file_manager import read_text, write_text_atomic

logger = structlog.get_logger(__name__)

FULL_HASH_LIMIT = 2000
EDGE_LENGTH = 1000


def hash_context(context: str) -> str:
    """Return a bounded-cost fingerprint of ``context``.

    Strings up to ``FULL_HASH_LIMIT`` characters are hashed whole. Longer
    strings hash only their length plus the first and last ``EDGE_LENGTH``
    characters, so edits confined to the middle do not change the result.
    """
    if len(context) <= FULL_HASH_LIMIT:
        payload = context
    else:
        payload = f"{len(context)}\x00{context[:EDGE_LENGTH]}\x00{context[-EDGE_LENGTH:]}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ContentAddressedCache:
    """Serve cached summaries while their source context is unchanged."""

    def __init__(self, cache_dir: str) -> None:
        self.cache_dir = cache_dir
        self.hits = 0
        self.misses = 0
        os.makedirs(cache_dir, exist_ok=True)

    def entry_path(self, prefix: str, index: int) -> str:
        return os.path.join(self.cache_dir, f"summary_{prefix}_{index}.json")

    def load(self, prefix: str, index: int) -> TemporarySummary | None:
        """Return the stored entry, or ``None`` when absent or unreadable."""
        path = self.entry_path(prefix, index)
        try:
            raw = read_text(path)
        except ProjectIOError as e:
            logger.warning("Cache entry unreadable.", path=path, error=str(e))
            return None
        if raw is None:
            return None
        try:
            return self._decode(raw, path)
        except SerializationError as e:
            logger.warning("Corrupt cache entry; recomputing.", path=path, error=str(e))
            return None

    @staticmethod
    def _decode(raw: str, path: str) -> TemporarySummary:
        try:
            return TemporarySummary.model_validate_json(raw)
        except ValidationError as e:
            raise SerializationError(f"{path}: {e}") from e

    def store(self, prefix: str, index: int, summary: TemporarySummary) -> None:
        write_text_atomic(self.entry_path(prefix, index), summary.model_dump_json(indent=2))

    @staticmethod
    def is_fresh(entry: TemporarySummary, ttl: float | None) -> bool:
        if not ttl:
            return True
        age = (datetime.now() - entry.created_at).total_seconds()
        return age <= ttl

    async def get_or_compute(
        self,
        prefix: str,
        index: int,
        context: str,
        ttl: float | None,
        compute: Callable[[str], Awaitable[str]],
    ) -> TemporarySummary:
        """Return the cached summary for ``context`` or compute and store one.

        A ``ttl`` of ``None`` or ``0`` means entries never expire.
        """
        context_hash = hash_context(context)
        entry = self.load(prefix, index)
        if entry is not None:
            if entry.context_hash != context_hash:
                logger.info("Summary cache miss: context changed.", prefix=prefix, index=index)
            elif not self.is_fresh(entry, ttl):
                logger.info("Summary cache miss: entry expired.", prefix=prefix, index=index)
            else:
                self.hits += 1
                logger.info("Summary cache hit.", prefix=prefix, index=index)
                return entry
        else:
            logger.info("Summary cache miss: no entry.", prefix=prefix, index=index)

        self.misses += 1
        summary_text = await compute(context)
        fresh = TemporarySummary(summary=summary_text, context_hash=context_hash)
        self.store(prefix, index, fresh)
        return fresh
