"""Chunked persistence with per-item failure isolation."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")

_logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100
_MAX_FAILURE_SAMPLES = 20


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most *size* items."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass(frozen=True)
class BatchResult:
    """Aggregate outcome of :meth:`BatchProcessor.process`.

    ``updated + errors == total_size`` always holds.
    """

    updated: int = 0
    errors: int = 0
    total_size: int = 0
    chunks: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)


class BatchProcessor(Generic[T]):
    """Applies a write to every item, one chunk at a time.

    Each item is written individually so a bad row cannot take its
    neighbours down with it; a failing item is counted and logged and the
    loop moves on. Chunking bounds the number of outstanding writes per
    step. No state survives between calls.
    """

    def __init__(
        self,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        key: Callable[[T], str] = str,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk size must be >= 1, got {chunk_size}")
        self._chunk_size = chunk_size
        self._key = key

    async def process(
        self,
        items: Sequence[T],
        write_fn: Callable[[T], Awaitable[None]],
        chunk_size: int | None = None,
    ) -> BatchResult:
        size = self._chunk_size if chunk_size is None else chunk_size
        updated = 0
        errors = 0
        chunks = 0
        failures: list[tuple[str, str]] = []

        for index, chunk in enumerate(chunked(items, size), start=1):
            chunks += 1
            chunk_errors = 0
            for item in chunk:
                try:
                    await write_fn(item)
                except Exception as exc:
                    errors += 1
                    chunk_errors += 1
                    key = self._key(item)
                    if len(failures) < _MAX_FAILURE_SAMPLES:
                        failures.append((key, str(exc)))
                    _logger.debug("Write failed for %s", key, exc_info=True)
                else:
                    updated += 1
            if chunk_errors:
                _logger.warning("Chunk %d: %d/%d writes failed", index, chunk_errors, len(chunk))

        return BatchResult(
            updated=updated,
            errors=errors,
            total_size=len(items),
            chunks=chunks,
            failures=failures,
        )
