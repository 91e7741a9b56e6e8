from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from typing import Protocol

from castline.config import Settings, get_settings
from castline.db.store import DocumentStore, Mutation
from castline.errors import NotFound, StoreError
from castline.types import ClassOutcome

logger = logging.getLogger(__name__)


class CancelToken(Protocol):
    def is_set(self) -> bool: ...


def packed(groups: Sequence[Sequence[Mutation]], size: int) -> Iterator[list[Sequence[Mutation]]]:
    """Pack mutation groups into chunks of at most ``size`` mutations.

    A group is never split across chunks.
    """
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    chunk: list[Sequence[Mutation]] = []
    count = 0
    for group in groups:
        if len(group) > size:
            raise ValueError(f"a group of {len(group)} mutations cannot fit in a batch of {size}")
        if chunk and count + len(group) > size:
            yield chunk
            chunk, count = [], 0
        chunk.append(group)
        count += len(group)
    if chunk:
        yield chunk


class BatchWriter:
    """Writes mutation lists as sequential store batches.

    Each chunk is one atomic store batch. A chunk that keeps failing after
    the configured retries stops the write: the remaining chunks are not
    attempted and are counted as failed. Chunks already committed stay
    committed. Cancellation is checked between chunks only.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.sleep = sleep
        self.max_batch_size = min(self.settings.max_batch_size, store.max_batch_size)

    def write(
        self,
        mutations: Sequence[Mutation],
        *,
        label: str,
        cancel: CancelToken | None = None,
    ) -> tuple[ClassOutcome, bool]:
        return self.write_groups([[mutation] for mutation in mutations], label=label, cancel=cancel)

    def write_groups(
        self,
        groups: Sequence[Sequence[Mutation]],
        *,
        label: str,
        cancel: CancelToken | None = None,
    ) -> tuple[ClassOutcome, bool]:
        """Like ``write``, but each group commits in the same batch.

        Counts on the outcome are in groups, not mutations.
        """
        outcome = ClassOutcome(total=len(groups))
        cancelled = False

        for index, chunk in enumerate(packed(groups, self.max_batch_size)):
            if cancel is not None and cancel.is_set():
                logger.warning("Write cancelled label=%s committed=%s total=%s", label, outcome.succeeded, outcome.total)
                cancelled = True
                break
            try:
                self._commit([mutation for group in chunk for mutation in group], label=label, index=index)
            except (StoreError, NotFound) as exc:
                outcome.error = str(exc)
                logger.error(
                    "Batch failed label=%s batch=%s committed=%s total=%s error=%s",
                    label,
                    index + 1,
                    outcome.succeeded,
                    outcome.total,
                    exc,
                )
                break
            outcome.succeeded += len(chunk)
            outcome.batches += 1

        outcome.failed = outcome.total - outcome.succeeded if outcome.error else 0
        return outcome, cancelled

    def _commit(self, chunk: list[Mutation], *, label: str, index: int) -> None:
        attempts = self.settings.cascade_retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                self.store.batch_write(chunk)
                return
            except StoreError as exc:
                if attempt >= attempts:
                    raise
                delay = self.settings.cascade_retry_backoff_sec * (2 ** (attempt - 1))
                logger.warning(
                    "Retrying batch label=%s batch=%s attempt=%s/%s delay=%.2fs error=%s",
                    label,
                    index + 1,
                    attempt,
                    attempts,
                    delay,
                    exc,
                )
                self.sleep(delay)
