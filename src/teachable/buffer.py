"""Committed feature vectors and the pending capture queue."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import numpy as np

from .tensors import Tensor, TensorTracker
from .types import PendingExample

LOGGER = logging.getLogger(__name__)


class ExampleBuffer:
    """Owns every feature vector collected during a session.

    Vectors are stored in commit order next to their class index. Raw captures
    recorded before the extractor is ready wait in a FIFO queue until flushed.
    """

    def __init__(self, tracker: TensorTracker) -> None:
        self._tracker = tracker
        self._vectors: list[Tensor] = []
        self._labels: list[int] = []
        self._pending: deque[PendingExample] = deque()

    def __len__(self) -> int:
        return len(self._vectors)

    @property
    def labels(self) -> tuple[int, ...]:
        return tuple(self._labels)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def commit(self, class_index: int, vector: Tensor) -> None:
        """Take ownership of a feature vector labelled with ``class_index``."""

        if vector.is_disposed:
            raise ValueError("Cannot commit a disposed tensor.")
        self._vectors.append(vector)
        self._labels.append(class_index)

    def enqueue(self, class_index: int, raw: Any) -> int:
        self._pending.append(PendingExample(class_index=class_index, raw=raw))
        return len(self._pending)

    def pop_pending(self) -> PendingExample | None:
        if not self._pending:
            return None
        return self._pending.popleft()

    def clear_class(self, class_index: int) -> tuple[int, int]:
        """Dispose one class's vectors and drop its pending captures.

        Returns ``(disposed_vectors, dropped_pending)``.
        """

        disposed = self._filter_vectors(lambda label: None if label == class_index else label)
        before = len(self._pending)
        self._pending = deque(item for item in self._pending if item.class_index != class_index)
        dropped = before - len(self._pending)
        LOGGER.debug(
            "Cleared class %s: %s vector(s) disposed, %s pending dropped",
            class_index,
            disposed,
            dropped,
        )
        return disposed, dropped

    def remove_class(self, class_index: int) -> tuple[int, int]:
        """Drop a class entirely and shift higher labels down by one."""

        def relabel(label: int) -> int | None:
            if label == class_index:
                return None
            return label - 1 if label > class_index else label

        disposed = self._filter_vectors(relabel)
        before = len(self._pending)
        remaining: deque[PendingExample] = deque()
        for item in self._pending:
            new_index = relabel(item.class_index)
            if new_index is None:
                continue
            remaining.append(PendingExample(class_index=new_index, raw=item.raw))
        self._pending = remaining
        return disposed, before - len(self._pending)

    @contextmanager
    def batch(self) -> Iterator[tuple[np.ndarray, np.ndarray]]:
        """Yield ``(inputs, labels)`` stacked into transient scoped tensors.

        Both tensors are released when the block exits, whatever the outcome.
        """

        if not self._vectors:
            raise ValueError("No committed examples to stack.")
        with self._tracker.scope() as scope:
            inputs = scope.stack(self._vectors)
            labels = scope.tensor(self._labels, dtype=np.int64)
            yield inputs.data, labels.data

    def dispose(self) -> int:
        """Release every committed vector and forget pending captures."""

        released = self._tracker.dispose_all(self._vectors)
        self._vectors = []
        self._labels = []
        self._pending.clear()
        return released

    def _filter_vectors(self, relabel: Callable[[int], int | None]) -> int:
        kept_vectors: list[Tensor] = []
        kept_labels: list[int] = []
        disposed = 0
        for vector, label in zip(self._vectors, self._labels):
            new_label = relabel(label)
            if new_label is None:
                vector.dispose()
                disposed += 1
                continue
            kept_vectors.append(vector)
            kept_labels.append(new_label)
        self._vectors = kept_vectors
        self._labels = kept_labels
        return disposed


__all__ = ["ExampleBuffer"]
