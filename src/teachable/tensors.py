"""Tracked numeric buffers with scope-based release.

Every feature vector and every transient batch built during training or
prediction is wrapped in a :class:`Tensor` handle owned by a
:class:`TensorTracker`. Handles created inside ``tracker.scope()`` are
released when the block exits, on success and on error alike, unless they
were explicitly kept. ``live_count`` makes leaks observable.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

import numpy as np

LOGGER = logging.getLogger(__name__)


class TensorDisposedError(RuntimeError):
    """Raised when reading a tensor that has already been released."""


class Tensor:
    """Handle to a numpy array whose lifetime is managed explicitly."""

    __slots__ = ("_array", "_tracker", "_scope")

    def __init__(self, array: np.ndarray, tracker: TensorTracker) -> None:
        self._array: np.ndarray | None = array
        self._tracker = tracker
        self._scope: TensorScope | None = None

    @property
    def data(self) -> np.ndarray:
        if self._array is None:
            raise TensorDisposedError("Tensor has been disposed.")
        return self._array

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.data.shape)

    @property
    def is_disposed(self) -> bool:
        return self._array is None

    def dispose(self) -> None:
        """Release the underlying buffer. Repeated calls are ignored."""

        if self._array is None:
            return
        self._array = None
        if self._scope is not None:
            self._scope._forget(self)
            self._scope = None
        self._tracker._released(self)

    def __repr__(self) -> str:
        if self._array is None:
            return "Tensor(<disposed>)"
        return f"Tensor(shape={self._array.shape}, dtype={self._array.dtype})"


class TensorScope:
    """Collects tensors allocated inside a ``with tracker.scope()`` block."""

    def __init__(self, tracker: TensorTracker) -> None:
        self._tracker = tracker
        self._owned: list[Tensor] = []

    def tensor(self, values: Any, *, dtype: Any = np.float32) -> Tensor:
        return self._adopt(self._tracker._allocate(np.asarray(values, dtype=dtype)))

    def stack(self, tensors: Sequence[Tensor]) -> Tensor:
        """Stack 1-D tensors into a 2-D batch owned by this scope."""

        if not tensors:
            raise ValueError("Cannot stack an empty sequence of tensors.")
        batch = np.stack([item.data for item in tensors]).astype(np.float32, copy=False)
        return self._adopt(self._tracker._allocate(batch))

    def keep(self, tensor: Tensor) -> Tensor:
        """Detach a tensor from the scope so it survives the block."""

        self._forget(tensor)
        tensor._scope = None
        return tensor

    @property
    def owned(self) -> int:
        return len(self._owned)

    def _adopt(self, tensor: Tensor) -> Tensor:
        tensor._scope = self
        self._owned.append(tensor)
        return tensor

    def _forget(self, tensor: Tensor) -> None:
        try:
            self._owned.remove(tensor)
        except ValueError:
            pass

    def _close(self) -> None:
        while self._owned:
            self._owned[-1].dispose()


class TensorTracker:
    """Counts live tensors and hands out disposal scopes."""

    def __init__(self) -> None:
        self._live = 0

    @property
    def live_count(self) -> int:
        return self._live

    def tensor(self, values: Any, *, dtype: Any = np.float32) -> Tensor:
        """Allocate an unscoped tensor; the caller owns its disposal."""

        return self._allocate(np.asarray(values, dtype=dtype))

    @contextmanager
    def scope(self) -> Iterator[TensorScope]:
        scope = TensorScope(self)
        try:
            yield scope
        finally:
            scope._close()

    def dispose_all(self, tensors: Iterable[Tensor]) -> int:
        count = 0
        for tensor in tensors:
            if not tensor.is_disposed:
                tensor.dispose()
                count += 1
        return count

    def _allocate(self, array: np.ndarray) -> Tensor:
        self._live += 1
        return Tensor(array, self)

    def _released(self, _tensor: Tensor) -> None:
        self._live -= 1
        if self._live < 0:  # pragma: no cover - double release
            LOGGER.error("Tensor tracker live count went negative")


__all__ = ["Tensor", "TensorDisposedError", "TensorScope", "TensorTracker"]
