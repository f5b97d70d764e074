"""Uniform asynchronous contract over pluggable feature extractors."""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import numpy as np

from ..types import ExtractorStatus
from .shared import SharedResource

LOGGER = logging.getLogger(__name__)

StatusListener = Callable[[ExtractorStatus], None]
ExtractFunction = Callable[[Any], Any]


class ExtractionError(RuntimeError):
    """Raised when an extractor fails or yields an unusable vector."""


@runtime_checkable
class BatchModel(Protocol):
    """Frozen model that maps a batch of inputs to a batch of embeddings."""

    def predict(self, batch: np.ndarray) -> Any:
        """Return activations for ``batch`` (first axis is the batch)."""


def normalize_feature_output(output: Any) -> np.ndarray:
    """Coerce extractor output into a flat ``float32`` vector."""

    if output is None:
        raise ExtractionError("Extractor returned no output.")
    if isinstance(output, (list, tuple)) and output and not np.isscalar(output[0]):
        output = output[0]
    try:
        vector = np.asarray(output, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise ExtractionError(f"Extractor output is not numeric: {exc}") from exc
    vector = np.squeeze(vector)
    if vector.ndim == 0:
        vector = vector.reshape(1)
    if vector.ndim != 1:
        raise ExtractionError(f"Extractor output has shape {vector.shape}; expected a vector.")
    if vector.size == 0:
        raise ExtractionError("Extractor returned an empty vector.")
    if not np.all(np.isfinite(vector)):
        raise ExtractionError("Extractor output contains non-finite values.")
    return vector


class FeatureExtractionAdapter(ABC):
    """Owns extractor readiness and turns raw captures into feature vectors.

    Concrete adapters differ only in how they call the wrapped extractor;
    everything else (status transitions, output normalisation, pinning the
    output dimensionality) lives here.
    """

    kind: str = "abstract"

    def __init__(self, target: Any | None = None, *, output_dim: int | None = None) -> None:
        self._target = target
        self._output_dim = output_dim
        self._status = ExtractorStatus.READY if target is not None else ExtractorStatus.IDLE
        self._error: str | None = None
        self._listeners: list[StatusListener] = []
        self._lease: SharedResource[Any] | None = None

    @property
    def status(self) -> ExtractorStatus:
        return self._status

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def is_ready(self) -> bool:
        return self._status is ExtractorStatus.READY and self._target is not None

    @property
    def output_dim(self) -> int | None:
        return self._output_dim

    def on_status_change(self, callback: StatusListener) -> None:
        """Register a callback fired after every status transition."""

        self._listeners.append(callback)

    def remove_status_listener(self, callback: StatusListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def set_status(self, status: ExtractorStatus, error: str | None = None) -> None:
        """Record a status reported by the host (e.g. a model loaded elsewhere)."""

        status = ExtractorStatus(status)
        if status is ExtractorStatus.READY and self._target is None:
            raise ValueError("Cannot mark an adapter ready before it has an extractor.")
        changed = status is not self._status or error != self._error
        self._status = status
        self._error = error if status is ExtractorStatus.ERROR else None
        if not changed:
            return
        LOGGER.debug("Extractor (%s) status -> %s", self.kind, status.value)
        for callback in list(self._listeners):
            callback(status)

    def attach(self, target: Any) -> None:
        """Bind the extractor and mark the adapter ready."""

        self._target = target
        self.set_status(ExtractorStatus.READY)

    async def load(self, resource: SharedResource[Any]) -> bool:
        """Acquire a shared extractor; failures end in the ``error`` status."""

        self.set_status(ExtractorStatus.LOADING)
        try:
            target = await resource.acquire()
        except Exception as exc:
            LOGGER.exception("Failed to load extractor '%s'", resource.name)
            self.set_status(ExtractorStatus.ERROR, str(exc) or type(exc).__name__)
            return False
        await self._release_lease()
        self._lease = resource
        self.attach(target)
        return True

    async def close(self) -> None:
        """Give up the shared extractor lease, if any.

        An extractor bound with :meth:`attach` belongs to the caller and stays
        bound, so the adapter can serve another session.
        """

        if self._lease is None:
            return
        await self._release_lease()
        self._target = None
        if self._status is ExtractorStatus.READY:
            self._status = ExtractorStatus.IDLE

    async def extract(self, raw: Any) -> np.ndarray:
        """Return the feature vector for ``raw``.

        Raises ExtractionError when the adapter is not ready, the extractor
        fails, or the vector's length differs from earlier ones.
        """

        if not self.is_ready:
            raise ExtractionError(f"Extractor is not ready (status={self._status.value}).")
        try:
            output = await self._compute(self._target, raw)
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(f"Extractor failed: {exc}") from exc
        vector = normalize_feature_output(output)
        if self._output_dim is None:
            self._output_dim = int(vector.size)
        elif vector.size != self._output_dim:
            raise ExtractionError(
                f"Extractor produced {vector.size} features; expected {self._output_dim}."
            )
        return vector

    @abstractmethod
    async def _compute(self, target: Any, raw: Any) -> Any:
        """Invoke the wrapped extractor for a single raw capture."""

    async def _release_lease(self) -> None:
        lease = self._lease
        self._lease = None
        if lease is not None:
            await lease.release()


class BatchModelAdapter(FeatureExtractionAdapter):
    """Wraps a synchronous batch model such as an image embedding network."""

    kind = "batch"

    def __init__(
        self,
        model: BatchModel | None = None,
        *,
        preprocess: Callable[[Any], np.ndarray] | None = None,
        output_dim: int | None = None,
    ) -> None:
        super().__init__(model, output_dim=output_dim)
        self._preprocess = preprocess

    async def _compute(self, target: Any, raw: Any) -> Any:
        sample = self._preprocess(raw) if self._preprocess else np.asarray(raw, dtype=np.float32)
        batch = np.expand_dims(np.asarray(sample, dtype=np.float32), 0)
        activation = target.predict(batch)
        if isinstance(activation, (list, tuple)):
            activation = activation[0]
        return np.asarray(activation)[0]


class AsyncCallAdapter(FeatureExtractionAdapter):
    """Wraps a per-sample callable that may return a value or an awaitable."""

    kind = "call"

    def __init__(
        self,
        function: ExtractFunction | None = None,
        *,
        output_dim: int | None = None,
    ) -> None:
        super().__init__(function, output_dim=output_dim)

    async def _compute(self, target: Any, raw: Any) -> Any:
        outcome = target(raw)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome


ADAPTERS: dict[str, type[FeatureExtractionAdapter]] = {
    BatchModelAdapter.kind: BatchModelAdapter,
    AsyncCallAdapter.kind: AsyncCallAdapter,
}


def adapter_for(kind: str, target: Any | None = None, **options: Any) -> FeatureExtractionAdapter:
    """Build the adapter registered for ``kind`` ("batch" or "call")."""

    try:
        adapter_cls = ADAPTERS[kind]
    except KeyError as exc:
        known = ", ".join(sorted(ADAPTERS))
        raise ValueError(f"Unknown extractor kind '{kind}' (expected one of: {known}).") from exc
    return adapter_cls(target, **options)


__all__ = [
    "ADAPTERS",
    "AsyncCallAdapter",
    "BatchModel",
    "BatchModelAdapter",
    "ExtractionError",
    "FeatureExtractionAdapter",
    "adapter_for",
    "normalize_feature_output",
]
