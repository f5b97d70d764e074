"""Capture-and-commit cycles for example collection."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .buffer import ExampleBuffer
from .extractors.base import ExtractionError, FeatureExtractionAdapter
from .registry import ClassRegistry
from .tensors import TensorTracker
from .types import CollectResult, ExtractorStatus

LOGGER = logging.getLogger(__name__)


class CaptureError(RuntimeError):
    """Raised by a capture source that cannot deliver a sample."""


@runtime_checkable
class CaptureSource(Protocol):
    """Supplies the latest raw sample (frame, audio snippet, text) on demand."""

    @property
    def is_ready(self) -> bool:
        """Return True once samples can be read."""

    def read(self) -> Any:
        """Return the most recent sample, or None when nothing is available."""


class LatestSampleSource:
    """Capture source fed by the host, e.g. from a camera callback."""

    def __init__(self, sample: Any = None) -> None:
        self._sample = sample
        self._error: str | None = None

    @property
    def is_ready(self) -> bool:
        return self._sample is not None

    def push(self, sample: Any) -> None:
        self._sample = sample
        self._error = None

    def fail(self, message: str) -> None:
        """Mark the device as unavailable; subsequent reads raise CaptureError."""

        self._error = message

    def read(self) -> Any:
        if self._error is not None:
            raise CaptureError(self._error)
        return self._sample


@dataclass
class _InFlight:
    """Class index of a capture whose extraction is still running."""

    class_index: int | None


class CaptureController:
    """Collects labelled examples, one at a time or on a fixed interval.

    At most one capture is in flight; overlapping requests are reported as
    ``busy`` and dropped instead of being queued twice.
    """

    def __init__(
        self,
        *,
        registry: ClassRegistry,
        buffer: ExampleBuffer,
        adapter: FeatureExtractionAdapter,
        tracker: TensorTracker,
        source: CaptureSource | None = None,
        interval_seconds: float = 0.2,
        drain_yield: bool = True,
    ) -> None:
        self._registry = registry
        self._buffer = buffer
        self._adapter = adapter
        self._tracker = tracker
        self._source = source
        self._interval = interval_seconds
        self._drain_yield = drain_yield
        self._capture_lock = asyncio.Lock()
        self._drain_lock = asyncio.Lock()
        self._in_flight: list[_InFlight] = []
        self._draining = 0
        self._collecting_index: int | None = None
        self._collect_token: object | None = None
        self._interval_task: asyncio.Task[None] | None = None
        self._flush_task: asyncio.Task[int] | None = None
        self._capture_error: str | None = None
        self._closed = False

    @property
    def collecting_class_index(self) -> int | None:
        return self._collecting_index

    @property
    def is_collecting(self) -> bool:
        return self._collecting_index is not None

    @property
    def pending_count(self) -> int:
        return self._buffer.pending_count + self._draining

    @property
    def capture_error(self) -> str | None:
        return self._capture_error

    @property
    def source(self) -> CaptureSource | None:
        return self._source

    @property
    def interval_task(self) -> asyncio.Task[None] | None:
        return self._interval_task

    def collect_blockers(self) -> list[str]:
        """Reasons why new captures cannot be taken right now."""

        blockers: list[str] = []
        if self._adapter.status is ExtractorStatus.ERROR:
            detail = f": {self._adapter.error}" if self._adapter.error else ""
            blockers.append(f"extractor failed to load{detail}")
        if self._capture_error:
            blockers.append(f"capture source unavailable: {self._capture_error}")
        elif self._source is not None and not self._source.is_ready:
            blockers.append("capture source not ready")
        if self._closed:
            blockers.append("session closed")
        return blockers

    async def collect_example(self, class_index: int, raw: Any = None) -> CollectResult:
        """Capture one example for ``class_index`` and commit or queue it."""

        if self._closed:
            return CollectResult(status="closed", class_index=class_index)
        if class_index < 0 or class_index >= len(self._registry):
            return CollectResult(
                status="invalid_class", class_index=class_index, reason="unknown class index"
            )
        if self._capture_lock.locked():
            LOGGER.debug("Capture already in flight; ignoring request for class %s", class_index)
            return CollectResult(
                status="busy", class_index=class_index, pending_count=self.pending_count
            )

        async with self._capture_lock:
            if raw is None:
                raw = self.read_latest()
                if raw is None:
                    return CollectResult(
                        status="no_capture",
                        class_index=class_index,
                        pending_count=self.pending_count,
                        reason=self._capture_error or "capture source not ready",
                    )

            if self._adapter.status is ExtractorStatus.ERROR:
                return CollectResult(
                    status="extractor_error",
                    class_index=class_index,
                    reason=self._adapter.error,
                )

            if not self._adapter.is_ready or self.pending_count or self._drain_lock.locked():
                pending = self._buffer.enqueue(class_index, raw)
                LOGGER.debug("Queued example for class %s (%s pending)", class_index, pending)
                if self._adapter.is_ready:
                    self.schedule_flush()
                return CollectResult(
                    status="queued", class_index=class_index, pending_count=self.pending_count
                )

            slot = _InFlight(class_index)
            self._in_flight.append(slot)
            try:
                vector = await self._adapter.extract(raw)
            except ExtractionError as exc:
                LOGGER.warning("Dropping example for class %s: %s", class_index, exc)
                return CollectResult(
                    status="extraction_error", class_index=class_index, reason=str(exc)
                )
            finally:
                self._in_flight.remove(slot)

            if self._closed or slot.class_index is None:
                LOGGER.debug("Discarding capture for class %s after invalidation", class_index)
                return CollectResult(status="discarded", class_index=class_index)

            self._commit(slot.class_index, vector)
            return CollectResult(
                status="committed",
                class_index=slot.class_index,
                pending_count=self.pending_count,
            )

    async def flush_pending(self) -> int:
        """Drain the pending queue in capture order; return committed count.

        Yields to the event loop after every item so a long backlog does not
        starve other tasks. A caller arriving mid-drain waits for it to end.
        """

        if not self._adapter.is_ready:
            return 0
        committed = 0
        async with self._drain_lock:
            while not self._closed and self._adapter.is_ready:
                item = self._buffer.pop_pending()
                if item is None:
                    break
                slot = _InFlight(item.class_index)
                self._in_flight.append(slot)
                self._draining += 1
                try:
                    vector = await self._adapter.extract(item.raw)
                except ExtractionError as exc:
                    LOGGER.warning(
                        "Dropping queued example for class %s: %s", item.class_index, exc
                    )
                    vector = None
                finally:
                    self._in_flight.remove(slot)
                    self._draining -= 1
                if vector is not None and slot.class_index is not None and not self._closed:
                    self._commit(slot.class_index, vector)
                    committed += 1
                if self._drain_yield:
                    await asyncio.sleep(0)
        if committed:
            LOGGER.info("Committed %s queued example(s)", committed)
        return committed

    async def wait_idle(self) -> None:
        """Return once no capture is extracting; its result is committed by then."""

        async with self._capture_lock:
            pass

    def schedule_flush(self) -> asyncio.Task[int] | None:
        """Start a background drain if a loop is running and work is queued."""

        if self._closed or not self._buffer.pending_count:
            return None
        if self._flush_task is not None and not self._flush_task.done():
            return self._flush_task
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("No running event loop; pending examples wait for an explicit flush")
            return None
        self._flush_task = loop.create_task(self.flush_pending())
        return self._flush_task

    async def start_collecting(self, class_index: int) -> bool:
        """Capture immediately, then keep capturing on the configured interval."""

        self.stop_collecting()
        if self._closed:
            return False
        token = object()
        self._collect_token = token
        self._collecting_index = class_index
        LOGGER.debug("Started collecting for class %s", class_index)

        await self.collect_example(class_index)

        if self._collect_token is not token or self._closed:
            return False
        self._interval_task = asyncio.get_running_loop().create_task(
            self._run_interval(class_index, token)
        )
        return True

    def stop_collecting(self) -> bool:
        """Cancel interval capture; returns False when nothing was active."""

        if self._collect_token is None and self._interval_task is None:
            return False
        task = self._interval_task
        self._interval_task = None
        self._collect_token = None
        if task is not None and not task.done():
            task.cancel()
        LOGGER.debug("Stopped collecting for class %s", self._collecting_index)
        self._collecting_index = None
        return True

    def class_removed(self, index: int) -> None:
        """Re-index in-flight captures after a class was removed."""

        for slot in self._in_flight:
            if slot.class_index is None:
                continue
            if slot.class_index == index:
                slot.class_index = None
            elif slot.class_index > index:
                slot.class_index -= 1

    def class_cleared(self, index: int) -> None:
        """Invalidate in-flight captures for a class whose examples were cleared."""

        for slot in self._in_flight:
            if slot.class_index == index:
                slot.class_index = None

    async def aclose(self) -> None:
        """Stop every capture task; in-flight results are discarded."""

        self._closed = True
        interval = self._interval_task
        self.stop_collecting()
        flush = self._flush_task
        self._flush_task = None
        for task in (interval, flush):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run_interval(self, class_index: int, token: object) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while self._collect_token is token:
            next_tick += self._interval
            delay = next_tick - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            else:
                next_tick = loop.time()
            if self._collect_token is not token:
                break
            await self.collect_example(class_index)

    def read_latest(self) -> Any:
        """Read the newest sample; a failing source is recorded in capture_error."""

        if self._source is None:
            return None
        if not self._source.is_ready:
            return None
        try:
            sample = self._source.read()
        except CaptureError as exc:
            if self._capture_error != str(exc):
                LOGGER.error("Capture source failed: %s", exc)
            self._capture_error = str(exc)
            return None
        self._capture_error = None
        return sample

    def _commit(self, class_index: int, vector: Any) -> None:
        tensor = self._tracker.tensor(vector)
        self._buffer.commit(class_index, tensor)
        self._registry.increment(class_index)


__all__ = ["CaptureController", "CaptureError", "CaptureSource", "LatestSampleSource"]
