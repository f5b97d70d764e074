"""Throttled live inference on the latest capture."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

import numpy as np

from .capture import CaptureController
from .classifier import Classifier
from .extractors.base import ExtractionError, FeatureExtractionAdapter
from .registry import ClassRegistry
from .tensors import TensorTracker
from .training import TrainingOrchestrator

LOGGER = logging.getLogger(__name__)

Publisher = Callable[[tuple[float, ...], float], None]


class FrameClock(Protocol):
    """Source of per-frame callbacks, e.g. a display refresh."""

    async def next_frame(self) -> float:
        """Wait for the next frame and return its timestamp in seconds."""


class IntervalFrameClock:
    """Frame clock backed by the event loop timer."""

    def __init__(self, frame_rate: float = 60.0) -> None:
        if frame_rate <= 0:
            raise ValueError("frame_rate must be positive")
        self._period = 1.0 / frame_rate

    @property
    def period(self) -> float:
        return self._period

    async def next_frame(self) -> float:
        await asyncio.sleep(self._period)
        return asyncio.get_running_loop().time()


class PredictionLoop:
    """Runs extraction and inference at most once per throttle window.

    The loop only runs while live prediction is requested and a trained
    classifier exists outside a training run. Results computed by a
    classifier that was replaced meanwhile are dropped.
    """

    def __init__(
        self,
        *,
        registry: ClassRegistry,
        adapter: FeatureExtractionAdapter,
        capture: CaptureController,
        training: TrainingOrchestrator,
        tracker: TensorTracker,
        publish: Publisher,
        clock: FrameClock | None = None,
        throttle_seconds: float = 0.1,
    ) -> None:
        self._registry = registry
        self._adapter = adapter
        self._capture = capture
        self._training = training
        self._tracker = tracker
        self._publish = publish
        self._clock = clock or IntervalFrameClock()
        self._throttle = throttle_seconds
        self._requested = False
        self._closed = False
        self._task: asyncio.Task[None] | None = None
        self._in_flight: asyncio.Task[bool] | None = None
        self._last_prediction_at: float | None = None
        self._request_id = 0

    @property
    def requested(self) -> bool:
        return self._requested

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    @property
    def last_prediction_at(self) -> float | None:
        return self._last_prediction_at

    def should_run(self) -> bool:
        return (
            self._requested
            and not self._closed
            and self._training.classifier is not None
            and not self._training.is_training
        )

    def start(self) -> bool:
        self._requested = True
        return self.sync()

    def stop(self) -> None:
        self._requested = False
        self.sync()

    def sync(self) -> bool:
        """Start or cancel the frame task to match the current conditions."""

        if self.should_run():
            if not self.running:
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    LOGGER.debug("No running event loop; live prediction deferred")
                    return False
                self._task = loop.create_task(self._run())
                LOGGER.debug("Prediction loop started")
            return True
        self._cancel()
        return False

    def tick(self, now: float) -> bool:
        """Launch one prediction when the throttle window has passed."""

        if not self.should_run() or self.in_flight:
            return False
        last = self._last_prediction_at
        if last is not None and now - last <= self._throttle:
            return False
        self._in_flight = asyncio.get_running_loop().create_task(self._predict_latest(now))
        return True

    async def predict(self, raw: Any, now: float | None = None) -> bool:
        """Classify ``raw`` on demand; a newer request supersedes this one."""

        self._request_id += 1
        request_id = self._request_id
        timestamp = now if now is not None else asyncio.get_running_loop().time()
        if _is_empty(raw):
            self._publish(tuple(0.0 for _ in range(len(self._registry))), timestamp)
            return False
        classifier = self._training.classifier
        if classifier is None or self._closed:
            return False
        probabilities = await self._infer(classifier, self._training.generation, raw)
        if probabilities is None or request_id != self._request_id:
            return False
        self._deliver(probabilities, timestamp)
        return True

    async def aclose(self) -> None:
        self._closed = True
        self._requested = False
        tasks = [self._task, self._in_flight]
        self._task = None
        self._in_flight = None
        for task in tasks:
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        while self.should_run():
            now = await self._clock.next_frame()
            self.tick(now)
        LOGGER.debug("Prediction loop stopped")

    async def _predict_latest(self, now: float) -> bool:
        classifier = self._training.classifier
        if classifier is None:
            return False
        raw = self._capture.read_latest()
        if raw is None:
            return False
        probabilities = await self._infer(classifier, self._training.generation, raw)
        if probabilities is None or not self.should_run():
            return False
        self._deliver(probabilities, now)
        return True

    async def _infer(
        self, classifier: Classifier, generation: int, raw: Any
    ) -> tuple[float, ...] | None:
        try:
            vector = await self._adapter.extract(raw)
        except ExtractionError as exc:
            LOGGER.warning("Prediction skipped: %s", exc)
            return None
        if self._closed or generation != self._training.generation or classifier.is_disposed:
            LOGGER.debug("Discarding prediction from a replaced classifier")
            return None
        with self._tracker.scope() as scope:
            features = scope.tensor(vector)
            try:
                output = scope.tensor(classifier.predict(features.data))
            except (ValueError, RuntimeError):
                LOGGER.exception("Classifier inference failed")
                return None
            probabilities = tuple(float(value) for value in np.ravel(output.data))
        if len(probabilities) != len(self._registry):
            LOGGER.debug(
                "Discarding prediction with %s outputs for %s classes",
                len(probabilities),
                len(self._registry),
            )
            return None
        return probabilities

    def _deliver(self, probabilities: tuple[float, ...], timestamp: float) -> None:
        self._last_prediction_at = timestamp
        self._publish(probabilities, timestamp)

    def _cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        flight = self._in_flight
        if flight is not None and not flight.done() and flight is not _current_task():
            flight.cancel()
        self._in_flight = None


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def _is_empty(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, str):
        return not raw.strip()
    return False


__all__ = ["FrameClock", "IntervalFrameClock", "PredictionLoop"]
