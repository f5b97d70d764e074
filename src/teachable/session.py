"""Transfer-learning session tying capture, training and prediction together."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .buffer import ExampleBuffer
from .capture import CaptureController, CaptureSource
from .config import SessionSettings, TrainingConfig
from .extractors.base import FeatureExtractionAdapter
from .prediction import FrameClock, IntervalFrameClock, PredictionLoop
from .registry import ClassRegistry
from .tensors import TensorTracker
from .training import ProgressListener, TrainingOrchestrator
from .types import ClassLabel, CollectResult, ExtractorStatus, Phase, SessionState

LOGGER = logging.getLogger(__name__)

PredictionListener = Callable[[tuple[float, ...], float], None]


class TransferLearningSession:
    """Teach a small classifier from live examples and test it immediately.

    The host reads state through properties or :meth:`snapshot` and drives the
    session through its methods. Everything runs on one asyncio event loop.
    """

    def __init__(
        self,
        adapter: FeatureExtractionAdapter,
        source: CaptureSource | None = None,
        *,
        settings: SessionSettings | None = None,
        training: TrainingConfig | None = None,
        tracker: TensorTracker | None = None,
        clock: FrameClock | None = None,
        on_training_complete: Callable[[], None] | None = None,
    ) -> None:
        self._settings = settings or SessionSettings()
        self._adapter = adapter
        self._tracker = tracker or TensorTracker()
        self._on_training_complete = on_training_complete
        self._registry = ClassRegistry(name_template=self._settings.default_class_name)
        self._buffer = ExampleBuffer(self._tracker)
        self._capture = CaptureController(
            registry=self._registry,
            buffer=self._buffer,
            adapter=adapter,
            tracker=self._tracker,
            source=source,
            interval_seconds=self._settings.capture_interval,
            drain_yield=self._settings.drain_yield,
        )
        self._training = TrainingOrchestrator(
            registry=self._registry,
            buffer=self._buffer,
            adapter=adapter,
            capture=self._capture,
            defaults=(training or TrainingConfig()).validated(),
        )
        self._prediction = PredictionLoop(
            registry=self._registry,
            adapter=adapter,
            capture=self._capture,
            training=self._training,
            tracker=self._tracker,
            publish=self._publish_probabilities,
            clock=clock or IntervalFrameClock(self._settings.frame_rate),
            throttle_seconds=self._settings.prediction_throttle,
        )
        self._probabilities: list[float] = []
        self._phase = Phase.DATA
        self._closed = asyncio.Event()
        self._prediction_listeners: list[PredictionListener] = []

        self._registry.on_class_removed(self._handle_class_removed)
        self._adapter.on_status_change(self._handle_extractor_status)
        self._training.on_complete(self._handle_training_complete)

        for _ in range(self._settings.initial_classes):
            self.add_class()

    @property
    def classes(self) -> tuple[ClassLabel, ...]:
        return self._registry.classes

    @property
    def probabilities(self) -> tuple[float, ...]:
        return tuple(self._probabilities)

    @property
    def collecting_class_index(self) -> int | None:
        return self._capture.collecting_class_index

    @property
    def is_training(self) -> bool:
        return self._training.is_training

    @property
    def training_percent(self) -> int:
        return self._training.run.percent_complete

    @property
    def is_trained(self) -> bool:
        return self._training.is_trained

    @property
    def pending_example_count(self) -> int:
        return self._capture.pending_count

    @property
    def collect_blockers(self) -> tuple[str, ...]:
        reasons = []
        if self._training.is_training:
            reasons.append("training already in progress")
        reasons.extend(self._capture.collect_blockers())
        return tuple(reasons)

    @property
    def can_collect(self) -> bool:
        return not self.collect_blockers

    @property
    def can_train(self) -> bool:
        return not self._closed.is_set() and self._training.can_train

    @property
    def train_blockers(self) -> tuple[str, ...]:
        return tuple(self._training.blockers())

    @property
    def loss_history(self) -> tuple[float, ...]:
        return self._training.loss_history

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def last_prediction_at(self) -> float | None:
        return self._prediction.last_prediction_at

    @property
    def capture_error(self) -> str | None:
        return self._capture.capture_error

    @property
    def extractor_status(self) -> ExtractorStatus:
        return self._adapter.status

    @property
    def is_predicting(self) -> bool:
        return self._prediction.running

    @property
    def is_closed(self) -> bool:
        return self._closed.is_set()

    @property
    def adapter(self) -> FeatureExtractionAdapter:
        return self._adapter

    @property
    def tracker(self) -> TensorTracker:
        return self._tracker

    @property
    def capture(self) -> CaptureController:
        return self._capture

    @property
    def buffer(self) -> ExampleBuffer:
        return self._buffer

    @property
    def training(self) -> TrainingOrchestrator:
        return self._training

    def snapshot(self) -> SessionState:
        """Return a frozen copy of everything the host may display."""

        return SessionState(
            classes=self.classes,
            probabilities=self.probabilities,
            collecting_class_index=self.collecting_class_index,
            is_training=self.is_training,
            training_percent=self.training_percent,
            is_trained=self.is_trained,
            pending_example_count=self.pending_example_count,
            can_collect=self.can_collect,
            can_train=self.can_train,
            train_blockers=self.train_blockers,
            loss_history=self.loss_history,
            phase=self._phase,
            extractor_status=self.extractor_status,
            capture_error=self.capture_error,
            last_prediction_at=self.last_prediction_at,
        )

    def on_training_progress(self, callback: ProgressListener) -> None:
        self._training.on_progress(callback)

    def on_prediction(self, callback: PredictionListener) -> None:
        """Register a callback receiving every published (probabilities, timestamp)."""

        self._prediction_listeners.append(callback)

    def add_class(self) -> str:
        class_id = self._registry.add_class()
        self._probabilities.append(0.0)
        self._invalidate_classifier()
        return class_id

    def rename_class(self, index: int, name: str) -> None:
        self._registry.rename_class(index, name)

    def commit_class_name(self, index: int) -> str:
        return self._registry.commit_name(index)

    def clear_default_class_name(self, index: int) -> None:
        self._registry.clear_default_name(index)

    def remove_class(self, index: int) -> bool:
        return self._registry.remove_class(index)

    async def collect_example(self, class_index: int, raw: Any = None) -> CollectResult:
        """Capture one example, committing it or queueing it for later."""

        if self._training.is_training:
            return CollectResult(
                status="busy", class_index=class_index, reason="training already in progress"
            )
        result = await self._capture.collect_example(class_index, raw)
        if result.accepted:
            self._invalidate_classifier()
        return result

    async def start_collecting(self, class_index: int) -> bool:
        """Record examples for ``class_index`` until stopped."""

        self._registry.check_index(class_index)
        if self._closed.is_set():
            return False
        blockers = self.collect_blockers
        if blockers:
            LOGGER.warning("Cannot collect for class %s: %s", class_index, blockers[0])
            return False
        self._invalidate_classifier()
        return await self._capture.start_collecting(class_index)

    def stop_collecting(self) -> bool:
        return self._capture.stop_collecting()

    def clear_class_examples(self, class_index: int) -> int:
        """Dispose one class's examples; returns the number of vectors released."""

        self._registry.check_index(class_index)
        if self._capture.collecting_class_index == class_index:
            self._capture.stop_collecting()
        self._capture.class_cleared(class_index)
        disposed, dropped = self._buffer.clear_class(class_index)
        self._registry.set_count(class_index, 0)
        self._invalidate_classifier()
        LOGGER.info(
            "Cleared %s example(s) from '%s' (%s pending dropped)",
            disposed,
            self._registry.display_name(class_index),
            dropped,
        )
        return disposed

    async def flush_pending_examples(self) -> int:
        return await self._capture.flush_pending()

    async def train(self, config: TrainingConfig | None = None) -> bool:
        """Train a fresh classifier; False when blocked or when the fit fails."""

        if self._closed.is_set():
            return False
        try:
            return await self._training.train(config)
        finally:
            self._prediction.sync()

    def start_prediction(self) -> bool:
        return self._prediction.start()

    def stop_prediction(self) -> None:
        self._prediction.stop()

    async def predict(self, raw: Any) -> bool:
        """Classify ``raw`` now; the most recent call wins."""

        if self._closed.is_set():
            return False
        return await self._prediction.predict(raw)

    def set_phase(self, phase: Phase | str) -> None:
        phase = Phase(phase)
        if phase is not Phase.DATA:
            self._capture.stop_collecting()
        if phase is self._phase:
            return
        LOGGER.debug("Phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        if phase is Phase.TEST:
            self._prediction.start()
        else:
            self._prediction.stop()

    async def aclose(self) -> None:
        """Cancel every task, release vectors and classifier, drop the extractor lease."""

        if self._closed.is_set():
            return
        self._closed.set()
        await self._capture.aclose()
        await self._prediction.aclose()
        self._training.discard_classifier()
        released = self._buffer.dispose()
        self._adapter.remove_status_listener(self._handle_extractor_status)
        await self._adapter.close()
        LOGGER.info("Session closed (%s vector(s) released)", released)

    async def __aenter__(self) -> TransferLearningSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _handle_class_removed(self, index: int) -> None:
        self._capture.stop_collecting()
        self._capture.class_removed(index)
        disposed, dropped = self._buffer.remove_class(index)
        del self._probabilities[index]
        self._invalidate_classifier()
        LOGGER.debug(
            "Class %s removed: %s vector(s) disposed, %s pending dropped",
            index,
            disposed,
            dropped,
        )

    def _handle_extractor_status(self, status: ExtractorStatus) -> None:
        if status is ExtractorStatus.READY:
            self._capture.schedule_flush()
        elif status is ExtractorStatus.ERROR:
            LOGGER.error("Extractor unavailable: %s", self._adapter.error)

    def _handle_training_complete(self, _classifier: object) -> None:
        self._probabilities = [0.0] * len(self._registry)
        if self._on_training_complete is not None:
            self._on_training_complete()
        self.set_phase(Phase.TEST)

    def _publish_probabilities(self, probabilities: tuple[float, ...], timestamp: float) -> None:
        if len(probabilities) != len(self._registry):
            return
        self._probabilities = list(probabilities)
        for callback in list(self._prediction_listeners):
            callback(self.probabilities, timestamp)

    def _invalidate_classifier(self) -> None:
        if self._training.discard_classifier():
            LOGGER.debug("Trained classifier discarded")
        self._probabilities = [0.0] * len(self._registry)
        self._prediction.sync()


__all__ = ["TransferLearningSession"]
