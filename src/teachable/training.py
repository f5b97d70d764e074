"""Training runs for the classifier head."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .buffer import ExampleBuffer
from .capture import CaptureController
from .classifier import Classifier
from .config import TrainingConfig
from .extractors.base import FeatureExtractionAdapter
from .registry import ClassRegistry
from .types import ExtractorStatus, TrainingRun, TrainingStatus

LOGGER = logging.getLogger(__name__)

ProgressListener = Callable[[TrainingRun], None]
CompletionListener = Callable[[Classifier], None]


class TrainingInterrupted(RuntimeError):
    """Raised inside a run when the classifier it builds has become stale."""


class TrainingOrchestrator:
    """Builds, fits and owns the session's single classifier."""

    def __init__(
        self,
        *,
        registry: ClassRegistry,
        buffer: ExampleBuffer,
        adapter: FeatureExtractionAdapter,
        capture: CaptureController,
        defaults: TrainingConfig | None = None,
    ) -> None:
        self._registry = registry
        self._buffer = buffer
        self._adapter = adapter
        self._capture = capture
        self._defaults = defaults or TrainingConfig()
        self._classifier: Classifier | None = None
        self._run = TrainingRun()
        self._is_training = False
        self._generation = 0
        self._progress_listeners: list[ProgressListener] = []
        self._complete_listeners: list[CompletionListener] = []

    @property
    def classifier(self) -> Classifier | None:
        return self._classifier

    @property
    def generation(self) -> int:
        """Bumped whenever the current classifier is replaced or discarded."""

        return self._generation

    @property
    def is_training(self) -> bool:
        return self._is_training

    @property
    def is_trained(self) -> bool:
        return self._classifier is not None

    @property
    def run(self) -> TrainingRun:
        return self._run

    @property
    def loss_history(self) -> tuple[float, ...]:
        return tuple(self._run.loss_history)

    @property
    def can_train(self) -> bool:
        return not self.blockers()

    def on_progress(self, callback: ProgressListener) -> None:
        self._progress_listeners.append(callback)

    def on_complete(self, callback: CompletionListener) -> None:
        self._complete_listeners.append(callback)

    def blockers(self) -> list[str]:
        """Human-readable reasons why a run cannot start, most urgent first."""

        reasons: list[str] = []
        if self._is_training:
            reasons.append("training already in progress")

        status = self._adapter.status
        if status is ExtractorStatus.LOADING:
            reasons.append("extractor is still loading")
        elif status is ExtractorStatus.ERROR:
            reasons.append(f"extractor failed to load: {self._adapter.error or 'unknown error'}")
        elif not self._adapter.is_ready:
            reasons.append("extractor not ready")

        if self._capture.capture_error:
            reasons.append(f"capture source unavailable: {self._capture.capture_error}")

        pending = self._capture.pending_count
        if pending:
            if self._adapter.is_ready:
                self._capture.schedule_flush()
            reasons.append(f"examples still processing ({pending})")

        if len(self._registry) < 2:
            reasons.append("at least two classes required")

        empty = self._registry.empty_class_names()
        if empty:
            reasons.append("empty classes: " + ", ".join(empty))
        return reasons

    def discard_classifier(self) -> bool:
        """Dispose the current classifier and invalidate any run in progress."""

        self._generation += 1
        classifier = self._classifier
        self._classifier = None
        if classifier is None:
            return False
        classifier.dispose()
        return True

    async def train(self, config: TrainingConfig | None = None) -> bool:
        """Fit a fresh classifier on every committed example.

        Examples queued for a ready extractor are drained first. Returns False
        when a blocker remains, and False after cleanup when the fit fails or
        is interrupted.
        """

        if not self._is_training and self._adapter.is_ready and self._capture.pending_count:
            await self._capture.flush_pending()

        blockers = self.blockers()
        if blockers:
            LOGGER.debug("Training not started: %s", "; ".join(blockers))
            return False

        settings = (config or self._defaults).validated()
        self._is_training = True
        run = TrainingRun(
            epochs=settings.epochs,
            batch_size=settings.batch_size,
            learning_rate=settings.learning_rate,
            status=TrainingStatus.RUNNING,
        )
        self._run = run
        classifier: Classifier | None = None
        succeeded = False
        LOGGER.info(
            "Training started (%s epochs, batch size %s, learning rate %s)",
            settings.epochs,
            settings.batch_size,
            settings.learning_rate,
        )

        try:
            self._capture.stop_collecting()
            await self._capture.wait_idle()
            await self._capture.flush_pending()
            self.discard_classifier()
            generation = self._generation

            num_classes = len(self._registry)
            if num_classes < 2 or self._registry.empty_class_names():
                raise TrainingInterrupted("class list changed before the fit started")

            with self._buffer.batch() as (inputs, labels):
                batch_size = max(1, min(settings.batch_size, int(labels.shape[0])))
                run.batch_size = batch_size
                classifier = Classifier(
                    int(inputs.shape[1]),
                    num_classes,
                    hidden_units=settings.hidden_units,
                    learning_rate=settings.learning_rate,
                    batch_size=batch_size,
                    random_state=settings.random_state,
                )
                for epoch in range(settings.epochs):
                    loss = classifier.fit_epoch(inputs, labels)
                    run.loss_history.append(loss)
                    run.percent_complete = round((epoch + 1) / settings.epochs * 100)
                    LOGGER.debug("Epoch %s/%s loss=%.4f", epoch + 1, settings.epochs, loss)
                    self._notify_progress(run)
                    await asyncio.sleep(0)
                    if generation != self._generation:
                        raise TrainingInterrupted("classifier was invalidated during the fit")
            succeeded = True
        except TrainingInterrupted as exc:
            LOGGER.info("Training abandoned: %s", exc)
        except Exception:
            LOGGER.exception("Training failed")
        finally:
            self._is_training = False
            if succeeded and classifier is not None:
                run.status = TrainingStatus.SUCCEEDED
                run.percent_complete = 100
                self._classifier = classifier
            else:
                run.status = TrainingStatus.FAILED
                if classifier is not None:
                    classifier.dispose()

        if not succeeded or classifier is None:
            return False
        LOGGER.info(
            "Training finished: %s classes, final loss %.4f",
            classifier.num_classes,
            run.loss_history[-1],
        )
        for callback in list(self._complete_listeners):
            callback(classifier)
        return True

    def _notify_progress(self, run: TrainingRun) -> None:
        for callback in list(self._progress_listeners):
            callback(run)


__all__ = ["TrainingInterrupted", "TrainingOrchestrator"]
