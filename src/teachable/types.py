"""Core data structures shared by the transfer-learning session."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ExtractorStatus(str, Enum):
    """Lifecycle of a feature extractor."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class TrainingStatus(str, Enum):
    """Outcome of the most recent training run."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Phase(str, Enum):
    """Screen-level phase the host is currently showing."""

    DATA = "data"
    TRAIN = "train"
    TEST = "test"


@dataclass(frozen=True)
class ClassLabel:
    """A user-defined class and its committed example count."""

    id: str
    name: str
    example_count: int = 0


@dataclass(frozen=True)
class PendingExample:
    """Raw capture waiting for the extractor to become ready."""

    class_index: int
    raw: Any


@dataclass(frozen=True)
class CollectResult:
    """Outcome of a single capture-and-commit attempt."""

    status: str
    class_index: int
    pending_count: int = 0
    reason: str | None = None

    @property
    def accepted(self) -> bool:
        return self.status in ("committed", "queued")


@dataclass
class TrainingRun:
    """Mutable record of the current or most recent training run."""

    epochs: int = 0
    batch_size: int = 0
    learning_rate: float = 0.0
    percent_complete: int = 0
    status: TrainingStatus = TrainingStatus.IDLE
    loss_history: list[float] = field(default_factory=list)


@dataclass(frozen=True)
class SessionState:
    """Read-only snapshot of everything the host may display."""

    classes: tuple[ClassLabel, ...]
    probabilities: tuple[float, ...]
    collecting_class_index: int | None
    is_training: bool
    training_percent: int
    is_trained: bool
    pending_example_count: int
    can_collect: bool
    can_train: bool
    train_blockers: tuple[str, ...]
    loss_history: tuple[float, ...]
    phase: Phase
    extractor_status: ExtractorStatus
    capture_error: str | None
    last_prediction_at: float | None


__all__ = [
    "ClassLabel",
    "CollectResult",
    "ExtractorStatus",
    "PendingExample",
    "Phase",
    "SessionState",
    "TrainingRun",
    "TrainingStatus",
]
