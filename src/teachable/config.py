"""Configuration loading and validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/teachable/config.yaml")
DEFAULT_ROOT_DIR = Path("~/.local/share/teachable")
DEFAULT_LOG_LEVEL = "info"
DEFAULT_CLASS_NAME = "Class {n}"
DEFAULT_CAPTURE_INTERVAL_MS = 200
DEFAULT_PREDICTION_THROTTLE_MS = 100
DEFAULT_FRAME_RATE = 60.0
DEFAULT_EPOCHS = 50
DEFAULT_BATCH_SIZE = 16
DEFAULT_LEARNING_RATE = 0.001
DEFAULT_HIDDEN_UNITS = 128


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    debug_file: bool = False


@dataclass(frozen=True)
class TrainingConfig:
    """Hyper-parameters for a single training run."""

    epochs: int = DEFAULT_EPOCHS
    batch_size: int = DEFAULT_BATCH_SIZE
    learning_rate: float = DEFAULT_LEARNING_RATE
    hidden_units: int = DEFAULT_HIDDEN_UNITS
    random_state: int | None = None

    def validated(self) -> TrainingConfig:
        """Return self, raising ConfigError for unusable values."""

        if self.epochs < 1:
            raise ConfigError("training.epochs must be at least 1.")
        if self.batch_size < 1:
            raise ConfigError("training.batch_size must be at least 1.")
        if not self.learning_rate > 0:
            raise ConfigError("training.learning_rate must be positive.")
        if self.hidden_units < 1:
            raise ConfigError("training.hidden_units must be at least 1.")
        return self

    def with_overrides(self, **overrides: Any) -> TrainingConfig:
        """Return a copy with every non-None override applied."""

        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes).validated()


@dataclass(frozen=True)
class SessionSettings:
    """Timing and naming behaviour of a transfer-learning session."""

    capture_interval_ms: int = DEFAULT_CAPTURE_INTERVAL_MS
    prediction_throttle_ms: int = DEFAULT_PREDICTION_THROTTLE_MS
    frame_rate: float = DEFAULT_FRAME_RATE
    drain_yield: bool = True
    default_class_name: str = DEFAULT_CLASS_NAME
    initial_classes: int = 1

    @property
    def capture_interval(self) -> float:
        return self.capture_interval_ms / 1000.0

    @property
    def prediction_throttle(self) -> float:
        return self.prediction_throttle_ms / 1000.0


@dataclass(frozen=True)
class Config:
    """Fully parsed configuration."""

    root_dir: Path = field(default_factory=lambda: DEFAULT_ROOT_DIR.expanduser())
    session: SessionSettings = field(default_factory=SessionSettings)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: Path | str | None = None) -> Config:
    """Load and validate configuration from YAML.

    An explicitly requested file (argument or ``$TEACHABLE_CONFIG``) must exist.
    When neither is given and the default location holds no file, built-in
    defaults are returned.
    """

    config_path, explicit = _resolve_config_path(path)
    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        LOGGER.debug("No config file at %s; using defaults", config_path)
        return Config()

    with config_path.open("r", encoding="utf-8") as handle:
        try:
            raw = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping.")

    return _parse_config(raw)


def resolved_config_path(path: Path | str | None = None) -> Path:
    """Return the path load_config would read."""

    return _resolve_config_path(path)[0]


def _resolve_config_path(explicit: Path | str | None) -> tuple[Path, bool]:
    if explicit:
        return Path(explicit).expanduser(), True
    env_path = os.environ.get("TEACHABLE_CONFIG")
    if env_path:
        return Path(env_path).expanduser(), True
    return DEFAULT_CONFIG_PATH.expanduser(), False


def _parse_config(raw: dict[str, Any]) -> Config:
    root_dir = Path(raw.get("root_dir") or raw.get("rootdir") or DEFAULT_ROOT_DIR).expanduser()
    return Config(
        root_dir=root_dir,
        session=_parse_session(raw.get("session")),
        training=_parse_training(raw.get("training")),
        logging=_parse_logging(raw.get("logging")),
    )


def _parse_session(value: Any) -> SessionSettings:
    if value is None:
        return SessionSettings()
    if not isinstance(value, dict):
        raise ConfigError("session must be a mapping.")

    name_template = value.get("default_class_name", DEFAULT_CLASS_NAME)
    if not isinstance(name_template, str) or not name_template.strip():
        raise ConfigError("session.default_class_name must be a non-empty string.")
    try:
        name_template.format(n=1)
    except (KeyError, IndexError, ValueError) as exc:
        raise ConfigError(
            "session.default_class_name may only reference the '{n}' placeholder."
        ) from exc

    settings = SessionSettings(
        capture_interval_ms=_positive_int(
            value.get("capture_interval_ms", DEFAULT_CAPTURE_INTERVAL_MS),
            "session.capture_interval_ms",
        ),
        prediction_throttle_ms=_non_negative_int(
            value.get("prediction_throttle_ms", DEFAULT_PREDICTION_THROTTLE_MS),
            "session.prediction_throttle_ms",
        ),
        frame_rate=_positive_float(
            value.get("frame_rate", DEFAULT_FRAME_RATE), "session.frame_rate"
        ),
        drain_yield=bool(value.get("drain_yield", True)),
        default_class_name=name_template,
        initial_classes=_non_negative_int(
            value.get("initial_classes", 1), "session.initial_classes"
        ),
    )
    return settings


def _parse_training(value: Any) -> TrainingConfig:
    if value is None:
        return TrainingConfig()
    if not isinstance(value, dict):
        raise ConfigError("training must be a mapping.")

    random_state = value.get("random_state")
    if random_state is not None and (
        isinstance(random_state, bool) or not isinstance(random_state, int)
    ):
        raise ConfigError("training.random_state must be an integer or null.")

    config = TrainingConfig(
        epochs=_positive_int(value.get("epochs", DEFAULT_EPOCHS), "training.epochs"),
        batch_size=_positive_int(
            value.get("batch_size", DEFAULT_BATCH_SIZE), "training.batch_size"
        ),
        learning_rate=_positive_float(
            value.get("learning_rate", DEFAULT_LEARNING_RATE), "training.learning_rate"
        ),
        hidden_units=_positive_int(
            value.get("hidden_units", DEFAULT_HIDDEN_UNITS), "training.hidden_units"
        ),
        random_state=random_state,
    )
    return config.validated()


def _parse_logging(value: Any) -> LoggingConfig:
    if value is None:
        return LoggingConfig()
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).lower()
    debug_file = bool(value.get("debug_file", False))
    return LoggingConfig(level=level, debug_file=debug_file)


def _positive_int(value: Any, field_name: str) -> int:
    number = _non_negative_int(value, field_name)
    if number < 1:
        raise ConfigError(f"{field_name} must be at least 1.")
    return number


def _non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{field_name} must be an integer.")
    if value < 0:
        raise ConfigError(f"{field_name} cannot be negative.")
    return value


def _positive_float(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{field_name} must be a number.")
    number = float(value)
    if not number > 0:
        raise ConfigError(f"{field_name} must be positive.")
    return number


__all__ = [
    "Config",
    "ConfigError",
    "LoggingConfig",
    "SessionSettings",
    "TrainingConfig",
    "load_config",
    "resolved_config_path",
]
