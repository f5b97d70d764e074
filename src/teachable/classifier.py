"""Small dense classifier head trained on extracted feature vectors."""

from __future__ import annotations

import logging

import numpy as np
from sklearn.neural_network import MLPClassifier

from .config import DEFAULT_HIDDEN_UNITS, DEFAULT_LEARNING_RATE

LOGGER = logging.getLogger(__name__)


class ClassifierDisposedError(RuntimeError):
    """Raised when a disposed classifier is used."""


class Classifier:
    """One hidden ReLU layer followed by a softmax over the class count.

    Training happens one epoch at a time through :meth:`fit_epoch` so the
    caller can report progress and yield between epochs.
    """

    def __init__(
        self,
        input_dim: int,
        num_classes: int,
        *,
        hidden_units: int = DEFAULT_HIDDEN_UNITS,
        learning_rate: float = DEFAULT_LEARNING_RATE,
        batch_size: int = 16,
        random_state: int | None = None,
    ) -> None:
        if input_dim < 1:
            raise ValueError("input_dim must be positive")
        if num_classes < 2:
            raise ValueError("a classifier needs at least two classes")
        self.input_dim = input_dim
        self.num_classes = num_classes
        self._classes = np.arange(num_classes)
        self._model: MLPClassifier | None = MLPClassifier(
            hidden_layer_sizes=(hidden_units,),
            activation="relu",
            solver="adam",
            alpha=0.0,
            learning_rate_init=learning_rate,
            batch_size=batch_size,
            shuffle=True,
            random_state=random_state,
        )
        self._epochs = 0

    @property
    def is_disposed(self) -> bool:
        return self._model is None

    def fit_epoch(self, inputs: np.ndarray, labels: np.ndarray) -> float:
        """Run one pass over the data and return the epoch's loss."""

        model = self._require_model()
        inputs = self._check_inputs(inputs)
        labels = np.asarray(labels, dtype=np.int64)
        if labels.shape[0] != inputs.shape[0]:
            raise ValueError("inputs and labels differ in length")
        if self._epochs == 0:
            model.partial_fit(inputs, labels, classes=self._classes)
        else:
            model.partial_fit(inputs, labels)
        self._epochs += 1
        return float(model.loss_)

    def predict(self, vector: np.ndarray) -> np.ndarray:
        """Return class probabilities for a single feature vector."""

        model = self._require_model()
        if self._epochs == 0:
            raise RuntimeError("classifier has not been trained")
        batch = self._check_inputs(np.asarray(vector, dtype=np.float32).reshape(1, -1))
        probabilities = model.predict_proba(batch)[0]
        return np.asarray(probabilities, dtype=np.float32)

    def dispose(self) -> None:
        if self._model is None:
            return
        self._model = None
        LOGGER.debug("Disposed classifier (%s classes)", self.num_classes)

    def _require_model(self) -> MLPClassifier:
        if self._model is None:
            raise ClassifierDisposedError("Classifier has been disposed.")
        return self._model

    def _check_inputs(self, inputs: np.ndarray) -> np.ndarray:
        matrix = np.asarray(inputs, dtype=np.float32)
        if matrix.ndim != 2 or matrix.shape[1] != self.input_dim:
            raise ValueError(
                f"expected inputs of shape (n, {self.input_dim}), got {matrix.shape}"
            )
        return matrix


__all__ = ["Classifier", "ClassifierDisposedError"]
