"""Stateless text embedding built on feature hashing."""

from __future__ import annotations

import numpy as np
from scipy import sparse
from sklearn.feature_extraction.text import HashingVectorizer

from .base import ExtractionError

DEFAULT_TEXT_DIM = 512


class HashingTextExtractor:
    """Maps short texts to fixed-length, L2-normalised hashed n-gram vectors.

    The vectoriser holds no fitted state, so the extractor behaves like a
    frozen embedding model: the same text always yields the same vector.
    """

    def __init__(
        self,
        n_features: int = DEFAULT_TEXT_DIM,
        *,
        ngram_range: tuple[int, int] = (1, 2),
    ) -> None:
        if n_features < 1:
            raise ValueError("n_features must be positive")
        self._n_features = n_features
        self._vectorizer = HashingVectorizer(
            n_features=n_features,
            ngram_range=ngram_range,
            alternate_sign=False,
            norm="l2",
            lowercase=True,
        )

    @property
    def output_dim(self) -> int:
        return self._n_features

    def __call__(self, text: str) -> np.ndarray:
        return self.embed(text)

    def embed(self, text: str) -> np.ndarray:
        normalized = text.strip() if isinstance(text, str) else str(text or "").strip()
        if not normalized:
            raise ExtractionError("Cannot embed empty text.")
        matrix = self._vectorizer.transform([normalized])
        if sparse.issparse(matrix):
            matrix = matrix.toarray()
        return np.asarray(matrix[0], dtype=np.float32)


__all__ = ["DEFAULT_TEXT_DIM", "HashingTextExtractor"]
