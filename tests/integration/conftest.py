from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest

Clusters = list[tuple[int, np.ndarray]]


def gaussian_clusters(
    rng: np.random.Generator, *, per_class: int, dims: int, spread: float = 3.0
) -> Clusters:
    """Return labelled samples from two well separated clusters.

    Class 0 is centred on ``-spread`` in every dimension, class 1 on ``+spread``.
    """

    samples: Clusters = []
    for label, centre in enumerate((-spread, spread)):
        points = rng.normal(loc=centre, scale=1.0, size=(per_class, dims))
        samples.extend((label, point.astype(np.float32)) for point in points)
    return samples


@pytest.fixture
def clusters() -> Callable[..., Clusters]:
    rng = np.random.default_rng(1234)

    def make(*, per_class: int, dims: int, spread: float = 3.0) -> Clusters:
        return gaussian_clusters(rng, per_class=per_class, dims=dims, spread=spread)

    return make


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically mark tests in this package as integration."""

    package_root = Path(__file__).resolve().parent
    integration_mark = pytest.mark.integration
    for item in items:
        try:
            path = Path(item.fspath).resolve()
        except OSError:
            continue
        if package_root in path.parents:
            item.add_marker(integration_mark)
