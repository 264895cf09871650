"""Z-score feature normalization shared by training and inference."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from kairos.core.fingerprint import NUM_FEATURES
from kairos.models import NormalizationStats

# Features whose spread is below this are left unscaled
STD_EPSILON = 1e-2


def fit(vectors: Sequence[Sequence[float]] | np.ndarray) -> NormalizationStats:
    """Per-feature mean and population standard deviation."""
    matrix = np.asarray(vectors, dtype=float)
    if matrix.size == 0:
        return NormalizationStats(
            means=(0.0,) * NUM_FEATURES,
            std_devs=(1.0,) * NUM_FEATURES,
        )
    means = matrix.mean(axis=0)
    stds = matrix.std(axis=0)
    stds = np.where(stds < STD_EPSILON, 1.0, stds)
    return NormalizationStats(
        means=tuple(float(v) for v in means),
        std_devs=tuple(float(v) for v in stds),
    )


def apply_many(
    vectors: Sequence[Sequence[float]] | np.ndarray, stats: NormalizationStats
) -> np.ndarray:
    """Normalize a matrix of feature vectors row by row."""
    matrix = np.asarray(vectors, dtype=float)
    means = np.asarray(stats.means, dtype=float)
    if matrix.shape[-1] != means.size:
        raise ValueError(
            f"Feature length {matrix.shape[-1]} does not match stats length {means.size}"
        )
    return (matrix - means) / np.asarray(stats.std_devs, dtype=float)


def apply(vector: Sequence[float], stats: NormalizationStats) -> tuple[float, ...]:
    """Normalize a single feature vector."""
    return tuple(float(v) for v in apply_many(vector, stats))
