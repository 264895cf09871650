"""Weighted ridge regression of run duration on machine features.

The model solves

    min  sum_i w_i (y_i - (b + z_i . beta))^2 + lambda * |beta|^2

in closed form, where ``z_i`` are Z-score normalized feature vectors and
``w_i`` the recency weights used by the aggregator. The intercept is not
penalized. Because the penalty makes the normal equations positive definite,
rank-deficient inputs (every sample from the same machine) still solve: the
constant features get zero coefficients and the intercept becomes the
weighted mean duration.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone

import numpy as np

from kairos.config import EstimationConfig
from kairos.core import normalizer
from kairos.core.aggregator import decay_weights
from kairos.core.fingerprint import FEATURE_SCHEMA_VERSION
from kairos.models import Sample, ServiceModel

logger = logging.getLogger("kairos.trainer")

# SS_tot below this is treated as "durations do not vary"
_SS_TOT_EPSILON = 1e-9


def _solve(design: np.ndarray, y: np.ndarray, w: np.ndarray, ridge_lambda: float) -> np.ndarray:
    penalty = ridge_lambda * np.eye(design.shape[1])
    penalty[0, 0] = 0.0
    weighted_t = design.T * w
    lhs = weighted_t @ design + penalty
    rhs = weighted_t @ y
    try:
        return np.linalg.solve(lhs, rhs)
    except np.linalg.LinAlgError:
        # Only reachable with ridge_lambda == 0 on degenerate data
        logger.warning("Singular normal equations; using least-squares solution")
        return np.linalg.lstsq(lhs, rhs, rcond=None)[0]


def weighted_r_squared(y: np.ndarray, predicted: np.ndarray, w: np.ndarray) -> float:
    """Weighted coefficient of determination, clamped to [0, 1]."""
    y_mean = float(np.average(y, weights=w))
    ss_tot = float(w @ (y - y_mean) ** 2)
    if ss_tot <= _SS_TOT_EPSILON:
        return 0.0
    ss_res = float(w @ (y - predicted) ** 2)
    return min(1.0, max(0.0, 1.0 - ss_res / ss_tot))


def train(
    samples: Sequence[Sample],
    now: datetime | None = None,
    config: EstimationConfig | None = None,
) -> ServiceModel | None:
    """Fit a ridge model on a service's samples.

    Returns None when fewer than ``min_training_samples`` samples exist.
    """
    cfg = config or EstimationConfig()
    now = now or datetime.now(timezone.utc)
    if len(samples) < cfg.min_training_samples:
        logger.debug(
            "Not enough samples to train (%d < %d)",
            len(samples), cfg.min_training_samples,
        )
        return None

    features = np.array([s.features for s in samples], dtype=float)
    y = np.array([s.duration_ms for s in samples], dtype=float)
    w = decay_weights((s.timestamp for s in samples), now, cfg.half_life_days)

    stats = normalizer.fit(features)
    z = normalizer.apply_many(features, stats)
    design = np.column_stack([np.ones(len(samples)), z])

    theta = _solve(design, y, w, cfg.ridge_lambda)
    r_squared = weighted_r_squared(y, design @ theta, w)

    model = ServiceModel(
        intercept=float(theta[0]),
        coefficients=tuple(float(c) for c in theta[1:]),
        sample_count=len(samples),
        normalization=stats,
        ridge_lambda=cfg.ridge_lambda,
        r_squared=round(r_squared, 6),
        feature_version=FEATURE_SCHEMA_VERSION,
        trained_at=now,
    )
    logger.info(
        "Trained model on %d samples (r2=%.3f, intercept=%.1fms)",
        model.sample_count, model.r_squared, model.intercept,
    )
    return model


def predict(
    model: ServiceModel, features: Sequence[float], min_estimate_ms: float = 1.0
) -> float:
    """Predicted duration in ms for a raw feature vector, floored at ``min_estimate_ms``."""
    z = np.asarray(normalizer.apply(features, model.normalization), dtype=float)
    value = model.intercept + float(z @ np.asarray(model.coefficients, dtype=float))
    if not np.isfinite(value):
        return min_estimate_ms
    return max(min_estimate_ms, value)
