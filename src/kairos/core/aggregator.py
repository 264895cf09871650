"""Outlier-resistant, recency-weighted duration statistics."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

import numpy as np

from kairos.config import EstimationConfig
from kairos.models import Confidence, PresetStats, Sample, ServiceStats

logger = logging.getLogger("kairos.aggregator")

_SECONDS_PER_DAY = 86_400.0


def decay_weights(
    timestamps: Iterable[datetime],
    now: datetime | None = None,
    half_life_days: float = 30.0,
) -> np.ndarray:
    """Weight each timestamp by ``0.5 ** (age_days / half_life_days)``.

    Weights are rescaled so the newest sample weighs 1.0; only ratios matter
    to a weighted mean, and the rescale keeps very old sets from underflowing
    to a zero total.
    """
    now = now or datetime.now(timezone.utc)
    ages = np.array(
        [max(0.0, (now - ts).total_seconds() / _SECONDS_PER_DAY) for ts in timestamps],
        dtype=float,
    )
    if ages.size == 0:
        return ages
    if half_life_days <= 0:
        return np.ones_like(ages)
    # Relative to the youngest sample: 0.5 ** ((age - min_age) / half_life)
    return np.power(0.5, (ages - ages.min()) / half_life_days)


def tukey_mask(values: np.ndarray, factor: float = 1.5) -> np.ndarray:
    """Boolean mask of values inside ``[Q1 - factor*IQR, Q3 + factor*IQR]``.

    Quartiles are nearest-rank (``sorted[n // 4]`` and ``sorted[3n // 4]``),
    so a single extreme value in a small set cannot drag Q3 towards itself.
    """
    ordered = np.sort(values)
    n = len(ordered)
    q1 = ordered[n // 4]
    q3 = ordered[(3 * n) // 4]
    iqr = q3 - q1
    return (values >= q1 - factor * iqr) & (values <= q3 + factor * iqr)


def robust_average(
    samples: Sequence[Sample],
    now: datetime | None = None,
    config: EstimationConfig | None = None,
) -> float | None:
    """Recency-weighted mean after Tukey filtering. None for no samples."""
    cfg = config or EstimationConfig()
    if not samples:
        return None

    durations = np.array([s.duration_ms for s in samples], dtype=float)
    timestamps = [s.timestamp for s in samples]

    if len(samples) >= cfg.min_outlier_samples:
        mask = tukey_mask(durations, cfg.outlier_iqr_factor)
        dropped = int((~mask).sum())
        if dropped:
            logger.debug("Dropped %d outlier durations of %d", dropped, len(samples))
        durations = durations[mask]
        timestamps = [ts for ts, keep in zip(timestamps, mask) if keep]

    # Scaled relative to the newest kept sample
    weights = decay_weights(timestamps, now, cfg.half_life_days)

    avg = float(np.average(durations, weights=weights))
    # Keep the mean inside the observed range despite float rounding
    return min(max(avg, float(durations.min())), float(durations.max()))


def compute_stats(
    service_id: str,
    samples: Sequence[Sample],
    now: datetime | None = None,
    config: EstimationConfig | None = None,
) -> ServiceStats | None:
    """Summarize a service's samples. Returns None when there are none."""
    if not samples:
        logger.debug("No samples for %s", service_id)
        return None

    durations = np.sort(np.array([s.duration_ms for s in samples], dtype=float))
    average = robust_average(samples, now, config)

    return ServiceStats(
        service_id=service_id,
        average_ms=average,
        min_ms=float(durations[0]),
        max_ms=float(durations[-1]),
        median_ms=float(np.median(durations)),
        sample_count=len(samples),
        std_dev_ms=float(np.std(durations)),
        confidence=Confidence.from_count(len(samples)),
    )


def compute_preset_stats(
    samples: Iterable[Sample],
    now: datetime | None = None,
    config: EstimationConfig | None = None,
) -> list[PresetStats]:
    """Per-preset statistics over every sample that carries a preset id."""
    by_preset: dict[str, list[Sample]] = {}
    for s in samples:
        if s.preset_id:
            by_preset.setdefault(s.preset_id, []).append(s)

    results = []
    for preset_id in sorted(by_preset):
        group = by_preset[preset_id]
        durations = [s.duration_ms for s in group]
        results.append(
            PresetStats(
                preset_id=preset_id,
                average_ms=robust_average(group, now, config),
                min_ms=min(durations),
                max_ms=max(durations),
                run_count=len(group),
                confidence=Confidence.from_count(len(group)),
            )
        )
    return results
