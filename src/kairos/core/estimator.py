"""Duration estimation: trained model first, robust average as fallback."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from kairos.config import EstimationConfig, KairosConfig
from kairos.core import aggregator, trainer
from kairos.core.fingerprint import to_feature_vector
from kairos.core.probe import capture_fingerprint
from kairos.core.store import MetricsStore, model_key
from kairos.models import (
    Confidence,
    EstimateResult,
    EstimateSource,
    MachineFingerprint,
    PresetStats,
    RecordResult,
    ServiceModel,
    ServiceStats,
)

logger = logging.getLogger("kairos.estimator")


def compute_options_hash(options: Mapping[str, Any]) -> str:
    """Stable short digest of a service's option settings.

    Key order does not matter; values must be JSON serializable.
    """
    canonical = json.dumps(options, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


class DurationEstimator:
    """Records service run times and estimates future ones.

    The store is owned by the caller and injected here; the estimator keeps
    no state of its own besides configuration.
    """

    def __init__(
        self,
        store: MetricsStore,
        config: EstimationConfig | None = None,
        probe: Callable[[], MachineFingerprint] | None = None,
    ) -> None:
        self._store = store
        self._config = config or EstimationConfig()
        self._probe = probe or capture_fingerprint

    @classmethod
    def from_config(cls, store: MetricsStore, config: KairosConfig) -> DurationEstimator:
        """Estimator whose probe samples CPU load over the configured interval."""
        interval = config.probe.cpu_sample_interval
        return cls(
            store,
            config.estimation,
            probe=lambda: capture_fingerprint(cpu_interval=interval),
        )

    @property
    def store(self) -> MetricsStore:
        return self._store

    def current_fingerprint(self) -> MachineFingerprint:
        return self._probe()

    # --- Recording & training ---

    def record(
        self,
        service_id: str,
        duration_ms: float,
        fingerprint: MachineFingerprint | None = None,
        preset_id: str | None = None,
        options_hash: str | None = None,
        timestamp: datetime | None = None,
    ) -> RecordResult:
        """Store a completed run and retrain the service once a batch is full."""
        fp = fingerprint if fingerprint is not None else self._probe()
        with self._store.service_lock(service_id):
            due = self._store.append_sample(
                service_id, duration_ms, fp,
                preset_id=preset_id, options_hash=options_hash, timestamp=timestamp,
            )
            sample = self._store.snapshot(service_id)[-1]
            model = self._train_service(service_id) if due else None
        return RecordResult(sample=sample, retrain_due=due, model=model)

    def _train_service(self, service_id: str) -> ServiceModel | None:
        """Train the service model plus one model per options variant.

        Caller must hold the service lock.
        """
        samples = self._store.snapshot(service_id)
        now = datetime.now(timezone.utc)

        base = trainer.train(samples, now, self._config)
        if base is None:
            logger.debug("Not enough data to train %s (%d samples)", service_id, len(samples))
            return None

        models = {model_key(service_id): base}
        variants = sorted({s.options_hash for s in samples if s.options_hash})
        for options_hash in variants:
            subset = [s for s in samples if s.options_hash == options_hash]
            variant = trainer.train(subset, now, self._config)
            if variant is not None:
                models[model_key(service_id, options_hash)] = variant

        self._store.commit_models(service_id, models)
        logger.info("Retrained %s (%d model(s))", service_id, len(models))
        return base

    def train(self, service_id: str) -> ServiceModel | None:
        """Retrain one service now. None when it has too few samples."""
        with self._store.service_lock(service_id):
            return self._train_service(service_id)

    def retrain(self, service_id: str | None = None) -> int:
        """Force retraining of one service or of all. Returns models trained."""
        service_ids = [service_id] if service_id else self._store.service_ids()
        return sum(1 for sid in service_ids if self.train(sid) is not None)

    # --- Queries ---

    def _with_model(
        self, stats: ServiceStats, model: ServiceModel | None, fp: MachineFingerprint | None
    ) -> ServiceStats:
        if model is None:
            return stats
        estimated = None
        if fp is not None:
            estimated = trainer.predict(
                model, to_feature_vector(fp), self._config.min_estimate_ms
            )
        return replace(stats, estimated_ms=estimated, model_quality=model.r_squared)

    def compute_stats(
        self, service_id: str, fingerprint: MachineFingerprint | None = None
    ) -> ServiceStats | None:
        """Stats for one service; None when it has no samples."""
        stats = aggregator.compute_stats(
            service_id, self._store.snapshot(service_id), config=self._config
        )
        if stats is None:
            return None
        return self._with_model(stats, self._store.get_model(service_id), fingerprint)

    def compute_all_stats(
        self, fingerprint: MachineFingerprint | None = None
    ) -> list[ServiceStats]:
        results = []
        for sid in self._store.service_ids():
            stats = self.compute_stats(sid, fingerprint)
            if stats is not None:
                results.append(stats)
        return results

    def preset_stats(self) -> list[PresetStats]:
        return aggregator.compute_preset_stats(self._store.all_samples(), config=self._config)

    def _model_estimate(
        self,
        service_id: str,
        model: ServiceModel,
        fp: MachineFingerprint,
        stats: ServiceStats | None,
    ) -> EstimateResult:
        predicted = trainer.predict(model, to_feature_vector(fp), self._config.min_estimate_ms)
        if stats is not None:
            stats = replace(stats, estimated_ms=predicted, model_quality=model.r_squared)
        return EstimateResult(
            service_id=service_id,
            estimated_ms=predicted,
            source=EstimateSource.MODEL,
            confidence=stats.confidence if stats else Confidence.from_count(model.sample_count),
            model_quality=model.r_squared,
            stats=stats,
        )

    def estimate(
        self,
        service_id: str,
        fingerprint: MachineFingerprint | None = None,
        options_hash: str | None = None,
        default_ms: float | None = None,
    ) -> EstimateResult:
        """How long ``service_id`` should take on the given machine.

        With ``options_hash`` the order is: that variant's model, the average
        of runs with those options, then the average of all runs; the
        service-wide model is not consulted. Without it: the service model,
        then the average.
        Either way ``default_ms`` answers when there is no history.
        """
        fp = fingerprint if fingerprint is not None else self._probe()
        samples = self._store.snapshot(service_id)
        stats = aggregator.compute_stats(service_id, samples, config=self._config)

        if options_hash:
            model = self._store.get_model(model_key(service_id, options_hash))
            if model is not None:
                return self._model_estimate(service_id, model, fp, stats)
            subset = [s for s in samples if s.options_hash == options_hash]
            if len(subset) >= self._config.min_average_samples:
                sub_stats = aggregator.compute_stats(service_id, subset, config=self._config)
                return EstimateResult(
                    service_id=service_id,
                    estimated_ms=sub_stats.average_ms,
                    source=EstimateSource.AVERAGE,
                    confidence=sub_stats.confidence,
                    stats=sub_stats,
                )
        else:
            model = self._store.get_model(service_id)
            if model is not None:
                return self._model_estimate(service_id, model, fp, stats)

        if stats is not None:
            return EstimateResult(
                service_id=service_id,
                estimated_ms=stats.average_ms,
                source=EstimateSource.AVERAGE,
                confidence=stats.confidence,
                stats=stats,
            )

        if default_ms is not None:
            return EstimateResult(
                service_id=service_id,
                estimated_ms=float(default_ms),
                source=EstimateSource.DEFAULT,
            )

        logger.debug("No data to estimate %s", service_id)
        return EstimateResult(
            service_id=service_id, estimated_ms=None, source=EstimateSource.NONE
        )

    # --- Clearing ---

    def clear_service(self, service_id: str) -> int:
        return self._store.clear_service(service_id)

    def clear_all(self) -> int:
        return self._store.clear_all()
