"""Layered configuration: .kairos/config.toml -> KAIROS_* env vars -> defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib  # 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """Metrics document settings."""

    file_name: str = "service_metrics.json"
    max_samples_per_service: int = 100
    retrain_batch_size: int = 5
    lock_timeout: float = 10.0


@dataclass(frozen=True, slots=True)
class EstimationConfig:
    """Statistics and regression tuning."""

    half_life_days: float = 30.0
    outlier_iqr_factor: float = 1.5
    min_outlier_samples: int = 5
    min_training_samples: int = 5
    ridge_lambda: float = 0.1
    min_estimate_ms: float = 1.0
    min_average_samples: int = 3


@dataclass(frozen=True, slots=True)
class ProbeConfig:
    """Machine fingerprint capture settings."""

    cpu_sample_interval: float = 0.1


@dataclass(frozen=True, slots=True)
class KairosConfig:
    """Top-level configuration container."""

    project_path: Path = field(default_factory=Path.cwd)
    store: StoreConfig = field(default_factory=StoreConfig)
    estimation: EstimationConfig = field(default_factory=EstimationConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)

    @property
    def kairos_dir(self) -> Path:
        return self.project_path / ".kairos"

    @property
    def metrics_path(self) -> Path:
        return self.kairos_dir / self.store.file_name

    @classmethod
    def load(cls, project_path: Path | None = None) -> KairosConfig:
        """Load config with layering: TOML file -> env vars -> defaults."""
        project = Path(project_path) if project_path else Path.cwd()
        toml_path = project / ".kairos" / "config.toml"

        toml_data: dict = {}
        if toml_path.is_file():
            with open(toml_path, "rb") as f:
                toml_data = tomllib.load(f)

        store_data = toml_data.get("store", {})
        est_data = toml_data.get("estimation", {})
        probe_data = toml_data.get("probe", {})

        # Use literal defaults (slots=True prevents class-level attribute access)
        _store_defaults = StoreConfig()
        _est_defaults = EstimationConfig()
        _probe_defaults = ProbeConfig()

        def _layer(env: str, section: dict, key: str, default, cast):
            return cast(os.environ.get(env, section.get(key, default)))

        store = StoreConfig(
            file_name=_layer(
                "KAIROS_FILE_NAME", store_data, "file_name",
                _store_defaults.file_name, str,
            ),
            max_samples_per_service=_layer(
                "KAIROS_MAX_SAMPLES_PER_SERVICE", store_data,
                "max_samples_per_service",
                _store_defaults.max_samples_per_service, int,
            ),
            retrain_batch_size=_layer(
                "KAIROS_RETRAIN_BATCH_SIZE", store_data, "retrain_batch_size",
                _store_defaults.retrain_batch_size, int,
            ),
            lock_timeout=_layer(
                "KAIROS_LOCK_TIMEOUT", store_data, "lock_timeout",
                _store_defaults.lock_timeout, float,
            ),
        )

        estimation = EstimationConfig(
            half_life_days=_layer(
                "KAIROS_HALF_LIFE_DAYS", est_data, "half_life_days",
                _est_defaults.half_life_days, float,
            ),
            outlier_iqr_factor=_layer(
                "KAIROS_OUTLIER_IQR_FACTOR", est_data, "outlier_iqr_factor",
                _est_defaults.outlier_iqr_factor, float,
            ),
            min_outlier_samples=_layer(
                "KAIROS_MIN_OUTLIER_SAMPLES", est_data, "min_outlier_samples",
                _est_defaults.min_outlier_samples, int,
            ),
            min_training_samples=_layer(
                "KAIROS_MIN_TRAINING_SAMPLES", est_data, "min_training_samples",
                _est_defaults.min_training_samples, int,
            ),
            ridge_lambda=_layer(
                "KAIROS_RIDGE_LAMBDA", est_data, "ridge_lambda",
                _est_defaults.ridge_lambda, float,
            ),
            min_estimate_ms=_layer(
                "KAIROS_MIN_ESTIMATE_MS", est_data, "min_estimate_ms",
                _est_defaults.min_estimate_ms, float,
            ),
            min_average_samples=_layer(
                "KAIROS_MIN_AVERAGE_SAMPLES", est_data, "min_average_samples",
                _est_defaults.min_average_samples, int,
            ),
        )

        probe = ProbeConfig(
            cpu_sample_interval=_layer(
                "KAIROS_CPU_SAMPLE_INTERVAL", probe_data, "cpu_sample_interval",
                _probe_defaults.cpu_sample_interval, float,
            ),
        )

        return cls(
            project_path=project,
            store=store,
            estimation=estimation,
            probe=probe,
        )
