"""Frozen dataclass models for service timing data."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from kairos.models.enums import Confidence, EstimateSource, NetworkType


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class MachineFingerprint:
    """Hardware and load characteristics of the machine a service ran on."""

    physical_cores: int = 0
    logical_cores: int = 0
    frequency_ghz: float = 0.0
    available_ram_gb: float = 0.0
    total_ram_gb: float = 0.0
    disk_is_ssd: bool = False
    is_on_ac_power: bool = False
    has_avx2: bool = False
    has_discrete_gpu: bool = False
    network_type: NetworkType = NetworkType.UNKNOWN
    cpu_load_percent: float = 0.0


@dataclass(frozen=True, slots=True)
class Sample:
    """One completed run of a service."""

    service_id: str
    duration_ms: float
    fingerprint: MachineFingerprint
    features: tuple[float, ...]
    timestamp: datetime = field(default_factory=_now)
    preset_id: str | None = None
    options_hash: str | None = None


@dataclass(frozen=True, slots=True)
class NormalizationStats:
    """Per-feature mean and standard deviation used for Z-scores."""

    means: tuple[float, ...]
    std_devs: tuple[float, ...]


@dataclass(frozen=True, slots=True)
class ServiceModel:
    """Ridge regression weights trained for one service."""

    intercept: float
    coefficients: tuple[float, ...]
    sample_count: int
    normalization: NormalizationStats
    ridge_lambda: float
    r_squared: float
    feature_version: str
    trained_at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class ServiceStats:
    """Summary statistics for a service, derived on demand."""

    service_id: str
    average_ms: float
    min_ms: float
    max_ms: float
    median_ms: float
    sample_count: int
    std_dev_ms: float
    confidence: Confidence
    estimated_ms: float | None = None
    model_quality: float | None = None


@dataclass(frozen=True, slots=True)
class PresetStats:
    """Summary statistics for all runs recorded under a preset."""

    preset_id: str
    average_ms: float
    min_ms: float
    max_ms: float
    run_count: int
    confidence: Confidence


@dataclass(frozen=True, slots=True)
class EstimateResult:
    """Answer to "how long will this service take on this machine"."""

    service_id: str
    estimated_ms: float | None
    source: EstimateSource
    confidence: Confidence | None = None
    model_quality: float | None = None
    stats: ServiceStats | None = None


@dataclass(frozen=True, slots=True)
class RecordResult:
    """Outcome of recording a completed run."""

    sample: Sample
    retrain_due: bool
    model: ServiceModel | None = None
