"""Kairos data models."""

from kairos.models.enums import Confidence, EstimateSource, NetworkType
from kairos.models.timing import (
    EstimateResult,
    MachineFingerprint,
    NormalizationStats,
    PresetStats,
    RecordResult,
    Sample,
    ServiceModel,
    ServiceStats,
)

__all__ = [
    "Confidence",
    "NetworkType",
    "EstimateSource",
    "MachineFingerprint",
    "Sample",
    "NormalizationStats",
    "ServiceModel",
    "ServiceStats",
    "PresetStats",
    "EstimateResult",
    "RecordResult",
]
