"""Enumerations for Kairos timing models."""

from enum import Enum


class Confidence(str, Enum):
    """How much a duration figure can be trusted, driven by sample count."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_count(cls, sample_count: int) -> "Confidence":
        """1-2 samples are low, 3-4 medium, 5 or more high."""
        if sample_count >= 5:
            return cls.HIGH
        if sample_count >= 3:
            return cls.MEDIUM
        return cls.LOW


class NetworkType(str, Enum):
    """Class of the machine's busiest network link."""

    ETHERNET = "ethernet"
    WIFI = "wifi"
    CELLULAR = "cellular"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> "NetworkType":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class EstimateSource(str, Enum):
    """Where an estimate came from."""

    MODEL = "model"
    AVERAGE = "average"
    DEFAULT = "default"
    NONE = "none"
