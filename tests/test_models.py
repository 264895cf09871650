"""Tests for Kairos data models."""

from datetime import datetime

import pytest

from kairos.models import (
    Confidence,
    EstimateResult,
    EstimateSource,
    MachineFingerprint,
    NetworkType,
    Sample,
)


class TestEnums:
    def test_confidence_values(self):
        assert Confidence.LOW == "low"
        assert Confidence.HIGH == "high"

    @pytest.mark.parametrize(
        "count,expected",
        [
            (0, Confidence.LOW),
            (1, Confidence.LOW),
            (2, Confidence.LOW),
            (3, Confidence.MEDIUM),
            (4, Confidence.MEDIUM),
            (5, Confidence.HIGH),
            (100, Confidence.HIGH),
        ],
    )
    def test_confidence_from_count(self, count, expected):
        assert Confidence.from_count(count) is expected

    def test_network_type_parse(self):
        assert NetworkType.parse("WiFi") is NetworkType.WIFI
        assert NetworkType.parse("ethernet") is NetworkType.ETHERNET
        assert NetworkType.parse("carrier-pigeon") is NetworkType.UNKNOWN
        assert NetworkType.parse(None) is NetworkType.UNKNOWN

    def test_estimate_source_values(self):
        assert EstimateSource.MODEL == "model"
        assert EstimateSource.NONE == "none"


class TestMachineFingerprint:
    def test_neutral_defaults(self):
        fp = MachineFingerprint()
        assert fp.physical_cores == 0
        assert fp.disk_is_ssd is False
        assert fp.network_type is NetworkType.UNKNOWN

    def test_frozen(self):
        fp = MachineFingerprint()
        try:
            fp.physical_cores = 8  # type: ignore
            assert False, "Should be frozen"
        except AttributeError:
            pass


class TestSample:
    def test_defaults(self):
        s = Sample(
            service_id="sfc", duration_ms=1000.0,
            fingerprint=MachineFingerprint(), features=(0.0,) * 9,
        )
        assert s.preset_id is None
        assert s.options_hash is None
        assert isinstance(s.timestamp, datetime)
        assert s.timestamp.tzinfo is not None


class TestEstimateResult:
    def test_defaults(self):
        r = EstimateResult(service_id="x", estimated_ms=None, source=EstimateSource.NONE)
        assert r.confidence is None
        assert r.stats is None
