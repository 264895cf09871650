"""Tests for fingerprint to feature vector conversion."""

from kairos.core.fingerprint import (
    FEATURE_NAMES,
    NUM_FEATURES,
    compute_cpu_score,
    fingerprint_from_dict,
    fingerprint_to_dict,
    to_feature_vector,
)
from kairos.models import MachineFingerprint, NetworkType


def _fp(**kw):
    base = dict(
        physical_cores=4, logical_cores=8, frequency_ghz=3.0,
        available_ram_gb=6.5, total_ram_gb=16.0, disk_is_ssd=True,
        is_on_ac_power=True, has_avx2=True, has_discrete_gpu=False,
        network_type=NetworkType.WIFI, cpu_load_percent=12.5,
    )
    base.update(kw)
    return MachineFingerprint(**base)


class TestCpuScore:
    def test_physical_only(self):
        assert compute_cpu_score(4, 4, 2.0) == 8.0

    def test_smt_threads_count_a_quarter(self):
        # 4 physical + 0.25 * 4 extra threads = 5 effective cores
        assert compute_cpu_score(4, 8, 2.0) == 10.0

    def test_never_negative(self):
        assert compute_cpu_score(-1, -1, -3.0) == 0.0


class TestToFeatureVector:
    def test_length_matches_names(self):
        assert len(to_feature_vector(_fp())) == NUM_FEATURES == len(FEATURE_NAMES)

    def test_order(self):
        v = to_feature_vector(_fp())
        assert v == (15.0, 6.5, 16.0, 1.0, 1.0, 1.0, 0.0, 2.0, 12.5)

    def test_neutral_fingerprint_is_all_zero(self):
        assert to_feature_vector(MachineFingerprint()) == (0.0,) * NUM_FEATURES

    def test_network_classes(self):
        idx = FEATURE_NAMES.index("network_class")
        values = {
            nt: to_feature_vector(_fp(network_type=nt))[idx] for nt in NetworkType
        }
        assert values[NetworkType.ETHERNET] > values[NetworkType.WIFI]
        assert values[NetworkType.WIFI] > values[NetworkType.CELLULAR]
        assert values[NetworkType.CELLULAR] > values[NetworkType.UNKNOWN] == 0.0

    def test_deterministic(self):
        fp = _fp()
        assert to_feature_vector(fp) == to_feature_vector(fp)


class TestDictConversion:
    def test_round_trip(self):
        fp = _fp()
        assert fingerprint_from_dict(fingerprint_to_dict(fp)) == fp

    def test_camel_case_keys(self):
        d = fingerprint_to_dict(_fp())
        assert d["diskIsSsd"] is True
        assert d["networkType"] == "wifi"

    def test_missing_keys_are_neutral(self):
        fp = fingerprint_from_dict({"physicalCores": 2})
        assert fp.physical_cores == 2
        assert fp.total_ram_gb == 0.0
        assert fp.network_type is NetworkType.UNKNOWN

    def test_none_and_unknown_keys(self):
        assert fingerprint_from_dict(None) == MachineFingerprint()
        assert fingerprint_from_dict({"cpuScore": 8.0, "bogus": 1}) == MachineFingerprint()

    def test_legacy_ram_key(self):
        assert fingerprint_from_dict({"ramGb": 8.0}).available_ram_gb == 8.0
