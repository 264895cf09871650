"""Machine fingerprint to regression feature vector conversion.

Every sample, normalization table and model coefficient list is aligned to
``FEATURE_NAMES``. Changing the order, the length or a derivation below
requires bumping ``FEATURE_SCHEMA_VERSION`` so that stored models are dropped
on load instead of being reinterpreted.
"""

from __future__ import annotations

from typing import Any, Mapping

from kairos.models.enums import NetworkType
from kairos.models.timing import MachineFingerprint

FEATURE_SCHEMA_VERSION = "2.0.0"

FEATURE_NAMES: tuple[str, ...] = (
    "cpu_score",
    "available_ram_gb",
    "total_ram_gb",
    "disk_is_ssd",
    "is_on_ac_power",
    "has_avx2",
    "has_discrete_gpu",
    "network_class",
    "cpu_load_percent",
)

NUM_FEATURES = len(FEATURE_NAMES)

# Extra logical threads (SMT) count for a quarter of a physical core
SMT_THREAD_WEIGHT = 0.25

_NETWORK_CLASS: dict[NetworkType, float] = {
    NetworkType.ETHERNET: 3.0,
    NetworkType.WIFI: 2.0,
    NetworkType.CELLULAR: 1.0,
    NetworkType.UNKNOWN: 0.0,
}


def compute_cpu_score(
    physical_cores: int, logical_cores: int, frequency_ghz: float
) -> float:
    """Composite CPU throughput score: effective cores times clock in GHz."""
    physical = max(0, physical_cores)
    extra_threads = max(0, logical_cores - physical)
    return max(0.0, frequency_ghz) * (physical + SMT_THREAD_WEIGHT * extra_threads)


def to_feature_vector(fp: MachineFingerprint) -> tuple[float, ...]:
    """Convert a fingerprint into the fixed-order feature vector."""
    return (
        compute_cpu_score(fp.physical_cores, fp.logical_cores, fp.frequency_ghz),
        float(fp.available_ram_gb),
        float(fp.total_ram_gb),
        1.0 if fp.disk_is_ssd else 0.0,
        1.0 if fp.is_on_ac_power else 0.0,
        1.0 if fp.has_avx2 else 0.0,
        1.0 if fp.has_discrete_gpu else 0.0,
        _NETWORK_CLASS.get(fp.network_type, 0.0),
        float(fp.cpu_load_percent),
    )


def fingerprint_to_dict(fp: MachineFingerprint) -> dict[str, Any]:
    return {
        "physicalCores": fp.physical_cores,
        "logicalCores": fp.logical_cores,
        "frequencyGhz": fp.frequency_ghz,
        "availableRamGb": fp.available_ram_gb,
        "totalRamGb": fp.total_ram_gb,
        "diskIsSsd": fp.disk_is_ssd,
        "isOnAcPower": fp.is_on_ac_power,
        "hasAvx2": fp.has_avx2,
        "hasDiscreteGpu": fp.has_discrete_gpu,
        "networkType": fp.network_type.value,
        "cpuLoadPercent": fp.cpu_load_percent,
    }


def fingerprint_from_dict(d: Mapping[str, Any] | None) -> MachineFingerprint:
    """Rebuild a fingerprint from its JSON form.

    Absent keys take the neutral default and unknown keys are ignored, so
    documents written by older versions still load.
    """
    if not d:
        return MachineFingerprint()
    return MachineFingerprint(
        physical_cores=int(d.get("physicalCores", 0)),
        logical_cores=int(d.get("logicalCores", 0)),
        frequency_ghz=float(d.get("frequencyGhz", 0.0)),
        available_ram_gb=float(d.get("availableRamGb", d.get("ramGb", 0.0))),
        total_ram_gb=float(d.get("totalRamGb", 0.0)),
        disk_is_ssd=bool(d.get("diskIsSsd", False)),
        is_on_ac_power=bool(d.get("isOnAcPower", False)),
        has_avx2=bool(d.get("hasAvx2", False)),
        has_discrete_gpu=bool(d.get("hasDiscreteGpu", False)),
        network_type=NetworkType.parse(d.get("networkType", "unknown")),
        cpu_load_percent=float(d.get("cpuLoadPercent", 0.0)),
    )
