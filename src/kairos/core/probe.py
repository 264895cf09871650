"""Current-machine fingerprint capture via psutil."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from pathlib import Path

import psutil

from kairos.models.enums import NetworkType
from kairos.models.timing import MachineFingerprint

logger = logging.getLogger("kairos.probe")

_GIB = 1024 ** 3

_SKIPPED_INTERFACES = ("lo", "loopback", "docker", "veth", "virbr", "br-")

_SYS_BLOCK = Path("/sys/block")
_PROC_CPUINFO = Path("/proc/cpuinfo")
_PCI_DEVICES = Path("/sys/bus/pci/devices")

# PCI vendor ids of discrete GPU makers (NVIDIA, AMD)
_DISCRETE_GPU_VENDORS = {"0x10de", "0x1002"}
_PCI_DISPLAY_CLASS_PREFIX = "0x03"


@dataclass(frozen=True, slots=True)
class _StaticSpecs:
    physical_cores: int
    logical_cores: int
    frequency_ghz: float
    total_ram_gb: float
    disk_is_ssd: bool
    has_avx2: bool
    has_discrete_gpu: bool
    has_battery: bool


def _classify_interface(name: str) -> NetworkType:
    """Map an interface name to a link class."""
    lower = name.lower()
    if lower.startswith(("eth", "en")) or "ethernet" in lower:
        return NetworkType.ETHERNET
    if lower.startswith("wl") or "wi-fi" in lower or "wifi" in lower or "wlan" in lower:
        return NetworkType.WIFI
    if "wwan" in lower or "cellular" in lower or lower.startswith("rmnet"):
        return NetworkType.CELLULAR
    return NetworkType.UNKNOWN


def _detect_network_type() -> NetworkType:
    """Classify the busiest interface that is up."""
    try:
        stats = psutil.net_if_stats()
        counters = psutil.net_io_counters(pernic=True)
    except (psutil.AccessDenied, OSError):
        logger.debug("Cannot read network interfaces", exc_info=True)
        return NetworkType.UNKNOWN

    candidates = [
        name
        for name, st in stats.items()
        if st.isup and not name.lower().startswith(_SKIPPED_INTERFACES)
    ]
    if not candidates:
        return NetworkType.UNKNOWN

    def _traffic(name: str) -> int:
        c = counters.get(name)
        return c.bytes_sent + c.bytes_recv if c else 0

    return _classify_interface(max(candidates, key=_traffic))


def _detect_ssd() -> bool:
    """True unless the largest block device reports a rotational disk."""
    if not _SYS_BLOCK.is_dir():
        return True
    largest: tuple[int, bool] | None = None
    try:
        for dev in _SYS_BLOCK.iterdir():
            if dev.name.startswith(("loop", "ram", "zram", "dm-")):
                continue
            rotational = dev / "queue" / "rotational"
            size_file = dev / "size"
            if not rotational.is_file() or not size_file.is_file():
                continue
            size = int(size_file.read_text().strip() or 0)
            is_ssd = rotational.read_text().strip() == "0"
            if largest is None or size > largest[0]:
                largest = (size, is_ssd)
    except (OSError, ValueError):
        logger.debug("Cannot inspect block devices", exc_info=True)
        return True
    return largest[1] if largest else True


def _detect_avx2() -> bool:
    try:
        text = _PROC_CPUINFO.read_text()
    except OSError:
        return False
    for line in text.splitlines():
        if line.startswith("flags"):
            return "avx2" in line.split()
    return False


def _detect_discrete_gpu() -> bool:
    if not _PCI_DEVICES.is_dir():
        return False
    try:
        for dev in _PCI_DEVICES.iterdir():
            cls = (dev / "class").read_text().strip()
            if not cls.startswith(_PCI_DISPLAY_CLASS_PREFIX):
                continue
            if (dev / "vendor").read_text().strip() in _DISCRETE_GPU_VENDORS:
                return True
    except OSError:
        logger.debug("Cannot inspect PCI devices", exc_info=True)
    return False


def _read_battery():
    try:
        return psutil.sensors_battery()
    except (AttributeError, NotImplementedError, OSError):
        return None


@functools.lru_cache(maxsize=1)
def _static_specs() -> _StaticSpecs:
    """Facts that do not change while the process runs; probed once."""
    physical = psutil.cpu_count(logical=False) or 0
    logical = psutil.cpu_count(logical=True) or physical
    try:
        freq = psutil.cpu_freq()
    except (NotImplementedError, OSError):
        freq = None
    frequency_ghz = 0.0
    if freq is not None:
        frequency_ghz = (freq.max or freq.current or 0.0) / 1000.0

    return _StaticSpecs(
        physical_cores=physical,
        logical_cores=logical,
        frequency_ghz=round(frequency_ghz, 3),
        total_ram_gb=round(psutil.virtual_memory().total / _GIB, 2),
        disk_is_ssd=_detect_ssd(),
        has_avx2=_detect_avx2(),
        has_discrete_gpu=_detect_discrete_gpu(),
        has_battery=_read_battery() is not None,
    )


def capture_fingerprint(cpu_interval: float = 0.1) -> MachineFingerprint:
    """Fingerprint the current machine. Never raises; unknowns stay neutral."""
    try:
        specs = _static_specs()
    except (psutil.Error, OSError):
        logger.warning("Cannot read static machine specs; using neutral fingerprint")
        return MachineFingerprint()

    try:
        available_ram_gb = round(psutil.virtual_memory().available / _GIB, 2)
    except (psutil.Error, OSError):
        available_ram_gb = 0.0

    try:
        cpu_load = psutil.cpu_percent(interval=cpu_interval)
    except (psutil.Error, OSError):
        cpu_load = 0.0

    on_ac = True
    if specs.has_battery:
        battery = _read_battery()
        if battery is not None and battery.power_plugged is not None:
            on_ac = bool(battery.power_plugged)

    return MachineFingerprint(
        physical_cores=specs.physical_cores,
        logical_cores=specs.logical_cores,
        frequency_ghz=specs.frequency_ghz,
        available_ram_gb=available_ram_gb,
        total_ram_gb=specs.total_ram_gb,
        disk_is_ssd=specs.disk_is_ssd,
        is_on_ac_power=on_ac,
        has_avx2=specs.has_avx2,
        has_discrete_gpu=specs.has_discrete_gpu,
        network_type=_detect_network_type(),
        cpu_load_percent=round(cpu_load, 1),
    )
