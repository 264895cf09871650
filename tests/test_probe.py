"""Tests for fingerprint capture (mocked psutil)."""

from unittest.mock import MagicMock, patch

import psutil
import pytest

from kairos.core import probe
from kairos.core.probe import _classify_interface, _detect_network_type, capture_fingerprint
from kairos.models import MachineFingerprint, NetworkType


@pytest.fixture(autouse=True)
def clear_static_cache():
    probe._static_specs.cache_clear()
    yield
    probe._static_specs.cache_clear()


def _nic(isup=True):
    return MagicMock(isup=isup)


def _io(sent, recv):
    return MagicMock(bytes_sent=sent, bytes_recv=recv)


class TestClassifyInterface:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("eth0", NetworkType.ETHERNET),
            ("enp3s0", NetworkType.ETHERNET),
            ("Ethernet 2", NetworkType.ETHERNET),
            ("wlan0", NetworkType.WIFI),
            ("wlp2s0", NetworkType.WIFI),
            ("Wi-Fi", NetworkType.WIFI),
            ("wwan0", NetworkType.CELLULAR),
            ("tun0", NetworkType.UNKNOWN),
        ],
    )
    def test_names(self, name, expected):
        assert _classify_interface(name) is expected


class TestDetectNetworkType:
    @patch("kairos.core.probe.psutil.net_io_counters")
    @patch("kairos.core.probe.psutil.net_if_stats")
    def test_busiest_up_interface_wins(self, mock_stats, mock_io):
        mock_stats.return_value = {
            "lo": _nic(), "eth0": _nic(), "wlan0": _nic(), "docker0": _nic(),
        }
        mock_io.return_value = {
            "lo": _io(10**9, 10**9),
            "eth0": _io(100, 100),
            "wlan0": _io(5000, 5000),
            "docker0": _io(10**8, 10**8),
        }
        assert _detect_network_type() is NetworkType.WIFI

    @patch("kairos.core.probe.psutil.net_io_counters")
    @patch("kairos.core.probe.psutil.net_if_stats")
    def test_down_interfaces_ignored(self, mock_stats, mock_io):
        mock_stats.return_value = {"wlan0": _nic(isup=False), "eth0": _nic()}
        mock_io.return_value = {"wlan0": _io(9999, 9999), "eth0": _io(1, 1)}
        assert _detect_network_type() is NetworkType.ETHERNET

    @patch("kairos.core.probe.psutil.net_if_stats")
    def test_access_denied(self, mock_stats):
        mock_stats.side_effect = psutil.AccessDenied(1)
        assert _detect_network_type() is NetworkType.UNKNOWN


class TestCaptureFingerprint:
    @patch("kairos.core.probe._detect_network_type", return_value=NetworkType.ETHERNET)
    @patch("kairos.core.probe._detect_discrete_gpu", return_value=True)
    @patch("kairos.core.probe._detect_avx2", return_value=True)
    @patch("kairos.core.probe._detect_ssd", return_value=False)
    @patch("kairos.core.probe.psutil")
    def test_success(self, mock_psutil, _ssd, _avx, _gpu, _net):
        gib = 1024 ** 3
        mock_psutil.Error = psutil.Error
        mock_psutil.cpu_count.side_effect = lambda logical=True: 8 if logical else 4
        mock_psutil.cpu_freq.return_value = MagicMock(current=2400.0, max=3600.0)
        mock_psutil.virtual_memory.return_value = MagicMock(total=16 * gib, available=6 * gib)
        mock_psutil.cpu_percent.return_value = 37.0
        mock_psutil.sensors_battery.return_value = MagicMock(power_plugged=False)

        fp = capture_fingerprint(cpu_interval=0.0)

        assert fp.physical_cores == 4
        assert fp.logical_cores == 8
        assert fp.frequency_ghz == 3.6
        assert fp.total_ram_gb == 16.0
        assert fp.available_ram_gb == 6.0
        assert fp.disk_is_ssd is False
        assert fp.has_avx2 is True
        assert fp.has_discrete_gpu is True
        assert fp.is_on_ac_power is False
        assert fp.network_type is NetworkType.ETHERNET
        assert fp.cpu_load_percent == 37.0

    @patch("kairos.core.probe._detect_network_type", return_value=NetworkType.UNKNOWN)
    @patch("kairos.core.probe._detect_discrete_gpu", return_value=False)
    @patch("kairos.core.probe._detect_avx2", return_value=False)
    @patch("kairos.core.probe._detect_ssd", return_value=True)
    @patch("kairos.core.probe.psutil")
    def test_desktop_without_battery_is_on_ac(self, mock_psutil, *_):
        mock_psutil.Error = psutil.Error
        mock_psutil.cpu_count.return_value = 2
        mock_psutil.cpu_freq.return_value = None
        mock_psutil.virtual_memory.return_value = MagicMock(total=0, available=0)
        mock_psutil.cpu_percent.return_value = 0.0
        mock_psutil.sensors_battery.return_value = None

        fp = capture_fingerprint(cpu_interval=0.0)
        assert fp.is_on_ac_power is True
        assert fp.frequency_ghz == 0.0

    @patch("kairos.core.probe.psutil.cpu_count")
    def test_failure_yields_neutral_fingerprint(self, mock_count):
        mock_count.side_effect = OSError("no /proc")
        assert capture_fingerprint(cpu_interval=0.0) == MachineFingerprint()
