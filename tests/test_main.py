"""Tests for the command line runner."""
from __future__ import annotations

import json
from unittest.mock import Mock, patch

import pytest

from perf_tap import main as cli
from perf_tap.adb import AdbTransport
from perf_tap.collector import MetricsCollector
from perf_tap.errors import AdbNotFound
from perf_tap.models import AdbDevice, MetricKind

BATTERY_OUTPUT = "  level: 85\n  temperature: 250\n"


@pytest.fixture(autouse=True)
def no_logging_setup():
    with patch("perf_tap.main.configure_logging"):
        yield


def test_resolve_devices_prefers_explicit():
    transport = Mock(spec=AdbTransport)
    assert cli.resolve_devices(transport, ["emulator-5554"]) == ["emulator-5554"]
    transport.list_devices.assert_not_called()


def test_resolve_devices_skips_offline():
    transport = Mock(spec=AdbTransport)
    transport.list_devices.return_value = [
        AdbDevice(id="emulator-5554", state="device"),
        AdbDevice(id="R58M123ABC", state="unauthorized"),
    ]
    assert cli.resolve_devices(transport, []) == ["emulator-5554"]


def test_collect_payloads_for_several_devices(transport, clock):
    transport.responses[("shell", "dumpsys", "battery")] = BATTERY_OUTPUT
    collector = MetricsCollector(transport, clock=clock)

    payloads = cli.collect_payloads(
        collector, ["emulator-5554", "emulator-5556"], "com.example.app", [MetricKind.BATTERY]
    )

    assert [p["device"] for p in payloads] == ["emulator-5554", "emulator-5556"]
    assert all(p["metrics"]["battery_level"] == 85.0 for p in payloads)


def test_once_dry_run_dumps_json(tmp_path):
    dump = tmp_path / "snapshot.json"
    with patch.object(AdbTransport, "run", return_value=BATTERY_OUTPUT) as run:
        code = cli.main(
            [
                "--once",
                "--dry-run",
                "-d",
                "emulator-5554",
                "-p",
                "com.example.app",
                "-m",
                "battery,battery_temp",
                "--dump-json",
                str(dump),
            ]
        )

    assert code == 0
    run.assert_called_once_with("emulator-5554", ["shell", "dumpsys", "battery"])
    payloads = json.loads(dump.read_text())
    assert payloads[0]["metrics"]["battery_temp_c"] == 25.0


def test_list_devices(capsys):
    devices = [AdbDevice(id="emulator-5554", state="device", model="Pixel_7")]
    with patch.object(AdbTransport, "list_devices", return_value=devices):
        assert cli.main(["--list-devices"]) == 0
    assert "emulator-5554\tdevice\tPixel_7" in capsys.readouterr().out


def test_adb_missing_reported():
    with patch.object(AdbTransport, "list_devices", side_effect=AdbNotFound()):
        assert cli.main(["-p", "com.example.app", "--once"]) == 1


def test_package_required():
    with pytest.raises(SystemExit):
        cli.main(["-d", "emulator-5554", "--once"])


def test_unknown_metric_rejected():
    with pytest.raises(SystemExit):
        cli.main(["-d", "emulator-5554", "-p", "com.example.app", "-m", "gpu", "--once"])
