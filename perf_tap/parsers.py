"""Parsers for adb diagnostic output.

Each function takes the raw text of a single command and returns one typed
value, raising ParseFailed when the expected pattern is missing. None of them
fall back to zero; callers decide whether a failure matters.
"""

from __future__ import annotations

from typing import Callable

from perf_tap.errors import ParseFailed
from perf_tap.models import AdbDevice, BatteryStats, FrameCounters, TrafficCounters

MAX_CPU_PCT = 100.0
# dumpsys battery reports "current now" in microamps; smaller readings are noise.
MIN_CURRENT_UA = 100.0

TRAFFIC_IFACE_PREFIXES = (
    "wlan",
    "rmnet",
    "rmnet_data",
    "ccmni",
    "eth",
    "usb",
    "pdp",
    "cell",
)
LEGACY_NETWORK_IFACES = ("wlan0", "rmnet")


def _to_float(token: str) -> float | None:
    try:
        return float(token)
    except ValueError:
        return None


def _to_int(token: str) -> int | None:
    try:
        return int(token)
    except ValueError:
        return None


def parse_pid(output: str) -> str:
    """Return the first pid printed by `pidof`."""
    tokens = output.split()
    if not tokens:
        raise ParseFailed("process not found")
    return tokens[0]


def parse_cpu(output: str, pid: str) -> float:
    """Read %CPU for `pid` from `top -b -n 1 -q -p <pid>`.

    Rows look like: PID USER PR NI VIRT RES SHR S %CPU %MEM TIME+ ARGS
    """
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 9 and parts[0] == pid:
            value = _to_float(parts[8])
            if value is not None:
                return min(max(value, 0.0), MAX_CPU_PCT)
    raise ParseFailed(f"cpu: no row for pid {pid}")


def parse_memory_mb(output: str) -> float:
    """First number on the TOTAL line of `dumpsys meminfo`, KB to MB."""
    for line in output.splitlines():
        if "TOTAL" not in line:
            continue
        for token in line.split():
            value = _to_float(token)
            if value is not None:
                return value / 1024
    raise ParseFailed("memory: TOTAL line not found")


def parse_network_kb(output: str) -> float:
    """Cumulative rx+tx KB of the first wlan0/rmnet row of /proc/net/dev.

    This is a running total, not a rate.
    """
    for line in output.splitlines():
        if not any(name in line for name in LEGACY_NETWORK_IFACES):
            continue
        parts = line.split()
        if len(parts) >= 17:
            rx = _to_float(parts[1]) or 0.0
            tx = _to_float(parts[9]) or 0.0
            return (rx + tx) / 1024
    raise ParseFailed("network: no wlan0/rmnet interface")


def _strip_jank(value: str) -> int | None:
    # "50 (4.17%)"
    return _to_int(value.split("(", 1)[0].strip())


def _strip_ms(value: str) -> float | None:
    value = value.strip()
    if not value.endswith("ms"):
        return None
    return _to_float(value[: -len("ms")].strip())


_FRAME_FIELDS: dict[str, tuple[str, Callable[[str], float | int | None]]] = {
    "Total frames rendered:": ("total_frames", lambda v: _to_int(v.strip())),
    "Janky frames:": ("janky_frames", _strip_jank),
    "90th percentile:": ("percentile_90_ms", _strip_ms),
    "95th percentile:": ("percentile_95_ms", _strip_ms),
}


def parse_gfxinfo(output: str) -> FrameCounters:
    """Extract frame counters from `dumpsys gfxinfo <package>`."""
    values: dict[str, float | int] = {}
    for line in output.splitlines():
        line = line.strip()
        for prefix, (name, convert) in _FRAME_FIELDS.items():
            if line.startswith(prefix):
                value = convert(line[len(prefix):])
                if value is not None:
                    values[name] = value
                break

    if "total_frames" not in values:
        raise ParseFailed("fps: 'Total frames rendered' missing, is the app running?")
    return FrameCounters(
        total_frames=int(values["total_frames"]),
        janky_frames=values.get("janky_frames"),
        percentile_90_ms=values.get("percentile_90_ms"),
        percentile_95_ms=values.get("percentile_95_ms"),
    )


def parse_power_usage(output: str) -> float:
    """Estimated mAh from `dumpsys batterystats <package>`."""
    for line in output.splitlines():
        line = line.strip()
        if "Estimated power use" in line:
            fields = line.split(":")
            if len(fields) > 1:
                value = _to_float(fields[1].split("mAh", 1)[0].strip())
                if value is not None:
                    return value
        if "power use" in line or "Power use" in line:
            for token in line.split():
                value = _to_float(token)
                if value is not None:
                    return value
    raise ParseFailed("power: no power use estimate")


def parse_current_now_ma(output: str) -> float:
    """Instantaneous current from `dumpsys battery`, uA to mA."""
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("current now:"):
            continue
        current = _to_float(line.split(":", 1)[1].strip())
        if current is not None and abs(current) > MIN_CURRENT_UA:
            return current / 1000
    raise ParseFailed("power: no usable 'current now' reading")


def parse_battery(output: str) -> BatteryStats:
    level: float | None = None
    temp_c: float | None = None
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("level:"):
            level = _to_float(line[len("level:"):].strip())
        elif line.startswith("temperature:"):
            raw_temp = _to_float(line[len("temperature:"):].strip())
            if raw_temp is not None:
                # tenths of a degree
                temp_c = raw_temp / 10
    if level is None and temp_c is None:
        raise ParseFailed("battery: no level or temperature")
    return BatteryStats(level=level, temp_c=temp_c)


def _is_traffic_iface(name: str) -> bool:
    return name.startswith(TRAFFIC_IFACE_PREFIXES) and not name.startswith("lo")


def parse_traffic(output: str) -> TrafficCounters:
    """Sum rx/tx bytes over external interfaces in /proc/<pid>/net/dev."""
    rx_bytes = 0
    tx_bytes = 0
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("Inter-") or line.startswith("face"):
            continue
        iface, _, payload = line.partition(":")
        if not _is_traffic_iface(iface.strip()):
            continue
        cols = payload.split()
        if len(cols) >= 16:
            rx_bytes += _to_int(cols[0]) or 0
            tx_bytes += _to_int(cols[8]) or 0

    if rx_bytes == 0 and tx_bytes == 0:
        raise ParseFailed("traffic: no active network interface")
    return TrafficCounters(rx_bytes=rx_bytes, tx_bytes=tx_bytes)


def parse_devices(output: str) -> list[AdbDevice]:
    """Parse `adb devices -l`."""
    devices: list[AdbDevice] = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        model = None
        for token in parts[2:]:
            if token.startswith("model:"):
                model = token[len("model:"):] or None
        devices.append(AdbDevice(id=parts[0], state=parts[1], model=model))
    return devices


def parse_packages(output: str) -> list[str]:
    """Parse `pm list packages` lines of the form `package:<name>`."""
    packages: list[str] = []
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("package:"):
            name = line[len("package:"):].strip()
            if name:
                packages.append(name)
    return packages
