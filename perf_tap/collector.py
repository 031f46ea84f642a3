from __future__ import annotations

from datetime import datetime, timezone
import logging
import time
from typing import Any, Callable, Iterable, TypeVar

from perf_tap.adb import AdbTransport
from perf_tap.errors import AdbError, HistoryUnavailable, ParseFailed
from perf_tap.history import HistoryStore, derive_frame_rate, derive_traffic_rates
from perf_tap.models import (
    BatteryStats,
    FrameStatistics,
    MetricKind,
    Snapshot,
    TrafficStats,
)
from perf_tap.parsers import (
    parse_battery,
    parse_cpu,
    parse_current_now_ma,
    parse_gfxinfo,
    parse_memory_mb,
    parse_network_kb,
    parse_pid,
    parse_power_usage,
    parse_traffic,
)

SCHEMA_NAME = "perf-tap-snapshot"
SCHEMA_VERSION = 1

PID_METRICS = frozenset({MetricKind.CPU, MetricKind.TRAFFIC})
BATTERY_METRICS = frozenset({MetricKind.BATTERY, MetricKind.BATTERY_TEMP})

T = TypeVar("T")


def now_ms() -> int:
    return int(time.time() * 1000)


def build_payload(device_id: str, package: str | None, snapshot: Snapshot) -> dict[str, Any]:
    return {
        "schema": {"name": SCHEMA_NAME, "version": SCHEMA_VERSION},
        "ts": datetime.now(timezone.utc).isoformat(),
        "device": device_id,
        "package": package,
        "metrics": snapshot.to_dict(),
    }


class MetricsCollector:
    """Assembles one Snapshot per call from adb diagnostic commands.

    Every metric is fetched independently: a failed command or unparsable
    output leaves that field as None and never aborts the snapshot. Rate
    metrics (fps, traffic) read and update the shared HistoryStore.
    """

    def __init__(
        self,
        transport: AdbTransport,
        history: HistoryStore | None = None,
        clock: Callable[[], int] = now_ms,
        capture_raw: bool = False,
    ) -> None:
        self.transport = transport
        self.history = history if history is not None else HistoryStore()
        self.clock = clock
        self.capture_raw = capture_raw
        self.logger = logging.getLogger(self.__class__.__name__)

    def collect(
        self, device_id: str, package: str, kinds: Iterable[MetricKind | str]
    ) -> Snapshot:
        requested: set[MetricKind] = set()
        for kind in kinds:
            try:
                requested.add(MetricKind(kind))
            except ValueError:
                self.logger.debug("Ignoring unknown metric %r", kind)
        snapshot = Snapshot()
        if not requested:
            return snapshot

        self.logger.debug(
            "Collecting %s for %s on %s.",
            sorted(kind.value for kind in requested),
            package,
            device_id,
        )
        raw: list[str] | None = [] if self.capture_raw else None

        pid: str | None = None
        if requested & PID_METRICS:
            pid = self._attempt("pid", self.resolve_pid, device_id, package, raw)

        battery: BatteryStats | None = None
        battery_fetched = False
        traffic: TrafficStats | None = None

        # Enum order puts NETWORK before TRAFFIC so the derived rate wins.
        for kind in MetricKind:
            if kind not in requested:
                continue
            if kind is MetricKind.FPS:
                frame_stats = self._attempt(kind.value, self.fetch_fps, device_id, package, raw)
                if frame_stats is not None:
                    snapshot.fps = frame_stats.fps
                    snapshot.frame_stats = frame_stats
            elif kind is MetricKind.CPU:
                if pid is not None:
                    snapshot.cpu = self._attempt(kind.value, self.fetch_cpu, device_id, pid, raw)
            elif kind is MetricKind.POWER:
                snapshot.power = self._attempt(kind.value, self.fetch_power, device_id, package, raw)
            elif kind is MetricKind.MEMORY:
                snapshot.memory_mb = self._attempt(
                    kind.value, self.fetch_memory, device_id, package, raw
                )
            elif kind is MetricKind.NETWORK:
                snapshot.network_kbps = self._attempt(
                    kind.value, self.fetch_network, device_id, raw
                )
            elif kind in BATTERY_METRICS:
                if not battery_fetched:
                    battery = self._attempt("battery", self.fetch_battery, device_id, raw)
                    battery_fetched = True
                if battery is not None:
                    snapshot.battery_level = battery.level
                    snapshot.battery_temp_c = battery.temp_c
            elif kind is MetricKind.TRAFFIC:
                if pid is not None:
                    traffic = self._attempt(kind.value, self.fetch_traffic, device_id, pid, raw)
                if traffic is not None:
                    snapshot.rx_bytes = traffic.rx_bytes
                    snapshot.tx_bytes = traffic.tx_bytes
                    snapshot.rx_bps = traffic.rx_bps
                    snapshot.tx_bps = traffic.tx_bps
                    snapshot.network_bps = traffic.total_bps()
                    total_kbps = traffic.total_kbps()
                    if total_kbps is not None:
                        snapshot.network_kbps = total_kbps

        if raw:
            snapshot.raw = "\n".join(raw)
        return snapshot

    def _attempt(self, label: str, fetch: Callable[..., T], *args: Any) -> T | None:
        try:
            return fetch(*args)
        except HistoryUnavailable as exc:
            self.logger.warning("Sample history unavailable for %s: %s", label, exc)
        except (AdbError, ParseFailed) as exc:
            self.logger.debug("Failed to collect %s: %s", label, exc)
        return None

    def _run(self, device_id: str, args: list[str], raw: list[str] | None) -> str:
        output = self.transport.run(device_id, args)
        if raw is not None:
            raw.append(f"$ adb -s {device_id} {' '.join(args)}\n{output.rstrip()}")
        return output

    def resolve_pid(
        self, device_id: str, package: str, raw: list[str] | None = None
    ) -> str:
        return parse_pid(self._run(device_id, ["shell", "pidof", package], raw))

    def fetch_cpu(self, device_id: str, pid: str, raw: list[str] | None = None) -> float:
        output = self._run(
            device_id, ["shell", "top", "-b", "-n", "1", "-q", "-p", pid], raw
        )
        return parse_cpu(output, pid)

    def fetch_memory(
        self, device_id: str, package: str, raw: list[str] | None = None
    ) -> float:
        return parse_memory_mb(
            self._run(device_id, ["shell", "dumpsys", "meminfo", package], raw)
        )

    def fetch_network(self, device_id: str, raw: list[str] | None = None) -> float:
        return parse_network_kb(
            self._run(device_id, ["shell", "cat", "/proc/net/dev"], raw)
        )

    def fetch_fps(
        self, device_id: str, package: str, raw: list[str] | None = None
    ) -> FrameStatistics:
        counters = parse_gfxinfo(
            self._run(device_id, ["shell", "dumpsys", "gfxinfo", package], raw)
        )
        key = HistoryStore.key(MetricKind.FPS.value, device_id, package)
        fps = derive_frame_rate(self.history, key, counters.total_frames, self.clock())

        if counters.percentile_90_ms is not None:
            avg_frame_time = counters.percentile_90_ms
        else:
            avg_frame_time = 1000 / fps if fps > 0 else 0.0
        frame_times = [avg_frame_time]
        if counters.percentile_95_ms is not None:
            frame_times.append(counters.percentile_95_ms)
        return FrameStatistics(
            fps=fps,
            avg_frame_time=avg_frame_time,
            frame_times=frame_times,
            jank_count=counters.janky_frames or 0,
        )

    def fetch_power(
        self, device_id: str, package: str, raw: list[str] | None = None
    ) -> float:
        """Per-package mAh estimate, else instantaneous battery current in mA."""
        try:
            output = self._run(device_id, ["shell", "dumpsys", "batterystats", package], raw)
            return parse_power_usage(output)
        except (AdbError, ParseFailed) as exc:
            self.logger.debug("No batterystats estimate, using battery current: %s", exc)
        return parse_current_now_ma(
            self._run(device_id, ["shell", "dumpsys", "battery"], raw)
        )

    def fetch_battery(self, device_id: str, raw: list[str] | None = None) -> BatteryStats:
        return parse_battery(self._run(device_id, ["shell", "dumpsys", "battery"], raw))

    def fetch_traffic(
        self, device_id: str, pid: str, raw: list[str] | None = None
    ) -> TrafficStats:
        counters = parse_traffic(
            self._run(device_id, ["shell", "cat", f"/proc/{pid}/net/dev"], raw)
        )
        key = HistoryStore.key(MetricKind.TRAFFIC.value, device_id, pid)
        rx_bps, tx_bps = derive_traffic_rates(
            self.history, key, counters.rx_bytes, counters.tx_bytes, self.clock()
        )
        return TrafficStats(
            rx_bytes=counters.rx_bytes,
            tx_bytes=counters.tx_bytes,
            rx_bps=rx_bps,
            tx_bps=tx_bps,
        )
