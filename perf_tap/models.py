from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class MetricKind(str, Enum):
    FPS = "fps"
    CPU = "cpu"
    POWER = "power"
    MEMORY = "memory"
    NETWORK = "network"
    BATTERY = "battery"
    BATTERY_TEMP = "battery_temp"
    TRAFFIC = "traffic"

    @classmethod
    def parse_list(cls, value: str | list[str] | None) -> list[MetricKind]:
        """Parse wire names ("fps", "battery_temp", ...) into kinds.

        Accepts a comma separated string or a list. Unknown names raise
        ValueError; an empty or missing value selects every kind.
        """
        if value is None:
            return list(cls)
        names = value.split(",") if isinstance(value, str) else value
        kinds: list[MetricKind] = []
        for name in names:
            name = name.strip().lower()
            if not name:
                continue
            try:
                kind = cls(name)
            except ValueError:
                valid = ", ".join(k.value for k in cls)
                raise ValueError(f"Unknown metric '{name}' (expected one of: {valid})") from None
            if kind not in kinds:
                kinds.append(kind)
        return kinds or list(cls)


# Fields serialised as null when absent; everything else is omitted.
ALWAYS_PRESENT_FIELDS = ("fps", "cpu", "power", "memory_mb", "network_kbps")


@dataclass
class FrameStatistics:
    fps: float
    avg_frame_time: float
    frame_times: list[float] = field(default_factory=list)
    jank_count: int = 0


@dataclass
class Snapshot:
    fps: float | None = None
    cpu: float | None = None
    power: float | None = None
    memory_mb: float | None = None
    network_kbps: float | None = None
    network_bps: float | None = None
    rx_bytes: int | None = None
    tx_bytes: int | None = None
    rx_bps: float | None = None
    tx_bps: float | None = None
    battery_level: float | None = None
    battery_temp_c: float | None = None
    frame_stats: FrameStatistics | None = None
    raw: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            key: value
            for key, value in data.items()
            if value is not None or key in ALWAYS_PRESENT_FIELDS
        }


@dataclass(frozen=True)
class BatteryStats:
    level: float | None
    temp_c: float | None


@dataclass(frozen=True)
class TrafficCounters:
    rx_bytes: int
    tx_bytes: int


@dataclass(frozen=True)
class TrafficStats:
    rx_bytes: int
    tx_bytes: int
    rx_bps: float | None = None
    tx_bps: float | None = None

    def total_bps(self) -> float | None:
        if self.rx_bps is not None and self.tx_bps is not None:
            return self.rx_bps + self.tx_bps
        if self.rx_bps is not None:
            return self.rx_bps
        return self.tx_bps

    def total_kbps(self) -> float | None:
        total = self.total_bps()
        return total / 1024 if total is not None else None


@dataclass(frozen=True)
class FrameCounters:
    """Fields read from a gfxinfo dump before the rate is known."""

    total_frames: int
    janky_frames: int | None = None
    percentile_90_ms: float | None = None
    percentile_95_ms: float | None = None


@dataclass(frozen=True)
class AdbDevice:
    id: str
    state: str
    model: str | None = None


@dataclass(frozen=True)
class AdbApp:
    package: str
    is_system: bool = False
