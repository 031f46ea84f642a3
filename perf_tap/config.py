from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import configparser

from perf_tap.models import MetricKind


@dataclass(frozen=True)
class MqttConfig:
    host: str
    port: int
    base_topic: str
    discovery_topic: str
    client_id: str
    username: str | None
    password: str | None
    qos: int
    retain: bool
    tls_enabled: bool
    ca_cert: str | None
    keepalive: int


@dataclass(frozen=True)
class PublishConfig:
    interval_s: float


@dataclass(frozen=True)
class AdbConfig:
    path: str | None
    bundled_path: str | None
    timeout_s: float


@dataclass(frozen=True)
class CollectorConfig:
    devices: list[str]
    package: str | None
    metrics: list[MetricKind]
    capture_raw: bool
    history_ttl_s: float | None
    history_max_entries: int | None
    history_lock_timeout_s: float


@dataclass(frozen=True)
class AppConfig:
    adb: AdbConfig
    collector: CollectorConfig
    publish: PublishConfig
    mqtt: MqttConfig | None


def _get_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def _get_list(value: str | None) -> list[str]:
    if value is None:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _get_optional_float(value: str | None) -> float | None:
    value = _get_optional(value)
    return float(value) if value is not None else None


def _get_optional_int(value: str | None) -> int | None:
    value = _get_optional(value)
    return int(value) if value is not None else None


def _load_mqtt(parser: configparser.ConfigParser) -> MqttConfig | None:
    if not parser.has_section("mqtt"):
        return None
    section = parser["mqtt"]
    return MqttConfig(
        host=section.get("host", "localhost"),
        port=section.getint("port", 1883),
        base_topic=section.get("base_topic", "perf_tap"),
        discovery_topic=section.get("discovery_topic", "homeassistant"),
        client_id=section.get("client_id", "perf-tap"),
        username=_get_optional(section.get("username")),
        password=_get_optional(section.get("password")),
        qos=section.getint("qos", 0),
        retain=section.getboolean("retain", False),
        tls_enabled=section.getboolean("tls", False),
        ca_cert=_get_optional(section.get("ca_cert")),
        keepalive=section.getint("keepalive", 60),
    )


def parse_config(parser: configparser.ConfigParser) -> AppConfig:
    # Every section is optional; missing keys fall back to defaults.
    adb = AdbConfig(
        path=_get_optional(parser.get("adb", "path", fallback="adb")),
        bundled_path=_get_optional(parser.get("adb", "bundled_path", fallback=None)),
        timeout_s=parser.getfloat("adb", "timeout_s", fallback=10.0),
    )

    collector = CollectorConfig(
        devices=_get_list(parser.get("collector", "devices", fallback=None)),
        package=_get_optional(parser.get("collector", "package", fallback=None)),
        metrics=MetricKind.parse_list(
            _get_optional(parser.get("collector", "metrics", fallback=None))
        ),
        capture_raw=parser.getboolean("collector", "capture_raw", fallback=False),
        history_ttl_s=_get_optional_float(
            parser.get("collector", "history_ttl_s", fallback=None)
        ),
        history_max_entries=_get_optional_int(
            parser.get("collector", "history_max_entries", fallback=None)
        ),
        history_lock_timeout_s=parser.getfloat(
            "collector", "history_lock_timeout_s", fallback=1.0
        ),
    )

    publish = PublishConfig(
        interval_s=parser.getfloat("publish", "interval_s", fallback=2.0),
    )

    return AppConfig(adb=adb, collector=collector, publish=publish, mqtt=_load_mqtt(parser))


def load_config(path: str | Path | None) -> AppConfig:
    """Load an INI config file. `None` yields the defaults."""
    parser = configparser.ConfigParser()
    if path is not None:
        read_files = parser.read(path)
        if not read_files:
            raise FileNotFoundError(f"Config file not found: {path}")
    return parse_config(parser)
