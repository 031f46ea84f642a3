"""perf-tap: Android app performance telemetry over adb."""

from perf_tap.adb import AdbTransport
from perf_tap.collector import MetricsCollector, build_payload
from perf_tap.config import AppConfig, load_config
from perf_tap.history import HistoryStore
from perf_tap.models import FrameStatistics, MetricKind, Snapshot
from perf_tap.mqtt_client import MqttPublisher
from perf_tap.schema import validate_payload

__all__ = [
    "AdbTransport",
    "AppConfig",
    "FrameStatistics",
    "HistoryStore",
    "MetricKind",
    "MetricsCollector",
    "MqttPublisher",
    "Snapshot",
    "build_payload",
    "load_config",
    "validate_payload",
]
