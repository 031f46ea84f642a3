from __future__ import annotations

import argparse
from concurrent.futures import ThreadPoolExecutor
import json
import logging
import time
from typing import Any

from perf_tap.adb import AdbTransport
from perf_tap.collector import MetricsCollector, build_payload
from perf_tap.config import AppConfig, load_config
from perf_tap.errors import AdbError
from perf_tap.history import HistoryStore
from perf_tap.logging_utils import configure_logging, resolve_log_level
from perf_tap.models import MetricKind
from perf_tap.mqtt_client import MqttPublisher
from perf_tap.schema import validate_payload

logger = logging.getLogger("perf_tap")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Android performance telemetry over adb")
    parser.add_argument("--config", help="Path to CFG configuration file")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "-d",
        "--device",
        action="append",
        help="Device serial to sample (repeatable); defaults to every attached device",
    )
    parser.add_argument("-p", "--package", help="Package name of the app under test")
    parser.add_argument(
        "-m",
        "--metrics",
        help="Comma separated metrics: " + ",".join(kind.value for kind in MetricKind),
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List attached devices and exit",
    )
    parser.add_argument(
        "--list-apps",
        action="store_true",
        help="List installed packages on the device and exit",
    )
    parser.add_argument(
        "--system",
        action="store_true",
        help="Include system packages with --list-apps",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log payloads without publishing to MQTT",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Collect a single snapshot per device, then exit",
    )
    parser.add_argument(
        "--dump-json",
        help="Write the JSON payloads to a file (overwrites on each loop)",
    )
    return parser


def build_transport(config: AppConfig) -> AdbTransport:
    return AdbTransport(
        adb_path=config.adb.path,
        bundled_path=config.adb.bundled_path,
        timeout_s=config.adb.timeout_s,
    )


def build_collector(config: AppConfig, transport: AdbTransport) -> MetricsCollector:
    history = HistoryStore(
        ttl_s=config.collector.history_ttl_s,
        max_entries=config.collector.history_max_entries,
        lock_timeout_s=config.collector.history_lock_timeout_s,
    )
    return MetricsCollector(
        transport, history=history, capture_raw=config.collector.capture_raw
    )


def resolve_devices(transport: AdbTransport, requested: list[str]) -> list[str]:
    if requested:
        return requested
    return [device.id for device in transport.list_devices() if device.state == "device"]


def collect_payloads(
    collector: MetricsCollector,
    devices: list[str],
    package: str,
    kinds: list[MetricKind],
) -> list[dict[str, Any]]:
    def collect_one(device_id: str) -> dict[str, Any]:
        snapshot = collector.collect(device_id, package, kinds)
        return build_payload(device_id, package, snapshot)

    if len(devices) == 1:
        return [collect_one(devices[0])]
    with ThreadPoolExecutor(max_workers=len(devices)) as executor:
        return list(executor.map(collect_one, devices))


def _check_schema(payload: dict[str, Any]) -> None:
    schema_errors = validate_payload(payload)
    if schema_errors:
        logger.warning("Schema validation failed with %s errors.", len(schema_errors))
        logger.debug("Schema errors: %s", schema_errors)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = resolve_log_level(args.verbose, args.log_level)
    configure_logging(level, args.log_file)
    config = load_config(args.config)
    pretty_print = level <= logging.DEBUG
    transport = build_transport(config)

    try:
        if args.list_devices:
            for device in transport.list_devices():
                print(f"{device.id}\t{device.state}\t{device.model or ''}")
            return 0

        devices = resolve_devices(transport, args.device or config.collector.devices)
        if not devices:
            logger.error("No device attached.")
            return 1

        if args.list_apps:
            for app in transport.list_packages(devices[0], include_system=args.system):
                print(f"{app.package}{'  (system)' if app.is_system else ''}")
            return 0
    except AdbError as exc:
        logger.error("adb unavailable: %s", exc)
        return 1

    package = args.package or config.collector.package
    if not package:
        parser.error("a package is required (--package or [collector] package)")
    try:
        kinds = MetricKind.parse_list(args.metrics) if args.metrics else config.collector.metrics
    except ValueError as exc:
        parser.error(str(exc))

    collector = build_collector(config, transport)
    publisher = None
    if config.mqtt is not None and not args.dry_run:
        publisher = MqttPublisher(config.mqtt)
        publisher.connect()
        for device_id in devices:
            publisher.publish_discovery(device_id, package, kinds)
    elif config.mqtt is None:
        logger.info("No [mqtt] section configured; payloads are only logged.")

    interval = max(0.5, config.publish.interval_s)
    logger.info(
        "Sampling %s on %s every %ss.",
        ",".join(kind.value for kind in kinds),
        ", ".join(devices),
        interval,
    )

    try:
        while True:
            payloads = collect_payloads(collector, devices, package, kinds)
            for payload in payloads:
                _check_schema(payload)
                payload_json = (
                    json.dumps(payload, indent=2) if pretty_print else json.dumps(payload)
                )
                if publisher is not None:
                    publisher.publish(payload["device"], package, payload_json)
                else:
                    logger.info("Payload: %s", payload_json)
            if args.dump_json:
                with open(args.dump_json, "w", encoding="utf-8") as handle:
                    json.dump(payloads, handle, indent=2)
            if args.once:
                break
            time.sleep(interval)
    except KeyboardInterrupt:
        logger.info("perf-tap stopped.")
    finally:
        if publisher is not None:
            publisher.disconnect()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
