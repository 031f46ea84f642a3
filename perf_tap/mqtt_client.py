from __future__ import annotations

import json
import logging
import re
import ssl
from typing import Any, Iterable

import paho.mqtt.client as mqtt

from perf_tap.config import MqttConfig
from perf_tap.models import MetricKind

# Home Assistant sensor metadata per metric: (name, unit, device_class, json key)
SENSORS: dict[MetricKind, tuple[str, str | None, str | None, str]] = {
    MetricKind.FPS: ("FPS", "fps", None, "fps"),
    MetricKind.CPU: ("CPU", "%", None, "cpu"),
    MetricKind.POWER: ("Power", "mA", "current", "power"),
    MetricKind.MEMORY: ("Memory", "MB", "data_size", "memory_mb"),
    MetricKind.NETWORK: ("Network", "kB/s", "data_rate", "network_kbps"),
    MetricKind.BATTERY: ("Battery", "%", "battery", "battery_level"),
    MetricKind.BATTERY_TEMP: ("Battery temperature", "°C", "temperature", "battery_temp_c"),
    MetricKind.TRAFFIC: ("Traffic", "B/s", "data_rate", "network_bps"),
}


def _topic_part(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", value)


class MqttPublisher:
    def __init__(self, config: MqttConfig) -> None:
        self.config = config
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv311,
        )
        self.logger = logging.getLogger(self.__class__.__name__)
        self._connected = False

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        if config.username:
            self.client.username_pw_set(config.username, config.password)
        if config.tls_enabled:
            self.client.tls_set(
                ca_certs=config.ca_cert,
                cert_reqs=ssl.CERT_REQUIRED,
            )

        self.client.will_set(
            self.availability_topic,
            payload="offline",
            qos=1,
            retain=True,
        )
        self.client.reconnect_delay_set(min_delay=1, max_delay=120)

    @property
    def availability_topic(self) -> str:
        return f"{self.config.base_topic}/status"

    @property
    def connected(self) -> bool:
        return self._connected

    def state_topic(self, device_id: str, package: str | None) -> str:
        return (
            f"{self.config.base_topic}/{_topic_part(device_id)}/"
            f"{_topic_part(package or 'device')}"
        )

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        if not reason_code.is_failure:
            self._connected = True
            self.logger.info(
                "Connected to MQTT broker %s:%s", self.config.host, self.config.port
            )
            self.client.publish(
                self.availability_topic,
                payload="online",
                qos=1,
                retain=True,
            )
        else:
            self._connected = False
            self.logger.error("Failed to connect to MQTT broker: %s", reason_code)

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        self._connected = False
        if not reason_code.is_failure:
            self.logger.info("Disconnected from MQTT broker (clean)")
        else:
            self.logger.warning(
                "Unexpectedly disconnected from MQTT broker: %s. Will attempt to reconnect.",
                reason_code,
            )

    def connect(self) -> None:
        self.logger.info(
            "Connecting to MQTT broker %s:%s", self.config.host, self.config.port
        )
        self.client.connect(
            self.config.host,
            self.config.port,
            keepalive=self.config.keepalive,
        )
        # Background network loop handles reconnects.
        self.client.loop_start()

    def disconnect(self) -> None:
        if self._connected:
            self.client.publish(
                self.availability_topic,
                payload="offline",
                qos=1,
                retain=True,
            )
        self.client.loop_stop()
        self.client.disconnect()
        self.logger.info("Disconnected from MQTT broker")

    def publish(self, device_id: str, package: str | None, payload: str) -> bool:
        if not self._connected:
            self.logger.warning("Not connected to MQTT broker, message may be queued")
        topic = self.state_topic(device_id, package)
        self.logger.debug("Publishing snapshot to %s", topic)
        result = self.client.publish(
            topic,
            payload=payload,
            qos=self.config.qos,
            retain=self.config.retain,
        )
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.error("Failed to publish message, error code: %s", result.rc)
            return False
        return True

    def publish_discovery(
        self, device_id: str, package: str | None, kinds: Iterable[MetricKind]
    ) -> None:
        """Announce one Home Assistant sensor per requested metric."""
        state_topic = self.state_topic(device_id, package)
        object_id = f"{self.config.client_id}_{_topic_part(device_id)}"
        device = {
            "identifiers": [object_id],
            "name": f"{device_id} {package}" if package else device_id,
            "model": package,
            "manufacturer": "Android",
        }
        for kind in kinds:
            name, unit, device_class, key = SENSORS[kind]
            config: dict[str, Any] = {
                "name": name,
                "unique_id": f"{object_id}_{_topic_part(package or 'device')}_{kind.value}",
                "state_topic": state_topic,
                # Optional metrics are left out of the payload until known.
                "value_template": f"{{{{ value_json.metrics.get('{key}') }}}}",
                "availability_topic": self.availability_topic,
                "payload_available": "online",
                "payload_not_available": "offline",
                "state_class": "measurement",
                "device": device,
            }
            if unit:
                config["unit_of_measurement"] = unit
            if device_class:
                config["device_class"] = device_class
            topic = f"{self.config.discovery_topic}/sensor/{object_id}/{kind.value}/config"
            self.logger.debug("Publishing Home Assistant discovery to %s", topic)
            self.client.publish(
                topic,
                payload=json.dumps(config),
                qos=self.config.qos,
                retain=True,
            )
