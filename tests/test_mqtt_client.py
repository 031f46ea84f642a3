"""Tests for the MQTT publisher."""
from __future__ import annotations

import json
from unittest.mock import Mock, patch

import paho.mqtt.client as mqtt
import pytest

from perf_tap.config import MqttConfig
from perf_tap.models import MetricKind, Snapshot
from perf_tap.mqtt_client import MqttPublisher


@pytest.fixture
def mqtt_config():
    return MqttConfig(
        host="broker.local",
        port=1883,
        base_topic="perf_tap",
        discovery_topic="homeassistant",
        client_id="perf-tap",
        username=None,
        password=None,
        qos=1,
        retain=False,
        tls_enabled=False,
        ca_cert=None,
        keepalive=30,
    )


@pytest.fixture
def publisher(mqtt_config):
    with patch("perf_tap.mqtt_client.mqtt.Client") as client_cls:
        client = client_cls.return_value
        client.publish.return_value = Mock(rc=mqtt.MQTT_ERR_SUCCESS)
        yield MqttPublisher(mqtt_config)


def test_last_will_is_offline(publisher):
    publisher.client.will_set.assert_called_once_with(
        "perf_tap/status", payload="offline", qos=1, retain=True
    )


def test_connect_uses_keepalive(publisher):
    publisher.connect()
    publisher.client.connect.assert_called_once_with("broker.local", 1883, keepalive=30)
    publisher.client.loop_start.assert_called_once()


def test_on_connect_publishes_online(publisher):
    publisher._on_connect(publisher.client, None, {}, Mock(is_failure=False), None)
    assert publisher.connected is True
    publisher.client.publish.assert_called_with(
        "perf_tap/status", payload="online", qos=1, retain=True
    )


def test_on_connect_failure(publisher):
    publisher._on_connect(publisher.client, None, {}, Mock(is_failure=True), None)
    assert publisher.connected is False
    publisher.client.publish.assert_not_called()


def test_publish_snapshot_topic(publisher):
    assert publisher.publish("192.168.1.20:5555", "com.example.app", "{}") is True
    publisher.client.publish.assert_called_once_with(
        "perf_tap/192.168.1.20_5555/com.example.app",
        payload="{}",
        qos=1,
        retain=False,
    )


def test_publish_failure(publisher):
    publisher.client.publish.return_value = Mock(rc=mqtt.MQTT_ERR_NO_CONN)
    assert publisher.publish("emulator-5554", "com.example.app", "{}") is False


def test_discovery_per_metric(publisher):
    publisher.publish_discovery(
        "emulator-5554", "com.example.app", [MetricKind.FPS, MetricKind.BATTERY_TEMP]
    )

    calls = publisher.client.publish.call_args_list
    assert [c[0][0] for c in calls] == [
        "homeassistant/sensor/perf-tap_emulator-5554/fps/config",
        "homeassistant/sensor/perf-tap_emulator-5554/battery_temp/config",
    ]
    fps_config = json.loads(calls[0][1]["payload"])
    assert fps_config["state_topic"] == "perf_tap/emulator-5554/com.example.app"
    assert fps_config["value_template"] == "{{ value_json.metrics.get('fps') }}"
    assert fps_config["unit_of_measurement"] == "fps"
    assert "device_class" not in fps_config
    temp_config = json.loads(calls[1][1]["payload"])
    assert temp_config["device_class"] == "temperature"
    assert calls[1][1]["retain"] is True


def test_disconnect_publishes_offline_when_connected(publisher):
    publisher._on_connect(publisher.client, None, {}, Mock(is_failure=False), None)
    publisher.client.publish.reset_mock()
    publisher.disconnect()
    publisher.client.publish.assert_called_once_with(
        "perf_tap/status", payload="offline", qos=1, retain=True
    )
    publisher.client.loop_stop.assert_called_once()
    publisher.client.disconnect.assert_called_once()


def test_discovery_tolerates_omitted_metrics(publisher):
    # First traffic sample: byte counts known, rates not yet.
    metrics = Snapshot(rx_bytes=100, tx_bytes=200).to_dict()
    assert "network_bps" not in metrics
    assert "battery_level" not in metrics

    publisher.publish_discovery(
        "emulator-5554", "com.example.app", [MetricKind.TRAFFIC, MetricKind.BATTERY]
    )

    templates = [
        json.loads(c[1]["payload"])["value_template"]
        for c in publisher.client.publish.call_args_list
    ]
    assert templates == [
        "{{ value_json.metrics.get('network_bps') }}",
        "{{ value_json.metrics.get('battery_level') }}",
    ]
