"""Tests for the MQTT publisher and Home Assistant discovery."""
from __future__ import annotations

import json
from unittest.mock import Mock, patch

import paho.mqtt.client as mqtt
import pytest

from system_monitor.config import MqttConfig
from system_monitor.mqtt_client import MqttPublisher


@pytest.fixture
def mqtt_config():
    return MqttConfig(
        host="broker.lan",
        port=1883,
        base_topic="hosts/desktop",
        discovery_topic="homeassistant",
        client_id="desktop",
        username="monitor",
        password="secret",
        qos=1,
        retain=False,
        tls_enabled=False,
        ca_cert=None,
    )


@pytest.fixture
def publisher(mqtt_config):
    with patch("system_monitor.mqtt_client.mqtt.Client") as mock_client_cls:
        mock_client_cls.return_value.publish.return_value = Mock(rc=mqtt.MQTT_ERR_SUCCESS)
        yield MqttPublisher(mqtt_config)


SAMPLE = {
    "cpu": {"name": "AMD Ryzen 7 5800X", "usage_pct": 10.0, "temp_c": 55.0},
    "memory": {"usage_pct": 40.0},
    "gpus": [{"name": "NVIDIA GeForce GTX 1650", "usage_pct": 3.0, "temp_c": 48.0}],
}


class TestMqttPublisher:
    def test_topics(self, publisher):
        assert publisher.stats_topic == "hosts/desktop/stats"
        assert publisher.availability_topic == "hosts/desktop/status"

    def test_client_setup(self, publisher):
        publisher.client.username_pw_set.assert_called_once_with("monitor", "secret")
        publisher.client.will_set.assert_called_once_with(
            "hosts/desktop/status", payload="offline", qos=1, retain=True
        )
        publisher.client.tls_set.assert_not_called()

    def test_connect_starts_loop(self, publisher):
        publisher.connect()

        publisher.client.connect.assert_called_once_with("broker.lan", 1883, keepalive=60)
        publisher.client.loop_start.assert_called_once()

    def test_on_connect_publishes_online(self, publisher):
        publisher._on_connect(publisher.client, None, {}, Mock(is_failure=False))

        assert publisher.connected
        publisher.client.publish.assert_called_once_with(
            "hosts/desktop/status", payload="online", qos=1, retain=True
        )

    def test_on_connect_failure(self, publisher):
        publisher._on_connect(publisher.client, None, {}, Mock(is_failure=True))

        assert not publisher.connected
        publisher.client.publish.assert_not_called()

    def test_on_disconnect(self, publisher):
        publisher._connected = True
        publisher._on_disconnect(publisher.client, None, {}, Mock(is_failure=True))
        assert not publisher.connected

    def test_publish_sample(self, publisher):
        assert publisher.publish('{"ts": 1}') is True

        publisher.client.publish.assert_called_once_with(
            "hosts/desktop/stats", payload='{"ts": 1}', qos=1, retain=False
        )

    def test_publish_failure(self, publisher):
        publisher.client.publish.return_value = Mock(rc=mqtt.MQTT_ERR_NO_CONN)
        assert publisher.publish("{}") is False

    def test_publish_status(self, publisher):
        assert publisher.publish_status("sleeping") is True
        publisher.client.publish.assert_called_once_with(
            "hosts/desktop/status", payload="sleeping", qos=1, retain=True
        )

    def test_disconnect_marks_offline(self, publisher):
        publisher._connected = True
        publisher.disconnect()

        publisher.client.publish.assert_called_once_with(
            "hosts/desktop/status", payload="offline", qos=1, retain=True
        )
        publisher.client.loop_stop.assert_called_once()
        publisher.client.disconnect.assert_called_once()

    def test_discovery_entities(self, publisher):
        entities = dict(publisher.discovery_entities(SAMPLE))

        assert sorted(entities) == [
            "homeassistant/sensor/desktop/cpu_temp/config",
            "homeassistant/sensor/desktop/cpu_usage/config",
            "homeassistant/sensor/desktop/gpu0_temp/config",
            "homeassistant/sensor/desktop/gpu0_usage/config",
            "homeassistant/sensor/desktop/memory_usage/config",
        ]
        gpu_temp = entities["homeassistant/sensor/desktop/gpu0_temp/config"]
        assert gpu_temp["name"] == "NVIDIA GeForce GTX 1650 Temperature"
        assert gpu_temp["value_template"] == "{{ value_json.gpus[0].temp_c }}"
        assert gpu_temp["device_class"] == "temperature"
        assert gpu_temp["state_topic"] == "hosts/desktop/stats"
        assert gpu_temp["device"]["model"] == "AMD Ryzen 7 5800X"
        assert "device_class" not in entities["homeassistant/sensor/desktop/cpu_usage/config"]

    def test_publish_discovery_retained(self, publisher):
        publisher.publish_discovery(SAMPLE)

        assert publisher.client.publish.call_count == 5
        topic = publisher.client.publish.call_args_list[0][0][0]
        kwargs = publisher.client.publish.call_args_list[0][1]
        assert topic == "homeassistant/sensor/desktop/cpu_usage/config"
        assert kwargs["retain"] is True
        assert json.loads(kwargs["payload"])["unique_id"] == "desktop_cpu_usage"
