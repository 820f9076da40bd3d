from __future__ import annotations

import json
import logging
import ssl
from typing import Any

import paho.mqtt.client as mqtt

from system_monitor.config import MqttConfig


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

        # Last Will and Testament for availability
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
    def stats_topic(self) -> str:
        return f"{self.config.base_topic}/stats"

    @property
    def connected(self) -> bool:
        return self._connected

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
                "Unexpectedly disconnected from MQTT broker: %s. "
                "Will attempt to reconnect.",
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
        # Background network loop handles reconnection
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

    def publish_status(self, status: str) -> bool:
        """Publish a custom status to the availability topic.

        Args:
            status: Status string (e.g., "online", "offline", "sleeping")

        Returns:
            True if publish succeeded, False otherwise.
        """
        self.logger.info("Publishing status '%s' to %s", status, self.availability_topic)
        result = self.client.publish(
            self.availability_topic,
            payload=status,
            qos=1,
            retain=True,
        )
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.error("Failed to publish status, error code: %s", result.rc)
            return False
        return True

    def publish(self, payload: str) -> bool:
        if not self._connected:
            self.logger.warning(
                "Not connected to MQTT broker, message may be queued"
            )
        self.logger.debug("Publishing sample to %s", self.stats_topic)
        result = self.client.publish(
            self.stats_topic,
            payload=payload,
            qos=self.config.qos,
            retain=self.config.retain,
        )
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.error("Failed to publish message, error code: %s", result.rc)
            return False
        return True

    def discovery_entities(self, sample: dict[str, Any]) -> list[tuple[str, dict[str, Any]]]:
        """Home Assistant sensor configs for the headline metrics of a sample."""
        device_id = self.config.client_id
        device = {
            "identifiers": [device_id],
            "name": device_id,
            "model": sample.get("cpu", {}).get("name"),
        }
        sensors: list[tuple[str, str, str, str | None, str | None]] = [
            ("cpu_usage", "CPU Usage", "{{ value_json.cpu.usage_pct }}", "%", None),
            ("cpu_temp", "CPU Temperature", "{{ value_json.cpu.temp_c }}", "°C", "temperature"),
            ("memory_usage", "Memory Usage", "{{ value_json.memory.usage_pct }}", "%", None),
        ]
        for index, gpu in enumerate(sample.get("gpus", [])):
            label = gpu.get("name") or f"GPU {index}"
            sensors.append(
                (
                    f"gpu{index}_usage",
                    f"{label} Usage",
                    f"{{{{ value_json.gpus[{index}].usage_pct }}}}",
                    "%",
                    None,
                )
            )
            sensors.append(
                (
                    f"gpu{index}_temp",
                    f"{label} Temperature",
                    f"{{{{ value_json.gpus[{index}].temp_c }}}}",
                    "°C",
                    "temperature",
                )
            )

        entities = []
        for key, name, template, unit, device_class in sensors:
            payload: dict[str, Any] = {
                "name": name,
                "unique_id": f"{device_id}_{key}",
                "state_topic": self.stats_topic,
                "value_template": template,
                "unit_of_measurement": unit,
                "availability_topic": self.availability_topic,
                "payload_available": "online",
                "payload_not_available": "offline",
                "device": device,
            }
            if device_class:
                payload["device_class"] = device_class
            topic = f"{self.config.discovery_topic}/sensor/{device_id}/{key}/config"
            entities.append((topic, payload))
        return entities

    def publish_discovery(self, sample: dict[str, Any]) -> None:
        for topic, payload in self.discovery_entities(sample):
            self.logger.debug("Publishing Home Assistant discovery to %s", topic)
            self.client.publish(
                topic,
                payload=json.dumps(payload),
                qos=self.config.qos,
                retain=True,
            )
