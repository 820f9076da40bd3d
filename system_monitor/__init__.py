"""System monitor host metrics publisher."""

from system_monitor.config import AppConfig, load_config
from system_monitor.models import Sample
from system_monitor.mqtt_client import MqttPublisher
from system_monitor.reconciler import MetricReconciler
from system_monitor.schema import validate_payload
from system_monitor.sensor_tree import SensorReadings, parse_sensor_tree

__all__ = [
    "AppConfig",
    "MetricReconciler",
    "MqttPublisher",
    "Sample",
    "SensorReadings",
    "load_config",
    "parse_sensor_tree",
    "validate_payload",
]
