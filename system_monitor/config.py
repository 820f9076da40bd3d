from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import configparser

DEFAULT_LHM_URL = "http://localhost:8085/data.json"


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
    keepalive: int = 60
    discovery: bool = True


@dataclass(frozen=True)
class PublishConfig:
    interval_s: float


@dataclass(frozen=True)
class SourcesConfig:
    librehardwaremonitor_url: str | None = DEFAULT_LHM_URL
    request_timeout_s: float = 5.0
    sensor_tree_ttl_ms: int = 1000
    nvidia_smi_path: str = "nvidia-smi"
    nvidia_smi_timeout_s: float = 2.0
    nvidia_smi_ttl_ms: int = 800
    powershell_path: str = "powershell"
    thermal_zone_timeout_s: float = 5.0
    thermal_zone_ttl_ms: int = 3000
    lspci_path: str = "lspci"
    quiet_log_interval_s: float = 60.0


@dataclass(frozen=True)
class AppConfig:
    mqtt: MqttConfig
    publish: PublishConfig
    sources: SourcesConfig


def _get_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def load_config(path: str | Path) -> AppConfig:
    parser = configparser.ConfigParser()
    read_files = parser.read(path)
    if not read_files:
        raise FileNotFoundError(f"Config file not found: {path}")

    mqtt = MqttConfig(
        host=parser.get("mqtt", "host", fallback="localhost"),
        port=parser.getint("mqtt", "port", fallback=1883),
        base_topic=parser.get("mqtt", "base_topic", fallback="system-monitor"),
        discovery_topic=parser.get("mqtt", "discovery_topic", fallback="homeassistant"),
        client_id=parser.get("mqtt", "client_id", fallback="system-monitor"),
        username=_get_optional(parser.get("mqtt", "username", fallback=None)),
        password=_get_optional(parser.get("mqtt", "password", fallback=None)),
        qos=parser.getint("mqtt", "qos", fallback=0),
        retain=parser.getboolean("mqtt", "retain", fallback=False),
        tls_enabled=parser.getboolean("mqtt", "tls", fallback=False),
        ca_cert=_get_optional(parser.get("mqtt", "ca_cert", fallback=None)),
        keepalive=parser.getint("mqtt", "keepalive", fallback=60),
        discovery=parser.getboolean("mqtt", "discovery", fallback=True),
    )

    publish = PublishConfig(
        interval_s=parser.getfloat("publish", "interval_s", fallback=1.0),
    )

    # An explicitly blank URL disables the sensor-tree source
    sources = SourcesConfig(
        librehardwaremonitor_url=_get_optional(
            parser.get("sources", "librehardwaremonitor_url", fallback=DEFAULT_LHM_URL)
        ),
        request_timeout_s=parser.getfloat("sources", "request_timeout_s", fallback=5.0),
        sensor_tree_ttl_ms=parser.getint("sources", "sensor_tree_ttl_ms", fallback=1000),
        nvidia_smi_path=parser.get("sources", "nvidia_smi_path", fallback="nvidia-smi"),
        nvidia_smi_timeout_s=parser.getfloat("sources", "nvidia_smi_timeout_s", fallback=2.0),
        nvidia_smi_ttl_ms=parser.getint("sources", "nvidia_smi_ttl_ms", fallback=800),
        powershell_path=parser.get("sources", "powershell_path", fallback="powershell"),
        thermal_zone_timeout_s=parser.getfloat(
            "sources", "thermal_zone_timeout_s", fallback=5.0
        ),
        thermal_zone_ttl_ms=parser.getint("sources", "thermal_zone_ttl_ms", fallback=3000),
        lspci_path=parser.get("sources", "lspci_path", fallback="lspci"),
        quiet_log_interval_s=parser.getfloat(
            "sources", "quiet_log_interval_s", fallback=60.0
        ),
    )

    return AppConfig(mqtt=mqtt, publish=publish, sources=sources)
