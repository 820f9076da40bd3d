from __future__ import annotations

import argparse
import json
import logging
import time
from typing import Any

from system_monitor.config import AppConfig, SourcesConfig, load_config
from system_monitor.hardware import HardwareAccess
from system_monitor.logging_utils import configure_logging, resolve_log_level
from system_monitor.mqtt_client import MqttPublisher
from system_monitor.probes import NvidiaSmiProbe, ThermalZoneProbe
from system_monitor.processes import DEFAULT_LIMIT, SORT_KEYS, top_processes
from system_monitor.reconciler import MetricReconciler
from system_monitor.scheduler import TickScheduler
from system_monitor.schema import validate_payload
from system_monitor.sensor_tree import SensorTreeSource

logger = logging.getLogger("system_monitor")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="System monitor metrics publisher")
    parser.add_argument(
        "--config",
        default="config/example.cfg",
        help="Path to CFG configuration file",
    )
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
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log samples without publishing to MQTT",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Collect and publish a single sample, then exit",
    )
    parser.add_argument(
        "--dump-json",
        help="Write the JSON sample to a file (overwrites on each tick)",
    )
    parser.add_argument(
        "--publish-status",
        metavar="STATUS",
        help="Publish a status (e.g., 'sleeping', 'online') to the availability topic and exit. "
             "Useful for system sleep/wake hooks.",
    )
    parser.add_argument(
        "--processes",
        choices=SORT_KEYS,
        help="Print the top processes by the given resource as JSON and exit",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=DEFAULT_LIMIT,
        help="Number of processes listed by --processes (1-100)",
    )
    parser.add_argument(
        "--sensor-status",
        action="store_true",
        help="Print sensor tree reachability, parsed values and raw structure, then exit",
    )
    return parser


def build_reconciler(sources: SourcesConfig) -> MetricReconciler:
    return MetricReconciler(
        hardware=HardwareAccess(sources),
        sensor_tree=SensorTreeSource(sources),
        nvidia_smi=NvidiaSmiProbe(sources),
        thermal_zone=ThermalZoneProbe(sources),
    )


def sensor_status_report(source: SensorTreeSource) -> dict[str, Any]:
    return {
        "status": source.status().to_dict(),
        "top_level_keys": source.top_level_keys(),
        "sample": source.sample_text(),
    }


def emit_sample(
    reconciler: MetricReconciler,
    publisher: MqttPublisher | None,
    dump_json: str | None,
    pretty: bool,
    discovery: bool = False,
) -> dict[str, Any]:
    payload = reconciler.collect().to_dict()
    schema_errors = validate_payload(payload)
    if schema_errors:
        logger.warning("Schema validation failed with %s errors.", len(schema_errors))
        logger.debug("Schema errors: %s", schema_errors)
    else:
        logger.debug("Schema validation passed.")
    payload_json = json.dumps(payload, indent=2) if pretty else json.dumps(payload)
    if dump_json:
        with open(dump_json, "w", encoding="utf-8") as handle:
            handle.write(payload_json)
    if publisher is None:
        logger.debug("Sample: %s", payload_json)
    else:
        if discovery:
            publisher.publish_discovery(payload)
        publisher.publish(payload_json)
    return payload


def publish_status(config: AppConfig, status: str) -> None:
    publisher = MqttPublisher(config.mqtt)
    publisher.connect()
    # Wait briefly for connection to establish
    time.sleep(0.5)
    if publisher.connected:
        publisher.publish_status(status)
        # Wait for message delivery
        time.sleep(0.5)
    else:
        logger.error("Failed to connect to MQTT broker")
    publisher.disconnect()


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    level = resolve_log_level(args.verbose, args.log_level)
    configure_logging(level)

    if args.processes:
        processes = top_processes(args.processes, args.limit)
        print(json.dumps([process.to_dict() for process in processes], indent=2))
        return

    config = load_config(args.config)
    pretty_print = level <= logging.DEBUG

    if args.publish_status:
        publish_status(config, args.publish_status)
        return

    if args.sensor_status:
        report = sensor_status_report(SensorTreeSource(config.sources))
        print(json.dumps(report, indent=2))
        return

    reconciler = build_reconciler(config.sources)
    publisher = None if args.dry_run else MqttPublisher(config.mqtt)
    if publisher is not None:
        publisher.connect()
    else:
        logger.info("Dry run enabled; skipping MQTT publish.")

    emit_sample(
        reconciler,
        publisher,
        args.dump_json,
        pretty_print,
        discovery=config.mqtt.discovery,
    )

    if args.once:
        logger.info("Single-run mode enabled; exiting after initial sample.")
        if publisher is not None:
            publisher.disconnect()
        return

    scheduler = TickScheduler(
        config.publish.interval_s,
        lambda: emit_sample(reconciler, publisher, args.dump_json, pretty_print),
    )
    logger.info("System monitor started. Publishing every %s seconds.", scheduler.interval_s)

    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        logger.info("System monitor stopped.")
    finally:
        scheduler.stop()
        if publisher is not None:
            publisher.disconnect()


if __name__ == "__main__":
    main()
