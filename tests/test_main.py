"""Tests for the command line entry point."""
from __future__ import annotations

import json
from unittest.mock import Mock, patch

import pytest

from system_monitor import main as main_module
from system_monitor.models import (
    CpuStats,
    DiskStats,
    GpuStats,
    MemoryStats,
    NetworkStats,
    ProcessInfo,
    Sample,
)

SAMPLE = Sample(
    ts=1_700_000_000_000,
    cpu=CpuStats(name="Intel Core i7-9700K", usage_pct=12.5, logical_cores=8, temp_c=55.0),
    memory=MemoryStats(total_b=16_000, used_b=12_000, available_b=4_000, usage_pct=75.0),
    disk=DiskStats.placeholder(),
    network=NetworkStats.placeholder(),
    gpus=(GpuStats.unavailable(),),
)


@pytest.fixture
def reconciler():
    reconciler = Mock()
    reconciler.collect.return_value = SAMPLE
    return reconciler


class TestBuildParser:
    def test_defaults(self):
        args = main_module.build_parser().parse_args([])

        assert args.config == "config/example.cfg"
        assert args.verbose == 0
        assert args.once is False
        assert args.processes is None
        assert args.limit == 25

    def test_process_sort_choices(self):
        with pytest.raises(SystemExit):
            main_module.build_parser().parse_args(["--processes", "gpu"])


class TestEmitSample:
    def test_publishes_json(self, reconciler):
        publisher = Mock()

        payload = main_module.emit_sample(reconciler, publisher, None, pretty=False)

        assert payload == SAMPLE.to_dict()
        publisher.publish.assert_called_once_with(json.dumps(SAMPLE.to_dict()))
        publisher.publish_discovery.assert_not_called()

    def test_discovery_on_request(self, reconciler):
        publisher = Mock()

        main_module.emit_sample(reconciler, publisher, None, pretty=False, discovery=True)

        publisher.publish_discovery.assert_called_once_with(SAMPLE.to_dict())

    def test_dump_json(self, reconciler, tmp_path):
        target = tmp_path / "sample.json"

        main_module.emit_sample(reconciler, None, str(target), pretty=True)

        assert json.loads(target.read_text(encoding="utf-8")) == SAMPLE.to_dict()


class TestSensorStatusReport:
    def test_report(self):
        source = Mock()
        source.status.return_value.to_dict.return_value = {"reachable": False}
        source.top_level_keys.return_value = ["error: refused"]
        source.sample_text.return_value = "error: refused"

        assert main_module.sensor_status_report(source) == {
            "status": {"reachable": False},
            "top_level_keys": ["error: refused"],
            "sample": "error: refused",
        }


class TestMain:
    def test_processes(self, capsys):
        processes = [ProcessInfo(10, "python", 5.0, 300, 0, 0)]
        with patch("sys.argv", ["system-monitor", "--processes", "memory", "--limit", "5"]), \
             patch.object(main_module, "configure_logging"), \
             patch.object(main_module, "top_processes", return_value=processes) as mock_top, \
             patch.object(main_module, "load_config") as mock_load:
            main_module.main()

        mock_top.assert_called_once_with("memory", 5)
        mock_load.assert_not_called()
        assert json.loads(capsys.readouterr().out) == [processes[0].to_dict()]

    def test_once_dry_run(self, reconciler, tmp_path):
        config_path = tmp_path / "monitor.cfg"
        config_path.write_text("[mqtt]\nhost = localhost\n", encoding="utf-8")
        with patch("sys.argv", ["system-monitor", "--config", str(config_path), "--once", "--dry-run"]), \
             patch.object(main_module, "configure_logging"), \
             patch.object(main_module, "build_reconciler", return_value=reconciler), \
             patch.object(main_module, "MqttPublisher") as mock_publisher, \
             patch.object(main_module, "TickScheduler") as mock_scheduler:
            main_module.main()

        reconciler.collect.assert_called_once()
        mock_publisher.assert_not_called()
        mock_scheduler.assert_not_called()

    def test_runs_scheduler(self, reconciler, tmp_path):
        config_path = tmp_path / "monitor.cfg"
        config_path.write_text("[publish]\ninterval_s = 2\n", encoding="utf-8")
        with patch("sys.argv", ["system-monitor", "--config", str(config_path)]), \
             patch.object(main_module, "configure_logging"), \
             patch.object(main_module, "build_reconciler", return_value=reconciler), \
             patch.object(main_module, "MqttPublisher") as mock_publisher, \
             patch.object(main_module, "TickScheduler") as mock_scheduler:
            mock_scheduler.return_value.interval_s = 2.0
            mock_scheduler.return_value.run_forever.side_effect = KeyboardInterrupt
            main_module.main()

        publisher = mock_publisher.return_value
        publisher.connect.assert_called_once()
        publisher.publish_discovery.assert_called_once()
        assert mock_scheduler.call_args[0][0] == 2.0
        mock_scheduler.return_value.stop.assert_called_once()
        publisher.disconnect.assert_called_once()

    def test_sensor_status(self, tmp_path, capsys):
        config_path = tmp_path / "monitor.cfg"
        config_path.write_text("[sources]\nlibrehardwaremonitor_url =\n", encoding="utf-8")
        with patch("sys.argv", ["system-monitor", "--config", str(config_path), "--sensor-status"]), \
             patch.object(main_module, "configure_logging"):
            main_module.main()

        report = json.loads(capsys.readouterr().out)
        assert report["status"]["reachable"] is False
        assert report["top_level_keys"] == ["error: sensor tree URL not configured"]
