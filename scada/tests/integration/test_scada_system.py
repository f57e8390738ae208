"""
Integration tests for the wired SCADA core
Controller scans -> tag bus -> historian -> SQLite
"""
import asyncio
import pytest

from scada.config.settings import (
    ControllerConfig,
    HistorianConfig,
    SystemConfig,
    SystemConfigLoader,
)
from scada.core.error_handling import ConfigurationError
from scada.main import RETENTION_TASK, ScadaSystem, parse_args


def make_config(tmp_path, **historian):
    return SystemConfig(
        historian=HistorianConfig(
            db_path=str(tmp_path / "historian.db"),
            buffer_size=historian.get("buffer_size", 20),
            flush_interval_ms=50,
        ),
        controllers=[
            ControllerConfig(
                id="PLC1",
                scan_rate_ms=10,
                tag_prefix="Plant/PLC1",
                mirror_addresses=["IR100", "C0"],
                seed=7,
                rungs=[
                    {"conditions": [{"address": "IR100", "type": "LT", "value": 90}],
                     "actions": [{"address": "C0", "value": 1}]},
                ],
                alarms=[
                    {"name": "TempLow", "address": "IR100", "type": "LOW", "setpoint": 50},
                ],
            )
        ],
    )


class TestScadaSystem:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_end_to_end(self, tmp_path):
        system = ScadaSystem.from_config(make_config(tmp_path))
        transitions = []
        plc = system.controllers.get("PLC1")
        plc.add_alarm_listener(transitions.append)

        await system.start()
        await asyncio.sleep(0.3)
        await system.stop()

        assert plc.scan_count > 0
        assert system.tag_bus.read("Plant/PLC1/C0").value == 1
        assert system.tag_bus.read("Plant/PLC1/Status/ScanCount").value == plc.scan_count

        # Temperature starts at 0, below the LOW setpoint
        assert transitions and transitions[0].active
        alarm_history = system.tag_bus.history("Plant/PLC1/Alarms/TempLow")
        assert [e.new_value for e in alarm_history] == [t.active for t in transitions]

        tag = "[default]Plant/PLC1/Status/ScanCount"
        assert tag in system.historian.list_tags()
        samples = system.historian.query(tag, 0, 1e12)
        assert [s.value for s in samples] == list(range(1, plc.scan_count + 1))
        assert system.historian.get_statistics()["buffer_size"] == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_samples_durable_after_stop(self, tmp_path):
        config = make_config(tmp_path, buffer_size=1000)
        system = ScadaSystem.from_config(config)

        await system.start()
        await asyncio.sleep(0.1)
        await system.stop()
        scans = system.controllers.get("PLC1").scan_count

        reopened = ScadaSystem.from_config(config)
        try:
            samples = reopened.historian.query("[default]Plant/PLC1/Status/ScanCount", 0, 1e12)
            assert len(samples) == scans
        finally:
            reopened.historian.sample_store.close()

    @pytest.mark.integration
    def test_controllers_sharing_id_prefix_historise_once(self, tmp_path):
        config = SystemConfig(
            historian=HistorianConfig(db_path=str(tmp_path / "historian.db")),
            controllers=[ControllerConfig(id="1"), ControllerConfig(id="10")],
        )
        system = ScadaSystem.from_config(config)
        try:
            assert system.controllers.get("10").scan() is True

            samples = system.historian.query("[default]PLC/10/Status/ScanCount", 0, 1e12)
            assert [s.value for s in samples] == [1]
            assert system.historian.query("[default]PLC/1/Status/ScanCount", 0, 1e12) == []
        finally:
            system.historian.sample_store.close()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_status_and_retention_task(self, tmp_path):
        system = ScadaSystem.from_config(make_config(tmp_path))

        assert await system.scheduler.run_task_now(RETENTION_TASK) is True

        status = system.status()
        assert status['controllers']['count'] == 1
        assert status['scheduler']['tasks'][RETENTION_TASK]['run_count'] == 1
        system.historian.sample_store.close()

    @pytest.mark.integration
    def test_invalid_config_rejected(self, tmp_path):
        config = make_config(tmp_path)
        config.controllers.append(ControllerConfig(id="PLC1"))

        with pytest.raises(ConfigurationError):
            ScadaSystem.from_config(config)

    @pytest.mark.integration
    def test_packaged_config_builds(self, tmp_path):
        config = SystemConfigLoader.load()
        config.historian.db_path = str(tmp_path / "h.db")

        system = ScadaSystem.from_config(config)
        try:
            plc = system.controllers.get("PLC1")
            assert len(plc.rungs) == 2
            assert [a["name"] for a in plc.alarms()] == ["TempHigh", "PressureDeviation"]
        finally:
            system.historian.sample_store.close()

    @pytest.mark.integration
    def test_parse_args(self):
        args = parse_args(["--config", "x.yaml", "--log-level", "DEBUG"])
        assert args.config == "x.yaml"
        assert args.log_level == "DEBUG"
