"""
Unit tests for error handling, logging and configuration loading
"""
import json
import logging
import pytest

from scada.config.settings import (
    ControllerConfig,
    SystemConfig,
    SystemConfigLoader,
)
from scada.core.error_handling import (
    AddressError,
    ConfigurationError,
    ErrorCode,
    HistorianStorageError,
    handle_errors,
)
from scada.core.logging_config import ColoredFormatter, JSONFormatter, setup_logging


class TestErrorHandling:

    @pytest.mark.unit
    def test_to_dict(self):
        error = AddressError("HR5000 out of range", details={'index': 5000})

        data = error.to_dict()

        assert data['error'] == 'AddressError'
        assert data['error_code'] == ErrorCode.ADDRESS_ERROR.value
        assert data['error_name'] == 'ADDRESS_ERROR'
        assert data['details'] == {'index': 5000}

    @pytest.mark.unit
    def test_storage_read_error_code(self):
        assert HistorianStorageError("x").error_code == ErrorCode.STORAGE_READ_ERROR

    @pytest.mark.unit
    def test_handle_errors_returns_default(self):
        @handle_errors(default_return=[])
        def failing():
            raise ConfigurationError("bad")

        assert failing() == []

    @pytest.mark.unit
    def test_handle_errors_reraises(self):
        @handle_errors(raise_on_error=True)
        def failing():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            failing()

    @pytest.mark.unit
    def test_handle_errors_passes_result(self):
        @handle_errors(default_return=0)
        def ok(x):
            return x * 2

        assert ok(4) == 8
        assert ok.__name__ == "ok"


class TestLogging:

    @pytest.mark.unit
    def test_json_formatter_includes_extras(self):
        record = logging.LogRecord("scada.test", logging.ERROR, __file__, 10, "boom", None, None)
        record.error_code = "ADDRESS_ERROR"

        data = json.loads(JSONFormatter().format(record))

        assert data['message'] == "boom"
        assert data['level'] == "ERROR"
        assert data['error_code'] == "ADDRESS_ERROR"

    @pytest.mark.unit
    def test_colored_formatter_restores_levelname(self):
        record = logging.LogRecord("scada.test", logging.WARNING, __file__, 10, "hi", None, None)

        output = ColoredFormatter('%(levelname)s %(message)s').format(record)

        assert "\033[33m" in output
        assert record.levelname == "WARNING"

    @pytest.mark.unit
    def test_setup_logging_writes_file(self, tmp_path):
        log_file = tmp_path / "logs" / "scada.log"
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging("DEBUG", log_file=str(log_file), json_format=True, console_output=False)
            logging.getLogger("scada.test").info("hello")
            for handler in root.handlers:
                handler.flush()
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers = saved_handlers
            root.setLevel(saved_level)

        lines = log_file.read_text().strip().splitlines()
        assert json.loads(lines[-1])['message'] == "hello"


class TestSystemConfig:

    @pytest.mark.unit
    def test_packaged_config_loads(self):
        config = SystemConfigLoader.load()

        assert config.tag_bus.history_capacity == 1000
        assert config.historian.buffer_size == 100
        assert config.historian.flush_interval_ms == 5000
        assert config.controllers[0].id == "PLC1"
        assert len(config.controllers[0].rungs) == 2
        assert SystemConfigLoader.validate(config) == (True, [])

    @pytest.mark.unit
    def test_missing_file_gives_defaults(self, tmp_path):
        config = SystemConfigLoader.load(str(tmp_path / "missing.yaml"))
        assert config == SystemConfig()

    @pytest.mark.unit
    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert SystemConfigLoader.load(str(path)) == SystemConfig()

    @pytest.mark.unit
    def test_malformed_yaml_raises(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("historian: [unclosed\n")

        with pytest.raises(ConfigurationError):
            SystemConfigLoader.load(str(path))

    @pytest.mark.unit
    def test_unknown_key_raises(self):
        with pytest.raises(ConfigurationError):
            SystemConfigLoader.from_dict({"historian": {"bufer_size": 5}})

    @pytest.mark.unit
    def test_controller_needs_id(self):
        with pytest.raises(ConfigurationError):
            SystemConfigLoader.from_dict({"controllers": [{"name": "nameless"}]})

    @pytest.mark.unit
    def test_validate_reports_errors(self):
        config = SystemConfig(controllers=[
            ControllerConfig(id="A", scan_rate_ms=0),
            ControllerConfig(id="A", coils=0),
        ])
        config.historian.buffer_size = 0

        is_valid, errors = SystemConfigLoader.validate(config)

        assert not is_valid
        assert "historian.buffer_size must be >= 1" in errors
        assert "Duplicate controller id: A" in errors
        assert "A: scan_rate_ms must be > 0" in errors
        assert "A: coils must be >= 1" in errors

    @pytest.mark.unit
    def test_save_and_reload(self, tmp_path):
        config = SystemConfig(controllers=[ControllerConfig(id="X", scan_rate_ms=25)])
        path = tmp_path / "out" / "system.yaml"

        SystemConfigLoader.save(config, str(path))

        assert SystemConfigLoader.load(str(path)) == config
