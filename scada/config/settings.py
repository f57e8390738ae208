"""
System Configuration Loader
Loads and parses system.yaml into typed configuration objects
"""
import logging
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field, asdict

from scada.core.error_handling import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "system.yaml"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = "logs/scada.log"
    json_format: bool = False
    console_output: bool = True


@dataclass
class TagBusConfig:
    """Tag bus configuration"""
    provider: str = "default"
    history_capacity: int = 1000
    slow_callback_ms: float = 50.0


@dataclass
class ControllerConfig:
    """Configuration of one simulated controller"""
    id: str
    name: Optional[str] = None
    scan_rate_ms: int = 100
    holding_registers: int = 1000
    input_registers: int = 1000
    coils: int = 1000
    discrete_inputs: int = 1000
    tag_prefix: Optional[str] = None
    mirror_addresses: List[str] = field(default_factory=list)
    seed: Optional[int] = None
    rungs: List[Dict[str, Any]] = field(default_factory=list)
    alarms: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class HistorianConfig:
    """Historian configuration"""
    db_path: str = "data/historian.db"
    buffer_size: int = 100
    flush_interval_ms: int = 5000
    max_backoff_ms: int = 60000
    cache_limit: int = 1000
    query_limit: int = 10000
    subscribe_pattern: Optional[str] = None
    retention_days: float = 7.0
    cleanup_interval_seconds: float = 3600.0


@dataclass
class SystemConfig:
    """Complete system configuration"""
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tag_bus: TagBusConfig = field(default_factory=TagBusConfig)
    historian: HistorianConfig = field(default_factory=HistorianConfig)
    controllers: List[ControllerConfig] = field(default_factory=list)


def _section(raw: Dict[str, Any], name: str, cls):
    """Build a dataclass section, rejecting unknown keys"""
    data = raw.get(name) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{name}' must be a mapping")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigurationError(
            f"Invalid '{name}' configuration: {e}", details={'section': name}
        ) from e


class SystemConfigLoader:
    """
    Load system configuration from a YAML file

    Usage:
        config = SystemConfigLoader.load("scada/config/system.yaml")

        print(config.historian.buffer_size)
        print(config.controllers[0].scan_rate_ms)
    """

    @staticmethod
    def load(config_path: Optional[str] = None) -> SystemConfig:
        """
        Load configuration from YAML file

        Args:
            config_path: Path to system.yaml (defaults to the packaged file)

        Returns:
            SystemConfig object

        Raises:
            ConfigurationError: If the YAML is malformed or a section is invalid
        """
        path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

        if not path.exists():
            logger.warning(
                f"System config file not found: {path}, "
                f"using default configuration"
            )
            return SystemConfig()

        try:
            with open(path, 'r') as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse config file {path}: {e}")
            raise ConfigurationError(
                f"Malformed YAML in {path}", details={'error': str(e)}
            ) from e

        if not raw_config:
            logger.warning("Empty config file, using defaults")
            return SystemConfig()

        config = SystemConfigLoader.from_dict(raw_config)
        logger.info(
            f"System configuration loaded from {path} "
            f"({len(config.controllers)} controllers)"
        )
        return config

    @staticmethod
    def from_dict(raw_config: Dict[str, Any]) -> SystemConfig:
        """Build a SystemConfig from an already-parsed mapping"""
        config = SystemConfig(
            logging=_section(raw_config, "logging", LoggingConfig),
            tag_bus=_section(raw_config, "tag_bus", TagBusConfig),
            historian=_section(raw_config, "historian", HistorianConfig),
        )

        for index, entry in enumerate(raw_config.get("controllers") or []):
            if not isinstance(entry, dict) or "id" not in entry:
                raise ConfigurationError(
                    f"Controller #{index} must be a mapping with an 'id'",
                    details={'index': index}
                )
            try:
                config.controllers.append(ControllerConfig(**entry))
            except TypeError as e:
                raise ConfigurationError(
                    f"Invalid controller '{entry.get('id')}': {e}",
                    details={'index': index}
                ) from e

        return config

    @staticmethod
    def validate(config: SystemConfig) -> tuple[bool, list]:
        """
        Validate configuration

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = []

        if config.tag_bus.history_capacity < 1:
            errors.append("tag_bus.history_capacity must be >= 1")

        if config.historian.buffer_size < 1:
            errors.append("historian.buffer_size must be >= 1")
        if config.historian.flush_interval_ms <= 0:
            errors.append("historian.flush_interval_ms must be > 0")
        if config.historian.cache_limit < 1:
            errors.append("historian.cache_limit must be >= 1")

        seen = set()
        for controller in config.controllers:
            if controller.id in seen:
                errors.append(f"Duplicate controller id: {controller.id}")
            seen.add(controller.id)
            if controller.scan_rate_ms <= 0:
                errors.append(f"{controller.id}: scan_rate_ms must be > 0")
            for bank in ("holding_registers", "input_registers", "coils", "discrete_inputs"):
                if getattr(controller, bank) < 1:
                    errors.append(f"{controller.id}: {bank} must be >= 1")

        return len(errors) == 0, errors

    @staticmethod
    def save(config: SystemConfig, config_path: str) -> None:
        """
        Save configuration to YAML file

        Args:
            config: SystemConfig to save
            config_path: Path to save to
        """
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            yaml.dump(asdict(config), f, default_flow_style=False, sort_keys=False)

        logger.info(f"System configuration saved to {config_path}")
