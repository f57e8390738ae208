"""
SCADA Core Entry Point
Wires the tag bus, controllers, historian and maintenance scheduler together
and runs them headless:

    python -m scada.main --config scada/config/system.yaml --log-level DEBUG
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from scada.config.settings import SystemConfig, SystemConfigLoader
from scada.core.error_handling import ConfigurationError, ScadaError
from scada.core.logging_config import setup_logging
from scada.services.control import ControllerManager
from scada.services.historian import Historian, SQLiteSampleStore
from scada.services.scheduler.task_scheduler import TaskScheduler, historian_retention_task
from scada.services.tagbus import TagBus

logger = logging.getLogger(__name__)

RETENTION_TASK = "historian_retention"


class ScadaSystem:
    """
    One running SCADA core.

    All components are created here and injected into each other; nothing
    is shared at module level.
    """

    def __init__(
        self,
        tag_bus: TagBus,
        controllers: ControllerManager,
        historian: Historian,
        scheduler: TaskScheduler
    ):
        self.tag_bus = tag_bus
        self.controllers = controllers
        self.historian = historian
        self.scheduler = scheduler
        self._unsubscribers: List = []
        self.running = False

    @classmethod
    def from_config(cls, config: SystemConfig) -> "ScadaSystem":
        """Build every component from a SystemConfig"""
        is_valid, errors = SystemConfigLoader.validate(config)
        if not is_valid:
            raise ConfigurationError("Invalid system configuration", details={'errors': errors})

        tag_bus = TagBus(
            provider=config.tag_bus.provider,
            history_capacity=config.tag_bus.history_capacity,
            slow_callback_ms=config.tag_bus.slow_callback_ms
        )

        hist_cfg = config.historian
        sample_store = SQLiteSampleStore.open(hist_cfg.db_path) if hist_cfg.db_path else None
        historian = Historian(
            sample_store=sample_store,
            buffer_size=hist_cfg.buffer_size,
            flush_interval_ms=hist_cfg.flush_interval_ms,
            max_backoff_ms=hist_cfg.max_backoff_ms,
            cache_limit=hist_cfg.cache_limit,
            query_limit=hist_cfg.query_limit
        )

        controllers = ControllerManager(tag_bus=tag_bus)
        for controller_config in config.controllers:
            controllers.create_from_config(controller_config)

        scheduler = TaskScheduler()
        scheduler.register_task(
            RETENTION_TASK,
            historian_retention_task(historian, hist_cfg.retention_days),
            interval_seconds=hist_cfg.cleanup_interval_seconds
        )

        system = cls(tag_bus, controllers, historian, scheduler)

        if hist_cfg.subscribe_pattern:
            patterns = [hist_cfg.subscribe_pattern]
        else:
            patterns = [f"{engine.tag_prefix.rstrip('/')}/.*" for engine in controllers.list()]
        for pattern in patterns:
            system._unsubscribers.append(historian.subscribe_to(tag_bus, pattern))

        return system

    async def start(self) -> None:
        if self.running:
            return
        logger.info("Starting SCADA core...")
        await self.historian.start()
        await self.scheduler.start()
        await self.controllers.start_all()
        self.running = True
        logger.info(f"SCADA core started with {len(self.controllers)} controller(s)")

    async def stop(self) -> None:
        """Stop controllers first so the final historian flush sees every sample"""
        if not self.running:
            return
        logger.info("Shutting down SCADA core...")
        await self.controllers.stop_all()
        await self.scheduler.stop()
        await self.historian.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self.historian.sample_store is not None:
            self.historian.sample_store.close()
        self.running = False
        logger.info("SCADA core shutdown complete")

    def status(self) -> Dict[str, Any]:
        return {
            'running': self.running,
            'controllers': self.controllers.status(),
            'tag_bus': self.tag_bus.get_statistics(),
            'historian': self.historian.get_statistics(),
            'scheduler': self.scheduler.get_task_status(),
        }


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the SCADA core headless")
    parser.add_argument("--config", default=None, help="Path to system.yaml")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    return parser.parse_args(argv)


async def run(config: SystemConfig) -> None:
    system = ScadaSystem.from_config(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops: fall back to KeyboardInterrupt
            pass

    await system.start()
    try:
        await stop_event.wait()
    finally:
        await system.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = SystemConfigLoader.load(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 2

    log_cfg = config.logging
    setup_logging(
        log_level=args.log_level or log_cfg.level,
        log_file=log_cfg.file,
        json_format=log_cfg.json_format,
        console_output=log_cfg.console_output
    )

    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except ScadaError as e:
        logger.error(f"SCADA core failed: {e.message}", extra={'error_code': e.error_code.name})
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
