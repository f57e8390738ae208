"""
Controller Manager
Owns the set of simulated controllers of one system
"""
import logging
from typing import Any, Dict, List, Optional

from scada.services.control.engine import ControlEngine

logger = logging.getLogger(__name__)


class ControllerManager:
    """
    Registry of ControlEngine instances keyed by controller id.

    Usage:
        manager = ControllerManager(tag_bus=bus)
        plc = manager.create("PLC1", scan_rate_ms=50)
        await manager.start_all()
    """

    def __init__(self, tag_bus=None, alarm_callback=None):
        self.tag_bus = tag_bus
        self.alarm_callback = alarm_callback
        self._controllers: Dict[str, ControlEngine] = {}

    def __len__(self) -> int:
        return len(self._controllers)

    def __contains__(self, controller_id: str) -> bool:
        return controller_id in self._controllers

    def create(self, controller_id: str, **options: Any) -> ControlEngine:
        """
        Create and register a controller.

        A controller registered under the same id is replaced; it must be
        stopped by the caller first.
        """
        options.setdefault("tag_bus", self.tag_bus)
        options.setdefault("alarm_callback", self.alarm_callback)
        return self.add(ControlEngine(controller_id, **options))

    def create_from_config(self, config) -> ControlEngine:
        """Create a controller (and its program) from a ControllerConfig"""
        engine = ControlEngine.from_config(
            config, tag_bus=self.tag_bus, alarm_callback=self.alarm_callback
        )
        return self.add(engine)

    def add(self, engine: ControlEngine) -> ControlEngine:
        previous = self._controllers.get(engine.controller_id)
        if previous is not None and previous.is_running:
            logger.warning(f"Replacing running controller {engine.controller_id}")
        self._controllers[engine.controller_id] = engine
        logger.info(f"Controller registered: {engine.controller_id} ({engine.name})")
        return engine

    def get(self, controller_id: str) -> Optional[ControlEngine]:
        return self._controllers.get(controller_id)

    def list(self) -> List[ControlEngine]:
        return list(self._controllers.values())

    async def remove(self, controller_id: str) -> bool:
        """Stop and unregister a controller; False if unknown"""
        engine = self._controllers.pop(controller_id, None)
        if engine is None:
            return False
        await engine.stop()
        logger.info(f"Controller removed: {controller_id}")
        return True

    async def start_all(self) -> None:
        for engine in self.list():
            await engine.start()

    async def stop_all(self) -> None:
        for engine in self.list():
            await engine.stop()

    def status(self) -> Dict[str, Any]:
        return {
            "count": len(self._controllers),
            "running": sum(1 for e in self._controllers.values() if e.is_running),
            "controllers": [engine.status() for engine in self._controllers.values()],
        }
