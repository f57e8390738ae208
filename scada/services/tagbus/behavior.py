"""
Tag Behaviors
Named display behaviors (auto refresh, fullscreen) attached to tags and
merged by precedence when several apply to the same element.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Behavior:
    """
    Behavior flags. ``None`` means "not set" so that merging only
    overrides the fields a definition actually declares.
    """
    refresh: Optional[bool] = None
    interval: Optional[float] = None  # seconds
    fullscreen: Optional[bool] = None

    def merged_with(self, other: "Behavior") -> "Behavior":
        """Return a copy where every field set on ``other`` wins"""
        return Behavior(
            refresh=other.refresh if other.refresh is not None else self.refresh,
            interval=other.interval if other.interval is not None else self.interval,
            fullscreen=other.fullscreen if other.fullscreen is not None else self.fullscreen,
        )

    def resolved(self) -> "Behavior":
        """Fill unset flags with their defaults"""
        return Behavior(
            refresh=bool(self.refresh),
            interval=self.interval,
            fullscreen=bool(self.fullscreen),
        )


DEFAULT_BEHAVIORS: Dict[str, Behavior] = {
    "auto-refresh": Behavior(refresh=True, interval=30.0),
    "fullscreen-capable": Behavior(fullscreen=True),
    "metrics": Behavior(refresh=True, interval=10.0),
    "live": Behavior(refresh=True, interval=5.0),
}


class BehaviorRegistry:
    """Registry of named behaviors"""

    def __init__(self, definitions: Optional[Dict[str, Behavior]] = None):
        self._definitions: Dict[str, Behavior] = dict(
            DEFAULT_BEHAVIORS if definitions is None else definitions
        )

    def define(self, name: str, behavior: Behavior) -> None:
        self._definitions[name] = behavior

    def get(self, name: str) -> Optional[Behavior]:
        return self._definitions.get(name)

    def names(self):
        return sorted(self._definitions)

    def merge(self, names: Iterable[str]) -> Behavior:
        """
        Merge the behaviors of ``names`` in the order given.

        Later names take precedence for every field they set; unknown
        names are ignored.
        """
        result = Behavior()
        for name in names:
            behavior = self._definitions.get(name)
            if behavior is None:
                logger.debug(f"Unknown behavior '{name}' ignored")
                continue
            result = result.merged_with(behavior)
        return result.resolved()
