"""
Tag Bus Services
Path-addressed tag store with subscriptions and history
"""
from .records import Quality, TagRecord, HistoryEntry, parse_path, normalize_path
from .tag_bus import TagBus, Subscription
from .behavior import Behavior, BehaviorRegistry

__all__ = [
    "Quality",
    "TagRecord",
    "HistoryEntry",
    "parse_path",
    "normalize_path",
    "TagBus",
    "Subscription",
    "Behavior",
    "BehaviorRegistry",
]
