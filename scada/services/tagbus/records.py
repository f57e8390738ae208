"""
Tag Records
Quality-stamped values and change history entries carried by the tag bus
"""
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Optional, Tuple

DEFAULT_PROVIDER = "default"

_PROVIDER_PATTERN = re.compile(r"^\[([^\]]+)\](.*)$")


class Quality(str, Enum):
    """OPC-style data quality of a tag value"""
    GOOD = "GOOD"
    UNCERTAIN = "UNCERTAIN"
    BAD = "BAD"


@dataclass
class TagRecord:
    """Current value of a tag"""
    value: Any = 0
    quality: Quality = Quality.BAD
    timestamp: float = 0.0

    def copy(self) -> "TagRecord":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "quality": self.quality.value,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TagRecord":
        return cls(
            value=data.get("value", 0),
            quality=Quality(data.get("quality", Quality.GOOD.value)),
            timestamp=float(data.get("timestamp", 0.0)),
        )


@dataclass(frozen=True)
class HistoryEntry:
    """One write recorded in a tag's history ring"""
    path: str
    old_value: Any
    new_value: Any
    timestamp: float


def parse_path(full_path: str, default_provider: str = DEFAULT_PROVIDER) -> Tuple[str, str]:
    """
    Split a tag path into (provider, path).

    ``[edge]Line1/Temp`` -> ("edge", "Line1/Temp")
    ``Line1/Temp``       -> (default_provider, "Line1/Temp")
    ``[edge]``           -> ("edge", "")
    """
    match = _PROVIDER_PATTERN.match(full_path)
    if match:
        return match.group(1), match.group(2)
    return default_provider, full_path


def normalize_path(path: str, default_provider: str = DEFAULT_PROVIDER) -> str:
    """Return the canonical ``[provider]path`` form"""
    provider, tag_path = parse_path(path, default_provider)
    return f"[{provider}]{tag_path}"


def empty_record(timestamp: Optional[float] = None) -> TagRecord:
    """Sentinel returned for tags that were never written"""
    return TagRecord(value=0, quality=Quality.BAD, timestamp=timestamp or 0.0)
