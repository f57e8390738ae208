"""
Controller Alarms
Alarm definitions with edge-triggered activation and clearing
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from scada.core.error_handling import AlarmEvaluationError


class AlarmType(str, Enum):
    HIGH = "HIGH"            # value > setpoint
    LOW = "LOW"              # value < setpoint
    EQUAL = "EQUAL"          # value == setpoint
    DEVIATION = "DEVIATION"  # |value - setpoint| > deadband


@dataclass
class AlarmDefinition:
    """
    Alarm on one register address.

    ``active``, ``triggered_at`` and ``cleared_at`` are updated in place by
    the controller on every scan.
    """
    id: int
    name: str
    address: str
    type: AlarmType
    setpoint: float
    deadband: float = 0.0
    message: str = ""
    active: bool = False
    triggered_at: Optional[float] = None
    cleared_at: Optional[float] = None
    last_value: Optional[Any] = field(default=None, compare=False)

    def __post_init__(self):
        self.type = AlarmType(str(getattr(self.type, "value", self.type)).upper())
        if self.deadband is None:
            self.deadband = 0.0
        if self.deadband < 0:
            raise ValueError(f"Alarm '{self.name}' deadband must be >= 0")

    def is_triggered(self, value) -> bool:
        if self.type is AlarmType.HIGH:
            return value > self.setpoint
        if self.type is AlarmType.LOW:
            return value < self.setpoint
        if self.type is AlarmType.EQUAL:
            return value == self.setpoint
        return abs(value - self.setpoint) > self.deadband

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "type": self.type.value,
            "setpoint": self.setpoint,
            "deadband": self.deadband,
            "message": self.message,
            "active": self.active,
            "triggered_at": self.triggered_at,
            "cleared_at": self.cleared_at,
            "last_value": self.last_value,
        }


@dataclass(frozen=True)
class AlarmTransition:
    """Passed to alarm callbacks once per active/inactive change"""
    controller_id: str
    alarm_id: int
    name: str
    active: bool
    value: Any
    timestamp: float
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "controller_id": self.controller_id,
            "alarm_id": self.alarm_id,
            "name": self.name,
            "active": self.active,
            "value": self.value,
            "timestamp": self.timestamp,
            "message": self.message,
        }


def update_alarm(
    alarm: AlarmDefinition,
    value,
    now: float,
    controller_id: str
) -> Optional[AlarmTransition]:
    """
    Apply one scan's value to an alarm.

    Returns:
        The transition when the alarm changed state, else None
    """
    try:
        triggered = alarm.is_triggered(value)
    except TypeError as e:
        raise AlarmEvaluationError(
            f"Alarm '{alarm.name}' cannot evaluate {value!r}",
            details={'alarm': alarm.name, 'address': alarm.address}
        ) from e
    alarm.last_value = value

    if triggered and not alarm.active:
        alarm.active = True
        alarm.triggered_at = now
    elif not triggered and alarm.active:
        alarm.active = False
        alarm.cleared_at = now
    else:
        return None

    return AlarmTransition(
        controller_id=controller_id,
        alarm_id=alarm.id,
        name=alarm.name,
        active=alarm.active,
        value=value,
        timestamp=now,
        message=alarm.message,
    )
