"""
Ladder Logic
Rung definitions and their scan-time evaluation
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Union

from scada.core.error_handling import RungEvaluationError

logger = logging.getLogger(__name__)


class ConditionType(str, Enum):
    NO = "NO"  # normally open: passes while the value is non-zero
    NC = "NC"  # normally closed: passes while the value is zero
    GT = "GT"
    LT = "LT"
    EQ = "EQ"

    @property
    def needs_value(self) -> bool:
        return self in (ConditionType.GT, ConditionType.LT, ConditionType.EQ)


@dataclass
class Condition:
    address: str
    type: ConditionType
    value: Optional[Any] = None

    def __post_init__(self):
        self.type = ConditionType(str(getattr(self.type, "value", self.type)).upper())
        if self.type.needs_value and self.value is None:
            raise ValueError(f"{self.type.value} condition on {self.address} needs a value")

    def passes(self, current) -> bool:
        if self.type is ConditionType.NO:
            return current != 0
        if self.type is ConditionType.NC:
            return current == 0
        if self.type is ConditionType.GT:
            return current > self.value
        if self.type is ConditionType.LT:
            return current < self.value
        return current == self.value


@dataclass
class Action:
    address: str
    value: Any


@dataclass
class Rung:
    conditions: List[Condition] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        conditions: Sequence[Union[Condition, dict]],
        actions: Sequence[Union[Action, dict]]
    ) -> "Rung":
        """
        Build a rung from Condition/Action objects or plain dicts.

        Raises:
            ValueError/TypeError: if a condition or action is malformed
        """
        return cls(
            conditions=[c if isinstance(c, Condition) else Condition(**c) for c in conditions],
            actions=[a if isinstance(a, Action) else Action(**a) for a in actions],
        )


def evaluate_rung(
    rung: Rung,
    read: Callable[[str], Any],
    write: Callable[[str, Any], bool]
) -> bool:
    """
    Evaluate one rung.

    Conditions are AND-ed with short-circuit; when all pass, every action
    is written in list order.

    Args:
        rung: Rung to evaluate
        read: Reads an address; raises on an out-of-range address
        write: Writes an address; returns False when the write was rejected

    Returns:
        True if the rung fired
    """
    for condition in rung.conditions:
        current = read(condition.address)
        try:
            passed = condition.passes(current)
        except TypeError as e:
            raise RungEvaluationError(
                f"Cannot compare {condition.address}={current!r} with {condition.value!r}",
                details={'address': condition.address, 'type': condition.type.value}
            ) from e
        if not passed:
            return False

    for action in rung.actions:
        if not write(action.address, action.value):
            logger.warning(f"Rung action rejected: {action.address} <- {action.value}")
    return True
