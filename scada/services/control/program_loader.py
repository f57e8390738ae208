"""
Controller Program Loader
Validates rung and alarm definitions from configuration and loads them
into a ControlEngine. Invalid entries are logged and skipped.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from scada.core.error_handling import handle_errors
from scada.services.control.alarms import AlarmType
from scada.services.control.ladder import ConditionType

logger = logging.getLogger(__name__)


class ConditionModel(BaseModel):
    """One rung contact"""
    address: str = Field(..., description="Register address, e.g. IR100")
    type: ConditionType = Field(..., description="NO, NC, GT, LT or EQ")
    value: Optional[float] = Field(None, description="Comparison value for GT/LT/EQ")

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v):
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _value_required(self):
        if self.type.needs_value and self.value is None:
            raise ValueError(f"{self.type.value} condition needs a value")
        return self


class ActionModel(BaseModel):
    """One rung output"""
    address: str = Field(..., description="Holding register or coil address")
    value: float = Field(..., description="Value written when the rung fires")


class RungModel(BaseModel):
    conditions: List[ConditionModel] = Field(default_factory=list)
    actions: List[ActionModel] = Field(default_factory=list)


class AlarmModel(BaseModel):
    name: str = Field(..., min_length=1)
    address: str
    type: AlarmType
    setpoint: float
    deadband: float = Field(0.0, ge=0.0)
    message: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v):
        return v.upper() if isinstance(v, str) else v


def _validate_entries(entries: Iterable[Dict[str, Any]], model, kind: str, controller_id: str) -> list:
    valid = []
    for index, entry in enumerate(entries or []):
        try:
            valid.append(model.model_validate(entry))
        except ValidationError as e:
            logger.error(
                f"PLC {controller_id}: invalid {kind} #{index} skipped: "
                f"{e.error_count()} validation error(s)",
                extra={'controller_id': controller_id, 'details': {'errors': e.errors()}}
            )
    return valid


def validate_program(
    rungs: Iterable[Dict[str, Any]],
    alarms: Iterable[Dict[str, Any]],
    controller_id: str = "?"
) -> Tuple[List[RungModel], List[AlarmModel]]:
    """
    Validate raw rung and alarm mappings.

    Returns:
        Tuple of (valid_rungs, valid_alarms)
    """
    return (
        _validate_entries(rungs, RungModel, "rung", controller_id),
        _validate_entries(alarms, AlarmModel, "alarm", controller_id),
    )


@handle_errors(default_return=(0, 0))
def load_program(engine, rungs: Iterable[Dict[str, Any]], alarms: Iterable[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Load a program into a controller.

    Args:
        engine: Target ControlEngine
        rungs: Raw rung mappings (``conditions`` and ``actions`` lists)
        alarms: Raw alarm mappings

    Returns:
        Tuple of (rungs_loaded, alarms_loaded)
    """
    rung_models, alarm_models = validate_program(rungs, alarms, engine.controller_id)

    loaded_rungs = 0
    for rung in rung_models:
        added = engine.add_rung(
            [c.model_dump(mode="json") for c in rung.conditions],
            [a.model_dump() for a in rung.actions],
        )
        if added is not None:
            loaded_rungs += 1

    loaded_alarms = 0
    for alarm in alarm_models:
        if engine.add_alarm(**alarm.model_dump(mode="json")) is not None:
            loaded_alarms += 1

    logger.info(
        f"PLC {engine.controller_id}: loaded {loaded_rungs} rungs, {loaded_alarms} alarms"
    )
    return loaded_rungs, loaded_alarms
