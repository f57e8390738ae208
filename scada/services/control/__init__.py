"""
Control Engine Module
Simulated PLCs: register banks, ladder rungs, alarms and a plant model
"""
from scada.services.control.addressing import Address, BankType, parse_address
from scada.services.control.alarms import AlarmDefinition, AlarmTransition, AlarmType
from scada.services.control.engine import ControlEngine, ControllerState
from scada.services.control.ladder import Action, Condition, ConditionType, Rung
from scada.services.control.manager import ControllerManager
from scada.services.control.process_model import ProcessModel
from scada.services.control.program_loader import load_program, validate_program
from scada.services.control.register_bank import RegisterBanks

__all__ = [
    'Action',
    'Address',
    'AlarmDefinition',
    'AlarmTransition',
    'AlarmType',
    'BankType',
    'Condition',
    'ConditionType',
    'ControlEngine',
    'ControllerManager',
    'ControllerState',
    'ProcessModel',
    'RegisterBanks',
    'Rung',
    'load_program',
    'parse_address',
    'validate_program',
]
