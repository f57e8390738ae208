"""
Simulated Plant
Approximate process dynamics that drive a controller's input registers
"""
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from scada.services.control.addressing import BankType
from scada.services.control.register_bank import RegisterBanks

TEMPERATURE_IR = 100
PRESSURE_IR = 101
FLOW_IR = 102
SETPOINT_HR = 200
PUMP_COIL = 0


@dataclass(frozen=True)
class SignalRange:
    low: float
    high: float

    def clamp(self, value: float) -> float:
        return max(self.low, min(self.high, value))


class ProcessModel:
    """
    First-order thermal loop, oscillating header pressure and a pump-driven
    flow, each kept inside its declared physical range:

    - IR100 temperature moves 10% of the way to the HR200 setpoint
      (100 when unset) per scan, plus noise, within [0, 500]
    - IR101 pressure is 100 + 20*sin(scan/100) plus noise, within [75, 125]
    - IR102 flow is 75 +/- 5 while coil C0 is on, otherwise 0, within [0, 100]
    """

    TEMPERATURE = SignalRange(0.0, 500.0)
    PRESSURE = SignalRange(75.0, 125.0)
    FLOW = SignalRange(0.0, 100.0)

    DEFAULT_SETPOINT = 100
    GAIN = 0.1

    def __init__(self, seed: Optional[int] = None):
        self.rng = np.random.default_rng(seed)

    def _noise(self, span: float) -> float:
        return float(self.rng.uniform(-span / 2, span / 2))

    def step(self, banks: RegisterBanks, scan_count: int) -> Optional[Tuple[float, float, float]]:
        """
        Advance the plant by one scan and write the input registers.

        Returns None without touching the banks when they are too small
        to hold the simulated signals.
        """
        if not banks.in_range(BankType.INPUT_REGISTER, TEMPERATURE_IR, 3):
            return None

        with banks.lock:
            setpoint = banks.read(BankType.HOLDING_REGISTER, SETPOINT_HR)
            setpoint = (setpoint[0] if setpoint else 0) or self.DEFAULT_SETPOINT
            current = banks.read(BankType.INPUT_REGISTER, TEMPERATURE_IR)[0]
            pump = banks.read(BankType.COIL, PUMP_COIL)
            pump = pump[0] if pump else 0

            temperature = self.TEMPERATURE.clamp(
                current + (setpoint - current) * self.GAIN + self._noise(2.0)
            )
            pressure = self.PRESSURE.clamp(
                100.0 + math.sin(scan_count / 100.0) * 20.0 + self._noise(5.0)
            )
            flow = self.FLOW.clamp(75.0 + self._noise(10.0)) if pump else 0.0

            banks.write(BankType.INPUT_REGISTER, TEMPERATURE_IR, [temperature, pressure, flow])

        return temperature, pressure, flow
