"""
Register Banks
Fixed-size holding/input registers, coils and discrete inputs of one controller
"""
import math
import threading
from typing import Dict, Iterable, List, Optional, Union

import numpy as np

from scada.core.error_handling import AddressError
from scada.services.control.addressing import Address, BankType

WORD_MODULUS = 1 << 16

Number = Union[int, float]


def to_word(value) -> int:
    """
    Coerce a value to an unsigned 16-bit register word.

    Truncates toward zero and wraps modulo 65536; values that are not
    finite numbers become 0.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(number) % WORD_MODULUS


def to_bit(value) -> int:
    return 1 if value else 0


class RegisterBanks:
    """
    The four register banks owned by a controller.

    Register words are stored as ``uint16`` and bits as ``uint8`` numpy
    arrays. All access goes through a re-entrant lock so the scan thread
    and external readers see consistent values.
    """

    def __init__(
        self,
        holding_registers: int = 1000,
        input_registers: int = 1000,
        coils: int = 1000,
        discrete_inputs: int = 1000
    ):
        self._lock = threading.RLock()
        self._banks: Dict[BankType, np.ndarray] = {
            BankType.HOLDING_REGISTER: np.zeros(holding_registers, dtype=np.uint16),
            BankType.INPUT_REGISTER: np.zeros(input_registers, dtype=np.uint16),
            BankType.COIL: np.zeros(coils, dtype=np.uint8),
            BankType.DISCRETE_INPUT: np.zeros(discrete_inputs, dtype=np.uint8),
        }

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def size(self, bank: BankType) -> int:
        return len(self._banks[bank])

    def in_range(self, bank: BankType, start: int, count: int = 1) -> bool:
        return count >= 0 and start >= 0 and start + count <= len(self._banks[bank])

    def read(self, bank: BankType, start: int, count: int = 1) -> Optional[List[int]]:
        """Values of ``count`` consecutive slots, or None when out of range"""
        if not self.in_range(bank, start, count):
            return None
        with self._lock:
            return [int(v) for v in self._banks[bank][start:start + count]]

    def write(self, bank: BankType, start: int, values: Iterable) -> bool:
        """Write consecutive slots; nothing is written when any index is out of range"""
        values = list(values)
        if not self.in_range(bank, start, len(values)):
            return False
        convert = to_bit if bank.is_boolean else to_word
        with self._lock:
            self._banks[bank][start:start + len(values)] = [convert(v) for v in values]
        return True

    def read_address(self, address: Address) -> int:
        """Read one slot; raises AddressError when out of range"""
        values = self.read(address.bank, address.index, 1)
        if values is None:
            raise AddressError(
                f"Address {address} out of range",
                details={'bank': address.bank.value, 'index': address.index,
                         'size': self.size(address.bank)}
            )
        return values[0]

    def write_address(self, address: Address, value) -> None:
        """Write one slot; raises AddressError when out of range"""
        if not self.write(address.bank, address.index, [value]):
            raise AddressError(
                f"Address {address} out of range",
                details={'bank': address.bank.value, 'index': address.index,
                         'size': self.size(address.bank)}
            )

    def snapshot(self) -> Dict[str, List[int]]:
        with self._lock:
            return {bank.value: array.tolist() for bank, array in self._banks.items()}
