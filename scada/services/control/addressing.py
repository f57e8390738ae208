"""
Register Addressing
Parses Modbus-style address strings such as ``HR100``, ``IR5``, ``C0``, ``DI12``
"""
import re
from enum import Enum
from typing import NamedTuple, Optional

_ADDRESS_PATTERN = re.compile(r"^(HR|IR|C|DI)(\d+)$", re.IGNORECASE)
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class BankType(str, Enum):
    """Register bank codes"""
    HOLDING_REGISTER = "HR"
    INPUT_REGISTER = "IR"
    COIL = "C"
    DISCRETE_INPUT = "DI"

    @property
    def is_boolean(self) -> bool:
        return self in (BankType.COIL, BankType.DISCRETE_INPUT)

    @property
    def externally_writable(self) -> bool:
        return self in (BankType.HOLDING_REGISTER, BankType.COIL)

    @classmethod
    def lookup(cls, code) -> Optional["BankType"]:
        """Bank for a code like ``"hr"`` or a BankType; None when unknown"""
        if isinstance(code, BankType):
            return code
        try:
            return cls(str(code).upper())
        except ValueError:
            return None


class Address(NamedTuple):
    bank: BankType
    index: int

    def __str__(self) -> str:
        return f"{self.bank.value}{self.index}"


def parse_address(address) -> Address:
    """
    Resolve an address string to (bank, index).

    Unrecognised strings fall back to a holding register whose index is
    the string's leading integer, or 0 when it has none::

        parse_address("HR12") -> Address(HR, 12)
        parse_address("c3")   -> Address(C, 3)
        parse_address("XX5")  -> Address(HR, 0)
        parse_address("7")    -> Address(HR, 7)

    Never raises; range checking happens at access time.
    """
    text = str(address)
    match = _ADDRESS_PATTERN.match(text)
    if match:
        return Address(BankType(match.group(1).upper()), int(match.group(2)))

    leading = _LEADING_INT.match(text)
    return Address(BankType.HOLDING_REGISTER, int(leading.group(1)) if leading else 0)
