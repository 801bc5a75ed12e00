"""
Modbus RTU Register Map
=======================

Register descriptors and the immutable name → register table the transaction
engine resolves against.

A register describes WHERE a value lives and HOW its raw 16-bit words map to a
physical value:

    UINT16       1 word, unsigned
    INT16        1 word, two's complement
    FIXED_POINT  1 word, signed, divided by ``scale`` (235 / 10 → 23.5)
    FLOAT32      2 words, IEEE 754 single precision, high word first
    BITS         coil table, status bits packed LSB-first

Access modes are enforced locally, before any bytes reach the bus:

    READ_ONLY    reads only (FC01 / FC03)
    WRITE_ONLY   writes only (FC05 / FC06 / FC16)
    READ_WRITE   both

A register map is built once and never mutated. Device-specific tables live
next to their device client (see devices/registers.py).
"""

import math
import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Type

import numpy as np

from protocols.modbus.exceptions import (
    ReadOnlyViolation,
    RegisterValueError,
    UnexpectedValue,
    UnknownRegister,
    WriteOnlyViolation,
)


class RegisterTable(IntEnum):
    """Modbus data tables used by the driver."""
    COIL = 0              # Discrete output (FC01, FC05)
    HOLDING_REGISTER = 4  # Analog holding (FC03, FC06, FC16)


class Access(Enum):
    """Register access modes."""
    READ_ONLY = "r"
    WRITE_ONLY = "w"
    READ_WRITE = "rw"

    @property
    def readable(self) -> bool:
        return self is not Access.WRITE_ONLY

    @property
    def writable(self) -> bool:
        return self is not Access.READ_ONLY


class Encoding(Enum):
    """Raw word encodings."""
    UINT16 = "uint16"
    INT16 = "int16"
    FIXED_POINT = "fixed"
    FLOAT32 = "float32"
    BITS = "bits"


_WIDTHS = {
    Encoding.UINT16: 1,
    Encoding.INT16: 1,
    Encoding.FIXED_POINT: 1,
    Encoding.FLOAT32: 2,
}


@dataclass(frozen=True)
class Register:
    """
    Definition of a single register (or register pair for floats).

    Attributes:
        name: Logical identifier used by callers
        address: Starting address within its table (0-based)
        encoding: Raw word encoding
        access: Read/write permissions
        table: Holding registers or coils
        scale: Divisor for FIXED_POINT values
        bit_count: Number of coils for BITS registers
        minimum: Lowest accepted value for writes (inclusive)
        maximum: Highest accepted value for writes (inclusive)
        choices: IntEnum type for enumerated parameters
        integral: Writes must be whole numbers (flags, addresses)
        units: Physical units
        mnemonic: Parameter code shown on the controller display
        description: What this register represents
    """
    name: str
    address: int
    encoding: Encoding
    access: Access = Access.READ_WRITE
    table: RegisterTable = RegisterTable.HOLDING_REGISTER
    scale: int = 1
    bit_count: int = 0
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    choices: Optional[Type[IntEnum]] = None
    integral: bool = False
    units: str = ""
    mnemonic: str = ""
    description: str = ""

    def __post_init__(self):
        if not 0 <= self.address <= 0xFFFF:
            raise ValueError(f"Register address {self.address} out of range [0, 65535]")

        if self.table == RegisterTable.COIL:
            if self.encoding != Encoding.BITS:
                raise ValueError(f"Coil register {self.name} must use BITS encoding")
            if not 1 <= self.bit_count <= 16:
                raise ValueError(f"Coil register {self.name} needs 1-16 bits")
        elif self.encoding == Encoding.BITS:
            raise ValueError(f"Holding register {self.name} cannot use BITS encoding")

        if self.encoding == Encoding.FIXED_POINT and self.scale <= 0:
            raise ValueError(f"Fixed-point register {self.name} needs a positive scale")

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def width(self) -> int:
        """Number of 16-bit words (holding) or coils (coil table) this register spans."""
        if self.encoding == Encoding.BITS:
            return self.bit_count
        return _WIDTHS[self.encoding]

    @property
    def readable(self) -> bool:
        return self.access.readable

    @property
    def writable(self) -> bool:
        return self.access.writable

    def check_readable(self):
        if not self.readable:
            raise WriteOnlyViolation(self.name)

    def check_writable(self):
        if not self.writable:
            raise ReadOnlyViolation(self.name)

    # ------------------------------------------------------------------
    # Decoding (raw → value)
    # ------------------------------------------------------------------

    def decode(self, raw: Sequence[int]) -> Any:
        """
        Convert raw words (or coil bytes) to a physical value.

        Args:
            raw: Register words for holding registers, status bytes for coils

        Returns:
            int, float, bool, or a member of ``choices``
        """
        if self.encoding == Encoding.BITS:
            return self._decode_bits(raw)

        if len(raw) != self.width:
            raise UnexpectedValue(
                f"{self.name}: expected {self.width} word(s), got {len(raw)}"
            )

        if self.encoding == Encoding.UINT16:
            value = raw[0]
        elif self.encoding == Encoding.INT16:
            value = _to_signed(raw[0])
        elif self.encoding == Encoding.FIXED_POINT:
            value = _to_signed(raw[0]) / self.scale
        else:
            value = _words_to_float32(raw[0], raw[1])

        if self.choices is not None:
            return self._to_choice(value)
        return value

    def _decode_bits(self, raw: Sequence[int]) -> Any:
        bits = 0
        for index, byte in enumerate(raw):
            bits |= byte << (8 * index)
        bits &= (1 << self.bit_count) - 1
        if self.bit_count == 1:
            return bool(bits)
        return bits

    def _to_choice(self, value: float) -> IntEnum:
        if not math.isfinite(value) or value != int(value):
            raise UnexpectedValue(f"{self.name}: {value} is not a valid {self.choices.__name__}")
        try:
            return self.choices(int(value))
        except ValueError:
            raise UnexpectedValue(
                f"{self.name}: {int(value)} is not a valid {self.choices.__name__}"
            ) from None

    # ------------------------------------------------------------------
    # Encoding (value → raw)
    # ------------------------------------------------------------------

    def encode(self, value: Any) -> List[int]:
        """
        Convert a physical value to raw register words.

        Args:
            value: Number, bool, or (for enumerated registers) a member,
                its integer value or its name

        Returns:
            List of 16-bit words (COIL_ON/COIL_OFF semantics for 1-bit coils)

        Raises:
            RegisterValueError: Value out of range or not representable
        """
        if self.choices is not None:
            value = int(self.coerce_choice(value))

        if self.encoding == Encoding.BITS:
            return self._encode_bits(value)

        if isinstance(value, bool):
            value = int(value)
        if not isinstance(value, (int, float, np.number)):
            raise RegisterValueError(f"{self.name}: expected a number, got {value!r}")

        try:
            value = float(value) if self.encoding in (Encoding.FLOAT32, Encoding.FIXED_POINT) else value
            finite = bool(np.isfinite(value))
        except (OverflowError, TypeError):
            raise RegisterValueError(f"{self.name}: value is out of range") from None
        if not finite:
            raise RegisterValueError(f"{self.name}: {value} is not a finite number")

        self._check_range(value)
        if self.integral and value != int(value):
            raise RegisterValueError(f"{self.name}: {value} is not an integer")

        if self.encoding == Encoding.UINT16:
            return [self._integral(value, 0, 0xFFFF)]
        if self.encoding == Encoding.INT16:
            return [self._integral(value, -0x8000, 0x7FFF) & 0xFFFF]
        if self.encoding == Encoding.FIXED_POINT:
            scaled = value * self.scale
            if not math.isfinite(scaled):
                raise RegisterValueError(
                    f"{self.name}: {value} does not fit a 16-bit value at scale {self.scale}"
                )
            raw = int(round(scaled))
            if not -0x8000 <= raw <= 0x7FFF:
                raise RegisterValueError(
                    f"{self.name}: {value} does not fit a 16-bit value at scale {self.scale}"
                )
            return [raw & 0xFFFF]

        high, low = _float32_to_words(value)
        return [high, low]

    def _encode_bits(self, value: Any) -> List[int]:
        if self.bit_count == 1 and isinstance(value, bool):
            return [int(value)]
        if isinstance(value, bool) or not isinstance(value, int):
            raise RegisterValueError(f"{self.name}: expected an integer bit mask, got {value!r}")
        if not 0 <= value < (1 << self.bit_count):
            raise RegisterValueError(f"{self.name}: bit mask {value} exceeds {self.bit_count} bits")
        return [value]

    def _integral(self, value: Any, low: int, high: int) -> int:
        if value != int(value):
            raise RegisterValueError(f"{self.name}: {value} is not an integer")
        value = int(value)
        if not low <= value <= high:
            raise RegisterValueError(f"{self.name}: {value} out of range [{low}, {high}]")
        return value

    def _check_range(self, value: float):
        if self.minimum is not None and value < self.minimum:
            raise RegisterValueError(
                f"{self.name}: {value} below minimum {self.minimum}"
            )
        if self.maximum is not None and value > self.maximum:
            raise RegisterValueError(
                f"{self.name}: {value} above maximum {self.maximum}"
            )

    def coerce_choice(self, value: Any) -> IntEnum:
        """Resolve a member, integer value or (case-insensitive) member name."""
        if isinstance(value, self.choices):
            return value
        if isinstance(value, Enum):
            raise RegisterValueError(
                f"{self.name}: {value!r} is not a {self.choices.__name__}"
            )
        if isinstance(value, str):
            key = value.strip().upper()
            if key in self.choices.__members__:
                return self.choices[key]
            try:
                value = float(key)
            except ValueError:
                raise RegisterValueError(
                    f"{self.name}: {value!r} is not one of "
                    f"{', '.join(self.choices.__members__)}"
                ) from None
        if (
            isinstance(value, bool)
            or not isinstance(value, (int, float))
            or (isinstance(value, float) and not math.isfinite(value))
            or value != int(value)
        ):
            raise RegisterValueError(f"{self.name}: {value!r} is not a valid {self.choices.__name__}")
        try:
            return self.choices(int(value))
        except ValueError:
            raise RegisterValueError(
                f"{self.name}: {int(value)} is not a valid {self.choices.__name__}"
            ) from None

    def parse(self, text: str) -> Any:
        """Parse a command-line / query-string value for this register."""
        if self.choices is not None:
            return self.coerce_choice(text)
        if self.encoding == Encoding.BITS and self.bit_count == 1:
            lowered = text.strip().lower()
            if lowered in ("1", "true", "on", "yes"):
                return True
            if lowered in ("0", "false", "off", "no"):
                return False
            raise RegisterValueError(f"{self.name}: {text!r} is not a boolean")
        try:
            number = float(text)
        except ValueError:
            raise RegisterValueError(f"{self.name}: {text!r} is not a number") from None
        if self.encoding in (Encoding.UINT16, Encoding.INT16, Encoding.BITS) and number == int(number):
            return int(number)
        return number


def _to_signed(word: int) -> int:
    """Reinterpret a 16-bit word as two's complement."""
    (value,) = struct.unpack(">h", struct.pack(">H", word))
    return value


def _float32_to_words(value: float):
    """Split a float into (high word, low word), big-endian IEEE 754."""
    try:
        packed = struct.pack(">f", value)
    except OverflowError:
        raise RegisterValueError(f"{value} does not fit a 32-bit float") from None
    return struct.unpack(">HH", packed)


def _words_to_float32(high: int, low: int) -> float:
    """
    Join (high word, low word) into a float.

    Reported at float32 precision: the shortest decimal that round-trips
    through float32, so a stored 0.1 reads back as 0.1 rather than
    0.10000000149011612.
    """
    (value,) = struct.unpack(">f", struct.pack(">HH", high, low))
    return float(np.format_float_positional(np.float32(value), unique=True, trim="-"))


class RegisterMap:
    """
    Immutable name → register table for one device model.

    Validates at construction:
        - unique register names
        - no overlapping address ranges within a table, except between
          read-only registers (status views may alias the same coils)
    """

    def __init__(self, registers: Iterable[Register], name: str = ""):
        self.name = name
        table: Dict[str, Register] = {}
        for register in registers:
            if register.name in table:
                raise ValueError(f"Duplicate register name: {register.name}")
            table[register.name] = register
        self._registers = MappingProxyType(table)
        self._check_address_conflicts()

    def _check_address_conflicts(self):
        for register_table in RegisterTable:
            ranges = sorted(
                ((r.address, r.address + r.width - 1, r)
                 for r in self._registers.values()
                 if r.table == register_table),
                key=lambda item: (item[0], item[1]),
            )
            for i, (start, end, register) in enumerate(ranges):
                for next_start, next_end, other in ranges[i + 1:]:
                    if next_start > end:
                        break
                    if register.writable or other.writable:
                        raise ValueError(
                            f"{register_table.name} address conflict: {register.name} "
                            f"[{start}-{end}] overlaps with {other.name} "
                            f"[{next_start}-{next_end}]"
                        )

    def resolve(self, name: str) -> Register:
        """
        Find register definition by name.

        Raises:
            UnknownRegister: Name not in this map
        """
        try:
            return self._registers[name]
        except KeyError:
            raise UnknownRegister(name) from None

    def get_register_by_address(self, address: int, table: RegisterTable) -> Optional[Register]:
        """Find the first register whose range covers ``address`` in ``table``."""
        for register in self._registers.values():
            if register.table == table and register.address <= address < register.address + register.width:
                return register
        return None

    def names(self) -> List[str]:
        return list(self._registers)

    def readable(self) -> List[Register]:
        return [r for r in self._registers.values() if r.readable]

    def __contains__(self, name: object) -> bool:
        return name in self._registers

    def __iter__(self) -> Iterator[Register]:
        return iter(self._registers.values())

    def __len__(self) -> int:
        return len(self._registers)

    def __repr__(self) -> str:
        return f"RegisterMap({self.name!r}, {len(self)} registers)"
