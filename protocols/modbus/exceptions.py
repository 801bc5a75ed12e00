"""
Modbus Error Taxonomy
=====================

Every operation either returns a decoded value or raises exactly one of the
errors below, so callers can decide retry policy per failure kind.

    ModbusError
    ├── RegisterError           local validation, raised before any bus traffic
    │   ├── UnknownRegister
    │   ├── ReadOnlyViolation
    │   ├── WriteOnlyViolation
    │   └── RegisterValueError
    ├── TransportError          underlying serial / I/O failure
    ├── Timeout                 no response within the configured bound
    ├── FrameError              response framing problems
    │   ├── ShortRead
    │   ├── CrcMismatch
    │   ├── MalformedFrame
    │   └── UnexpectedFunctionCode
    ├── ExceptionResponse       device-reported Modbus exception
    └── UnexpectedValue         well-formed response, value invalid for the register

Exception codes (Modbus application protocol v1.1b3, section 7):
    0x01 - Illegal Function
    0x02 - Illegal Data Address
    0x03 - Illegal Data Value
    0x04 - Slave Device Failure
    0x05 - Acknowledge
    0x06 - Slave Device Busy
    0x08 - Memory Parity Error
    0x0A - Gateway Path Unavailable
    0x0B - Gateway Target Device Failed To Respond
"""

from enum import Enum
from typing import Optional


class ModbusException(Enum):
    """Modbus exception codes."""
    ILLEGAL_FUNCTION = 0x01
    ILLEGAL_DATA_ADDRESS = 0x02
    ILLEGAL_DATA_VALUE = 0x03
    SLAVE_DEVICE_FAILURE = 0x04
    ACKNOWLEDGE = 0x05
    SLAVE_DEVICE_BUSY = 0x06
    MEMORY_PARITY_ERROR = 0x08
    GATEWAY_PATH_UNAVAILABLE = 0x0A
    GATEWAY_TARGET_FAILED = 0x0B


class ModbusError(Exception):
    """Base class for every driver error."""


# ==================== LOCAL VALIDATION ====================

class RegisterError(ModbusError):
    """Request rejected locally; nothing was sent on the bus."""


class UnknownRegister(RegisterError):
    """Register name is not part of the register map."""

    def __init__(self, name: str):
        super().__init__(f"Unknown register: {name!r}")
        self.name = name


class ReadOnlyViolation(RegisterError):
    """Write attempted against a read-only register."""

    def __init__(self, name: str):
        super().__init__(f"Register {name!r} is read-only")
        self.name = name


class WriteOnlyViolation(RegisterError):
    """Read attempted against a register that is not readable."""

    def __init__(self, name: str):
        super().__init__(f"Register {name!r} is write-only")
        self.name = name


class RegisterValueError(RegisterError, ValueError):
    """Value cannot be encoded into the register (range, type or NaN)."""


# ==================== LINK ====================

class TransportError(ModbusError):
    """The transport failed to write or read bytes."""


class Timeout(ModbusError):
    """No response byte arrived before the configured timeout."""

    def __init__(self, timeout_s: float):
        super().__init__(f"No response within {timeout_s:.3f}s")
        self.timeout_s = timeout_s


# ==================== FRAMING ====================

class FrameError(ModbusError):
    """Response frame failed validation."""


class ShortRead(FrameError):
    """Fewer bytes than a complete response frame."""

    def __init__(self, received: int, expected: int):
        super().__init__(f"Short read: {received} of {expected} bytes")
        self.received = received
        self.expected = expected


class CrcMismatch(FrameError):
    """Trailing CRC does not match the frame contents."""

    def __init__(self, received: int, computed: int):
        super().__init__(
            f"CRC mismatch (received=0x{received:04X}, computed=0x{computed:04X})"
        )
        self.received = received
        self.computed = computed


class MalformedFrame(FrameError):
    """Frame passed its CRC but its structure or contents are wrong."""


class UnexpectedFunctionCode(FrameError):
    """Response function code does not answer the request."""

    def __init__(self, expected: int, received: int):
        super().__init__(
            f"Unexpected function code 0x{received:02X} (expected 0x{expected:02X})"
        )
        self.expected = expected
        self.received = received


# ==================== DEVICE ====================

class ExceptionResponse(ModbusError):
    """The device answered with a Modbus exception response."""

    def __init__(self, code: int, function_code: int):
        self.code = code
        self.function_code = function_code
        label = self.exception.name if self.exception else "UNKNOWN"
        super().__init__(
            f"Modbus exception 0x{code:02X} ({label}) for function 0x{function_code:02X}"
        )

    @property
    def exception(self) -> Optional[ModbusException]:
        """Known exception code, or None for vendor-specific codes."""
        try:
            return ModbusException(self.code)
        except ValueError:
            return None


class UnexpectedValue(ModbusError):
    """Device returned a value the register cannot represent."""
