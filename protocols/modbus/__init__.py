"""
Modbus RTU Protocol Implementation
==================================

Master-side Modbus RTU driver over any byte-stream transport, plus a slave
responder for simulation.

This package provides:
    - crc: CRC-16/Modbus checksum
    - framing: Request encoders and response validation
    - RegisterMap / Register: Name → address and value encoding tables
    - TransactionEngine: One request/response exchange per call
    - SerialTransport: pyserial-backed RS-485 link
    - ModbusRTUSlave: Slave-side request handler
    - ModbusError hierarchy: One error type per failure kind

Usage:
    from protocols.modbus import SerialTransport, TransactionEngine
    from devices.registers import SYL2381_REGISTERS

    engine = TransactionEngine(SerialTransport("/dev/ttyUSB0"), SYL2381_REGISTERS, unit_id=1)
    temperature = engine.read("current_temperature")
"""

from protocols.modbus import crc, framing
from protocols.modbus.exceptions import (
    ModbusException,
    ModbusError,
    RegisterError,
    UnknownRegister,
    ReadOnlyViolation,
    WriteOnlyViolation,
    RegisterValueError,
    TransportError,
    Timeout,
    FrameError,
    ShortRead,
    CrcMismatch,
    MalformedFrame,
    UnexpectedFunctionCode,
    ExceptionResponse,
    UnexpectedValue,
)
from protocols.modbus.register_map import (
    Access,
    Encoding,
    Register,
    RegisterMap,
    RegisterTable,
)
from protocols.modbus.transport import Transport, SerialTransport
from protocols.modbus.transaction import (
    Transaction,
    TransactionEngine,
    TransactionState,
)
from protocols.modbus.server import ModbusRTUSlave

__all__ = [
    # Codec
    'crc',
    'framing',

    # Register maps
    'Access',
    'Encoding',
    'Register',
    'RegisterMap',
    'RegisterTable',

    # Link
    'Transport',
    'SerialTransport',
    'Transaction',
    'TransactionEngine',
    'TransactionState',
    'ModbusRTUSlave',

    # Errors
    'ModbusException',
    'ModbusError',
    'RegisterError',
    'UnknownRegister',
    'ReadOnlyViolation',
    'WriteOnlyViolation',
    'RegisterValueError',
    'TransportError',
    'Timeout',
    'FrameError',
    'ShortRead',
    'CrcMismatch',
    'MalformedFrame',
    'UnexpectedFunctionCode',
    'ExceptionResponse',
    'UnexpectedValue',
]
