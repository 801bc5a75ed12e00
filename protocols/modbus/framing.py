"""
Modbus RTU Frame Codec
======================

Builds request frames and validates/decodes response frames.

RTU frame layout:
    Slave address:  1 byte  (0-247, 0 = broadcast)
    Function code:  1 byte  (high bit set in exception responses)
    Data:           0-252 bytes, 16-bit fields big-endian
    CRC:            2 bytes, little-endian (see crc.py)

Request layouts:
    FC01 Read Coils:               addr fc start_hi start_lo count_hi count_lo crc_lo crc_hi
    FC03 Read Holding Registers:   addr fc start_hi start_lo count_hi count_lo crc_lo crc_hi
    FC05 Write Single Coil:        addr fc reg_hi reg_lo val_hi val_lo crc_lo crc_hi
    FC06 Write Single Register:    addr fc reg_hi reg_lo val_hi val_lo crc_lo crc_hi
    FC16 Write Multiple Registers: addr fc start_hi start_lo count_hi count_lo n data... crc_lo crc_hi

Response layouts:
    Reads (FC01/FC03):  addr fc byte_count data... crc_lo crc_hi
    Writes (FC05/FC06): echo of the request
    Write (FC16):       addr fc start_hi start_lo count_hi count_lo crc_lo crc_hi
    Exception:          addr fc|0x80 exception_code crc_lo crc_hi
"""

import struct
from typing import List, Optional, Sequence

from protocols.modbus import crc
from protocols.modbus.exceptions import (
    CrcMismatch,
    ExceptionResponse,
    MalformedFrame,
    ShortRead,
    UnexpectedFunctionCode,
)
from config import MODBUS_CONFIG


# Function codes
READ_COILS = 0x01
READ_HOLDING_REGISTERS = 0x03
WRITE_SINGLE_COIL = 0x05
WRITE_SINGLE_REGISTER = 0x06
WRITE_MULTIPLE_REGISTERS = 0x10

EXCEPTION_BIT = 0x80
COIL_ON = 0xFF00
COIL_OFF = 0x0000

# addr + fc|0x80 + exception code + CRC
MIN_RESPONSE_LENGTH = 5
# addr + fc + byte count
RESPONSE_HEADER_LENGTH = 3
# addr + fc + 2 x 16-bit field + CRC
ECHO_RESPONSE_LENGTH = 8

READ_FUNCTIONS = (READ_COILS, READ_HOLDING_REGISTERS)
ECHO_FUNCTIONS = (WRITE_SINGLE_COIL, WRITE_SINGLE_REGISTER, WRITE_MULTIPLE_REGISTERS)


def _check_slave(slave_address: int):
    low, high = MODBUS_CONFIG["slave_address_range"]
    if not low <= slave_address <= high:
        raise ValueError(f"Slave address {slave_address} out of range [{low}, {high}]")


def _check_word(value: int, label: str):
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{label} {value} out of range [0, 65535]")


def encode_read(
    slave_address: int,
    start_register: int,
    word_count: int,
    function_code: int = READ_HOLDING_REGISTERS,
) -> bytes:
    """
    Build a read request (FC03 by default, FC01 for coils).

    Args:
        slave_address: Device address (0-247)
        start_register: First register/coil address (0-65535)
        word_count: Number of registers (1-125) or coils (1-2000)
        function_code: READ_HOLDING_REGISTERS or READ_COILS

    Returns:
        Complete RTU frame including CRC
    """
    _check_slave(slave_address)
    _check_word(start_register, "Start address")

    if function_code == READ_COILS:
        limit = MODBUS_CONFIG["max_read_coils"]
    elif function_code == READ_HOLDING_REGISTERS:
        limit = MODBUS_CONFIG["max_read_registers"]
    else:
        raise ValueError(f"Not a read function code: 0x{function_code:02X}")

    if not 1 <= word_count <= limit:
        raise ValueError(f"Quantity {word_count} out of range [1, {limit}]")

    frame = struct.pack(">BBHH", slave_address, function_code, start_register, word_count)
    return crc.append(frame)


def encode_read_coils(slave_address: int, start_coil: int, count: int) -> bytes:
    """Build an FC01 Read Coils request."""
    return encode_read(slave_address, start_coil, count, function_code=READ_COILS)


def encode_write_single(
    slave_address: int,
    register: int,
    value_word: int,
    function_code: int = WRITE_SINGLE_REGISTER,
) -> bytes:
    """
    Build a single-field write request (FC06, or FC05 for a coil).

    Args:
        slave_address: Device address (0-247)
        register: Register/coil address
        value_word: 16-bit value (COIL_ON / COIL_OFF for FC05)
        function_code: WRITE_SINGLE_REGISTER or WRITE_SINGLE_COIL

    Returns:
        Complete RTU frame including CRC
    """
    _check_slave(slave_address)
    _check_word(register, "Register address")
    _check_word(value_word, "Register value")

    if function_code == WRITE_SINGLE_COIL and value_word not in (COIL_ON, COIL_OFF):
        raise ValueError(f"Coil value must be 0xFF00 or 0x0000, got 0x{value_word:04X}")
    if function_code not in (WRITE_SINGLE_REGISTER, WRITE_SINGLE_COIL):
        raise ValueError(f"Not a single write function code: 0x{function_code:02X}")

    frame = struct.pack(">BBHH", slave_address, function_code, register, value_word)
    return crc.append(frame)


def encode_write_multiple(
    slave_address: int,
    start_register: int,
    words: Sequence[int],
) -> bytes:
    """
    Build an FC16 Write Multiple Registers request.

    Args:
        slave_address: Device address (0-247)
        start_register: First register address
        words: 16-bit values to write (1-123)

    Returns:
        Complete RTU frame including CRC
    """
    _check_slave(slave_address)
    _check_word(start_register, "Start address")

    limit = MODBUS_CONFIG["max_write_registers"]
    if not 1 <= len(words) <= limit:
        raise ValueError(f"Quantity {len(words)} out of range [1, {limit}]")
    for word in words:
        _check_word(word, "Register value")

    frame = struct.pack(
        f">BBHHB{len(words)}H",
        slave_address,
        WRITE_MULTIPLE_REGISTERS,
        start_register,
        len(words),
        len(words) * 2,
        *words,
    )
    return crc.append(frame)


def response_length(header: bytes, expected_function_code: int) -> int:
    """
    Total response length implied by the first three bytes of a response.

    Args:
        header: At least RESPONSE_HEADER_LENGTH bytes (addr, fc, byte count)
        expected_function_code: Function code of the request

    Returns:
        Expected frame length in bytes including CRC
    """
    function_code = header[1]
    if function_code & EXCEPTION_BIT:
        return MIN_RESPONSE_LENGTH

    # An unknown function code is sized like the expected answer; the CRC
    # and function-code checks in decode_response reject it afterwards.
    if function_code not in READ_FUNCTIONS + ECHO_FUNCTIONS:
        function_code = expected_function_code

    if function_code in READ_FUNCTIONS:
        return RESPONSE_HEADER_LENGTH + header[2] + 2
    return ECHO_RESPONSE_LENGTH


def decode_response(
    raw: bytes,
    expected_function_code: int,
    slave_address: Optional[int] = None,
) -> List[int]:
    """
    Validate a response frame and extract its payload.

    Checks, in order: length, CRC, slave address, exception flag,
    function code, payload structure.

    Args:
        raw: Complete response frame
        expected_function_code: Function code of the request
        slave_address: Address the request was sent to (None skips the check)

    Returns:
        FC03: register words
        FC01: coil status bytes
        FC05/FC06: [address, value] echo
        FC16: [start address, quantity] echo

    Raises:
        ShortRead, CrcMismatch, MalformedFrame, ExceptionResponse,
        UnexpectedFunctionCode
    """
    raw = bytes(raw)

    if len(raw) < MIN_RESPONSE_LENGTH:
        raise ShortRead(len(raw), MIN_RESPONSE_LENGTH)

    received_crc = crc.trailer(raw)
    computed_crc = crc.compute(raw[:-2])
    if received_crc != computed_crc:
        raise CrcMismatch(received_crc, computed_crc)

    if slave_address is not None and raw[0] != slave_address:
        raise MalformedFrame(
            f"Response from slave {raw[0]} (request went to {slave_address})"
        )

    function_code = raw[1]
    if function_code & EXCEPTION_BIT:
        if len(raw) != MIN_RESPONSE_LENGTH:
            raise MalformedFrame(f"Exception response of {len(raw)} bytes")
        raise ExceptionResponse(raw[2], function_code & ~EXCEPTION_BIT)

    if function_code != expected_function_code:
        raise UnexpectedFunctionCode(expected_function_code, function_code)

    if function_code in READ_FUNCTIONS:
        byte_count = raw[2]
        payload = raw[3:-2]
        if byte_count != len(payload):
            raise MalformedFrame(
                f"Byte count {byte_count} does not match payload length {len(payload)}"
            )
        if function_code == READ_COILS:
            return list(payload)
        if byte_count % 2:
            raise MalformedFrame(f"Odd register byte count {byte_count}")
        return list(struct.unpack(f">{byte_count // 2}H", payload))

    if function_code in ECHO_FUNCTIONS:
        if len(raw) != ECHO_RESPONSE_LENGTH:
            raise MalformedFrame(
                f"Write response of {len(raw)} bytes (expected {ECHO_RESPONSE_LENGTH})"
            )
        return list(struct.unpack(">HH", raw[2:6]))

    raise MalformedFrame(f"Unsupported function code 0x{function_code:02X}")
