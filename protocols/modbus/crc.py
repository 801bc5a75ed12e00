"""
Modbus CRC-16
=============

CRC-16/Modbus checksum used to frame every Modbus RTU message.

Parameters:
    Polynomial:   0x8005, processed reflected as 0xA001
    Initial value: 0xFFFF
    Final XOR:    none

The 16-bit result travels at the end of the frame LOW byte first, which is the
one little-endian field in an otherwise big-endian protocol:

    01 03 00 00 00 01  ->  CRC 0x0A84  ->  wire bytes 84 0A
"""

from typing import Iterable, List

POLYNOMIAL = 0xA001
INITIAL_VALUE = 0xFFFF


def _build_table() -> List[int]:
    """Precompute the CRC of every single-byte value."""
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ POLYNOMIAL
            else:
                crc >>= 1
        table.append(crc)
    return table


CRC_TABLE = _build_table()


def compute(data: Iterable[int]) -> int:
    """
    Compute the CRC-16/Modbus of a byte sequence.

    Args:
        data: bytes, bytearray or any iterable of 0-255 integers

    Returns:
        16-bit CRC value
    """
    crc = INITIAL_VALUE
    for byte in data:
        crc = (crc >> 8) ^ CRC_TABLE[(crc ^ byte) & 0xFF]
    return crc


def to_bytes(crc: int) -> bytes:
    """Serialize a CRC in wire order (low byte, high byte)."""
    return bytes((crc & 0xFF, (crc >> 8) & 0xFF))


def append(frame: bytes) -> bytes:
    """Return ``frame`` with its CRC trailer appended."""
    return bytes(frame) + to_bytes(compute(frame))


def trailer(frame: bytes) -> int:
    """Read the little-endian CRC trailer of a complete frame."""
    return frame[-2] | (frame[-1] << 8)


def verify(frame: bytes) -> bool:
    """Check the trailing CRC of a complete frame."""
    if len(frame) < 3:
        return False
    return compute(frame[:-2]) == trailer(frame)
