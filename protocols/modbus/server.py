"""
Modbus RTU Slave
================

Request handler for the slave side of a Modbus RTU link, used by the
in-process controller simulator.

The slave mirrors what a real controller does on the wire:
    - Silently ignores frames with a bad CRC (the master sees a timeout)
    - Silently ignores frames addressed to another unit
    - Answers broadcast (unit 0) writes without a response
    - Returns exception responses for unsupported functions, bad addresses
      and rejected values

Supported Function Codes:
    FC01: Read Coils
    FC03: Read Holding Registers
    FC05: Write Single Coil
    FC06: Write Single Register
    FC16: Write Multiple Registers

Integration with Node:
    The slave doesn't store data itself - it delegates to a node object that
    maintains the actual register/coil state. The node raises KeyError for
    addresses it does not implement and ValueError for values it refuses;
    these become ILLEGAL_DATA_ADDRESS and ILLEGAL_DATA_VALUE.
"""

import struct
import logging
from typing import Dict, List, Optional

from protocols.modbus import crc, framing
from protocols.modbus.exceptions import ModbusException
from config import MODBUS_CONFIG

logger = logging.getLogger(__name__)

BROADCAST_ADDRESS = 0


class ModbusRTUSlave:
    """
    Modbus RTU slave bound to one node.

    handle_frame() takes a complete request frame and returns the complete
    response frame, or None when a real device would stay silent.
    """

    def __init__(self, node, unit_id: int):
        """
        Initialize Modbus RTU slave.

        Args:
            node: Node object providing register/coil data
            unit_id: Slave address (1-247)
        """
        self.node = node
        self.unit_id = unit_id

        self.stats = {
            "frames_received": 0,
            "crc_errors": 0,
            "ignored_frames": 0,
            "requests_fc01": 0,
            "requests_fc03": 0,
            "requests_fc05": 0,
            "requests_fc06": 0,
            "requests_fc16": 0,
            "exceptions_total": 0,
        }

        logger.info(f"Modbus RTU slave initialized - Unit {unit_id}")

    def handle_frame(self, frame: bytes) -> Optional[bytes]:
        """
        Process one request frame.

        Args:
            frame: Complete RTU request including CRC

        Returns:
            Response frame including CRC, or None if no response is sent
        """
        self.stats["frames_received"] += 1

        if len(frame) < 4 or not crc.verify(frame):
            self.stats["crc_errors"] += 1
            logger.warning(f"Dropping request with bad CRC: {bytes(frame).hex(' ')}")
            return None

        address = frame[0]
        if address not in (self.unit_id, BROADCAST_ADDRESS):
            self.stats["ignored_frames"] += 1
            logger.debug(f"Ignoring request for unit {address}")
            return None

        pdu = self._process_request(bytes(frame[1:-2]))
        if address == BROADCAST_ADDRESS:
            return None
        return crc.append(bytes([self.unit_id]) + pdu)

    def _process_request(self, pdu: bytes) -> bytes:
        """
        Process Modbus request PDU.

        Args:
            pdu: Request PDU bytes (function code + data)

        Returns:
            Response PDU bytes
        """
        function_code = pdu[0]

        fc_key = f"requests_fc{function_code:02d}"
        if fc_key in self.stats:
            self.stats[fc_key] += 1

        handlers = {
            framing.READ_COILS: self._handle_fc01,
            framing.READ_HOLDING_REGISTERS: self._handle_fc03,
            framing.WRITE_SINGLE_COIL: self._handle_fc05,
            framing.WRITE_SINGLE_REGISTER: self._handle_fc06,
            framing.WRITE_MULTIPLE_REGISTERS: self._handle_fc16,
        }
        handler = handlers.get(function_code)
        if handler is None:
            return self._build_exception_response(
                function_code, ModbusException.ILLEGAL_FUNCTION
            )

        try:
            return handler(pdu[1:])
        except struct.error:
            return self._build_exception_response(
                function_code, ModbusException.ILLEGAL_DATA_VALUE
            )
        except KeyError as e:
            logger.info(f"FC{function_code:02d} illegal address: {e}")
            return self._build_exception_response(
                function_code, ModbusException.ILLEGAL_DATA_ADDRESS
            )
        except ValueError as e:
            logger.info(f"FC{function_code:02d} illegal value: {e}")
            return self._build_exception_response(
                function_code, ModbusException.ILLEGAL_DATA_VALUE
            )

    def _check_quantity(self, count: int, limit: int):
        if not 1 <= count <= limit:
            raise ValueError(f"Quantity {count} out of range [1, {limit}]")

    def _handle_fc01(self, data: bytes) -> bytes:
        """
        Handle FC01: Read Coils.

        Args:
            data: Request data (address + count)

        Returns:
            Response PDU
        """
        address, count = struct.unpack('>HH', data)
        self._check_quantity(count, MODBUS_CONFIG["max_read_coils"])

        coils = self.node.read_coils(address, count)

        # Pack coils into bytes (8 coils per byte, LSB first)
        byte_count = (count + 7) // 8
        coil_bytes = bytearray(byte_count)
        for i, coil in enumerate(coils):
            if coil:
                coil_bytes[i // 8] |= (1 << (i % 8))

        return struct.pack('BB', framing.READ_COILS, byte_count) + bytes(coil_bytes)

    def _handle_fc03(self, data: bytes) -> bytes:
        """
        Handle FC03: Read Holding Registers.

        Args:
            data: Request data (address + count)

        Returns:
            Response PDU
        """
        address, count = struct.unpack('>HH', data)
        self._check_quantity(count, MODBUS_CONFIG["max_read_registers"])

        registers = self.node.read_holding_registers(address, count)

        return struct.pack(
            f'>BB{count}H', framing.READ_HOLDING_REGISTERS, count * 2, *registers
        )

    def _handle_fc05(self, data: bytes) -> bytes:
        """
        Handle FC05: Write Single Coil.

        Args:
            data: Request data (address + value)

        Returns:
            Response PDU (echo)
        """
        address, value = struct.unpack('>HH', data)
        if value not in (framing.COIL_OFF, framing.COIL_ON):
            raise ValueError(f"Invalid coil value 0x{value:04X}")

        self.node.write_coil(address, value == framing.COIL_ON)
        return struct.pack('>BHH', framing.WRITE_SINGLE_COIL, address, value)

    def _handle_fc06(self, data: bytes) -> bytes:
        """
        Handle FC06: Write Single Register.

        Args:
            data: Request data (address + value)

        Returns:
            Response PDU (echo)
        """
        address, value = struct.unpack('>HH', data)
        self.node.write_holding_registers(address, [value])
        return struct.pack('>BHH', framing.WRITE_SINGLE_REGISTER, address, value)

    def _handle_fc16(self, data: bytes) -> bytes:
        """
        Handle FC16: Write Multiple Registers.

        Args:
            data: Request data (address + count + byte count + values)

        Returns:
            Response PDU (address + count)
        """
        address, count, byte_count = struct.unpack('>HHB', data[:5])
        self._check_quantity(count, MODBUS_CONFIG["max_write_registers"])
        if byte_count != count * 2 or len(data) != 5 + byte_count:
            raise ValueError(f"Byte count {byte_count} does not match {count} registers")

        values: List[int] = list(struct.unpack(f'>{count}H', data[5:]))
        self.node.write_holding_registers(address, values)
        return struct.pack('>BHH', framing.WRITE_MULTIPLE_REGISTERS, address, count)

    def _build_exception_response(
        self, function_code: int, exception: ModbusException
    ) -> bytes:
        """
        Build Modbus exception response PDU: (FC | 0x80) + exception code.
        """
        self.stats["exceptions_total"] += 1
        logger.debug(f"FC{function_code:02d} → exception {exception.name}")
        return struct.pack('BB', function_code | framing.EXCEPTION_BIT, exception.value)

    def get_stats(self) -> Dict:
        """Get slave statistics."""
        return self.stats.copy()
