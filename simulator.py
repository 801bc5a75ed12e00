"""
SYL-2381 Controller Simulator
=============================

In-process stand-in for an SYL-2381 on an RS-485 link, used by the CLI
(--simulate), the REST API (SYL2381_SIMULATE=1) and the test suite.

Components:
    - SimulatedSyl2381: register/coil memory behaving like the controller
    - ModbusRTUSlave: wire-level request handling (protocols/modbus/server.py)
    - LoopbackTransport: Transport that hands request frames to the slave

Request path:
    Syl2381 → TransactionEngine → LoopbackTransport.write()
        → ModbusRTUSlave.handle_frame() → SimulatedSyl2381
    LoopbackTransport.read() ← response frame

Controller behaviour reproduced:
    - Parameters are float32 register pairs; partial writes are rejected
    - Values outside the parameter range are rejected (ILLEGAL_DATA_VALUE)
    - OUT is only writable while CV = 1
    - PV is read-only
    - AT status byte follows the live state (alarm 1, cooling mode)

Fault injection on the transport (drop, corrupt, truncate responses) lets
tests exercise timeout and framing errors without hardware.
"""

import time
import logging
import threading
from typing import Dict, List, Optional

from protocols.modbus.exceptions import ModbusError, TransportError
from protocols.modbus.register_map import RegisterMap, RegisterTable
from protocols.modbus.server import ModbusRTUSlave
from devices.registers import SYL2381_REGISTERS, ControlDirection, ControllerStatus
from devices.syl2381 import Syl2381
from config import SIMULATOR_CONFIG

logger = logging.getLogger(__name__)

STATUS_COIL_COUNT = 8


class SimulatedSyl2381:
    """
    Register memory of a simulated SYL-2381.

    Implements the node interface used by ModbusRTUSlave:
        read_coils(address, count) -> List[bool]
        read_holding_registers(address, count) -> List[int]
        write_coil(address, value)
        write_holding_registers(address, values)

    Unknown addresses raise KeyError, rejected values raise ValueError.
    """

    def __init__(
        self,
        initial_values: Optional[Dict[str, float]] = None,
        register_map: RegisterMap = SYL2381_REGISTERS,
    ):
        """
        Initialize simulated controller.

        Args:
            initial_values: {register name: value} (default SIMULATOR_CONFIG)
            register_map: Register layout to serve
        """
        self.register_map = register_map
        self._words: Dict[int, int] = {}
        self._lock = threading.Lock()

        # AT bits that are not derived from register values
        self.anomaly = False
        self.setting_mode = False
        self.manual_mode = False
        self.autotune = False

        values = dict(SIMULATOR_CONFIG["initial_values"])
        values.update(initial_values or {})

        for register in register_map:
            if register.table != RegisterTable.HOLDING_REGISTER:
                continue
            value = values.get(register.name, 0.0)
            words = register.encode(_clamp(register, value))
            for offset, word in enumerate(words):
                self._words[register.address + offset] = word

        self.stats = {
            "reads": 0,
            "writes": 0,
            "rejected_writes": 0,
        }

        logger.info(f"Simulated {register_map.name or 'controller'} ready - "
                    f"{len(self._words)} holding registers")

    # ------------------------------------------------------------------
    # Direct access (test and process hooks)
    # ------------------------------------------------------------------

    def value(self, name: str):
        """Current decoded value of a holding register."""
        register = self.register_map.resolve(name)
        words = [self._words[register.address + i] for i in range(register.width)]
        return register.decode(words)

    def set_value(self, name: str, value):
        """Set a holding register directly, bypassing access rules."""
        register = self.register_map.resolve(name)
        with self._lock:
            for offset, word in enumerate(register.encode(value)):
                self._words[register.address + offset] = word

    def set_temperature(self, celsius: float):
        """Move the process value (PV)."""
        self.set_value("current_temperature", celsius)

    def status(self) -> ControllerStatus:
        """Current AT status flags."""
        alarm1 = False
        if "alarm_high" in self.register_map and "current_temperature" in self.register_map:
            alarm1 = self.value("current_temperature") >= self.value("alarm_high")

        cooling = False
        if "control_direction" in self.register_map:
            cooling = self.value("control_direction") == ControlDirection.COOLING

        return ControllerStatus(
            alarm1=alarm1,
            anomaly=self.anomaly,
            setting_mode=self.setting_mode,
            cooling_mode=cooling,
            manual_mode=self.manual_mode,
            autotune=self.autotune,
        )

    # ------------------------------------------------------------------
    # Node interface
    # ------------------------------------------------------------------

    def read_coils(self, address: int, count: int) -> List[bool]:
        if address + count > STATUS_COIL_COUNT:
            raise KeyError(f"Coils {address}-{address + count - 1} not implemented")
        flags = self.status().to_flags()
        self.stats["reads"] += 1
        return [bool(flags >> bit & 1) for bit in range(address, address + count)]

    def read_holding_registers(self, address: int, count: int) -> List[int]:
        with self._lock:
            try:
                words = [self._words[address + i] for i in range(count)]
            except KeyError as e:
                raise KeyError(f"Holding register 0x{e.args[0]:04X} not implemented") from None
        self.stats["reads"] += 1
        return words

    def write_coil(self, address: int, value: bool):
        raise KeyError(f"Coil {address} is read-only")

    def write_holding_registers(self, address: int, values: List[int]):
        with self._lock:
            try:
                staged = self._stage_write(address, values)
            except (KeyError, ValueError):
                self.stats["rejected_writes"] += 1
                raise
            self._words.update(staged)
        self.stats["writes"] += 1

    def _stage_write(self, address: int, values: List[int]) -> Dict[int, int]:
        staged: Dict[int, int] = {}
        end = address + len(values)
        position = address

        while position < end:
            register = self.register_map.get_register_by_address(
                position, RegisterTable.HOLDING_REGISTER
            )
            if register is None or not register.writable:
                raise KeyError(f"Holding register 0x{position:04X} is not writable")
            if register.address != position or position + register.width > end:
                raise ValueError(f"Partial write of {register.name}")

            words = values[position - address:position - address + register.width]
            try:
                value = register.decode(words)
                register.encode(value)
            except ModbusError as e:
                raise ValueError(str(e)) from None

            if register.name == "output_percent" and self._current("output_control", staged) != 1.0:
                raise ValueError("OUT is read-only while CV = 0")

            for offset, word in enumerate(words):
                staged[position + offset] = word
            position += register.width

        return staged

    def _current(self, name: str, staged: Dict[int, int]):
        register = self.register_map.resolve(name)
        words = [
            staged.get(register.address + i, self._words[register.address + i])
            for i in range(register.width)
        ]
        return register.decode(words)


def _clamp(register, value: float) -> float:
    if register.minimum is not None:
        value = max(value, register.minimum)
    if register.maximum is not None:
        value = min(value, register.maximum)
    return value


class LoopbackTransport:
    """
    Transport that answers requests from an in-process Modbus RTU slave.

    Fault injection:
        drop_responses: slave answers are discarded (master times out)
        corrupt_responses: last CRC byte of each answer is flipped
        truncate_responses: answers are cut to this many bytes
    """

    def __init__(self, slave: ModbusRTUSlave, response_delay_s: Optional[float] = None):
        """
        Initialize loopback transport.

        Args:
            slave: Slave answering the requests
            response_delay_s: Delay before each answer becomes readable
        """
        self.slave = slave
        self.response_delay_s = (
            SIMULATOR_CONFIG["response_delay_s"] if response_delay_s is None else response_delay_s
        )

        self.drop_responses = False
        self.corrupt_responses = False
        self.truncate_responses: Optional[int] = None

        self._buffer = bytearray()
        self._ready_at = 0.0
        self.is_open = True
        self.requests: List[bytes] = []

    def write(self, data: bytes):
        if not self.is_open:
            raise TransportError("Loopback transport is closed")

        request = bytes(data)
        self.requests.append(request)
        self._buffer.clear()

        response = self.slave.handle_frame(request)
        if response is None or self.drop_responses:
            return

        if self.corrupt_responses:
            response = response[:-1] + bytes([response[-1] ^ 0xFF])
        if self.truncate_responses is not None:
            response = response[:self.truncate_responses]

        self._buffer.extend(response)
        self._ready_at = time.monotonic() + self.response_delay_s

    def read(self, size: int, timeout: float) -> bytes:
        if not self.is_open:
            raise TransportError("Loopback transport is closed")

        wait = self._ready_at - time.monotonic() if self._buffer else timeout
        if wait > 0:
            time.sleep(min(wait, timeout))
        if not self._buffer or time.monotonic() < self._ready_at:
            return b""

        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def close(self):
        self._buffer.clear()
        self.is_open = False

    def open(self):
        self.is_open = True

    def __repr__(self) -> str:
        return f"LoopbackTransport(unit={self.slave.unit_id})"


def create_simulated_controller(
    unit_id: Optional[int] = None,
    timeout_s: Optional[float] = None,
    initial_values: Optional[Dict[str, float]] = None,
) -> Syl2381:
    """
    Build a Syl2381 client wired to a simulated controller.

    The simulated node is reachable as ``client.transport.slave.node``.
    """
    unit_id = SIMULATOR_CONFIG["unit_id"] if unit_id is None else unit_id
    node = SimulatedSyl2381(initial_values)
    slave = ModbusRTUSlave(node, unit_id)
    transport = LoopbackTransport(slave)
    return Syl2381(transport, unit_id=unit_id, timeout_s=timeout_s)
