"""
Modbus RTU Transaction Engine
=============================

Runs one request/response exchange per call against a register map.

Each call walks a fixed state machine:

    IDLE → REQUEST_BUILT → SENT → AWAITING_RESPONSE → DECODED
                │            │           │
                └────────────┴───────────┴──────────→ FAILED

State transitions:
    IDLE → REQUEST_BUILT:  resolve register, check access and value, build frame
    REQUEST_BUILT → SENT:  write frame to transport (TransportError on failure)
    SENT → AWAITING_RESPONSE: read response within the timeout
    AWAITING_RESPONSE → DECODED: validate frame, decode value
    any → FAILED: first error wins and is raised to the caller

Local validation failures (unknown register, access violation, bad value)
never touch the transport.

The engine is mechanism, not policy: it never retries. Each call performs at
most one exchange, so a caller can retry by simply calling again.

Modbus RTU is half duplex - only one transaction may be on the wire at a
time. The engine serialises its callers with a lock; share one engine per
physical link.
"""

import time
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from protocols.modbus import framing
from protocols.modbus.exceptions import (
    CrcMismatch,
    ExceptionResponse,
    FrameError,
    MalformedFrame,
    ModbusError,
    RegisterError,
    ShortRead,
    Timeout,
    TransportError,
)
from protocols.modbus.register_map import Register, RegisterMap, RegisterTable
from protocols.modbus.transport import Transport
from config import MODBUS_CONFIG

logger = logging.getLogger(__name__)


class TransactionState(Enum):
    """Transaction lifecycle states."""
    IDLE = "IDLE"
    REQUEST_BUILT = "REQUEST_BUILT"
    SENT = "SENT"
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    DECODED = "DECODED"
    FAILED = "FAILED"


@dataclass
class Transaction:
    """
    One request/response exchange.

    Request-scoped: created per call and discarded afterwards, except that
    the engine remembers the last one for diagnostics.
    """
    register: Optional[Register]
    operation: str
    function_code: int = 0
    request: bytes = b""
    response: bytes = b""
    state: TransactionState = TransactionState.IDLE
    error: Optional[ModbusError] = None
    value: Any = None
    started_at: float = 0.0
    finished_at: float = 0.0

    def transition(self, state: TransactionState):
        logger.debug(f"{self.operation} {self.state.value} → {state.value}")
        self.state = state

    @property
    def duration_s(self) -> float:
        if not self.finished_at:
            return 0.0
        return self.finished_at - self.started_at


class TransactionEngine:
    """
    Sequential Modbus RTU transaction engine for one link and one slave.

    Enforces:
    - One transaction in flight at a time
    - Access-mode checks before any I/O
    - Bounded response wait
    - Exact error classification
    """

    def __init__(
        self,
        transport: Transport,
        register_map: RegisterMap,
        unit_id: Optional[int] = None,
        timeout_s: Optional[float] = None,
    ):
        """
        Initialize transaction engine.

        Args:
            transport: Byte-stream transport (see transport.py)
            register_map: Register table to resolve names against
            unit_id: Slave address (default MODBUS_CONFIG["unit_id"])
            timeout_s: Response timeout (default MODBUS_CONFIG["response_timeout_s"])
        """
        self.transport = transport
        self.register_map = register_map
        self.unit_id = MODBUS_CONFIG["unit_id"] if unit_id is None else unit_id
        self.timeout_s = MODBUS_CONFIG["response_timeout_s"] if timeout_s is None else timeout_s

        low, high = MODBUS_CONFIG["slave_address_range"]
        if not low <= self.unit_id <= high:
            raise ValueError(f"Unit ID {self.unit_id} out of range [{low}, {high}]")
        if self.timeout_s <= 0:
            raise ValueError(f"Timeout must be positive, got {self.timeout_s}")

        self._lock = threading.Lock()
        self.last_transaction: Optional[Transaction] = None

        self.stats = {
            "total_requests": 0,
            "successful_responses": 0,
            "local_rejections": 0,
            "transport_errors": 0,
            "timeouts": 0,
            "crc_errors": 0,
            "frame_errors": 0,
            "exception_responses": 0,
        }

        logger.info(
            f"Transaction engine ready - unit {self.unit_id}, "
            f"timeout {self.timeout_s:.3f}s, map {register_map.name or 'unnamed'}"
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def read(self, register: Union[str, Register]) -> Any:
        """
        Read and decode one register.

        Args:
            register: Register name or definition

        Returns:
            Decoded value (see Register.decode)
        """
        transaction = Transaction(register=None, operation=f"read {register_name(register)}")
        with self._lock:
            return self._run(transaction, self._build_read, register)

    def write(self, register: Union[str, Register], value: Any) -> None:
        """
        Encode and write one register.

        Args:
            register: Register name or definition
            value: Physical value (see Register.encode)
        """
        transaction = Transaction(register=None, operation=f"write {register_name(register)}")
        with self._lock:
            self._run(transaction, self._build_write, register, value)

    def get_stats(self) -> Dict:
        """Get statistics."""
        return self.stats.copy()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _run(self, transaction: Transaction, build, *args) -> Any:
        self.last_transaction = transaction
        transaction.started_at = time.monotonic()
        self.stats["total_requests"] += 1
        try:
            decode = build(transaction, *args)
            transaction.transition(TransactionState.REQUEST_BUILT)

            self._send(transaction)
            transaction.transition(TransactionState.SENT)

            transaction.transition(TransactionState.AWAITING_RESPONSE)
            transaction.response = self._receive(transaction.function_code)
            logger.debug(f"RX {transaction.response.hex(' ')}")

            payload = framing.decode_response(
                transaction.response, transaction.function_code, self.unit_id
            )
            transaction.value = decode(payload)
            transaction.transition(TransactionState.DECODED)
            self.stats["successful_responses"] += 1
            return transaction.value

        except ModbusError as e:
            transaction.error = e
            transaction.transition(TransactionState.FAILED)
            self._count_failure(e)
            logger.warning(f"{transaction.operation} failed: {e}")
            raise
        finally:
            transaction.finished_at = time.monotonic()

    def _build_read(self, transaction: Transaction, register: Union[str, Register]):
        register = self._resolve(register)
        transaction.register = register
        register.check_readable()

        if register.table == RegisterTable.COIL:
            transaction.function_code = framing.READ_COILS
            transaction.request = framing.encode_read_coils(
                self.unit_id, register.address, register.width
            )

            def decode(payload: List[int]) -> Any:
                expected = (register.width + 7) // 8
                if len(payload) != expected:
                    raise MalformedFrame(
                        f"{register.name}: expected {expected} coil byte(s), got {len(payload)}"
                    )
                return register.decode(payload)
        else:
            transaction.function_code = framing.READ_HOLDING_REGISTERS
            transaction.request = framing.encode_read(
                self.unit_id, register.address, register.width
            )

            def decode(payload: List[int]) -> Any:
                if len(payload) != register.width:
                    raise MalformedFrame(
                        f"{register.name}: expected {register.width} word(s), got {len(payload)}"
                    )
                return register.decode(payload)

        return decode

    def _build_write(self, transaction: Transaction, register: Union[str, Register], value: Any):
        register = self._resolve(register)
        transaction.register = register
        register.check_writable()
        words = register.encode(value)

        if register.table == RegisterTable.COIL:
            if register.width != 1:
                raise RegisterError(f"{register.name}: only single coils can be written")
            transaction.function_code = framing.WRITE_SINGLE_COIL
            field = framing.COIL_ON if words[0] else framing.COIL_OFF
            transaction.request = framing.encode_write_single(
                self.unit_id, register.address, field, function_code=framing.WRITE_SINGLE_COIL
            )
            expected_echo = [register.address, field]
        elif len(words) == 1:
            transaction.function_code = framing.WRITE_SINGLE_REGISTER
            transaction.request = framing.encode_write_single(
                self.unit_id, register.address, words[0]
            )
            expected_echo = [register.address, words[0]]
        else:
            transaction.function_code = framing.WRITE_MULTIPLE_REGISTERS
            transaction.request = framing.encode_write_multiple(
                self.unit_id, register.address, words
            )
            expected_echo = [register.address, len(words)]

        def decode(payload: List[int]) -> None:
            if payload != expected_echo:
                raise MalformedFrame(
                    f"{register.name}: write echo {payload} does not match request {expected_echo}"
                )
            return None

        return decode

    def _resolve(self, register: Union[str, Register]) -> Register:
        if isinstance(register, Register):
            return register
        return self.register_map.resolve(register)

    def _send(self, transaction: Transaction):
        logger.debug(f"TX {transaction.request.hex(' ')}")
        try:
            self.transport.write(transaction.request)
        except TransportError:
            raise
        except OSError as e:
            raise TransportError(f"Transport write failed: {e}") from e

    def _receive(self, function_code: int) -> bytes:
        """
        Read one complete response frame within the timeout.

        The first three bytes (address, function code, byte count) fix the
        total frame length; the rest is read against the same deadline.
        """
        deadline = time.monotonic() + self.timeout_s

        header = self._read_until(framing.RESPONSE_HEADER_LENGTH, deadline)
        if not header:
            raise Timeout(self.timeout_s)
        if len(header) < framing.RESPONSE_HEADER_LENGTH:
            raise ShortRead(len(header), framing.RESPONSE_HEADER_LENGTH)

        expected = framing.response_length(header, function_code)
        body = self._read_until(expected - len(header), deadline)
        frame = header + body
        if len(frame) < expected:
            raise ShortRead(len(frame), expected)
        return frame

    def _read_until(self, size: int, deadline: float) -> bytes:
        buffer = bytearray()
        while len(buffer) < size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                chunk = self.transport.read(size - len(buffer), remaining)
            except TransportError:
                raise
            except OSError as e:
                raise TransportError(f"Transport read failed: {e}") from e
            if chunk:
                buffer.extend(chunk)
        return bytes(buffer)

    def _count_failure(self, error: ModbusError):
        if isinstance(error, RegisterError):
            self.stats["local_rejections"] += 1
        elif isinstance(error, TransportError):
            self.stats["transport_errors"] += 1
        elif isinstance(error, Timeout):
            self.stats["timeouts"] += 1
        elif isinstance(error, CrcMismatch):
            self.stats["crc_errors"] += 1
        elif isinstance(error, FrameError):
            self.stats["frame_errors"] += 1
        elif isinstance(error, ExceptionResponse):
            self.stats["exception_responses"] += 1


def register_name(register: Union[str, Register]) -> str:
    return register.name if isinstance(register, Register) else str(register)
