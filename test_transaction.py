"""
Test Suite for the Modbus RTU Transaction Engine
Tests request building, response classification and the end-to-end exchange
"""

import sys
import threading
import time
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from protocols.modbus import crc
from protocols.modbus.exceptions import (
    CrcMismatch,
    ExceptionResponse,
    MalformedFrame,
    ReadOnlyViolation,
    RegisterValueError,
    ShortRead,
    Timeout,
    TransportError,
    UnexpectedFunctionCode,
    UnknownRegister,
    WriteOnlyViolation,
)
from protocols.modbus.register_map import Access, Encoding, Register, RegisterMap, RegisterTable
from protocols.modbus.transaction import TransactionEngine, TransactionState
from devices.syl2381 import Syl2381


class ScriptedTransport:
    """Transport that records requests and replays canned responses"""

    def __init__(self, responses=None, write_error=None, read_error=None):
        self.responses = list(responses or [])
        self.write_error = write_error
        self.read_error = read_error
        self.writes = []
        self.closed = False
        self._buffer = bytearray()

    def write(self, data):
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(bytes(data))
        if self.responses:
            self._buffer.extend(self.responses.pop(0))

    def read(self, size, timeout):
        if self.read_error is not None:
            raise self.read_error
        if not self._buffer:
            time.sleep(timeout)
            return b""
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def close(self):
        self.closed = True


FIXED_POINT_MAP = RegisterMap([
    Register("current_temperature", 0x0000, Encoding.FIXED_POINT, scale=10,
             access=Access.READ_ONLY, units="deg C"),
    Register("setpoint", 0x0001, Encoding.FIXED_POINT, scale=10,
             minimum=-199.9, maximum=999.9),
    Register("target", 0x0010, Encoding.FLOAT32),
    Register("command", 0x0020, Encoding.UINT16, access=Access.WRITE_ONLY),
    Register("alarm", 0x0005, Encoding.BITS, table=RegisterTable.COIL, bit_count=1,
             access=Access.READ_ONLY),
], name="fixed-point test map")


def make_engine(responses=None, timeout_s=0.2, **kwargs):
    transport = ScriptedTransport(responses, **kwargs)
    engine = TransactionEngine(transport, FIXED_POINT_MAP, unit_id=1, timeout_s=timeout_s)
    return engine, transport

# ============================================================================
# End-to-end exchange
# ============================================================================

def test_get_temperature_end_to_end():
    """01 03 00 00 00 01 <crc> / 01 03 02 00 EB <crc> → 23.5"""
    transport = ScriptedTransport([crc.append(bytes.fromhex("01030200EB"))])
    pid = Syl2381(transport, unit_id=1, timeout_s=0.5, register_map=FIXED_POINT_MAP)

    assert pid.get_temperature() == 23.5
    assert transport.writes == [bytes.fromhex("010300000001840A")]

def test_successful_read_records_transaction():
    engine, _ = make_engine([crc.append(bytes.fromhex("01030200EB"))])

    assert engine.read("current_temperature") == 23.5

    transaction = engine.last_transaction
    assert transaction.state == TransactionState.DECODED
    assert transaction.register.name == "current_temperature"
    assert transaction.response == crc.append(bytes.fromhex("01030200EB"))
    assert engine.stats["successful_responses"] == 1

def test_fixed_point_write_uses_fc06():
    request = crc.append(bytes.fromhex("0106000100EB"))
    engine, transport = make_engine([request])

    engine.write("setpoint", 23.5)

    assert transport.writes == [request]

def test_float_write_uses_fc16():
    engine, transport = make_engine([crc.append(bytes.fromhex("011000100002"))])

    engine.write("target", 10000.0)

    assert transport.writes[0][:-2] == bytes.fromhex("01100010000204461C4000")

def test_coil_read_uses_fc01():
    engine, transport = make_engine([crc.append(bytes.fromhex("01010101"))])

    assert engine.read("alarm") is True
    assert transport.writes[0][:-2] == bytes.fromhex("010100050001")

# ============================================================================
# Local rejections (no bus traffic)
# ============================================================================

def test_read_only_write_sends_nothing():
    engine, transport = make_engine()

    with pytest.raises(ReadOnlyViolation):
        engine.write("current_temperature", 25.0)

    assert transport.writes == []
    assert engine.stats["local_rejections"] == 1
    assert engine.last_transaction.state == TransactionState.FAILED

def test_write_only_read_sends_nothing():
    engine, transport = make_engine()

    with pytest.raises(WriteOnlyViolation):
        engine.read("command")

    assert transport.writes == []

def test_unknown_register_sends_nothing():
    engine, transport = make_engine()

    with pytest.raises(UnknownRegister):
        engine.read("humidity")

    assert transport.writes == []

@pytest.mark.parametrize("value", [1000.0, -200.0, float("nan"), float("inf"), "hot"])
def test_invalid_value_sends_nothing(value):
    engine, transport = make_engine()

    with pytest.raises(RegisterValueError):
        engine.write("setpoint", value)

    assert transport.writes == []

# ============================================================================
# Link and frame failures
# ============================================================================

def test_silent_device_times_out():
    engine, transport = make_engine(timeout_s=0.1)

    started = time.monotonic()
    with pytest.raises(Timeout):
        engine.read("current_temperature")
    elapsed = time.monotonic() - started

    assert elapsed >= 0.1
    assert elapsed < 1.0
    assert len(transport.writes) == 1
    assert engine.stats["timeouts"] == 1

def test_partial_response_is_short_read():
    engine, _ = make_engine([bytes.fromhex("01030200")], timeout_s=0.1)

    with pytest.raises(ShortRead) as info:
        engine.read("current_temperature")

    assert info.value.received == 4
    assert info.value.expected == 7

def test_transport_write_failure():
    engine, _ = make_engine(write_error=OSError("port vanished"))

    with pytest.raises(TransportError):
        engine.read("current_temperature")

    assert engine.stats["transport_errors"] == 1

def test_transport_read_failure():
    engine, transport = make_engine(read_error=OSError("device disconnected"))

    with pytest.raises(TransportError, match="device disconnected"):
        engine.read("current_temperature")

    assert len(transport.writes) == 1
    assert engine.stats["transport_errors"] == 1
    assert engine.last_transaction.state == TransactionState.FAILED

def test_transport_error_passes_through():
    engine, _ = make_engine(write_error=TransportError("unplugged"))

    with pytest.raises(TransportError, match="unplugged"):
        engine.read("current_temperature")

def test_corrupted_response():
    response = bytearray(crc.append(bytes.fromhex("01030200EB")))
    response[4] ^= 0x01
    engine, _ = make_engine([bytes(response)])

    with pytest.raises(CrcMismatch):
        engine.read("current_temperature")

    assert engine.stats["crc_errors"] == 1

def test_exception_response():
    engine, _ = make_engine([crc.append(bytes.fromhex("018302"))])

    with pytest.raises(ExceptionResponse) as info:
        engine.read("current_temperature")

    assert info.value.code == 2
    assert engine.stats["exception_responses"] == 1

def test_wrong_function_code():
    engine, _ = make_engine([crc.append(bytes.fromhex("01040200EB"))])

    with pytest.raises(UnexpectedFunctionCode):
        engine.read("current_temperature")

def test_word_count_mismatch():
    engine, _ = make_engine([crc.append(bytes.fromhex("01030400EB0000"))])

    with pytest.raises(MalformedFrame):
        engine.read("current_temperature")

def test_write_echo_mismatch():
    engine, _ = make_engine([crc.append(bytes.fromhex("0106000100EC"))])

    with pytest.raises(MalformedFrame):
        engine.write("setpoint", 23.5)

    assert engine.stats["frame_errors"] == 1

def test_no_retry_after_failure():
    """Each call is exactly one exchange"""
    engine, transport = make_engine(
        [crc.append(bytes.fromhex("018306")), crc.append(bytes.fromhex("01030200EB"))]
    )

    with pytest.raises(ExceptionResponse):
        engine.read("current_temperature")
    assert len(transport.writes) == 1

    assert engine.read("current_temperature") == 23.5
    assert len(transport.writes) == 2

# ============================================================================
# Concurrency
# ============================================================================

class HalfDuplexLine:
    """
    Slow RS-485 line with one device answering FC03 reads.

    The answer to each request is the register address plus 100, so every
    caller can tell whether it got its own response. A request written while
    a previous answer is still unread is a bus collision.
    """

    def __init__(self, delay_s=0.01):
        self.delay_s = delay_s
        self.collisions = 0
        self.exchanges = 0
        self._pending = bytearray()
        self._guard = threading.Lock()

    def write(self, data):
        with self._guard:
            if self._pending:
                self.collisions += 1
                raise OSError("bus collision")
            address = int.from_bytes(data[2:4], "big")
            self._pending.extend(
                crc.append(bytes([data[0], 0x03, 0x02]) + (address + 100).to_bytes(2, "big"))
            )
            self.exchanges += 1

    def read(self, size, timeout):
        time.sleep(self.delay_s)
        with self._guard:
            data = bytes(self._pending[:size])
            del self._pending[:size]
        return data

    def close(self):
        pass


def test_one_transaction_in_flight():
    line = HalfDuplexLine()
    engine = TransactionEngine(line, FIXED_POINT_MAP, unit_id=1, timeout_s=0.5)
    expected = {"current_temperature": 10.0, "setpoint": 10.1}
    results = []
    errors = []

    def poll(name):
        for _ in range(5):
            try:
                results.append((name, engine.read(name)))
            except Exception as e:
                errors.append(e)

    threads = [
        threading.Thread(target=poll, args=(name,))
        for name in ("current_temperature", "setpoint") * 3
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert line.collisions == 0
    assert line.exchanges == 30
    assert len(results) == 30
    assert all(value == expected[name] for name, value in results)
    assert engine.stats["successful_responses"] == 30

# ============================================================================
# Construction
# ============================================================================

def test_invalid_unit_id():
    with pytest.raises(ValueError):
        TransactionEngine(ScriptedTransport(), FIXED_POINT_MAP, unit_id=300)

def test_invalid_timeout():
    with pytest.raises(ValueError):
        TransactionEngine(ScriptedTransport(), FIXED_POINT_MAP, unit_id=1, timeout_s=0)
