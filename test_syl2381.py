"""
Test Suite for the SYL-2381 Device Client
Runs every named operation against the in-process controller simulator
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from protocols.modbus import crc, framing
from protocols.modbus.exceptions import (
    CrcMismatch,
    ExceptionResponse,
    ModbusException,
    ReadOnlyViolation,
    RegisterValueError,
    ShortRead,
    Timeout,
    UnknownRegister,
)
from devices.registers import (
    SYL2381_REGISTERS,
    BaudRate,
    ControlDirection,
    ControllerStatus,
    DisplayUnit,
    Filter,
    InputType,
    OutputMode,
    OutputType,
)
from simulator import create_simulated_controller


@pytest.fixture
def pid():
    controller = create_simulated_controller(unit_id=1, timeout_s=0.2)
    yield controller
    controller.close()


@pytest.fixture
def node(pid):
    return pid.transport.slave.node

# ============================================================================
# Register table
# ============================================================================

def test_register_table_addresses():
    """Addresses from the vendor communication manual"""
    expected = {
        "setpoint": 0x0000, "alarm_high": 0x0002, "alarm_low": 0x0004,
        "p_gain": 0x1000, "i_time": 0x1002, "d_time": 0x1004,
        "proportional_band": 0x1006, "damp_constant": 0x1008, "control_cycle": 0x100A,
        "digital_filter": 0x100C, "input_type": 0x2000, "output_mode": 0x2002,
        "output_type": 0x2004, "hysteresis": 0x2006, "input_offset": 0x2008,
        "control_direction": 0x200A, "display_unit": 0x200C, "unit_id": 0x200E,
        "baud_rate": 0x2010, "current_temperature": 0x0164, "output_percent": 0x0166,
        "output_control": 0x016C, "status_flags": 0x0000, "alarm1_status": 0x0005,
    }
    for name, address in expected.items():
        assert SYL2381_REGISTERS.resolve(name).address == address, name

def test_only_process_value_and_status_are_read_only():
    read_only = {r.name for r in SYL2381_REGISTERS if not r.writable}
    assert read_only == {"current_temperature", "status_flags", "alarm1_status"}

def test_baud_rate_accepts_line_speed():
    assert BaudRate(9600) is BaudRate.BAUD_9600
    assert BaudRate(3) is BaudRate.BAUD_9600
    assert BaudRate.BAUD_1200.bps == 1200

def test_status_flag_decoding():
    status = ControllerStatus.from_flags(0b00100101)
    assert status.alarm1
    assert status.cooling_mode
    assert status.autotune
    assert not status.anomaly
    assert not status.setting_mode
    assert not status.manual_mode
    assert status.to_flags() == 0b00100101

# ============================================================================
# Dynamic values
# ============================================================================

def test_get_temperature(pid, node):
    assert pid.get_temperature() == 23.5

    node.set_temperature(187.25)
    assert pid.get_temperature() == 187.25

def test_temperature_is_read_only(pid):
    with pytest.raises(ReadOnlyViolation):
        pid.write("current_temperature", 30.0)
    assert pid.transport.requests == []

def test_output_requires_output_control(pid):
    """OUT is rejected by the controller while CV = 0"""
    assert pid.get_output_control() is False

    with pytest.raises(ExceptionResponse) as info:
        pid.set_output(40.0)
    assert info.value.exception == ModbusException.ILLEGAL_DATA_VALUE

    pid.set_output_control(True)
    assert pid.get_output_control() is True
    pid.set_output(40.0)
    assert pid.get_output() == 40.0

    pid.set_output_control(False)
    assert pid.get_output_control() is False

def test_output_control_is_a_flag(pid):
    with pytest.raises(RegisterValueError):
        pid.write("output_control", 0.5)
    assert pid.transport.requests == []

    pid.write("output_control", 1)
    assert pid.get_output_control() is True

def test_output_range_checked_locally(pid):
    with pytest.raises(RegisterValueError):
        pid.set_output(100.5)
    assert pid.transport.requests == []

def test_status_and_alarm(pid, node):
    status = pid.get_status()
    assert isinstance(status, ControllerStatus)
    assert status.alarm1 is False
    assert pid.get_alarm1_active() is False

    node.set_temperature(150.0)  # above AH1 = 120
    assert pid.get_status().alarm1 is True
    assert pid.get_alarm1_active() is True

def test_status_reflects_cooling_and_flags(pid, node):
    pid.set_control_direction(ControlDirection.COOLING)
    node.autotune = True

    status = pid.get_status()
    assert status.cooling_mode is True
    assert status.autotune is True
    assert status.manual_mode is False

# ============================================================================
# Parameters
# ============================================================================

@pytest.mark.parametrize("getter, setter, value", [
    ("get_setpoint", "set_setpoint", 65.5),
    ("get_alarm_high", "set_alarm_high", 300.0),
    ("get_alarm_low", "set_alarm_low", -40.0),
    ("get_pid_p", "set_pid_p", 9999.9),
    ("get_pid_i", "set_pid_i", 0.0),
    ("get_pid_d", "set_pid_d", 999.0),
    ("get_proportional_band", "set_proportional_band", 1999.0),
    ("get_damp_constant", "set_damp_constant", 0.1),
    ("get_control_cycle", "set_control_cycle", 500.0),
    ("get_hysteresis", "set_hysteresis", 2.5),
    ("get_input_offset", "set_input_offset", -12.5),
    ("get_unit_id", "set_unit_id", 64),
])
def test_numeric_parameters(pid, getter, setter, value):
    getattr(pid, setter)(value)
    assert getattr(pid, getter)() == value

@pytest.mark.parametrize("getter, setter, value", [
    ("get_digital_filter", "set_digital_filter", Filter.STRONG),
    ("get_input_type", "set_input_type", InputType.P10_0),
    ("get_output_mode", "set_output_mode", OutputMode.J1_ON_OFF_SSR_DISABLED),
    ("get_output_type", "set_output_type", OutputType.MA_4_20),
    ("get_control_direction", "set_control_direction", ControlDirection.COOLING),
    ("get_display_unit", "set_display_unit", DisplayUnit.FAHRENHEIT),
    ("get_baud_rate", "set_baud_rate", BaudRate.BAUD_2400),
])
def test_enumerated_parameters(pid, getter, setter, value):
    getattr(pid, setter)(value)
    assert getattr(pid, getter)() is value

def test_control_cycle_and_offset_write_their_own_registers(pid, node):
    damp = pid.get_damp_constant()
    hysteresis = pid.get_hysteresis()

    pid.set_control_cycle(30.0)
    pid.set_input_offset(5.0)

    assert node.value("control_cycle") == 30.0
    assert node.value("input_offset") == 5.0
    assert node.value("damp_constant") == damp
    assert node.value("hysteresis") == hysteresis

def test_float_write_frame(pid):
    pid.set_setpoint(10000.0 - 1.0)
    request = pid.transport.requests[-1]
    assert request[:7] == bytes.fromhex("01100000000204")
    assert crc.verify(request)

@pytest.mark.parametrize("setter, value", [
    ("set_setpoint", 10000.0),
    ("set_setpoint", -2000.0),
    ("set_pid_p", 0.0),
    ("set_pid_d", 1000.0),
    ("set_damp_constant", 1.5),
    ("set_control_cycle", 0.5),
    ("set_input_offset", 1000.5),
    ("set_unit_id", 65),
    ("set_setpoint", float("nan")),
    ("set_input_type", 11),
    ("set_setpoint", 10 ** 400),
    ("set_unit_id", 10 ** 30),
    ("set_unit_id", 1.5),
    ("set_input_type", Filter.STRONG),
    ("set_baud_rate", InputType.J),
])
def test_out_of_range_values_never_reach_the_bus(pid, setter, value):
    with pytest.raises(RegisterValueError):
        getattr(pid, setter)(value)
    assert pid.transport.requests == []

def test_enum_by_name(pid):
    pid.write("input_type", "k")
    assert pid.get_input_type() is InputType.K
    pid.write("baud_rate", 4800)
    assert pid.get_baud_rate() is BaudRate.BAUD_4800

def test_unknown_register(pid):
    with pytest.raises(UnknownRegister):
        pid.read("humidity")

def test_dump_lists_every_readable_parameter(pid):
    values = pid.dump()

    assert list(values)[:5] == [
        "current_temperature", "output_percent", "alarm1_status",
        "output_control", "status_flags",
    ]
    assert set(values) == {r.name for r in SYL2381_REGISTERS if r.readable}
    assert values["setpoint"] == 100.0
    assert values["input_type"] is InputType.K

# ============================================================================
# Fault injection
# ============================================================================

def test_dropped_response_times_out(pid):
    pid.transport.drop_responses = True
    with pytest.raises(Timeout):
        pid.get_temperature()
    assert pid.get_stats()["timeouts"] == 1

def test_corrupted_response(pid):
    pid.transport.corrupt_responses = True
    with pytest.raises(CrcMismatch):
        pid.get_temperature()

def test_truncated_response(pid):
    pid.transport.truncate_responses = 5
    with pytest.raises(ShortRead):
        pid.get_temperature()

def test_wrong_unit_id_times_out():
    pid = create_simulated_controller(unit_id=1, timeout_s=0.1)
    pid.engine.unit_id = 2
    with pytest.raises(Timeout):
        pid.get_setpoint()

def test_partial_register_write_rejected_by_controller(pid):
    """A single-word write into a float32 pair is refused"""
    pid.transport.write(framing.encode_write_single(1, 0x0000, 0x4000))
    response = pid.transport.read(5, 0.1)
    assert response == crc.append(bytes.fromhex("018603"))

def test_context_manager_closes_transport():
    with create_simulated_controller() as pid:
        pid.get_temperature()
    assert pid.transport.is_open is False
