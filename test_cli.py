"""
Test Suite for the SYL-2381 Command Line Tool
Runs each command against the built-in simulator
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from syl2381_cli import main, EXIT_OK, EXIT_DEVICE_ERROR, EXIT_USAGE_ERROR


def run(capsys, *argv):
    code = main(["--simulate", "--timeout", "0.2", "--log-level", "WARNING", *argv])
    captured = capsys.readouterr()
    return code, captured.out, captured.err


def test_registers_lists_table(capsys):
    code, out, _ = run(capsys, "registers")

    assert code == EXIT_OK
    assert "setpoint" in out
    assert "0x0164" in out
    assert "AL1_STA" in out

def test_dump(capsys):
    code, out, _ = run(capsys, "dump")

    assert code == EXIT_OK
    lines = out.splitlines()
    assert lines[0].startswith("PV")
    assert "23.5" in lines[0]
    assert any(line.startswith("INTY") and "K" in line for line in lines)

def test_get(capsys):
    code, out, _ = run(capsys, "get", "setpoint")

    assert code == EXIT_OK
    assert out.strip() == "100.0"

def test_get_enum(capsys):
    code, out, _ = run(capsys, "get", "baud_rate")

    assert code == EXIT_OK
    assert out.strip() == "BAUD_9600"

def test_set(capsys):
    code, out, _ = run(capsys, "set", "setpoint", "65.5")

    assert code == EXIT_OK
    assert out.strip() == "setpoint = 65.5"

def test_set_enum_by_name(capsys):
    code, out, _ = run(capsys, "set", "input_type", "j")

    assert code == EXIT_OK
    assert out.strip() == "input_type = J"

def test_status(capsys):
    code, out, _ = run(capsys, "status")

    assert code == EXIT_OK
    assert "alarm1" in out
    assert "autotune" in out

def test_unknown_register_is_usage_error(capsys):
    code, _, err = run(capsys, "get", "humidity")

    assert code == EXIT_USAGE_ERROR
    assert "humidity" in err

def test_invalid_value_is_usage_error(capsys):
    code, _, err = run(capsys, "set", "setpoint", "hot")

    assert code == EXIT_USAGE_ERROR
    assert "Error" in err

def test_read_only_is_usage_error(capsys):
    code, _, _ = run(capsys, "set", "current_temperature", "30")
    assert code == EXIT_USAGE_ERROR

def test_device_error(capsys):
    """OUT is refused by the controller while CV = 0"""
    code, _, err = run(capsys, "set", "output_percent", "50")

    assert code == EXIT_DEVICE_ERROR
    assert "exception" in err.lower()

def test_missing_command_is_usage_error(capsys):
    assert main([]) == EXIT_USAGE_ERROR

def test_bad_option_is_usage_error(capsys):
    assert main(["--baudrate", "19200", "dump"]) == EXIT_USAGE_ERROR

def test_serial_port_failure(capsys):
    """An unopenable port is a device error, not a crash"""
    code = main(["--port", "/dev/does-not-exist", "--timeout", "0.1", "get", "setpoint"])
    assert code == EXIT_DEVICE_ERROR
