"""
SYL-2381 Command Line Tool
==========================

Read and change SYL-2381 parameters from a shell.

Commands:
    dump                 Print every readable parameter
    get NAME             Print one parameter
    set NAME VALUE       Write one parameter (enum names or numbers accepted)
    status               Print the decoded AT status flags
    registers            Print the register table (no bus traffic)

Examples:
    python syl2381_cli.py --port /dev/ttyUSB0 --unit-id 5 dump
    python syl2381_cli.py set setpoint 65
    python syl2381_cli.py set input_type K
    python syl2381_cli.py --simulate status

Exit codes:
    0  success
    1  communication or device error
    2  usage error (bad arguments, unknown register, invalid value)
"""

import sys
import logging
import argparse
from dataclasses import asdict
from enum import IntEnum
from typing import Any, List, Optional

from protocols.modbus.exceptions import ModbusError, RegisterError
from protocols.modbus.register_map import RegisterTable
from devices.registers import SYL2381_REGISTERS
from devices.syl2381 import Syl2381
from config import SERIAL_CONFIG, MODBUS_CONFIG, LOGGING_CONFIG

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DEVICE_ERROR = 1
EXIT_USAGE_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Auber SYL-2381 PID controller over Modbus RTU")
    parser.add_argument("--port", default=SERIAL_CONFIG["port"],
                        help=f"Serial device (default: {SERIAL_CONFIG['port']})")
    parser.add_argument("--baudrate", type=int, default=SERIAL_CONFIG["baudrate"],
                        choices=SERIAL_CONFIG["supported_baudrates"],
                        help=f"Line speed (default: {SERIAL_CONFIG['baudrate']})")
    parser.add_argument("--unit-id", type=int, default=MODBUS_CONFIG["unit_id"],
                        help=f"Controller address (default: {MODBUS_CONFIG['unit_id']})")
    parser.add_argument("--timeout", type=float, default=MODBUS_CONFIG["response_timeout_s"],
                        help="Response timeout in seconds")
    parser.add_argument("--simulate", action="store_true",
                        help="Talk to the built-in simulator instead of a serial port")
    parser.add_argument("--log-level", default=LOGGING_CONFIG["level"],
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging verbosity (DEBUG shows frames)")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("dump", help="Print every readable parameter")
    get = commands.add_parser("get", help="Print one parameter")
    get.add_argument("name", help="Register name (see 'registers')")
    set_ = commands.add_parser("set", help="Write one parameter")
    set_.add_argument("name", help="Register name (see 'registers')")
    set_.add_argument("value", help="New value")
    commands.add_parser("status", help="Print the AT status flags")
    commands.add_parser("registers", help="Print the register table")
    return parser


def format_value(value: Any) -> str:
    if isinstance(value, IntEnum):
        return value.name
    return str(value)


def print_registers():
    print(f"{'Name':<20} {'Code':<8} {'Table':<8} {'Addr':<8} {'Access':<7} Range / options")
    print("-" * 78)
    for register in SYL2381_REGISTERS:
        if register.choices is not None:
            limits = ", ".join(register.choices.__members__)
        elif register.minimum is not None:
            limits = f"{register.minimum:g} .. {register.maximum:g} {register.units}".rstrip()
        else:
            limits = register.units
        table = "coil" if register.table == RegisterTable.COIL else "holding"
        print(f"{register.name:<20} {register.mnemonic:<8} {table:<8} "
              f"0x{register.address:04X}  {register.access.value:<7} {limits}")


def print_dump(controller: Syl2381):
    values = controller.dump()
    for name, value in values.items():
        register = controller.register_map.resolve(name)
        label = register.mnemonic or name
        print(f"{label:<7} = {format_value(value):<12} {register.description}")


def print_status(controller: Syl2381):
    status = controller.get_status()
    for flag, active in asdict(status).items():
        print(f"{flag:<13} : {'ON' if active else 'off'}")


def open_controller(args: argparse.Namespace) -> Syl2381:
    if args.simulate:
        from simulator import create_simulated_controller
        return create_simulated_controller(unit_id=args.unit_id, timeout_s=args.timeout)
    return Syl2381.open_serial(
        port=args.port,
        baudrate=args.baudrate,
        unit_id=args.unit_id,
        timeout_s=args.timeout,
    )


def run(args: argparse.Namespace) -> int:
    if args.command == "registers":
        print_registers()
        return EXIT_OK

    with open_controller(args) as controller:
        if args.command == "dump":
            print_dump(controller)
        elif args.command == "status":
            print_status(controller)
        elif args.command == "get":
            print(format_value(controller.read(args.name)))
        elif args.command == "set":
            register = controller.register_map.resolve(args.name)
            controller.write(register, register.parse(args.value))
            print(f"{register.name} = {format_value(controller.read(register))}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_OK if e.code == 0 else EXIT_USAGE_ERROR

    logging.basicConfig(level=args.log_level, format=LOGGING_CONFIG["format"])

    try:
        return run(args)
    except RegisterError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR
    except ModbusError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_DEVICE_ERROR
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE_ERROR


if __name__ == "__main__":
    sys.exit(main())
