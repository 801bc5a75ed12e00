"""
Device Package
==============

Device clients built on the Modbus RTU driver.

Devices:
    - Syl2381: Auber Instruments SYL-2381 PID temperature controller
"""

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
from devices.syl2381 import Syl2381

__all__ = [
    'Syl2381',
    'SYL2381_REGISTERS',
    'ControllerStatus',
    'BaudRate',
    'ControlDirection',
    'DisplayUnit',
    'Filter',
    'InputType',
    'OutputMode',
    'OutputType',
]
