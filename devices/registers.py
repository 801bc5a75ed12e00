"""
SYL-2381 Register Map
=====================

Modbus layout of the Auber Instruments SYL-2381 PID temperature controller,
taken from the vendor communication manual (SYL-2381_comm_manual.pdf).

Holding registers (FC03 read, FC16 write):
    Every parameter is an IEEE 754 float32 spread over two registers, high
    word first. Enumerated parameters carry the option index as a float
    (3.0 → 9600 baud).

    0x0000-0x0005   Setpoint and J1 alarm thresholds
    0x0164-0x016D   Dynamic values (PV, OUT, CV)
    0x1000-0x100D   PID tuning parameters
    0x2000-0x2011   Static configuration (sensor, output, comms)

Coils (FC01 read):
    0x0000-0x0007   AT status byte
                    D5 alarm 1 active
                    D4 anomaly (e.g. sensor open, display shows EEEE)
                    D3 static parameter setting mode
                    D2 cooling mode
                    D1 manual mode
                    D0 auto-tune running
    0x0005          AL1_STA, J1 relay status (same bit as AT D5)

OUT can only be written while CV is 1. With CV set, the controller stops
adjusting its own output in PID mode until CV is cleared or power is cycled.
"""

from dataclasses import dataclass
from enum import IntEnum

from protocols.modbus.register_map import (
    Access,
    Encoding,
    Register,
    RegisterMap,
    RegisterTable,
)


# ==================== PARAMETER OPTIONS ====================

class Filter(IntEnum):
    """Digital filter strength (FILT)."""
    DISABLED = 0
    WEAK = 1
    STRONG = 2


class InputType(IntEnum):
    """Sensor type (INTY)."""
    T = 0          # Type T thermocouple
    R = 1          # Type R thermocouple
    J = 2          # Type J thermocouple
    WRE3_25 = 3    # Tungsten Rhenium 3/25 thermocouple
    B = 4          # Type B thermocouple
    S = 5          # Type S thermocouple
    K = 6          # Type K thermocouple
    E = 7          # Type E thermocouple
    P100 = 8       # Pt100 RTD, 1 degree resolution
    P10_0 = 9      # Pt100 RTD, 0.1 degree resolution
    CU50 = 10      # Cu50 RTD


class OutputMode(IntEnum):
    """Roles of the J1 relay and the SSR port (OUTY)."""
    J1_ABSOLUTE_ALARM_SSR_PID = 0
    J1_DEVIATION_ALARM_SSR_PID = 1
    J1_PID_SSR_DISABLED = 2
    J1_ON_OFF_SSR_DISABLED = 3
    J1_ABSOLUTE_ALARM_SSR_DISABLED = 4


class OutputType(IntEnum):
    """Control output signal (COTY)."""
    SSR = 0        # Not available on SYL-2381-mA-S
    MA_0_20 = 1    # Not available on SYL-2381-SSR-S
    MA_4_20 = 2    # Not available on SYL-2381-SSR-S


class ControlDirection(IntEnum):
    """Control action (rd)."""
    HEATING = 0
    COOLING = 1


class DisplayUnit(IntEnum):
    """Temperature unit (CorF)."""
    CELSIUS = 0
    FAHRENHEIT = 1


class BaudRate(IntEnum):
    """Serial line speed (bAud)."""
    BAUD_1200 = 0
    BAUD_2400 = 1
    BAUD_4800 = 2
    BAUD_9600 = 3

    @classmethod
    def _missing_(cls, value):
        # Accept the line speed itself: BaudRate(9600) → BAUD_9600
        for member in cls:
            if member.bps == value:
                return member
        return None

    @property
    def bps(self) -> int:
        return int(self.name.split("_")[1])


# ==================== STATUS FLAGS ====================

@dataclass(frozen=True)
class ControllerStatus:
    """Decoded AT status byte."""
    alarm1: bool
    anomaly: bool
    setting_mode: bool
    cooling_mode: bool
    manual_mode: bool
    autotune: bool

    @classmethod
    def from_flags(cls, flags: int) -> "ControllerStatus":
        return cls(
            alarm1=bool(flags >> 5 & 1),
            anomaly=bool(flags >> 4 & 1),
            setting_mode=bool(flags >> 3 & 1),
            cooling_mode=bool(flags >> 2 & 1),
            manual_mode=bool(flags >> 1 & 1),
            autotune=bool(flags & 1),
        )

    def to_flags(self) -> int:
        return (
            self.alarm1 << 5
            | self.anomaly << 4
            | self.setting_mode << 3
            | self.cooling_mode << 2
            | self.manual_mode << 1
            | self.autotune
        )


# ==================== REGISTER TABLE ====================

def _parameter(name, address, mnemonic, description, **kwargs) -> Register:
    return Register(
        name=name,
        address=address,
        encoding=Encoding.FLOAT32,
        mnemonic=mnemonic,
        description=description,
        **kwargs,
    )


SYL2381_REGISTERS = RegisterMap(
    [
        # Dynamic values
        _parameter("current_temperature", 0x0164, "PV", "Process value",
                   access=Access.READ_ONLY, units="deg"),
        _parameter("output_percent", 0x0166, "OUT", "Power output percentage",
                   minimum=0.0, maximum=100.0, units="%"),
        _parameter("output_control", 0x016C, "CV", "Host control of OUT (1 = OUT writable)",
                   minimum=0.0, maximum=1.0, integral=True),

        # Setpoint and alarm thresholds
        _parameter("setpoint", 0x0000, "SV", "Set value",
                   minimum=-1999.0, maximum=9999.0, units="deg"),
        _parameter("alarm_high", 0x0002, "AH1", "J1 ON temperature",
                   minimum=-1999.0, maximum=9999.0, units="deg"),
        _parameter("alarm_low", 0x0004, "AL1", "J1 OFF temperature",
                   minimum=-1999.0, maximum=9999.0, units="deg"),

        # PID tuning
        _parameter("p_gain", 0x1000, "P", "Proportional constant",
                   minimum=0.1, maximum=9999.9),
        _parameter("i_time", 0x1002, "I", "Integral time",
                   minimum=0.0, maximum=9999.0, units="s"),
        _parameter("d_time", 0x1004, "D", "Derivative time",
                   minimum=0.0, maximum=999.0, units="s"),
        _parameter("proportional_band", 0x1006, "BB", "Proportional band range limit",
                   minimum=1.0, maximum=1999.0, units="deg"),
        _parameter("damp_constant", 0x1008, "SouF", "Overshoot damping constant",
                   minimum=0.0, maximum=1.0),
        _parameter("control_cycle", 0x100A, "OT", "Output recalculation period",
                   minimum=1.0, maximum=500.0, units="s"),
        _parameter("digital_filter", 0x100C, "FILT", "Display/input filter strength",
                   choices=Filter),

        # Static configuration
        _parameter("input_type", 0x2000, "INTY", "Sensor type", choices=InputType),
        _parameter("output_mode", 0x2002, "OUTY", "J1 relay and SSR port roles",
                   choices=OutputMode),
        _parameter("output_type", 0x2004, "COTY", "Control output signal",
                   choices=OutputType),
        _parameter("hysteresis", 0x2006, "Hy", "On/off control hysteresis band",
                   minimum=0.0, maximum=9999.0, units="deg"),
        _parameter("input_offset", 0x2008, "PSb", "Sensor reading offset",
                   minimum=-1000.0, maximum=1000.0, units="deg"),
        _parameter("control_direction", 0x200A, "rd", "Heating or cooling action",
                   choices=ControlDirection),
        _parameter("display_unit", 0x200C, "CorF", "Celsius or Fahrenheit",
                   choices=DisplayUnit),
        _parameter("unit_id", 0x200E, "Id", "Modbus slave address",
                   minimum=0.0, maximum=64.0, integral=True),
        _parameter("baud_rate", 0x2010, "bAud", "Serial line speed", choices=BaudRate),

        # Status coils
        Register("status_flags", 0x0000, Encoding.BITS, access=Access.READ_ONLY,
                 table=RegisterTable.COIL, bit_count=8, mnemonic="AT",
                 description="Controller status byte"),
        Register("alarm1_status", 0x0005, Encoding.BITS, access=Access.READ_ONLY,
                 table=RegisterTable.COIL, bit_count=1, mnemonic="AL1_STA",
                 description="J1 relay status"),
    ],
    name="SYL-2381",
)

# Listing order used by dump(), matching the controller manual's grouping
DYNAMIC_PARAMETERS = (
    "current_temperature",
    "output_percent",
    "alarm1_status",
    "output_control",
    "status_flags",
)

STATIC_PARAMETERS = (
    "setpoint",
    "alarm_high",
    "alarm_low",
    "p_gain",
    "i_time",
    "d_time",
    "proportional_band",
    "damp_constant",
    "control_cycle",
    "digital_filter",
    "input_type",
    "output_mode",
    "output_type",
    "hysteresis",
    "input_offset",
    "control_direction",
    "display_unit",
    "unit_id",
    "baud_rate",
)
