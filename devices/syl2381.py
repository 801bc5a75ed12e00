"""
SYL-2381 Device Client
======================

Typed operations on an Auber SYL-2381 PID temperature controller.

Every getter/setter is one Modbus transaction; nothing is cached. Values are
validated against the register table before any bytes are sent, so a setter
called with an out-of-range value raises RegisterValueError without touching
the bus.

Usage:
    from devices import Syl2381

    with Syl2381.open_serial("/dev/ttyUSB0", unit_id=5) as pid:
        print(pid.get_temperature())
        pid.set_setpoint(65.0)

Manual output override:
    pid.set_output_control(True)    # CV = 1, OUT becomes writable
    pid.set_output(40.0)            # 40 % output
    pid.set_output_control(False)   # hand control back to the PID loop
"""

import logging
from typing import Any, Dict, Optional, Union

from protocols.modbus.register_map import Register, RegisterMap
from protocols.modbus.transaction import TransactionEngine
from protocols.modbus.transport import SerialTransport, Transport
from devices.registers import (
    DYNAMIC_PARAMETERS,
    STATIC_PARAMETERS,
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

logger = logging.getLogger(__name__)


class Syl2381:
    """
    Client for one SYL-2381 controller on a Modbus RTU link.

    The register map can be replaced for firmware variants with a different
    layout; named operations resolve through it by register name.
    """

    def __init__(
        self,
        transport: Transport,
        unit_id: Optional[int] = None,
        timeout_s: Optional[float] = None,
        register_map: RegisterMap = SYL2381_REGISTERS,
    ):
        """
        Initialize controller client.

        Args:
            transport: Open byte-stream transport to the RS-485 bus
            unit_id: Controller slave address (Id parameter)
            timeout_s: Per-response timeout
            register_map: Register layout (default: SYL-2381 vendor map)
        """
        self.transport = transport
        self.register_map = register_map
        self.engine = TransactionEngine(transport, register_map, unit_id, timeout_s)

        logger.info(f"SYL-2381 client created for unit {self.engine.unit_id}")

    @classmethod
    def open_serial(
        cls,
        port: Optional[str] = None,
        baudrate: Optional[int] = None,
        unit_id: Optional[int] = None,
        timeout_s: Optional[float] = None,
    ) -> "Syl2381":
        """
        Build a client on a pyserial transport (8N1).

        Args:
            port: Serial device (default SERIAL_CONFIG["port"])
            baudrate: Line speed (default SERIAL_CONFIG["baudrate"])
            unit_id: Controller slave address
            timeout_s: Per-response timeout
        """
        transport = SerialTransport(port=port, baudrate=baudrate)
        return cls(transport, unit_id=unit_id, timeout_s=timeout_s)

    @property
    def unit(self) -> int:
        """Slave address this client talks to."""
        return self.engine.unit_id

    def close(self):
        """Close the transport. Aborts any exchange in progress."""
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ------------------------------------------------------------------
    # Generic access
    # ------------------------------------------------------------------

    def read(self, name: Union[str, Register]) -> Any:
        """Read any register by name."""
        return self.engine.read(name)

    def write(self, name: Union[str, Register], value: Any):
        """Write any register by name."""
        self.engine.write(name, value)

    def dump(self) -> Dict[str, Any]:
        """
        Read every readable parameter.

        Returns:
            Ordered {name: value}; dynamic values first, then static
            parameters, then anything else the register map defines
        """
        ordered = [n for n in DYNAMIC_PARAMETERS + STATIC_PARAMETERS if n in self.register_map]
        ordered += [n for n in self.register_map.names() if n not in ordered]

        values = {}
        for name in ordered:
            register = self.register_map.resolve(name)
            if register.readable:
                values[name] = self.engine.read(register)
        return values

    # ------------------------------------------------------------------
    # Dynamic values
    # ------------------------------------------------------------------

    def get_temperature(self) -> float:
        """Process value (PV)."""
        return self.engine.read("current_temperature")

    def get_output(self) -> float:
        """Power output percentage (OUT)."""
        return self.engine.read("output_percent")

    def set_output(self, percent: float):
        """
        Set the power output percentage (OUT).

        The controller only accepts this while output control (CV) is set;
        otherwise it answers with an exception response.
        """
        self.engine.write("output_percent", percent)

    def get_output_control(self) -> bool:
        """Whether the host controls OUT (CV)."""
        return self.engine.read("output_control") == 1.0

    def set_output_control(self, enabled: bool):
        """
        Set CV. While set, OUT is writable and the PID loop stops adjusting
        its output until CV is cleared or the controller reboots.
        """
        self.engine.write("output_control", 1.0 if enabled else 0.0)

    def get_alarm1_active(self) -> bool:
        """J1 relay status (AL1_STA)."""
        return self.engine.read("alarm1_status")

    def get_status(self) -> ControllerStatus:
        """Status flags (AT)."""
        return ControllerStatus.from_flags(self.engine.read("status_flags"))

    # ------------------------------------------------------------------
    # Setpoint and alarms
    # ------------------------------------------------------------------

    def get_setpoint(self) -> float:
        """Set value (SV)."""
        return self.engine.read("setpoint")

    def set_setpoint(self, value: float):
        self.engine.write("setpoint", value)

    def get_alarm_high(self) -> float:
        """J1 ON temperature (AH1)."""
        return self.engine.read("alarm_high")

    def set_alarm_high(self, value: float):
        self.engine.write("alarm_high", value)

    def get_alarm_low(self) -> float:
        """J1 OFF temperature (AL1)."""
        return self.engine.read("alarm_low")

    def set_alarm_low(self, value: float):
        self.engine.write("alarm_low", value)

    # ------------------------------------------------------------------
    # PID tuning
    # ------------------------------------------------------------------

    def get_pid_p(self) -> float:
        """Proportional constant (P)."""
        return self.engine.read("p_gain")

    def set_pid_p(self, value: float):
        self.engine.write("p_gain", value)

    def get_pid_i(self) -> float:
        """Integral time in seconds (I)."""
        return self.engine.read("i_time")

    def set_pid_i(self, value: float):
        self.engine.write("i_time", value)

    def get_pid_d(self) -> float:
        """Derivative time in seconds (D)."""
        return self.engine.read("d_time")

    def set_pid_d(self, value: float):
        self.engine.write("d_time", value)

    def get_proportional_band(self) -> float:
        """Proportional band range limit (BB)."""
        return self.engine.read("proportional_band")

    def set_proportional_band(self, value: float):
        self.engine.write("proportional_band", value)

    def get_damp_constant(self) -> float:
        """
        Damp constant (SouF).

        Small values let the loop overshoot; large values over-damp it.
        """
        return self.engine.read("damp_constant")

    def set_damp_constant(self, value: float):
        self.engine.write("damp_constant", value)

    def get_control_cycle(self) -> float:
        """Seconds between output recalculations (OT)."""
        return self.engine.read("control_cycle")

    def set_control_cycle(self, value: float):
        self.engine.write("control_cycle", value)

    def get_digital_filter(self) -> Filter:
        """
        Digital filter (FILT).

        Stronger filtering steadies the display at the cost of slower
        response to temperature changes.
        """
        return self.engine.read("digital_filter")

    def set_digital_filter(self, value: Filter):
        self.engine.write("digital_filter", value)

    # ------------------------------------------------------------------
    # Static configuration
    # ------------------------------------------------------------------

    def get_input_type(self) -> InputType:
        """Sensor type (INTY)."""
        return self.engine.read("input_type")

    def set_input_type(self, value: InputType):
        self.engine.write("input_type", value)

    def get_output_mode(self) -> OutputMode:
        """J1 relay and SSR port roles (OUTY)."""
        return self.engine.read("output_mode")

    def set_output_mode(self, value: OutputMode):
        self.engine.write("output_mode", value)

    def get_output_type(self) -> OutputType:
        """Control output signal (COTY)."""
        return self.engine.read("output_type")

    def set_output_type(self, value: OutputType):
        self.engine.write("output_type", value)

    def get_hysteresis(self) -> float:
        """On/off control hysteresis band (Hy)."""
        return self.engine.read("hysteresis")

    def set_hysteresis(self, value: float):
        self.engine.write("hysteresis", value)

    def get_input_offset(self) -> float:
        """Sensor reading offset (PSb)."""
        return self.engine.read("input_offset")

    def set_input_offset(self, value: float):
        self.engine.write("input_offset", value)

    def get_control_direction(self) -> ControlDirection:
        """Heating or cooling action (rd)."""
        return self.engine.read("control_direction")

    def set_control_direction(self, value: ControlDirection):
        self.engine.write("control_direction", value)

    def get_display_unit(self) -> DisplayUnit:
        """Celsius or Fahrenheit (CorF)."""
        return self.engine.read("display_unit")

    def set_display_unit(self, value: DisplayUnit):
        self.engine.write("display_unit", value)

    def get_unit_id(self) -> int:
        """
        Modbus address stored on the controller (Id).

        Changing it does not retarget this client; build a new one with the
        new address.
        """
        return int(self.engine.read("unit_id"))

    def set_unit_id(self, value: int):
        self.engine.write("unit_id", value)

    def get_baud_rate(self) -> BaudRate:
        """Serial line speed (bAud)."""
        return self.engine.read("baud_rate")

    def set_baud_rate(self, value: BaudRate):
        self.engine.write("baud_rate", value)

    def get_stats(self) -> Dict:
        """Transaction statistics."""
        return self.engine.get_stats()

    def __repr__(self) -> str:
        return f"Syl2381(unit={self.unit}, transport={self.transport!r})"
