"""
SYL-2381 Driver Configuration
Serial link, Modbus RTU and tooling parameters for the Auber SYL-2381 PID controller
"""

import os
from typing import Dict

# ==================== SERIAL LINK ====================

# The SYL-2381 ships at 9600 baud, 8 data bits, no parity, 1 stop bit.
SERIAL_CONFIG = {
    "port": os.getenv("SYL2381_PORT", "/dev/ttyUSB0"),
    "baudrate": int(os.getenv("SYL2381_BAUDRATE", 9600)),
    "bytesize": 8,
    "parity": "N",
    "stopbits": 1,
    "supported_baudrates": (1200, 2400, 4800, 9600),  # bAud parameter options
}

# ==================== MODBUS RTU ====================

MODBUS_CONFIG = {
    "unit_id": int(os.getenv("SYL2381_UNIT_ID", 1)),
    "response_timeout_s": float(os.getenv("SYL2381_TIMEOUT_S", 1.0)),
    "slave_address_range": (0, 247),
    "max_read_registers": 125,     # FC03 quantity limit
    "max_write_registers": 123,    # FC16 quantity limit
    "max_read_coils": 2000,        # FC01 quantity limit
    "min_frame_gap_s": 0.00175,    # Inter-frame silence floor above 19200 baud
    "frame_gap_characters": 3.5,   # t3.5 silent interval
    "bits_per_character": 10,      # start + 8 data + stop
}

# ==================== SIMULATED CONTROLLER ====================

# Power-on parameter values for the in-process SYL-2381 simulator.
# Keys are register names from devices.registers.SYL2381_REGISTERS.
SIMULATOR_INITIAL_VALUES: Dict[str, float] = {
    "setpoint": 100.0,
    "alarm_high": 120.0,
    "alarm_low": 110.0,
    "p_gain": 100.0,
    "i_time": 120.0,
    "d_time": 30.0,
    "proportional_band": 100.0,
    "damp_constant": 0.2,
    "control_cycle": 2.0,
    "digital_filter": 1.0,
    "input_type": 6.0,          # K thermocouple
    "output_mode": 0.0,
    "output_type": 0.0,
    "hysteresis": 0.3,
    "input_offset": 0.0,
    "control_direction": 0.0,   # Heating
    "display_unit": 0.0,        # Celsius
    "unit_id": 1.0,
    "baud_rate": 3.0,           # 9600
    "current_temperature": 23.5,
    "output_percent": 0.0,
    "output_control": 0.0,
}

SIMULATOR_CONFIG = {
    "unit_id": int(os.getenv("SYL2381_SIM_UNIT_ID", 1)),
    "response_delay_s": float(os.getenv("SYL2381_SIM_DELAY_S", 0.0)),
    "initial_values": SIMULATOR_INITIAL_VALUES,
}

# ==================== REST API ====================

API_CONFIG = {
    "host": os.getenv("SYL2381_API_HOST", "0.0.0.0"),
    "port": int(os.getenv("SYL2381_API_PORT", 8000)),
    "simulate": os.getenv("SYL2381_SIMULATE", "0") == "1",
}

# ==================== LOGGING CONFIGURATION ====================

LOGGING_CONFIG = {
    "level": os.getenv("LOG_LEVEL", "INFO"),
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}
