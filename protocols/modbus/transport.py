"""
Modbus RTU Transport
====================

Byte-stream boundary between the transaction engine and the physical link.

The engine only needs three operations, so any duplex byte stream can carry
Modbus RTU frames:

    write(data)            send a complete request frame
    read(size, timeout)    return up to ``size`` bytes, b"" if none arrived
    close()                release the link

SerialTransport implements this over pyserial. Line settings (baud rate,
parity, stop bits) are entirely the transport's concern.

RTU framing relies on bus silence: a frame ends after 3.5 character times
without traffic. The transport therefore keeps at least that gap between the
end of one exchange and the start of the next.
"""

import time
import logging
from typing import Optional, Protocol, runtime_checkable

import serial

from protocols.modbus.exceptions import TransportError
from config import SERIAL_CONFIG, MODBUS_CONFIG

logger = logging.getLogger(__name__)


@runtime_checkable
class Transport(Protocol):
    """Duplex byte stream carrying Modbus RTU frames."""

    def write(self, data: bytes) -> None:
        ...

    def read(self, size: int, timeout: float) -> bytes:
        ...

    def close(self) -> None:
        ...


def frame_gap_s(baudrate: int) -> float:
    """
    Minimum silent interval between frames (t3.5) for a baud rate.

    Above 19200 baud the Modbus serial line guide fixes the gap at 1.75 ms.
    """
    character_time = MODBUS_CONFIG["bits_per_character"] / baudrate
    return max(
        character_time * MODBUS_CONFIG["frame_gap_characters"],
        MODBUS_CONFIG["min_frame_gap_s"],
    )


class SerialTransport:
    """
    RS-485 serial transport backed by pyserial.

    The port is opened lazily on first use and can be reopened after close(),
    which is also how an in-flight exchange is cancelled.
    """

    def __init__(
        self,
        port: Optional[str] = None,
        baudrate: Optional[int] = None,
        bytesize: Optional[int] = None,
        parity: Optional[str] = None,
        stopbits: Optional[float] = None,
    ):
        """
        Initialize serial transport.

        Args:
            port: Device path (default SERIAL_CONFIG["port"])
            baudrate: Line speed (default SERIAL_CONFIG["baudrate"])
            bytesize: Data bits
            parity: 'N', 'E' or 'O'
            stopbits: 1, 1.5 or 2
        """
        self.port = port or SERIAL_CONFIG["port"]
        self.baudrate = baudrate or SERIAL_CONFIG["baudrate"]
        self.bytesize = bytesize or SERIAL_CONFIG["bytesize"]
        self.parity = parity or SERIAL_CONFIG["parity"]
        self.stopbits = stopbits or SERIAL_CONFIG["stopbits"]
        self.frame_gap_s = frame_gap_s(self.baudrate)

        self._serial: Optional[serial.Serial] = None
        self._last_activity = 0.0

        self.stats = {
            "bytes_sent": 0,
            "bytes_received": 0,
        }

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self):
        """Open the serial port if it is not already open."""
        if self.is_open:
            return
        try:
            self._serial = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=self.bytesize,
                parity=self.parity,
                stopbits=self.stopbits,
                timeout=0,
            )
        except (serial.SerialException, ValueError) as e:
            logger.error(f"Failed to open serial port {self.port}: {e}")
            raise TransportError(f"Cannot open {self.port}: {e}") from e
        logger.info(f"Opened {self.port} at {self.baudrate} baud "
                    f"({self.bytesize}{self.parity}{self.stopbits})")

    def close(self):
        """Close the serial port."""
        if self._serial is not None:
            try:
                self._serial.close()
            except serial.SerialException as e:
                logger.warning(f"Error closing {self.port}: {e}")
            self._serial = None
            logger.info(f"Closed {self.port}")

    def write(self, data: bytes):
        """
        Send a request frame.

        Stale input from an earlier, abandoned exchange is discarded first so
        it cannot be mistaken for this request's response.
        """
        self.open()
        self._wait_frame_gap()
        try:
            self._serial.reset_input_buffer()
            written = self._serial.write(data)
            self._serial.flush()
        except serial.SerialException as e:
            logger.error(f"Serial write failed on {self.port}: {e}")
            raise TransportError(f"Write failed on {self.port}: {e}") from e

        if written is not None and written != len(data):
            raise TransportError(f"Wrote {written} of {len(data)} bytes to {self.port}")

        self.stats["bytes_sent"] += len(data)
        self._last_activity = time.monotonic()

    def read(self, size: int, timeout: float) -> bytes:
        """
        Read up to ``size`` bytes, waiting at most ``timeout`` seconds.

        Returns:
            Received bytes (possibly fewer than ``size``; empty on timeout)
        """
        self.open()
        try:
            self._serial.timeout = max(timeout, 0.0)
            data = self._serial.read(size)
        except serial.SerialException as e:
            logger.error(f"Serial read failed on {self.port}: {e}")
            raise TransportError(f"Read failed on {self.port}: {e}") from e

        if data:
            self.stats["bytes_received"] += len(data)
            self._last_activity = time.monotonic()
        return data

    def _wait_frame_gap(self):
        remaining = self._last_activity + self.frame_gap_s - time.monotonic()
        if remaining > 0:
            time.sleep(remaining)

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self) -> str:
        return f"SerialTransport({self.port!r}, baudrate={self.baudrate})"
