"""
Bootloader Transport Layer

Defines the byte-stream contract the programmer drives and the serial
implementation of it.

This module provides:
- The Transport protocol (write / read / close, packet size)
- Serial port transport (pyserial)
- Serial port discovery by path

Every write starts a new half-duplex transaction: stale input is dropped
before the request goes out.
"""

import logging
from typing import Optional, Protocol

import serial

from ..errors import CommunicationError, TransportTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_PACKET_SIZE = 64
SERIAL_BAUDRATE = 115200
SERIAL_READ_TIMEOUT = 0.25


class Transport(Protocol):
    """
    Byte-stream contract consumed by the programmer.

    ``read`` returns exactly ``size`` bytes or raises; a read timeout raises
    TransportTimeoutError, any other failure CommunicationError.
    """

    packet_size: int

    def write(self, data: bytes) -> int:
        ...

    def read(self, size: int) -> bytes:
        ...

    def close(self) -> None:
        ...


class SerialTransport:
    """
    Serial transport for the bootloader UART.

    Example:
        transport = SerialTransport(port="/dev/ttyACM0")
        transport.open()
        transport.write(frame)
        head = transport.read(4)
        transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = SERIAL_BAUDRATE,
        timeout: float = SERIAL_READ_TIMEOUT,
        packet_size: int = DEFAULT_PACKET_SIZE,
    ):
        """
        Args:
            port: Serial port (e.g., "/dev/ttyACM0", "COM3")
            baudrate: Serial baud rate (default 115200)
            timeout: Read/write timeout in seconds (default 0.25)
            packet_size: Largest frame the bootloader accepts
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.packet_size = packet_size
        self.ser: Optional[serial.Serial] = None

    def open(self) -> None:
        """
        Open serial port.

        Raises:
            CommunicationError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=8,
                parity='N',
                stopbits=1,
                timeout=self.timeout,
                write_timeout=self.timeout,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()

            logger.debug(
                f"Opened {self.port} at {self.baudrate} bps (timeout={self.timeout}s)"
            )
        except serial.SerialException as e:
            raise CommunicationError(f"Cannot open port {self.port}: {e}")

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    def write(self, data: bytes) -> int:
        """
        Send one request frame.

        Raises:
            CommunicationError: If port is closed or write fails
        """
        if not self.ser or not self.ser.is_open:
            raise CommunicationError("Serial port not open")

        try:
            self.ser.reset_input_buffer()
            written = self.ser.write(data)
        except serial.SerialTimeoutException as e:
            raise TransportTimeoutError(f"Write timeout on {self.port}: {e}")
        except serial.SerialException as e:
            raise CommunicationError(f"Write error: {e}")

        if written != len(data):
            raise CommunicationError(
                f"Incomplete write: sent {written}/{len(data)} bytes"
            )
        logger.debug(f">>> {data.hex().upper()}")
        return written

    def read(self, size: int) -> bytes:
        """
        Receive exactly ``size`` bytes.

        Raises:
            TransportTimeoutError: Device stopped answering
            CommunicationError: If read fails
        """
        if not self.ser or not self.ser.is_open:
            raise CommunicationError("Serial port not open")

        out = bytearray()
        try:
            while len(out) < size:
                chunk = self.ser.read(size - len(out))
                if not chunk:
                    raise TransportTimeoutError(
                        f"Read timeout after {self.timeout}s "
                        f"({len(out)}/{size} bytes received)"
                    )
                out.extend(chunk)
        except serial.SerialException as e:
            raise CommunicationError(f"Read error: {e}")

        logger.debug(f"<<< {bytes(out).hex().upper()}")
        return bytes(out)


def open_serial(port: str, **kwargs) -> Optional[SerialTransport]:
    """
    Discovery finder for serial mode.

    Returns:
        Opened SerialTransport, or None if the port cannot be opened yet
    """
    transport = SerialTransport(port, **kwargs)
    try:
        transport.open()
    except CommunicationError as e:
        logger.warning(f"Serial port {port} unavailable: {e}")
        return None
    return transport
