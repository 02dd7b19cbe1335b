"""Bootloader protocol layer - wire codec and transports."""

from .transport import (
    Transport,
    SerialTransport,
    open_serial,
    DEFAULT_PACKET_SIZE,
)
from .commands import (
    Command,
    Frame,
    DeviceInfo,
    FlashBounds,
    calc_checksum,
    build_frame,
    decode_frame,
    chunk_row_data,
    read_frame,
)

__all__ = [
    # Transport
    "Transport",
    "SerialTransport",
    "open_serial",
    "DEFAULT_PACKET_SIZE",
    # Commands
    "Command",
    "Frame",
    "DeviceInfo",
    "FlashBounds",
    "calc_checksum",
    "build_frame",
    "decode_frame",
    "chunk_row_data",
    "read_frame",
]
