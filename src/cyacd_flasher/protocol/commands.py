"""
Bootloader Command Protocol

Request/response frames for the vendor bootloader command set.

Frame format (requests and responses):
    [ 0x01 | code | len_lo | len_hi | payload... | chk_lo | chk_hi | 0x17 ]

``code`` is the command byte in a request and the status byte in a response
(0x00 = success). The length field is little-endian. The checksum is the
16-bit two's complement of the sum of every byte before it, stored
low byte first.

Protocol sequence for one session:
1. EnterBootloader (optional 6-byte key) -> silicon ID/rev, bootloader version
2. GetFlashSize per flash array -> first/last row
3. Per row: SendData chunks, ProgramRow with the remainder, GetRowChecksum
4. VerifyAppChecksum -> non-zero when the application is valid
5. ExitBootloader (no response)
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Tuple

from ..errors import DeviceStatusError, ProtocolError, TransportTimeoutError
from .transport import DEFAULT_PACKET_SIZE, Transport

logger = logging.getLogger(__name__)

CMD_START = 0x01
CMD_STOP = 0x17
BASE_CMD_SIZE = 7  # start + code + len(2) + checksum(2) + stop
STATUS_SUCCESS = 0x00
KEY_SIZE = 6


class Command(IntEnum):
    VERIFY_APP_CHECKSUM = 0x31
    GET_FLASH_SIZE = 0x32
    GET_APP_STATUS = 0x33
    ERASE_ROW = 0x34
    SYNC = 0x35
    SET_ACTIVE_APP = 0x36
    SEND_DATA = 0x37
    ENTER_BOOTLOADER = 0x38
    PROGRAM_ROW = 0x39
    GET_ROW_CHECKSUM = 0x3A
    EXIT_BOOTLOADER = 0x3B


@dataclass(frozen=True)
class Frame:
    """Decoded frame: command (request) or status (response) plus payload."""

    code: int
    payload: bytes


@dataclass(frozen=True)
class DeviceInfo:
    """EnterBootloader response data."""

    silicon_id: int
    silicon_rev: int
    bootloader_version: int

    @property
    def version_string(self) -> str:
        v = self.bootloader_version
        return f"{(v >> 16) & 0xFF}.{(v >> 8) & 0xFF}.{v & 0xFF}"


@dataclass(frozen=True)
class FlashBounds:
    """GetFlashSize response data: inclusive row range of one array."""

    start_row: int
    end_row: int

    def contains(self, row_num: int) -> bool:
        return self.start_row <= row_num <= self.end_row


def calc_checksum(frame: bytes) -> Tuple[int, int]:
    """
    Frame checksum over every byte except the trailing chk_lo, chk_hi, stop.

    Args:
        frame: Complete frame (checksum/stop positions may hold anything)

    Returns:
        Tuple of (checksum_low, checksum_high)
    """
    total = sum(frame[:-3])
    result = (1 + (0xFFFF ^ total)) & 0xFFFF
    return result & 0xFF, (result >> 8) & 0xFF


def has_valid_checksum(frame: bytes) -> bool:
    """True when the checksum bytes of a complete frame match its contents."""
    if len(frame) < BASE_CMD_SIZE:
        return False
    return calc_checksum(frame) == (frame[-3], frame[-2])


def build_frame(code: int, payload: bytes = b"") -> bytes:
    """
    Build a complete frame around ``payload``.

    Raises:
        ValueError: If code or payload length do not fit their fields
    """
    if not (0 <= code <= 0xFF):
        raise ValueError("code must fit in uint8")
    if len(payload) > 0xFFFF:
        raise ValueError("payload too large for uint16 length")

    frame = bytearray([CMD_START, code])
    frame += len(payload).to_bytes(2, "little")
    frame += payload
    frame += b"\x00\x00"
    frame.append(CMD_STOP)
    frame[-3], frame[-2] = calc_checksum(frame)
    return bytes(frame)


def decode_frame(raw: bytes, command: Optional[str] = None) -> Frame:
    """
    Validate and decode one response frame.

    Bytes after the stop byte (USB packet padding) are ignored.

    Raises:
        DeviceStatusError: Status byte is not success
        ProtocolError: Frame is malformed
    """
    if len(raw) < BASE_CMD_SIZE:
        raise ProtocolError(f"Response too short ({len(raw)} bytes): {raw.hex()}")
    if raw[0] != CMD_START:
        raise ProtocolError(f"Invalid response start byte 0x{raw[0]:02X}")
    if raw[1] != STATUS_SUCCESS:
        raise DeviceStatusError(raw[1], command)

    length = int.from_bytes(raw[2:4], "little")
    end = BASE_CMD_SIZE + length
    if len(raw) < end:
        raise ProtocolError(
            f"Response declares {length} data bytes but only {len(raw) - BASE_CMD_SIZE} arrived"
        )
    frame = bytes(raw[:end])
    if frame[-1] != CMD_STOP:
        raise ProtocolError(f"Invalid response stop byte 0x{frame[-1]:02X}")
    if not has_valid_checksum(frame):
        logger.debug(f"Response checksum mismatch ignored: {frame.hex().upper()}")

    return Frame(code=frame[1], payload=frame[4:-3])


def _decode_expect(raw: bytes, command: Command, data_size: int) -> bytes:
    frame = decode_frame(raw, command.name)
    if len(frame.payload) != data_size:
        raise ProtocolError(
            f"{command.name} response carries {len(frame.payload)} data bytes, "
            f"expected {data_size}"
        )
    return frame.payload


def _row_address(array_id: int, row_num: int) -> bytes:
    if not (0 <= array_id <= 0xFF):
        raise ValueError("array_id must fit in uint8")
    if not (0 <= row_num <= 0xFFFF):
        raise ValueError("row_num must fit in uint16")
    return bytes([array_id]) + row_num.to_bytes(2, "little")


# --- EnterBootloader ---------------------------------------------------------

def build_enter_bootloader(key: Optional[bytes] = None) -> bytes:
    if key is None:
        return build_frame(Command.ENTER_BOOTLOADER)
    if len(key) != KEY_SIZE:
        raise ValueError(f"Bootloader key must be {KEY_SIZE} bytes, got {len(key)}")
    return build_frame(Command.ENTER_BOOTLOADER, bytes(key))


def parse_enter_bootloader(raw: bytes) -> DeviceInfo:
    data = _decode_expect(raw, Command.ENTER_BOOTLOADER, 8)
    return DeviceInfo(
        silicon_id=int.from_bytes(data[0:4], "little"),
        silicon_rev=data[4],
        bootloader_version=int.from_bytes(data[5:8], "little"),
    )


# --- ExitBootloader ----------------------------------------------------------

def build_exit_bootloader() -> bytes:
    return build_frame(Command.EXIT_BOOTLOADER)


# --- GetFlashSize ------------------------------------------------------------

def build_get_flash_size(array_id: int) -> bytes:
    if not (0 <= array_id <= 0xFF):
        raise ValueError("array_id must fit in uint8")
    return build_frame(Command.GET_FLASH_SIZE, bytes([array_id]))


def parse_get_flash_size(raw: bytes) -> FlashBounds:
    data = _decode_expect(raw, Command.GET_FLASH_SIZE, 4)
    return FlashBounds(
        start_row=int.from_bytes(data[0:2], "little"),
        end_row=int.from_bytes(data[2:4], "little"),
    )


# --- SendData / ProgramRow / EraseRow ----------------------------------------

def build_send_data(chunk: bytes) -> bytes:
    return build_frame(Command.SEND_DATA, bytes(chunk))


def parse_send_data(raw: bytes) -> None:
    """Returns on success; raises DeviceStatusError when the device refused."""
    _decode_expect(raw, Command.SEND_DATA, 0)


def build_program_row(array_id: int, row_num: int, data: bytes) -> bytes:
    return build_frame(Command.PROGRAM_ROW, _row_address(array_id, row_num) + bytes(data))


def parse_program_row(raw: bytes) -> None:
    _decode_expect(raw, Command.PROGRAM_ROW, 0)


def build_erase_row(array_id: int, row_num: int) -> bytes:
    return build_frame(Command.ERASE_ROW, _row_address(array_id, row_num))


def parse_erase_row(raw: bytes) -> None:
    _decode_expect(raw, Command.ERASE_ROW, 0)


# --- Checksums ---------------------------------------------------------------

def build_get_row_checksum(array_id: int, row_num: int) -> bytes:
    return build_frame(Command.GET_ROW_CHECKSUM, _row_address(array_id, row_num))


def parse_get_row_checksum(raw: bytes) -> int:
    return _decode_expect(raw, Command.GET_ROW_CHECKSUM, 1)[0]


def build_verify_app_checksum() -> bytes:
    return build_frame(Command.VERIFY_APP_CHECKSUM)


def parse_verify_app_checksum(raw: bytes) -> int:
    return _decode_expect(raw, Command.VERIFY_APP_CHECKSUM, 1)[0]


# --- Row chunking ------------------------------------------------------------

def chunk_row_data(data: bytes, packet_size: int) -> Tuple[List[bytes], bytes]:
    """
    Split row data into SendData chunks plus the ProgramRow remainder.

    A chunk of ``packet_size - 7`` bytes is split off while the data left
    would not fit a bare frame of ``packet_size`` bytes.

    Returns:
        Tuple of (send_data_chunks, program_row_data)
    """
    chunk_size = packet_size - BASE_CMD_SIZE
    if chunk_size <= 0:
        raise ValueError(f"packet_size must exceed {BASE_CMD_SIZE}, got {packet_size}")

    chunks: List[bytes] = []
    offset = 0
    while len(data) - offset + BASE_CMD_SIZE > packet_size:
        chunks.append(bytes(data[offset:offset + chunk_size]))
        offset += chunk_size
    return chunks, bytes(data[offset:])


# --- Framing over a transport ------------------------------------------------

def read_frame(transport: Transport) -> bytes:
    """
    Read one response frame: 4-byte head, then length + checksum + stop.

    Raises:
        ProtocolError: Head does not start with 0x01, or the declared length
            does not fit a packet or never fully arrives
        CommunicationError: Transport failure or timeout before the head
    """
    head = transport.read(4)
    if head[0] != CMD_START:
        raise ProtocolError(f"Invalid response start byte 0x{head[0]:02X}")
    length = int.from_bytes(head[2:4], "little")
    packet_size = getattr(transport, "packet_size", DEFAULT_PACKET_SIZE)
    if length > packet_size - BASE_CMD_SIZE:
        raise ProtocolError(
            f"Response declares {length} data bytes, packet holds {packet_size - BASE_CMD_SIZE}"
        )
    try:
        body = transport.read(length + 3)
    except TransportTimeoutError as e:
        raise ProtocolError(f"Truncated response: declared {length} data bytes ({e})")
    return head + body
