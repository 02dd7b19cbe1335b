"""Simulated bootloader device and image helpers for tests."""

from typing import Dict, List, Optional, Tuple

from cyacd_flasher.cyacd import FirmwareImage
from cyacd_flasher.errors import CommunicationError, TransportTimeoutError
from cyacd_flasher.protocol.commands import Command, build_frame

SILICON_ID = 0x04C81193
SILICON_REV = 0x11


def row_line(array_id: int, row_num: int, data: bytes, checksum: int = 0x10) -> str:
    record = (
        bytes([array_id])
        + row_num.to_bytes(2, "big")
        + len(data).to_bytes(2, "big")
        + data
        + bytes([checksum])
    )
    return ":" + record.hex().upper()


def make_cyacd_text(
    rows: List[Tuple[int, int, bytes]],
    silicon_id: int = SILICON_ID,
    silicon_rev: int = SILICON_REV,
) -> str:
    header = (silicon_id.to_bytes(4, "big") + bytes([silicon_rev, 0x00])).hex().upper()
    lines = [header] + [row_line(a, r, d, checksum=(r * 7) & 0xFF) for a, r, d in rows]
    return "\n".join(lines) + "\n"


def make_image(rows: List[Tuple[int, int, bytes]], **kwargs) -> FirmwareImage:
    return FirmwareImage.from_text(make_cyacd_text(rows, **kwargs))


class FakeBootloader:
    """
    Transport that answers like the bootloader.

    Requests are recorded as (command, payload) tuples. Responses are queued
    on write and served by read; reading past them raises a timeout, like a
    silent device.
    """

    def __init__(
        self,
        image: Optional[FirmwareImage] = None,
        *,
        silicon_id: int = SILICON_ID,
        silicon_rev: int = SILICON_REV,
        bounds: Optional[Dict[int, Tuple[int, int]]] = None,
        row_checksums: Optional[Dict[Tuple[int, int], int]] = None,
        app_checksum: int = 0x01,
        refuse: Optional[Dict[Command, int]] = None,
        silent: Tuple[Command, ...] = (),
        packet_size: int = 64,
        pad_to: int = 0,
        fail_exit_write: bool = False,
    ):
        self.packet_size = packet_size
        self.silicon_id = silicon_id
        self.silicon_rev = silicon_rev
        self.bounds = bounds if bounds is not None else {0: (0, 255), 1: (0, 255)}
        self.row_checksums = dict(row_checksums or {})
        if image is not None:
            for row in image.rows:
                self.row_checksums.setdefault((row.array_id, row.row_num), row.expected_checksum)
        self.app_checksum = app_checksum
        self.refuse = dict(refuse or {})
        self.silent = silent
        self.pad_to = pad_to
        self.fail_exit_write = fail_exit_write

        self.requests: List[Tuple[int, bytes]] = []
        self.frames: List[bytes] = []
        self.closed = False
        self._out = bytearray()

    def commands(self) -> List[int]:
        return [cmd for cmd, _ in self.requests]

    def payloads(self, command: Command) -> List[bytes]:
        return [payload for cmd, payload in self.requests if cmd == command]

    def _respond(self, status: int, payload: bytes = b"") -> None:
        frame = build_frame(status, payload)
        if self.pad_to and len(frame) < self.pad_to:
            frame += b"\x00" * (self.pad_to - len(frame))
        self._out += frame

    def write(self, data: bytes) -> int:
        if self.closed:
            raise CommunicationError("device is closed")
        cmd = data[1]
        length = int.from_bytes(data[2:4], "little")
        payload = bytes(data[4:4 + length])
        if cmd == Command.EXIT_BOOTLOADER and self.fail_exit_write:
            raise CommunicationError("write failed")

        self.frames.append(bytes(data))
        self.requests.append((cmd, payload))
        self._out.clear()

        if cmd in self.silent or cmd == Command.EXIT_BOOTLOADER:
            return len(data)
        if cmd in self.refuse:
            self._respond(self.refuse[cmd])
            return len(data)

        if cmd == Command.ENTER_BOOTLOADER:
            self._respond(0, (
                self.silicon_id.to_bytes(4, "little")
                + bytes([self.silicon_rev])
                + (0x010203).to_bytes(3, "little")
            ))
        elif cmd == Command.GET_FLASH_SIZE:
            start, end = self.bounds[payload[0]]
            self._respond(0, start.to_bytes(2, "little") + end.to_bytes(2, "little"))
        elif cmd in (Command.SEND_DATA, Command.PROGRAM_ROW, Command.ERASE_ROW):
            self._respond(0)
        elif cmd == Command.GET_ROW_CHECKSUM:
            key = (payload[0], int.from_bytes(payload[1:3], "little"))
            self._respond(0, bytes([self.row_checksums.get(key, 0)]))
        elif cmd == Command.VERIFY_APP_CHECKSUM:
            self._respond(0, bytes([self.app_checksum]))
        else:
            self._respond(0x05)
        return len(data)

    def read(self, size: int) -> bytes:
        if len(self._out) < size:
            raise TransportTimeoutError("read operation timed out")
        out = bytes(self._out[:size])
        del self._out[:size]
        return out

    def close(self) -> None:
        self.closed = True
