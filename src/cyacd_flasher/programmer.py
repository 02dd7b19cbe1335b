"""
Bootloader programming session.

BootloaderSession owns one transport and runs paced, half-duplex
transactions on it. Programmer drives the session state machine:

    IDLE -> DISCOVERING -> ENTERING_BOOTLOADER -> DEVICE_VERIFIED
         -> PROGRAMMING -> APP_VERIFYING -> EXITING_BOOTLOADER
         -> SUCCEEDED | FAILED

Once a transport is acquired, EXITING_BOOTLOADER always runs, whatever
happened before it, and the transport is closed. Nothing after discovery is
retried: the first failed transaction ends the session.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .core.discovery import Finder, RetryPolicy, discover_transport
from .core.results import SessionResult, SessionState
from .cyacd import FirmwareImage, Row
from .errors import (
    AppChecksumError,
    BootloaderError,
    ChecksumMismatchError,
    CommunicationError,
    DeviceMismatchError,
    DeviceNotFoundError,
    OutOfRangeError,
)
from .protocol import commands
from .protocol.commands import DeviceInfo, FlashBounds
from .protocol.transport import DEFAULT_PACKET_SIZE, Transport

logger = logging.getLogger(__name__)

# Time the device needs between receiving a command and answering it
# (flash writes complete inside this window).
COMMAND_DELAY = 0.025

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class ProgrammerConfig:
    """
    Attributes:
        key: Optional 6-byte bootloader key
        command_delay: Pause between writing a command and reading its response
        retry: Discovery retry policy
    """
    key: Optional[bytes] = None
    command_delay: float = COMMAND_DELAY
    retry: RetryPolicy = RetryPolicy()

    def __post_init__(self):
        if self.key is not None and len(self.key) != commands.KEY_SIZE:
            raise ValueError(
                f"Bootloader key must be {commands.KEY_SIZE} bytes, got {len(self.key)}"
            )


class BootloaderSession:
    """
    Paced command transactions over one exclusively owned transport.

    Example:
        with BootloaderSession(transport) as session:
            info = session.enter_bootloader(key)
            session.program_row(row)
            session.exit_bootloader()
    """

    def __init__(
        self,
        transport: Transport,
        command_delay: float = COMMAND_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.command_delay = command_delay
        self.packet_size = getattr(transport, "packet_size", DEFAULT_PACKET_SIZE)
        self._sleep = sleep
        self._bounds: Dict[int, FlashBounds] = {}

    def __enter__(self) -> "BootloaderSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.transport.close()

    def send(self, frame: bytes) -> None:
        """Write a frame without waiting for a response."""
        written = self.transport.write(frame)
        if written != len(frame):
            raise CommunicationError(f"Incomplete write: sent {written}/{len(frame)} bytes")

    def transact(self, frame: bytes) -> bytes:
        """Write a request, wait the pacing delay, read one response frame."""
        self.send(frame)
        self._sleep(self.command_delay)
        return commands.read_frame(self.transport)

    def enter_bootloader(self, key: Optional[bytes] = None) -> DeviceInfo:
        raw = self.transact(commands.build_enter_bootloader(key))
        return commands.parse_enter_bootloader(raw)

    def get_flash_bounds(self, array_id: int) -> FlashBounds:
        """GetFlashSize, asked once per array."""
        if array_id not in self._bounds:
            raw = self.transact(commands.build_get_flash_size(array_id))
            self._bounds[array_id] = commands.parse_get_flash_size(raw)
            logger.debug(
                f"Array {array_id}: rows {self._bounds[array_id].start_row}"
                f"..{self._bounds[array_id].end_row}"
            )
        return self._bounds[array_id]

    def program_row(self, row: Row) -> None:
        """
        Stream a row as SendData chunks and a final ProgramRow.

        Each chunk must be accepted before the next goes out; a refusal
        raises DeviceStatusError and the rest of the row is not sent.
        """
        chunks, remainder = commands.chunk_row_data(row.data, self.packet_size)
        for chunk in chunks:
            commands.parse_send_data(self.transact(commands.build_send_data(chunk)))
        raw = self.transact(commands.build_program_row(row.array_id, row.row_num, remainder))
        commands.parse_program_row(raw)

    def get_row_checksum(self, array_id: int, row_num: int) -> int:
        raw = self.transact(commands.build_get_row_checksum(array_id, row_num))
        return commands.parse_get_row_checksum(raw)

    def erase_row(self, array_id: int, row_num: int) -> None:
        commands.parse_erase_row(self.transact(commands.build_erase_row(array_id, row_num)))

    def verify_app_checksum(self) -> int:
        return commands.parse_verify_app_checksum(
            self.transact(commands.build_verify_app_checksum())
        )

    def exit_bootloader(self) -> None:
        """ExitBootloader resets the device; no response comes back."""
        self.send(commands.build_exit_bootloader())


class Programmer:
    """
    Runs one programming session against a discovered device.

    Each public operation discovers the device, runs its steps, always exits
    the bootloader once a transport is held, and returns a SessionResult
    holding either success or the single fatal error.
    """

    def __init__(
        self,
        image: Optional[FirmwareImage],
        finder: Finder,
        config: ProgrammerConfig = ProgrammerConfig(),
        *,
        progress_cb: Optional[ProgressCallback] = None,
        label: str = "device",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.image = image
        self.finder = finder
        self.config = config
        self.progress_cb = progress_cb
        self.label = label
        self.state = SessionState.IDLE
        self.row_index = 0
        self._sleep = sleep
        self._clock = clock

    def _set_state(self, state: SessionState) -> None:
        logger.debug(f"{self.state.value} -> {state.value}")
        self.state = state

    def _log(self, result: SessionResult, message: str) -> None:
        logger.info(message)
        result.add_log(message)

    # --- operations ----------------------------------------------------------

    def program(self) -> SessionResult:
        """Program every row of the image and verify the application."""
        if self.image is None:
            raise ValueError("program() needs a firmware image")
        return self._run("program", self._program_steps)

    def restart(self) -> SessionResult:
        """Send only ExitBootloader, restarting the application."""
        return self._run("restart", None)

    def erase_array(self, array_id: int) -> SessionResult:
        """Erase every row inside the bounds the device reports for an array."""
        def steps(session: BootloaderSession, result: SessionResult) -> None:
            self._erase_steps(session, result, array_id)
        return self._run("erase", steps)

    # --- state machine -------------------------------------------------------

    def _run(
        self,
        operation: str,
        steps: Optional[Callable[[BootloaderSession, SessionResult], None]],
    ) -> SessionResult:
        result = SessionResult(ok=False, operation=operation)
        if self.image is not None and operation == "program":
            result.rows_total = len(self.image.rows)
        self.row_index = 0

        self._set_state(SessionState.DISCOVERING)
        try:
            transport = discover_transport(
                self.finder,
                self.config.retry,
                label=self.label,
                sleep=self._sleep,
                clock=self._clock,
            )
        except DeviceNotFoundError as e:
            logger.error(f"Device not found: {e}")
            result.fail(e, SessionState.DISCOVERING)
            self._set_state(SessionState.FAILED)
            result.state = self.state
            return result

        with BootloaderSession(transport, self.config.command_delay, self._sleep) as session:
            result.metadata.update(device=self.label, packet_size=session.packet_size)
            try:
                if steps is not None:
                    steps(session, result)
                result.ok = True
            except BootloaderError as e:
                logger.error(f"{operation} failed in {self.state.value}: {e}")
                result.fail(e, self.state)
            except Exception as e:
                logger.exception(f"{operation} failed in {self.state.value}")
                result.fail(e, self.state)
            finally:
                # Restart has no other step, so its exit frame must be delivered.
                self._exit_bootloader(session, result, required=steps is None)

        self._set_state(SessionState.SUCCEEDED if result.ok else SessionState.FAILED)
        result.state = self.state
        return result

    def _exit_bootloader(
        self,
        session: BootloaderSession,
        result: SessionResult,
        required: bool = False,
    ) -> None:
        self._set_state(SessionState.EXITING_BOOTLOADER)
        self._log(result, "Exit bootloader")
        try:
            session.exit_bootloader()
        except CommunicationError as e:
            if required:
                logger.error(f"ExitBootloader not delivered: {e}")
                result.fail(e, SessionState.EXITING_BOOTLOADER)
            else:
                logger.warning(f"ExitBootloader not delivered: {e}")

    def _enter_and_verify(self, session: BootloaderSession, result: SessionResult) -> DeviceInfo:
        self._set_state(SessionState.ENTERING_BOOTLOADER)
        self._log(result, "Enter bootloader")
        device = session.enter_bootloader(self.config.key)
        result.device = device
        logger.info(
            f"Device silicon 0x{device.silicon_id:08X} rev 0x{device.silicon_rev:02X}, "
            f"bootloader {device.version_string}"
        )

        if self.image is not None and (
            device.silicon_id != self.image.silicon_id
            or device.silicon_rev != self.image.silicon_rev
        ):
            raise DeviceMismatchError(
                f"Image targets silicon 0x{self.image.silicon_id:08X} rev "
                f"0x{self.image.silicon_rev:02X}, device reports 0x{device.silicon_id:08X} "
                f"rev 0x{device.silicon_rev:02X}"
            )
        self._set_state(SessionState.DEVICE_VERIFIED)
        return device

    def _program_steps(self, session: BootloaderSession, result: SessionResult) -> None:
        self._enter_and_verify(session, result)

        rows = self.image.rows
        total = len(rows)
        last_reported = 0
        self._set_state(SessionState.PROGRAMMING)
        self._log(result, f"Starting programming process ({total} rows)")

        for index, row in enumerate(rows):
            self.row_index = index
            self._program_row(session, result, row)
            result.rows_programmed += 1

            if self.progress_cb:
                self.progress_cb(index + 1, total)
            percent = (index + 1) * 100 // total
            if percent // 10 > last_reported // 10:
                last_reported = percent
                logger.info(f"Programming progress {percent}% ({index + 1}/{total} rows)")

        self._log(result, "Programming completed")

        self._set_state(SessionState.APP_VERIFYING)
        checksum = session.verify_app_checksum()
        result.app_checksum = checksum
        self._log(result, f"Application checksum 0x{checksum:02X}")
        # Zero means the device rejected the application image.
        if checksum == 0:
            raise AppChecksumError("Device reported application checksum as invalid (0x00)")
        self._log(result, "Device was successfully programmed")

    def _program_row(self, session: BootloaderSession, result: SessionResult, row: Row) -> None:
        bounds = session.get_flash_bounds(row.array_id)
        result.flash_bounds[row.array_id] = bounds
        if not bounds.contains(row.row_num):
            raise OutOfRangeError(
                f"Row {row.row_num} of array {row.array_id} outside flash rows "
                f"{bounds.start_row}..{bounds.end_row}"
            )

        session.program_row(row)

        expected = row.expected_checksum
        actual = session.get_row_checksum(row.array_id, row.row_num)
        if actual != expected:
            raise ChecksumMismatchError(
                f"Row {row.array_id}:{row.row_num} checksum 0x{actual:02X}, "
                f"expected 0x{expected:02X}"
            )
        logger.debug(f"Row {row.array_id}:{row.row_num} programmed ({row.size} bytes)")

    def _erase_steps(self, session: BootloaderSession, result: SessionResult, array_id: int) -> None:
        self._enter_and_verify(session, result)

        bounds = session.get_flash_bounds(array_id)
        result.flash_bounds[array_id] = bounds
        total = bounds.end_row - bounds.start_row + 1
        result.rows_total = total
        self._set_state(SessionState.PROGRAMMING)
        self._log(result, f"Erasing array {array_id} rows {bounds.start_row}..{bounds.end_row}")

        for done, row_num in enumerate(range(bounds.start_row, bounds.end_row + 1), start=1):
            self.row_index = done - 1
            session.erase_row(array_id, row_num)
            result.rows_programmed = done
            if self.progress_cb:
                self.progress_cb(done, total)

        self._log(result, f"Erased {total} rows")
