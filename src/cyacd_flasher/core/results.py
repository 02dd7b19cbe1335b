"""
Result objects for programming sessions.

Every session ends with one SessionResult: either success, or exactly one
captured fatal error. The CLI prints a summary from it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..protocol.commands import DeviceInfo, FlashBounds
from .messages import error_code_for


class SessionState(Enum):
    """Programming session states, in the order a clean run visits them."""
    IDLE = "idle"
    DISCOVERING = "discovering"
    ENTERING_BOOTLOADER = "entering_bootloader"
    DEVICE_VERIFIED = "device_verified"
    PROGRAMMING = "programming"
    APP_VERIFYING = "app_verifying"
    EXITING_BOOTLOADER = "exiting_bootloader"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SessionResult:
    """
    Outcome of one programming session.

    Attributes:
        ok: Whether the session succeeded
        operation: Name of the operation ("program", "restart", "erase")
        state: Terminal state (SUCCEEDED or FAILED)
        error: The single fatal error, if any
        failed_in: State the session was in when the error occurred
        device: Identity reported by EnterBootloader
        rows_programmed: Rows programmed and verified
        rows_total: Rows in the image (or rows to erase)
        app_checksum: VerifyAppChecksum result byte
        flash_bounds: GetFlashSize results keyed by array ID
        metadata: Additional operation-specific data
        logs: Captured log lines from the session
    """
    ok: bool
    operation: str
    state: SessionState = SessionState.IDLE
    error: Optional[Exception] = None
    failed_in: Optional[SessionState] = None
    device: Optional[DeviceInfo] = None
    rows_programmed: int = 0
    rows_total: int = 0
    app_checksum: Optional[int] = None
    flash_bounds: Dict[int, FlashBounds] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def fail(self, error: Exception, state: SessionState) -> None:
        """Capture the fatal error; the first one wins."""
        if self.error is None:
            self.error = error
            self.failed_in = state
        self.ok = False

    def add_log(self, message: str) -> None:
        self.logs.append(message)

    @property
    def error_code(self) -> Optional[str]:
        if self.error is None:
            return None
        return error_code_for(self.error).value

    def raise_for_error(self) -> None:
        """Re-raise the captured fatal error, if any."""
        if self.error is not None:
            raise self.error

    def to_summary(self) -> str:
        """
        Generate a human-readable summary string.

        Suitable for CLI output or simple logging.
        """
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.device:
            lines.append(f"  Silicon ID: 0x{self.device.silicon_id:08X}")
            lines.append(f"  Silicon rev: 0x{self.device.silicon_rev:02X}")
            lines.append(f"  Bootloader: {self.device.version_string}")
        if self.rows_total:
            lines.append(f"  Rows: {self.rows_programmed}/{self.rows_total}")
        if self.app_checksum is not None:
            lines.append(f"  App checksum: 0x{self.app_checksum:02X}")

        if self.error is not None:
            lines.append("  Errors:")
            lines.append(f"    - [{self.error_code}] {self.error}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "state": self.state.value,
            "error": str(self.error) if self.error else None,
            "error_code": self.error_code,
            "failed_in": self.failed_in.value if self.failed_in else None,
            "device": {
                "silicon_id": self.device.silicon_id,
                "silicon_rev": self.device.silicon_rev,
                "bootloader_version": self.device.version_string,
            } if self.device else None,
            "rows_programmed": self.rows_programmed,
            "rows_total": self.rows_total,
            "app_checksum": self.app_checksum,
            "flash_bounds": {
                array_id: [b.start_row, b.end_row]
                for array_id, b in self.flash_bounds.items()
            },
            "metadata": self.metadata,
            "logs": self.logs,
        }
