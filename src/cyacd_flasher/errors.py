"""
Exception hierarchy for cyacd flashing.

Every failure a programming session can end with maps to exactly one of
these classes. Argument validation problems stay plain ``ValueError``.
"""

from typing import Optional


class BootloaderError(Exception):
    """Base exception for all flashing errors"""
    pass


class FormatError(BootloaderError):
    """Malformed .cyacd image file or row record"""
    pass


class DeviceNotFoundError(BootloaderError):
    """Device discovery exhausted its attempts or timed out"""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class DeviceMismatchError(BootloaderError):
    """Silicon ID/revision reported by the device differs from the image"""
    pass


class OutOfRangeError(BootloaderError):
    """Row number outside the flash bounds reported by the device"""
    pass


class ProtocolError(BootloaderError):
    """Malformed response frame"""
    pass


# Status codes reported by the bootloader in byte 1 of a response
STATUS_DESCRIPTIONS = {
    0x01: "invalid bootloader key",
    0x02: "flash verification failed",
    0x03: "invalid packet length",
    0x04: "invalid packet data",
    0x05: "unknown command",
    0x08: "packet checksum mismatch",
    0x09: "invalid flash array",
    0x0A: "invalid flash row",
    0x0C: "invalid application",
    0x0D: "application is active",
    0x0F: "unknown error",
}


class DeviceStatusError(ProtocolError):
    """Well-formed response carrying a non-success status byte"""

    def __init__(self, status: int, command: Optional[str] = None):
        self.status = status
        self.command = command
        self.description = STATUS_DESCRIPTIONS.get(status, "unknown status")
        where = f" for {command}" if command else ""
        super().__init__(
            f"Device reported error 0x{status:02X} ({self.description}){where}"
        )


class CommunicationError(BootloaderError):
    """I/O failure at the transport level"""
    pass


class TransportTimeoutError(CommunicationError):
    """Device did not answer within the transport read timeout"""
    pass


class ChecksumMismatchError(BootloaderError):
    """Row checksum read back from the device disagrees with the image"""
    pass


class AppChecksumError(ChecksumMismatchError):
    """Device reported the application checksum as invalid"""
    pass
