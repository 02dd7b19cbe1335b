"""
Stable error codes and remediation hints.

Maps every exception a session can end with onto a code that scripts can
match on, plus a short hint the CLI prints under the error.
"""

from enum import Enum
from typing import Dict

from ..errors import (
    AppChecksumError,
    ChecksumMismatchError,
    CommunicationError,
    DeviceMismatchError,
    DeviceNotFoundError,
    DeviceStatusError,
    FormatError,
    OutOfRangeError,
    ProtocolError,
)


class ErrorCode(Enum):
    """Stable error codes for known failure classes."""
    ERR_PARAM_VALIDATION = "ERR_PARAM_VALIDATION"
    ERR_DEVICE_NOT_FOUND = "ERR_DEVICE_NOT_FOUND"
    ERR_COMMUNICATION = "ERR_COMMUNICATION"
    ERR_PROGRAMMING = "ERR_PROGRAMMING"
    ERR_VERIFICATION = "ERR_VERIFICATION"
    ERR_DEVICE_MISMATCH = "ERR_DEVICE_MISMATCH"
    ERR_OUT_OF_RANGE = "ERR_OUT_OF_RANGE"
    ERR_CHECKSUM_MISMATCH = "ERR_CHECKSUM_MISMATCH"


# Default remediation hints for each error code
ERROR_REMEDIATIONS: Dict[ErrorCode, str] = {
    ErrorCode.ERR_PARAM_VALIDATION:
        "Check the image path, mode and key (12 hex digits).",
    ErrorCode.ERR_DEVICE_NOT_FOUND:
        "Check the USB connection and serial number, or the port path; use 'ports' to list ports.",
    ErrorCode.ERR_COMMUNICATION:
        "Device is unresponsive or not in bootloader mode. Reset it and retry.",
    ErrorCode.ERR_PROGRAMMING:
        "The bootloader rejected a command. Check the bootloader key and image.",
    ErrorCode.ERR_VERIFICATION:
        "The application checksum failed on the device. Reflash the full image.",
    ErrorCode.ERR_DEVICE_MISMATCH:
        "The image was built for a different chip. Use the image matching this device.",
    ErrorCode.ERR_OUT_OF_RANGE:
        "The image addresses rows the bootloader does not own. Rebuild for this bootloader.",
    ErrorCode.ERR_CHECKSUM_MISMATCH:
        "A row read back differently than written. Check the connection and reflash.",
}


def error_code_for(error: Exception) -> ErrorCode:
    """Classify an exception; order matters for subclasses."""
    if isinstance(error, (FormatError, ValueError)):
        return ErrorCode.ERR_PARAM_VALIDATION
    if isinstance(error, DeviceNotFoundError):
        return ErrorCode.ERR_DEVICE_NOT_FOUND
    if isinstance(error, DeviceMismatchError):
        return ErrorCode.ERR_DEVICE_MISMATCH
    if isinstance(error, OutOfRangeError):
        return ErrorCode.ERR_OUT_OF_RANGE
    if isinstance(error, AppChecksumError):
        return ErrorCode.ERR_VERIFICATION
    if isinstance(error, ChecksumMismatchError):
        return ErrorCode.ERR_CHECKSUM_MISMATCH
    if isinstance(error, DeviceStatusError):
        return ErrorCode.ERR_PROGRAMMING
    if isinstance(error, (CommunicationError, ProtocolError)):
        return ErrorCode.ERR_COMMUNICATION
    return ErrorCode.ERR_PROGRAMMING


def remediation_for(error: Exception) -> str:
    return ERROR_REMEDIATIONS[error_code_for(error)]
