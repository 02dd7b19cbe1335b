"""
cyacd flasher - program .cyacd firmware images through the vendor bootloader

Image parsing, bootloader wire protocol and the programming session that
ties them together over USB or serial.
"""

__version__ = "1.0.0"

from cyacd_flasher.cyacd import FirmwareImage, Row
from cyacd_flasher.programmer import BootloaderSession, Programmer, ProgrammerConfig

__all__ = [
    "FirmwareImage",
    "Row",
    "BootloaderSession",
    "Programmer",
    "ProgrammerConfig",
    "__version__",
]
