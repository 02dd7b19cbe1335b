"""
Centralized parsing helpers for CLI values.

The CLI wraps these and turns ValueError into typer.BadParameter.
"""

import binascii
from typing import Optional

from ..protocol.commands import KEY_SIZE

MODE_USB = "usb"
MODE_SERIAL = "serial"
MODES = (MODE_USB, MODE_SERIAL)


def parse_key(value: Optional[str]) -> Optional[bytes]:
    """
    Parse a bootloader key given as hex text.

    Accepts "0A1B2C3D4E5F", "0x0A1B2C3D4E5F" and separators ":", " ", "-".

    Returns:
        6 key bytes, or None if value is None or empty.

    Raises:
        ValueError: If value is not 6 bytes of hex.
    """
    if value is None:
        return None

    text = value.strip()
    if text.lower().startswith("0x"):
        text = text[2:]
    for sep in (":", " ", "-"):
        text = text.replace(sep, "")
    if not text:
        return None

    try:
        key = binascii.unhexlify(text)
    except (binascii.Error, ValueError):
        raise ValueError(f"Invalid key '{value}'. Use {KEY_SIZE * 2} hex digits.")
    if len(key) != KEY_SIZE:
        raise ValueError(
            f"Invalid key '{value}': {len(key)} bytes, bootloader key is {KEY_SIZE} bytes."
        )
    return key


def parse_int(value: str) -> int:
    """
    Parse an integer, supporting multiple formats.

    Accepts:
        - Decimal: "64"
        - Hex with 0x prefix: "0x40"
        - Hex with h suffix: "40h"
    """
    text = value.strip()
    try:
        if text.lower().startswith("0x"):
            return int(text, 16)
        if text.lower().endswith("h"):
            return int(text[:-1], 16)
        return int(text)
    except ValueError:
        raise ValueError(
            f"Invalid number '{value}'. Use decimal (64), hex (0x40), or suffix (40h)."
        )


def parse_mode(value: str) -> str:
    mode = value.strip().lower()
    if mode not in MODES:
        raise ValueError(f"Mode must be one of: {', '.join(MODES)} (got '{value}')")
    return mode
