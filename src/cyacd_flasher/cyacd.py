"""
.cyacd firmware image parsing.

The image is ASCII hex text, one record per line:

    Header:  SSSSSSSS RR [CC]
             silicon ID (4 bytes, big-endian), silicon revision (1 byte),
             optional checksum type (1 byte)

    Row:     :AA RRRR LLLL DD...DD CC
             array ID (1), row number (2, big-endian), data length (2,
             big-endian), data (length bytes), row checksum (last byte)

The leading ':' on row lines is optional. The whole file is read into memory;
rows keep file order.
"""

import binascii
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple, Union

from .errors import FormatError

logger = logging.getLogger(__name__)

HEADER_MIN_BYTES = 5
ROW_HEADER_BYTES = 5


@dataclass(frozen=True)
class Row:
    """One flash row record."""

    array_id: int
    row_num: int
    size: int
    data: bytes
    checksum: int

    def __post_init__(self):
        if len(self.data) != self.size:
            raise FormatError(
                f"Row {self.array_id}:{self.row_num} declares {self.size} bytes, "
                f"has {len(self.data)}"
            )

    @property
    def expected_checksum(self) -> int:
        """
        Checksum the device reports for this row after programming.

        The file checksum covers the data only; the device also folds in
        the array ID, row number and size bytes.
        """
        return (
            self.checksum
            + self.array_id
            + ((self.row_num >> 8) & 0xFF)
            + (self.row_num & 0xFF)
            + (self.size & 0xFF)
            + ((self.size >> 8) & 0xFF)
        ) & 0xFF


@dataclass(frozen=True)
class FirmwareImage:
    """Parsed .cyacd image: silicon identity plus ordered rows."""

    silicon_id: int
    silicon_rev: int
    rows: Tuple[Row, ...]
    checksum_type: int = 0

    @property
    def array_ids(self) -> List[int]:
        """Distinct array IDs in first-seen order."""
        seen: List[int] = []
        for row in self.rows:
            if row.array_id not in seen:
                seen.append(row.array_id)
        return seen

    @property
    def total_bytes(self) -> int:
        return sum(row.size for row in self.rows)

    @classmethod
    def from_text(cls, text: str) -> "FirmwareImage":
        return parse_cyacd(text)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "FirmwareImage":
        """
        Read and parse an image file.

        Raises:
            FormatError: If the file cannot be read or is malformed
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="ascii")
        except (OSError, UnicodeDecodeError) as e:
            raise FormatError(f"Cannot read image {path}: {e}")
        image = parse_cyacd(text)
        logger.debug(
            f"Parsed {path}: silicon 0x{image.silicon_id:08X} rev "
            f"0x{image.silicon_rev:02X}, {len(image.rows)} rows"
        )
        return image


def _decode_hex(line: str, line_no: int) -> bytes:
    try:
        return binascii.unhexlify(line)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Line {line_no}: invalid hex ({e})")


def parse_header(line: str) -> Tuple[int, int, int]:
    """
    Decode the header line.

    Returns:
        Tuple of (silicon_id, silicon_rev, checksum_type)
    """
    decoded = _decode_hex(line.strip(), 1)
    if len(decoded) < HEADER_MIN_BYTES:
        raise FormatError(
            f"Line 1: header needs {HEADER_MIN_BYTES} bytes, got {len(decoded)}"
        )
    silicon_id = int.from_bytes(decoded[0:4], "big")
    silicon_rev = decoded[4]
    checksum_type = decoded[5] if len(decoded) > HEADER_MIN_BYTES else 0
    return silicon_id, silicon_rev, checksum_type


def parse_row(line: str, line_no: int = 0) -> Row:
    """Decode one row record line."""
    text = line.strip()
    if text.startswith(":"):
        text = text[1:]
    decoded = _decode_hex(text, line_no)
    if len(decoded) < ROW_HEADER_BYTES + 1:
        raise FormatError(f"Line {line_no}: row record too short ({len(decoded)} bytes)")

    array_id = decoded[0]
    row_num = int.from_bytes(decoded[1:3], "big")
    size = int.from_bytes(decoded[3:5], "big")
    if len(decoded) < ROW_HEADER_BYTES + size + 1:
        raise FormatError(
            f"Line {line_no}: row {array_id}:{row_num} declares {size} data bytes "
            f"but record holds {len(decoded) - ROW_HEADER_BYTES - 1}"
        )

    return Row(
        array_id=array_id,
        row_num=row_num,
        size=size,
        data=bytes(decoded[ROW_HEADER_BYTES:ROW_HEADER_BYTES + size]),
        checksum=decoded[-1],
    )


def parse_cyacd(text: str) -> FirmwareImage:
    """
    Parse the full text of a .cyacd image.

    Raises:
        FormatError: Missing header, invalid hex or truncated row
    """
    lines = text.splitlines()
    if not lines or not lines[0].strip():
        raise FormatError("Image is empty: missing header line")

    silicon_id, silicon_rev, checksum_type = parse_header(lines[0])

    rows = []
    for line_no, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        rows.append(parse_row(line, line_no))

    return FirmwareImage(
        silicon_id=silicon_id,
        silicon_rev=silicon_rev,
        rows=tuple(rows),
        checksum_type=checksum_type,
    )
