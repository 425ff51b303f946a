"""EXIF orientation reader for JPEG byte streams.

Walks the JPEG marker segments up to the start of scan, finds the APP1
"Exif" segment and reads the Orientation tag (0x0112) from the first TIFF
image file directory. Uploads are untrusted: every malformed, truncated or
missing structure degrades to orientation 1 (no transform) and nothing here
raises.

Example:
    orientation = read_orientation(jpeg_bytes)  # 1..8
"""
from __future__ import annotations

import struct
from typing import Optional

DEFAULT_ORIENTATION = 1

JPEG_SOI = b"\xff\xd8"
MARKER_SOS = 0xDA
MARKER_EOI = 0xD9
MARKER_APP1 = 0xE1
EXIF_SIGNATURE = b"Exif\x00\x00"

TIFF_MAGIC = 42
TAG_ORIENTATION = 0x0112
TYPE_SHORT = 3
IFD_ENTRY_SIZE = 12


def looks_like_jpeg(data: bytes) -> bool:
    """Return True if `data` starts with the JPEG start-of-image marker."""
    return len(data) >= 2 and data[:2] == JPEG_SOI


def read_orientation(data: bytes) -> int:
    """Return the EXIF orientation (1..8) of a JPEG, or 1 when absent or unreadable."""
    found = find_orientation(data)
    return found if found is not None else DEFAULT_ORIENTATION


def find_orientation(data: bytes) -> Optional[int]:
    """Return the EXIF orientation of a JPEG, or None when no valid tag is present."""
    if not looks_like_jpeg(data):
        return None

    pos = 2
    size = len(data)
    while pos + 4 <= size:
        if data[pos] != 0xFF:
            break
        marker = data[pos + 1]
        if marker in (MARKER_SOS, MARKER_EOI):
            break
        (seg_len,) = struct.unpack_from(">H", data, pos + 2)
        payload_start = pos + 4
        payload_end = payload_start + seg_len - 2
        if seg_len < 2 or payload_end > size:
            break
        if marker == MARKER_APP1:
            payload = data[payload_start:payload_end]
            if payload[:6] == EXIF_SIGNATURE:
                orientation = parse_tiff_orientation(payload[6:])
                if orientation is not None:
                    return orientation
        pos = payload_end
    return None


def parse_tiff_orientation(tiff: bytes) -> Optional[int]:
    """Read the Orientation tag from the first IFD of a TIFF block.

    Args:
        tiff: TIFF-structured bytes following the "Exif\\0\\0" signature.

    Returns:
        The orientation value when a SHORT Orientation entry in 1..8 exists,
        otherwise None.
    """
    if len(tiff) < 8:
        return None
    byte_order = tiff[:2]
    if byte_order == b"II":
        prefix = "<"
    elif byte_order == b"MM":
        prefix = ">"
    else:
        return None

    u16 = struct.Struct(prefix + "H")
    u32 = struct.Struct(prefix + "I")

    if u16.unpack_from(tiff, 2)[0] != TIFF_MAGIC:
        return None
    ifd_offset = u32.unpack_from(tiff, 4)[0]
    if ifd_offset <= 0 or ifd_offset + 2 > len(tiff):
        return None

    count = u16.unpack_from(tiff, ifd_offset)[0]
    entry = ifd_offset + 2
    for _ in range(count):
        if entry + IFD_ENTRY_SIZE > len(tiff):
            break
        tag = u16.unpack_from(tiff, entry)[0]
        typ = u16.unpack_from(tiff, entry + 2)[0]
        n_values = u32.unpack_from(tiff, entry + 4)[0]
        if tag == TAG_ORIENTATION and typ == TYPE_SHORT and n_values >= 1:
            # A single SHORT is stored left-justified in the value field.
            value = u16.unpack_from(tiff, entry + 8)[0]
            if 1 <= value <= 8:
                return value
        entry += IFD_ENTRY_SIZE
    return None
