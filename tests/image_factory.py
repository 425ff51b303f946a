"""Synthetic image payloads for the optimizer tests."""

from __future__ import annotations

import io
import random
import struct
from typing import Tuple

from PIL import Image


def encode(img: Image.Image, fmt: str, **params) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **params)
    return buf.getvalue()


def solid_png(size: Tuple[int, int] = (8, 8), color=(200, 40, 40)) -> bytes:
    return encode(Image.new("RGB", size, color), "PNG")


def noise_image(size: Tuple[int, int], mode: str = "RGB", seed: int = 0) -> Image.Image:
    channels = len(mode)
    rng = random.Random(seed)
    raw = rng.randbytes(size[0] * size[1] * channels)
    return Image.frombytes(mode, size, raw)


def noise_jpeg(size: Tuple[int, int] = (640, 480), seed: int = 0) -> bytes:
    return encode(noise_image(size, seed=seed), "JPEG", quality=95)


def exif_app1(orientation: int, byte_order: bytes = b"II", tag_type: int = 3) -> bytes:
    """Build an APP1 segment holding a one-entry IFD with the Orientation tag."""
    prefix = "<" if byte_order == b"II" else ">"
    tiff = byte_order + struct.pack(prefix + "HI", 42, 8)
    tiff += struct.pack(prefix + "H", 1)
    tiff += struct.pack(prefix + "HHI", 0x0112, tag_type, 1)
    tiff += struct.pack(prefix + "HH", orientation, 0)
    tiff += struct.pack(prefix + "I", 0)
    payload = b"Exif\x00\x00" + tiff
    return b"\xff\xe1" + struct.pack(">H", len(payload) + 2) + payload


def with_exif(jpeg: bytes, orientation: int, byte_order: bytes = b"II", tag_type: int = 3) -> bytes:
    """Insert an EXIF orientation segment right after the JPEG SOI marker."""
    return jpeg[:2] + exif_app1(orientation, byte_order, tag_type) + jpeg[2:]
