"""Image transform engine for the background optimizer.

Decodes stored image bytes with Pillow, applies the JPEG EXIF orientation,
downscales to fit within configured bounds with a bilinear resampler and
re-encodes the result as lossy WebP. The rewrite is only accepted when it
shrinks the payload by the configured minimum gain.

Public class: `ImageTransformer`

Example:
    transformer = ImageTransformer(max_size=(300, 300), quality=85)
    result = transformer.optimize(raw_bytes, "image/jpeg")
    if result.changed:
        store(result.data, result.mime)
"""
from __future__ import annotations

import io
import math
from typing import List, Optional, Sequence, Tuple

from PIL import Image

from models.optimizer_models import OptimizedImage
from services.exif_orientation import looks_like_jpeg, read_orientation
from services.gain_heuristic import DEFAULT_MIN_GAIN_RATIO, accept_rewrite

WEBP_MIME = "image/webp"
WEBP_FORMAT = "WEBP"

# EXIF orientation -> Pillow transpose that brings the image upright.
ORIENTATION_TRANSPOSE = {
    2: Image.Transpose.FLIP_LEFT_RIGHT,
    3: Image.Transpose.ROTATE_180,
    4: Image.Transpose.FLIP_TOP_BOTTOM,
    5: Image.Transpose.TRANSPOSE,
    6: Image.Transpose.ROTATE_270,
    7: Image.Transpose.TRANSVERSE,
    8: Image.Transpose.ROTATE_90,
}

_ALPHA_MODES = ("RGBA", "LA", "PA", "RGBa", "La")


class ImageTransformError(ValueError):
    """Base error for images the optimizer cannot process."""


class ImageDecodeError(ImageTransformError):
    """Raised when stored bytes cannot be decoded as an image."""


class ImageEncodeError(ImageTransformError):
    """Raised when the processed image cannot be encoded."""


def decode_image(data: bytes, mime: str = "") -> Image.Image:
    """Decode `data` into a loaded Pillow image.

    WebP-labelled payloads try the WebP decoder before the generic one;
    everything else tries the generic decoder first and WebP last, which
    covers uploads stored under the wrong MIME type.

    Raises:
        ImageDecodeError: If no decoder accepts the bytes.
    """
    if not data:
        raise ImageDecodeError("No image data to decode")

    attempts: List[Optional[Sequence[str]]]
    if "webp" in (mime or "").lower():
        attempts = [[WEBP_FORMAT], None]
    else:
        attempts = [None, [WEBP_FORMAT]]

    first_error: Optional[Exception] = None
    for formats in attempts:
        try:
            img = Image.open(io.BytesIO(data), formats=formats)
            img.load()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            first_error = first_error or exc
            continue
        if img.width <= 0 or img.height <= 0:
            raise ImageDecodeError("Decoded image has invalid dimensions")
        return img

    raise ImageDecodeError(f"Unsupported or corrupt image data ({mime or 'unknown type'})") from first_error


def apply_orientation(img: Image.Image, orientation: int) -> Image.Image:
    """Return `img` transformed upright for an EXIF orientation code.

    Orientation 1 and unknown codes return the image unchanged; the other
    seven return a new image, with width and height swapped for 5..8.
    """
    method = ORIENTATION_TRANSPOSE.get(orientation)
    if method is None:
        return img
    return img.transpose(method)


def target_size(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Return the size that fits (width, height) within the bounds, keeping aspect ratio.

    Images already within the bounds keep their size; nothing is upscaled.
    """
    scale = min(max_width / width, max_height / height)
    if scale >= 1.0:
        return width, height
    return (
        max(1, _round_half_up(width * scale)),
        max(1, _round_half_up(height * scale)),
    )


def resize_bilinear(img: Image.Image, width: int, height: int) -> Image.Image:
    """Resample `img` to (width, height) with bilinear interpolation.

    Each destination pixel maps back to the source through pixel centers,
    `(d + 0.5) * scale - 0.5`, and blends its four neighbours per channel
    on straight (non-premultiplied) 8-bit RGBA values.
    """
    if width <= 0 or height <= 0:
        raise ValueError("Target dimensions must be positive")

    src = img if img.mode == "RGBA" else img.convert("RGBA")
    src_w, src_h = src.size
    raw = src.tobytes()
    stride = src_w * 4

    columns = [_axis_sample(x, src_w / width, src_w) for x in range(width)]
    columns = [(x0 * 4, x1 * 4, wx) for x0, x1, wx in columns]

    out = bytearray(width * height * 4)
    o = 0
    for y in range(height):
        y0, y1, wy = _axis_sample(y, src_h / height, src_h)
        row0 = y0 * stride
        row1 = y1 * stride
        for x0, x1, wx in columns:
            w00 = (1 - wx) * (1 - wy)
            w10 = wx * (1 - wy)
            w01 = (1 - wx) * wy
            w11 = wx * wy
            p00 = row0 + x0
            p10 = row0 + x1
            p01 = row1 + x0
            p11 = row1 + x1
            for c in range(4):
                value = (
                    raw[p00 + c] * w00
                    + raw[p10 + c] * w10
                    + raw[p01 + c] * w01
                    + raw[p11 + c] * w11
                )
                out[o] = _clamp_channel(value)
                o += 1

    return Image.frombytes("RGBA", (width, height), bytes(out))


def encode_webp(img: Image.Image, quality: int) -> bytes:
    """Encode `img` as lossy WebP and return the bytes.

    Raises:
        ImageEncodeError: If Pillow cannot encode the image.
    """
    out_io = io.BytesIO()
    try:
        img.save(out_io, format=WEBP_FORMAT, quality=quality)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        raise ImageEncodeError("Failed to encode image as WebP") from exc
    return out_io.getvalue()


def _axis_sample(d: int, scale: float, limit: int) -> Tuple[int, int, float]:
    """Return the two clamped source indices and the blend weight for destination index `d`."""
    f = (d + 0.5) * scale - 0.5
    i0 = min(max(int(math.floor(f)), 0), limit - 1)
    i1 = min(i0 + 1, limit - 1)
    weight = min(max(f - i0, 0.0), 1.0)
    return i0, i1, weight


def _clamp_channel(value: float) -> int:
    if value <= 0:
        return 0
    if value >= 255:
        return 255
    return int(value + 0.5)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in _ALPHA_MODES or "transparency" in img.info


class ImageTransformer:
    """Turn stored image bytes into a smaller WebP when it pays off.

    Args:
        max_size: Maximum output (width, height). Defaults to (300, 300).
        quality: Lossy WebP quality. Defaults to 85.
        min_gain_ratio: Minimum fractional size reduction to accept a rewrite.
    """

    def __init__(
        self,
        max_size: Tuple[int, int] = (300, 300),
        quality: int = 85,
        min_gain_ratio: float = DEFAULT_MIN_GAIN_RATIO,
    ):
        self.max_size = max_size
        self.quality = quality
        self.min_gain_ratio = min_gain_ratio

    def optimize(self, data: bytes, mime: str) -> OptimizedImage:
        """Decode, orient, downscale and re-encode one image.

        Args:
            data: Stored image bytes.
            mime: Stored MIME type, used as a decoder hint only.

        Returns:
            An `OptimizedImage`. When `changed` is False the caller keeps the
            original bytes and MIME, which are echoed back unchanged.

        Raises:
            ImageDecodeError: If the bytes are not a decodable image.
            ImageEncodeError: If the WebP encoder fails.
        """
        src = decode_image(data, mime)
        keep_alpha = _has_alpha(src)

        try:
            img = src.convert("RGBA")
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise ImageDecodeError(f"Cannot convert {src.mode} image to RGBA") from exc

        if looks_like_jpeg(data):
            img = apply_orientation(img, read_orientation(data))

        width, height = target_size(img.width, img.height, *self.max_size)
        if (width, height) != img.size:
            img = resize_bilinear(img, width, height)

        if not keep_alpha:
            img = img.convert("RGB")

        encoded = encode_webp(img, self.quality)
        if not accept_rewrite(len(data), len(encoded), self.min_gain_ratio):
            return OptimizedImage(data=data, mime=mime, changed=False, width=width, height=height)
        return OptimizedImage(data=encoded, mime=WEBP_MIME, changed=True, width=width, height=height)
