import io
import itertools

import pytest
from PIL import Image

from image_factory import encode, noise_image, noise_jpeg, solid_png, with_exif
from services.image_transform import (
    WEBP_MIME,
    ImageDecodeError,
    ImageTransformer,
    apply_orientation,
    decode_image,
    resize_bilinear,
    target_size,
)


def _open(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def _tagged_grid(width: int = 2, height: int = 3) -> Image.Image:
    """RGBA image whose pixel (x, y) encodes its own coordinates."""
    img = Image.new("RGBA", (width, height))
    for x in range(width):
        for y in range(height):
            img.putpixel((x, y), (x * 40, y * 40, 7, 255))
    return img


# Where source pixel (0, 0) of a w x h image lands for each orientation.
ORIGIN_DESTINATION = {
    1: lambda w, h: (0, 0),
    2: lambda w, h: (w - 1, 0),
    3: lambda w, h: (w - 1, h - 1),
    4: lambda w, h: (0, h - 1),
    5: lambda w, h: (0, 0),
    6: lambda w, h: (h - 1, 0),
    7: lambda w, h: (h - 1, w - 1),
    8: lambda w, h: (0, w - 1),
}


@pytest.mark.parametrize("orientation", range(1, 9))
def test_orientation_moves_origin_pixel(orientation):
    src = _tagged_grid()
    w, h = src.size
    out = apply_orientation(src, orientation)

    expected_size = (h, w) if orientation >= 5 else (w, h)
    assert out.size == expected_size
    assert out.getpixel(ORIGIN_DESTINATION[orientation](w, h)) == src.getpixel((0, 0))


def test_unknown_orientation_is_identity():
    src = _tagged_grid()
    assert apply_orientation(src, 0) is src
    assert apply_orientation(src, 9) is src


def test_target_size_never_upscales():
    assert target_size(200, 100, 300, 300) == (200, 100)
    assert target_size(300, 300, 300, 300) == (300, 300)


def test_target_size_fits_bounds():
    assert target_size(1200, 900, 300, 300) == (300, 225)
    assert target_size(900, 1200, 300, 300) == (225, 300)
    assert target_size(1000, 10, 300, 300) == (300, 3)
    assert target_size(5000, 1, 300, 300) == (300, 1)


def test_target_size_preserves_aspect_ratio():
    bounds = [(300, 300), (320, 200), (64, 480)]
    dims = [1, 7, 299, 301, 640, 1023, 4000]
    for (max_w, max_h), w, h in itertools.product(bounds, dims, dims):
        out_w, out_h = target_size(w, h, max_w, max_h)
        assert out_w <= max_w and out_h <= max_h
        scale = min(1.0, max_w / w, max_h / h)
        assert abs(out_w - w * scale) <= 0.5 or out_w == 1
        assert abs(out_h - h * scale) <= 0.5 or out_h == 1


def test_resize_keeps_uniform_color():
    src = Image.new("RGBA", (40, 30), (12, 200, 99, 180))
    out = resize_bilinear(src, 7, 5)
    assert out.size == (7, 5)
    assert out.getcolors() == [(35, (12, 200, 99, 180))]


def test_resize_keeps_hard_edge_between_halves():
    src = Image.new("RGBA", (4, 4), (255, 0, 0, 255))
    src.paste((0, 0, 255, 0), (2, 0, 4, 4))
    out = resize_bilinear(src, 2, 2)
    assert out.getpixel((0, 0)) == (255, 0, 0, 255)
    assert out.getpixel((1, 1)) == (0, 0, 255, 0)


def test_resize_interpolates_between_pixel_centers():
    src = Image.new("RGBA", (3, 1))
    for x, value in enumerate((0, 100, 200)):
        src.putpixel((x, 0), (value, value, value, 255))
    out = resize_bilinear(src, 2, 1)
    # scale 1.5: centers map to source x 0.25 and 1.75
    assert out.getpixel((0, 0)) == (25, 25, 25, 255)
    assert out.getpixel((1, 0)) == (175, 175, 175, 255)


def test_resize_to_single_pixel():
    out = resize_bilinear(Image.new("RGB", (9, 9), (1, 2, 3)), 1, 1)
    assert out.mode == "RGBA"
    assert out.getpixel((0, 0)) == (1, 2, 3, 255)


def test_decode_falls_back_when_mime_is_wrong():
    png = solid_png()
    assert decode_image(png, "image/webp").format == "PNG"

    webp = encode(Image.new("RGB", (8, 8), (0, 128, 0)), "WEBP")
    assert decode_image(webp, "image/jpeg").format == "WEBP"
    assert decode_image(webp, "image/webp").format == "WEBP"


def test_decode_rejects_garbage():
    with pytest.raises(ImageDecodeError):
        decode_image(b"definitely not an image", "image/jpeg")
    with pytest.raises(ImageDecodeError):
        decode_image(b"", "image/png")


def test_truncated_jpeg_is_a_decode_error():
    data = noise_jpeg((64, 64))
    with pytest.raises(ImageDecodeError):
        ImageTransformer().optimize(data[: len(data) // 3], "image/jpeg")


def test_large_jpeg_is_downscaled_to_webp():
    data = noise_jpeg((640, 480))
    result = ImageTransformer(max_size=(300, 300), quality=85).optimize(data, "image/jpeg")

    assert result.changed
    assert result.mime == WEBP_MIME
    assert len(result.data) < len(data)
    out = _open(result.data)
    assert out.format == "WEBP"
    assert out.size == (300, 225)
    assert out.mode == "RGB"


def test_small_image_is_reencoded_without_resize():
    data = encode(noise_image((120, 80)), "PNG")
    result = ImageTransformer(max_size=(300, 300), min_gain_ratio=-1.0).optimize(data, "image/png")

    assert result.changed
    assert (result.width, result.height) == (120, 80)
    assert _open(result.data).size == (120, 80)


def test_exif_rotation_is_applied_before_resize():
    data = with_exif(noise_jpeg((600, 200)), 6)
    result = ImageTransformer(max_size=(300, 300), min_gain_ratio=-1.0).optimize(data, "image/jpeg")

    assert (result.width, result.height) == (100, 300)
    assert _open(result.data).size == (100, 300)


def test_orientation_is_ignored_for_non_jpeg():
    data = encode(noise_image((60, 20)), "PNG")
    result = ImageTransformer(min_gain_ratio=-1.0).optimize(data, "image/png")
    assert (result.width, result.height) == (60, 20)


def test_transparency_survives_reencoding():
    img = noise_image((64, 64), mode="RGBA")
    data = encode(img, "PNG")
    result = ImageTransformer(min_gain_ratio=-1.0).optimize(data, "image/png")

    assert result.changed
    assert _open(result.data).mode == "RGBA"


def test_insufficient_gain_keeps_original():
    data = encode(Image.new("RGB", (16, 16), (90, 90, 90)), "WEBP", quality=85)
    result = ImageTransformer(min_gain_ratio=0.99).optimize(data, "image/webp")

    assert not result.changed
    assert result.data is data
    assert result.mime == "image/webp"
