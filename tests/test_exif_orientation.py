import struct

import pytest
from PIL import Image

from image_factory import encode, exif_app1, solid_png, with_exif
from services.exif_orientation import find_orientation, looks_like_jpeg, parse_tiff_orientation, read_orientation


@pytest.fixture(scope="module")
def plain_jpeg() -> bytes:
    return encode(Image.new("RGB", (4, 4), (10, 20, 30)), "JPEG")


def test_non_jpeg_input_has_default_orientation():
    assert read_orientation(solid_png()) == 1
    assert read_orientation(b"") == 1
    assert read_orientation(b"\xff") == 1
    assert find_orientation(solid_png()) is None


def test_jpeg_without_exif_has_default_orientation(plain_jpeg):
    assert looks_like_jpeg(plain_jpeg)
    assert find_orientation(plain_jpeg) is None
    assert read_orientation(plain_jpeg) == 1


@pytest.mark.parametrize("orientation", range(1, 9))
def test_reads_little_endian_orientation(plain_jpeg, orientation):
    assert read_orientation(with_exif(plain_jpeg, orientation)) == orientation


@pytest.mark.parametrize("orientation", [3, 6, 8])
def test_reads_big_endian_orientation(plain_jpeg, orientation):
    assert read_orientation(with_exif(plain_jpeg, orientation, byte_order=b"MM")) == orientation


def test_orientation_written_by_pillow_is_read():
    exif = Image.Exif()
    exif[0x0112] = 6
    data = encode(Image.new("RGB", (4, 4)), "JPEG", exif=exif.tobytes())
    assert read_orientation(data) == 6


def test_non_short_orientation_entry_is_ignored(plain_jpeg):
    assert read_orientation(with_exif(plain_jpeg, 6, tag_type=4)) == 1


def test_out_of_range_orientation_is_ignored(plain_jpeg):
    assert read_orientation(with_exif(plain_jpeg, 9)) == 1
    assert read_orientation(with_exif(plain_jpeg, 0)) == 1


def test_bad_tiff_header_is_ignored():
    good = exif_app1(6)[10:]  # TIFF block after marker, length and signature
    assert parse_tiff_orientation(good) == 6
    assert parse_tiff_orientation(b"XX" + good[2:]) is None
    assert parse_tiff_orientation(good[:2] + struct.pack("<H", 43) + good[4:]) is None
    assert parse_tiff_orientation(good[:4] + struct.pack("<I", 4096) + good[8:]) is None
    assert parse_tiff_orientation(good[:7]) is None


def test_exif_after_start_of_scan_is_ignored(plain_jpeg):
    sos = b"\xff\xda" + struct.pack(">H", 2)
    data = plain_jpeg[:2] + sos + exif_app1(6) + plain_jpeg[2:]
    assert read_orientation(data) == 1


def test_non_exif_app1_segment_is_skipped(plain_jpeg):
    xmp = b"http://ns.adobe.com/xap/1.0/\x00<x/>"
    app1 = b"\xff\xe1" + struct.pack(">H", len(xmp) + 2) + xmp
    data = plain_jpeg[:2] + app1 + exif_app1(3) + plain_jpeg[2:]
    assert read_orientation(data) == 3


def test_truncated_input_never_raises(plain_jpeg):
    data = with_exif(plain_jpeg, 8, byte_order=b"MM")
    header_len = 2 + len(exif_app1(8))
    for cut in range(header_len + 1):
        assert read_orientation(data[:cut]) in (1, 8)
    assert read_orientation(data[: header_len - 1]) == 1
    assert read_orientation(data[:header_len]) == 8


def test_bogus_segment_length_is_tolerated():
    data = b"\xff\xd8\xff\xe1\x00\x01garbage"
    assert read_orientation(data) == 1
    data = b"\xff\xd8\xff\xe1\xff\xffExif\x00\x00II"
    assert read_orientation(data) == 1
