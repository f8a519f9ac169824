import io

import pytest
from PIL import Image

from peer.images import ImageLoadError, decode_image, fit, load_image
from tests.fakes import png_header


def _write(tmp_path, name, img, fmt):
    path = tmp_path / name
    img.save(path, format=fmt)
    return str(path)


def test_jpeg_is_reencoded_as_png(tmp_path):
    path = _write(tmp_path, "sun.jpg", Image.new("RGB", (40, 30), "orange"), "JPEG")
    data = load_image(path)
    assert data.startswith(b"\x89PNG")
    img = decode_image(data)
    assert img.size == (40, 30)


def test_cmyk_image_is_converted(tmp_path):
    path = _write(tmp_path, "print.jpg", Image.new("CMYK", (8, 8)), "JPEG")
    assert decode_image(load_image(path)).mode == "RGBA"


def test_missing_file_raises_load_error(tmp_path):
    with pytest.raises(ImageLoadError):
        load_image(str(tmp_path / "nope.png"))


def test_non_image_file_raises_load_error(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("not an image")
    with pytest.raises(ImageLoadError):
        load_image(str(path))


def test_decode_rejects_garbage():
    with pytest.raises(ImageLoadError):
        decode_image(b"definitely not a png")


def test_decode_rejects_oversized_image():
    with pytest.raises(ImageLoadError):
        decode_image(png_header(20000, 20000))


def test_fit_scales_down_only():
    big = Image.new("RGB", (1000, 250))
    small = Image.new("RGB", (50, 20))
    assert fit(big).size == (500, 125)
    assert fit(small).size == (50, 20)
    assert big.size == (1000, 250)


def test_png_bytes_round_trip_through_decode():
    buf = io.BytesIO()
    Image.new("L", (3, 3), 128).save(buf, format="PNG")
    assert decode_image(buf.getvalue()).getpixel((1, 1)) == 128
