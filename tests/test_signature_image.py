import base64
import zlib

import pytest

from app.services.signature_image import SignatureImageError, decode_data_url, decode_png, signature_image

from _support import make_png, png_data_url


def test_rgba_image_splits_alpha_into_soft_mask():
    rows = [
        bytes([0, 255, 0, 0, 255, 0, 0, 255, 128]),
        # Up filter with zero deltas repeats the first row
        bytes([2, 0, 0, 0, 0, 0, 0, 0, 0]),
    ]
    image = signature_image(png_data_url(make_png(2, 2, rows)))

    assert (image.width, image.height, image.color_space) == (2, 2, "/DeviceRGB")
    assert zlib.decompress(image.data) == bytes([255, 0, 0, 0, 0, 255] * 2)
    assert zlib.decompress(image.alpha) == bytes([255, 128, 255, 128])


def test_sub_and_average_filters():
    sub = decode_png(make_png(3, 1, [bytes([1, 10, 20, 30])], color_type=0))
    assert zlib.decompress(sub.data) == bytes([10, 30, 60])

    average = decode_png(make_png(2, 1, [bytes([3, 10, 15])], color_type=0))
    assert zlib.decompress(average.data) == bytes([10, 20])


def test_paeth_filter():
    rows = [bytes([0, 10, 20]), bytes([4, 20, 20])]
    image = decode_png(make_png(2, 2, rows, color_type=0))

    assert image.color_space == "/DeviceGray"
    assert image.alpha is None
    assert zlib.decompress(image.data) == bytes([10, 20, 30, 50])


def test_palette_image_with_transparency():
    png = make_png(2, 1, [bytes([0, 1, 0])], color_type=3, palette=b"\x00\x00\x00\xff\xff\xff", transparency=b"\x00")
    image = decode_png(png)

    assert image.color_space == "/DeviceRGB"
    assert zlib.decompress(image.data) == b"\xff\xff\xff\x00\x00\x00"
    assert zlib.decompress(image.alpha) == bytes([255, 0])


def test_bare_base64_is_accepted():
    png = make_png(1, 1, [bytes([0, 7])], color_type=0)
    assert decode_data_url(base64.b64encode(png).decode("ascii")) == png


@pytest.mark.parametrize(
    "value",
    [
        "",
        None,
        "data:image/jpeg;base64,/9j/4AAQ",
        "data:image/png;base64,AAAA",
        "Ama Mensah",
    ],
)
def test_unusable_signatures_are_rejected(value):
    with pytest.raises(SignatureImageError):
        signature_image(value)


def test_truncated_pixel_data_is_rejected():
    png = make_png(2, 2, [bytes([0, 1, 2])], color_type=0)
    with pytest.raises(SignatureImageError):
        decode_png(png)


def test_unknown_filter_is_rejected():
    png = make_png(1, 1, [bytes([9, 1])], color_type=0)
    with pytest.raises(SignatureImageError):
        decode_png(png)
