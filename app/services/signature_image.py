"""Drawn signatures arrive as PNG data URLs from the signature pad.

The PDF writer needs raw samples, so the PNG is unpacked here: chunks are
read, scanline filters undone and any alpha channel split off to become a
soft mask. Only 8-bit, non-interlaced images are supported.
"""

import base64
import binascii
import re
import struct
import zlib
from typing import Iterator, NamedTuple, Optional


PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
DATA_URL_PATTERN = re.compile(r"^data:image/png;base64,(.*)$", re.DOTALL)

# color type -> samples per pixel
CHANNELS = {0: 1, 2: 3, 3: 1, 4: 2, 6: 4}


class SignatureImageError(ValueError):
    pass


class PdfImage(NamedTuple):
    width: int
    height: int
    color_space: str
    data: bytes
    alpha: Optional[bytes] = None


def decode_data_url(value: Optional[str]) -> bytes:
    value = (value or "").strip()
    if not value:
        raise SignatureImageError("Signature image is empty")
    match = DATA_URL_PATTERN.match(value)
    if match is None and value.startswith("data:"):
        raise SignatureImageError("Only PNG signature images are supported")
    payload = match.group(1) if match else value
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise SignatureImageError(f"Signature image is not valid base64: {exc}") from exc


def _chunks(data: bytes) -> Iterator[tuple[bytes, bytes]]:
    if not data.startswith(PNG_MAGIC):
        raise SignatureImageError("Signature image is not a PNG")
    offset = len(PNG_MAGIC)
    while offset + 8 <= len(data):
        length, kind = struct.unpack(">I4s", data[offset:offset + 8])
        body = data[offset + 8:offset + 8 + length]
        if len(body) != length:
            raise SignatureImageError("Signature image is truncated")
        yield kind, body
        if kind == b"IEND":
            return
        offset += 12 + length


def _paeth(left: int, up: int, up_left: int) -> int:
    estimate = left + up - up_left
    distance_left = abs(estimate - left)
    distance_up = abs(estimate - up)
    distance_up_left = abs(estimate - up_left)
    if distance_left <= distance_up and distance_left <= distance_up_left:
        return left
    if distance_up <= distance_up_left:
        return up
    return up_left


def _unfilter(raw: bytes, height: int, stride: int, bpp: int) -> bytes:
    out = bytearray()
    previous = bytearray(stride)
    pos = 0
    for _ in range(height):
        if pos + 1 + stride > len(raw):
            raise SignatureImageError("Signature image data is truncated")
        filter_type = raw[pos]
        line = bytearray(raw[pos + 1:pos + 1 + stride])
        pos += 1 + stride

        if filter_type == 1:
            for i in range(bpp, stride):
                line[i] = (line[i] + line[i - bpp]) & 0xFF
        elif filter_type == 2:
            for i in range(stride):
                line[i] = (line[i] + previous[i]) & 0xFF
        elif filter_type == 3:
            for i in range(stride):
                left = line[i - bpp] if i >= bpp else 0
                line[i] = (line[i] + ((left + previous[i]) >> 1)) & 0xFF
        elif filter_type == 4:
            for i in range(stride):
                left = line[i - bpp] if i >= bpp else 0
                up_left = previous[i - bpp] if i >= bpp else 0
                line[i] = (line[i] + _paeth(left, previous[i], up_left)) & 0xFF
        elif filter_type != 0:
            raise SignatureImageError(f"Unknown PNG filter type {filter_type}")

        out.extend(line)
        previous = line
    return bytes(out)


def _split_channels(pixels: bytes, channels: int) -> tuple[bytes, bytes]:
    color_channels = channels - 1
    color = bytearray(len(pixels) // channels * color_channels)
    for index in range(color_channels):
        color[index::color_channels] = pixels[index::channels]
    return bytes(color), pixels[color_channels::channels]


def _expand_palette(indices: bytes, palette: bytes, transparency: bytes) -> tuple[bytes, Optional[bytes]]:
    colors = [palette[i:i + 3] for i in range(0, len(palette), 3)]
    if not colors:
        raise SignatureImageError("Palette image without a PLTE chunk")
    try:
        color = b"".join(colors[index] for index in indices)
    except IndexError as exc:
        raise SignatureImageError("Palette index out of range") from exc
    if not transparency:
        return color, None
    alpha = bytes(transparency[index] if index < len(transparency) else 255 for index in indices)
    return color, alpha


def decode_png(data: bytes) -> PdfImage:
    header = None
    palette = b""
    transparency = b""
    compressed = bytearray()
    for kind, body in _chunks(data):
        if kind == b"IHDR":
            header = struct.unpack(">IIBBBBB", body[:13])
        elif kind == b"PLTE":
            palette = body
        elif kind == b"tRNS":
            transparency = body
        elif kind == b"IDAT":
            compressed.extend(body)

    if header is None:
        raise SignatureImageError("Signature image has no header")
    width, height, bit_depth, color_type, _, _, interlace = header
    if color_type not in CHANNELS or bit_depth != 8 or interlace != 0:
        raise SignatureImageError(
            f"Unsupported PNG layout: color type {color_type}, depth {bit_depth}, interlace {interlace}"
        )
    if width == 0 or height == 0:
        raise SignatureImageError("Signature image is empty")

    try:
        raw = zlib.decompress(bytes(compressed))
    except zlib.error as exc:
        raise SignatureImageError(f"Signature image data is corrupt: {exc}") from exc

    channels = CHANNELS[color_type]
    pixels = _unfilter(raw, height, width * channels, channels)

    alpha: Optional[bytes] = None
    if color_type == 3:
        color, alpha = _expand_palette(pixels, palette, transparency)
    elif color_type in (4, 6):
        color, alpha = _split_channels(pixels, channels)
    else:
        color = pixels

    color_space = "/DeviceGray" if color_type in (0, 4) else "/DeviceRGB"
    return PdfImage(
        width=width,
        height=height,
        color_space=color_space,
        data=zlib.compress(color),
        alpha=zlib.compress(alpha) if alpha is not None else None,
    )


def signature_image(value: Optional[str]) -> PdfImage:
    return decode_png(decode_data_url(value))
