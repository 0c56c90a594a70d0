import struct

import pytest

from bootforge.info import PixelFormat
from bootforge.vesa import (
    VbeInfoBlock,
    VesaModeInfo,
    encode_teletype,
    read_mode_list,
    select_best_mode,
)


def mode_block(
    attributes=0x9B,
    scanline=4096,
    width=1024,
    height=768,
    bpp=32,
    memory_model=6,
    positions=(16, 8, 0),
    framebuffer=0xFD000000,
):
    data = bytearray(256)
    struct.pack_into("<H", data, 0, attributes)
    struct.pack_into("<HHH", data, 16, scanline, width, height)
    data[25] = bpp
    data[27] = memory_model
    data[32], data[34], data[36] = positions
    struct.pack_into("<I", data, 40, framebuffer)
    return bytes(data)


def make_mode(width, height, attributes=0x90, memory_model=6, fmt=None, mode=0x100):
    return VesaModeInfo(
        mode=mode,
        width=width,
        height=height,
        framebuffer_start=0,
        bytes_per_scanline=width * 4,
        bytes_per_pixel=4,
        pixel_format=fmt or PixelFormat.bgr(),
        memory_model=memory_model,
        attributes=attributes,
    )


def test_parse_mode_info_fields():
    info = VesaModeInfo.parse(0x118, mode_block())
    assert info.mode == 0x118
    assert (info.width, info.height) == (1024, 768)
    assert info.bytes_per_scanline == 4096
    assert info.framebuffer_start == 0xFD000000
    assert info.memory_model == 6
    assert info.attributes == 0x9B
    assert info.pixel_format == PixelFormat.bgr()


def test_bytes_per_pixel_from_bits():
    info = VesaModeInfo.parse(1, mode_block(bpp=24))
    assert info.bytes_per_pixel == 3


@pytest.mark.parametrize(
    "positions, expected",
    [
        ((0, 8, 16), PixelFormat.rgb()),
        ((16, 8, 0), PixelFormat.bgr()),
        ((11, 5, 0), PixelFormat.unknown(11, 5, 0)),
    ],
)
def test_pixel_format_detection(positions, expected):
    info = VesaModeInfo.parse(1, mode_block(positions=positions))
    assert info.pixel_format == expected


def test_short_mode_info_rejected():
    with pytest.raises(ValueError):
        VesaModeInfo.parse(1, bytes(100))


def test_info_block_parse_and_mode_address():
    data = bytearray(512)
    struct.pack_into("<4sHIIIH", data, 0, b"VESA", 0x0300, 0, 0, 0x1234_0010, 64)
    block = VbeInfoBlock.parse(data)
    assert block.signature == b"VESA"
    assert block.version == 0x0300
    assert block.total_memory == 64
    assert len(block.oem) == 512 - 0x14
    assert block.video_mode_address() == 0x12350


def test_short_info_block_rejected():
    with pytest.raises(ValueError):
        VbeInfoBlock.parse(bytes(20))


def test_read_mode_list():
    memory = bytes(6) + struct.pack("<HHHH", 0x100, 0x101, 0x118, 0xFFFF)
    assert read_mode_list(memory, 6) == [0x100, 0x101, 0x118]


def test_read_empty_mode_list():
    assert read_mode_list(struct.pack("<H", 0xFFFF), 0) == []


def test_mode_list_without_terminator_rejected():
    with pytest.raises(ValueError):
        read_mode_list(struct.pack("<HH", 0x100, 0x101), 0)


def test_select_largest_fitting_mode():
    modes = [make_mode(640, 480), make_mode(1280, 720), make_mode(1024, 768), make_mode(1920, 1080)]
    best = select_best_mode(modes, 1280, 720)
    assert (best.width, best.height) == (1280, 720)


def test_select_taller_mode_at_same_width():
    modes = [make_mode(1024, 600), make_mode(1024, 700)]
    assert select_best_mode(modes, 1280, 720).height == 700


def test_filters_unsupported_modes():
    modes = [
        make_mode(800, 600, attributes=0x10),
        make_mode(800, 600, memory_model=3),
        make_mode(640, 480),
    ]
    assert select_best_mode(modes, 1280, 720).width == 640


def test_unknown_format_is_replaced():
    modes = [
        make_mode(1280, 720, fmt=PixelFormat.unknown(1, 2, 3)),
        make_mode(640, 480),
    ]
    assert select_best_mode(modes, 1280, 720).width == 640


def test_no_suitable_mode():
    assert select_best_mode([make_mode(1920, 1080)], 1280, 720) is None


def test_teletype_newline_gets_carriage_return():
    assert encode_teletype(" -> SECOND STAGE\n") == b" -> SECOND STAGE\n\r"


def test_teletype_replaces_non_ascii():
    assert encode_teletype("a\u00e9b") == b"aXb"