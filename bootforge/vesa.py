"""VESA BIOS extension structures, video mode selection and teletype text."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterable, List, Optional

from bootforge.info import PixelFormat

VBE_INFO_BLOCK_LEN = 512
VBE_MODE_INFO_LEN = 256
MODE_LIST_END = 0xFFFF

_GRAPHICS_WITH_LINEAR_FRAMEBUFFER = 0x90
_SUPPORTED_MEMORY_MODELS = (
    4,  # packed pixel graphics
    6,  # direct colour
)


@dataclass(frozen=True)
class VbeInfoBlock:
    """The controller information returned by VBE function 0x4F00."""

    signature: bytes
    version: int
    oem_string_ptr: int
    capabilities: int
    video_mode_ptr: int
    total_memory: int
    oem: bytes

    @classmethod
    def parse(cls, data: bytes) -> VbeInfoBlock:
        """Decode the 512-byte block."""
        data = bytes(data)
        if len(data) < VBE_INFO_BLOCK_LEN:
            raise ValueError(
                f"VBE info block needs {VBE_INFO_BLOCK_LEN} bytes, got {len(data)}"
            )
        signature, version, oem_ptr, caps, mode_ptr, total = struct.unpack_from(
            "<4sHIIIH", data
        )
        return cls(signature, version, oem_ptr, caps, mode_ptr, total, data[20:VBE_INFO_BLOCK_LEN])

    def video_mode_address(self) -> int:
        """The linear address of the mode list, from its segment:offset pointer."""
        segment = self.video_mode_ptr >> 16
        offset = self.video_mode_ptr & 0xFFFF
        return (segment << 4) + offset


def _pixel_format(red: int, green: int, blue: int) -> PixelFormat:
    if (red, green, blue) == (0, 8, 16):
        return PixelFormat.rgb()
    if (red, green, blue) == (16, 8, 0):
        return PixelFormat.bgr()
    return PixelFormat.unknown(red, green, blue)


@dataclass(frozen=True)
class VesaModeInfo:
    """The parts of a VBE mode information block the loader needs."""

    mode: int
    width: int
    height: int
    framebuffer_start: int
    bytes_per_scanline: int
    bytes_per_pixel: int
    pixel_format: PixelFormat
    memory_model: int
    attributes: int

    @classmethod
    def parse(cls, mode: int, data: bytes) -> VesaModeInfo:
        """Decode the 256-byte block returned by VBE function 0x4F01 for ``mode``."""
        data = bytes(data)
        if len(data) < VBE_MODE_INFO_LEN:
            raise ValueError(
                f"VBE mode info needs {VBE_MODE_INFO_LEN} bytes, got {len(data)}"
            )
        (attributes,) = struct.unpack_from("<H", data, 0)
        bytes_per_scanline, width, height = struct.unpack_from("<HHH", data, 16)
        bits_per_pixel = data[25]
        memory_model = data[27]
        red_position, green_position, blue_position = data[32], data[34], data[36]
        (framebuffer,) = struct.unpack_from("<I", data, 40)
        return cls(
            mode=mode,
            width=width,
            height=height,
            framebuffer_start=framebuffer,
            bytes_per_scanline=bytes_per_scanline,
            bytes_per_pixel=bits_per_pixel // 8,
            pixel_format=_pixel_format(red_position, green_position, blue_position),
            memory_model=memory_model,
            attributes=attributes,
        )


def read_mode_list(memory: bytes, address: int) -> List[int]:
    """Read the 0xFFFF-terminated list of 16-bit mode numbers at ``address``."""
    modes: List[int] = []
    pos = address
    while True:
        if pos < 0 or pos + 2 > len(memory):
            raise ValueError(f"mode list at {address:#x} has no terminator")
        (mode,) = struct.unpack_from("<H", memory, pos)
        if mode == MODE_LIST_END:
            return modes
        modes.append(mode)
        pos += 2


def select_best_mode(
    modes: Iterable[VesaModeInfo], max_width: int, max_height: int
) -> Optional[VesaModeInfo]:
    """Pick the widest, then tallest, supported graphics mode within the limits.

    Modes with a known pixel format displace one with an unknown format.
    """
    best: Optional[VesaModeInfo] = None
    for info in modes:
        if info.attributes & _GRAPHICS_WITH_LINEAR_FRAMEBUFFER != _GRAPHICS_WITH_LINEAR_FRAMEBUFFER:
            continue
        if info.memory_model not in _SUPPORTED_MEMORY_MODELS:
            continue
        if info.width > max_width or info.height > max_height:
            continue
        if (
            best is None
            or best.pixel_format.is_unknown()
            or best.width < info.width
            or (best.width == info.width and best.height < info.height)
        ):
            best = info
    return best


def encode_teletype(text: str) -> bytes:
    """The bytes sent to the BIOS teletype output for ``text``.

    Newlines are followed by a carriage return; non-ASCII characters become ``X``.
    """
    out = bytearray()
    for char in text:
        if char.isascii():
            out.append(ord(char))
            if char == "\n":
                out.append(ord("\r"))
        else:
            out.append(ord("X"))
    return bytes(out)