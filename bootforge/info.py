"""Boot information handed from the bootloader to the kernel."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from bootforge.config import ApiVersion

_U8_MAX = 0xFF
_U32_MAX = 0xFFFF_FFFF


def _check_range(value: int, limit: int, what: str) -> int:
    if not 0 <= value <= limit:
        raise ValueError(f"{what} out of range: {value}")
    return value


@dataclass(frozen=True)
class MemoryRegionKind:
    """The type of a physical memory region; firmware-specific kinds carry a tag."""

    variant: str
    tag: Optional[int] = None

    USABLE = "usable"
    BOOTLOADER = "bootloader"
    UNKNOWN_UEFI = "unknown_uefi"
    UNKNOWN_BIOS = "unknown_bios"

    @classmethod
    def usable(cls) -> MemoryRegionKind:
        """Unused conventional memory, free for the kernel."""
        return cls(cls.USABLE)

    @classmethod
    def bootloader(cls) -> MemoryRegionKind:
        """Memory used by the bootloader; the kernel must not reuse it."""
        return cls(cls.BOOTLOADER)

    @classmethod
    def unknown_uefi(cls, tag: int) -> MemoryRegionKind:
        """A region of an unknown UEFI memory type."""
        return cls(cls.UNKNOWN_UEFI, _check_range(tag, _U32_MAX, "UEFI memory type"))

    @classmethod
    def unknown_bios(cls, tag: int) -> MemoryRegionKind:
        """A region of an unknown BIOS (E820) memory type."""
        return cls(cls.UNKNOWN_BIOS, _check_range(tag, _U32_MAX, "BIOS memory type"))

    @property
    def is_usable(self) -> bool:
        return self.variant == self.USABLE


@dataclass(frozen=True)
class MemoryRegion:
    """A physical memory region; ``end`` is exclusive."""

    start: int
    end: int
    kind: MemoryRegionKind

    @classmethod
    def empty(cls) -> MemoryRegion:
        """A zero-length region marked as bootloader memory."""
        return cls(0, 0, MemoryRegionKind.bootloader())

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class PixelFormat:
    """Colour layout of a framebuffer pixel."""

    variant: str
    red_position: Optional[int] = None
    green_position: Optional[int] = None
    blue_position: Optional[int] = None

    RGB = "rgb"
    BGR = "bgr"
    U8 = "u8"
    UNKNOWN = "unknown"

    @classmethod
    def rgb(cls) -> PixelFormat:
        """Red byte, then green, then blue."""
        return cls(cls.RGB)

    @classmethod
    def bgr(cls) -> PixelFormat:
        """Blue byte, then green, then red."""
        return cls(cls.BGR)

    @classmethod
    def u8(cls) -> PixelFormat:
        """A single grayscale byte."""
        return cls(cls.U8)

    @classmethod
    def unknown(
        cls, red_position: int, green_position: int, blue_position: int
    ) -> PixelFormat:
        """An unrecognised format, described by the bit offset of each colour."""
        return cls(
            cls.UNKNOWN,
            _check_range(red_position, _U8_MAX, "red position"),
            _check_range(green_position, _U8_MAX, "green position"),
            _check_range(blue_position, _U8_MAX, "blue position"),
        )

    def is_unknown(self) -> bool:
        """Whether this format is not one of the known layouts."""
        return self.variant == self.UNKNOWN


@dataclass(frozen=True)
class FrameBufferInfo:
    """Layout and pixel format of a framebuffer."""

    byte_len: int
    width: int
    height: int
    pixel_format: PixelFormat
    bytes_per_pixel: int
    stride: int


@dataclass
class FrameBuffer:
    """A pixel framebuffer located at ``buffer_start`` and backed by ``memory``."""

    buffer_start: int
    info: FrameBufferInfo
    memory: bytearray = field(default_factory=bytearray)

    def __post_init__(self) -> None:
        if not self.memory:
            self.memory = bytearray(self.info.byte_len)
        elif len(self.memory) < self.info.byte_len:
            raise ValueError(
                f"backing memory holds {len(self.memory)} bytes, "
                f"framebuffer needs {self.info.byte_len}"
            )

    def buffer(self) -> memoryview:
        """The raw, writable bytes of the framebuffer."""
        return memoryview(self.memory)[: self.info.byte_len]


@dataclass(frozen=True)
class TlsTemplate:
    """The kernel's thread-local storage template."""

    start_addr: int
    file_size: int
    mem_size: int


@dataclass
class BootInfo:
    """Information the bootloader passes to the kernel's entry point."""

    api_version: ApiVersion
    memory_regions: List[MemoryRegion]
    framebuffer: Optional[FrameBuffer] = None
    physical_memory_offset: Optional[int] = None
    recursive_index: Optional[int] = None
    rsdp_addr: Optional[int] = None
    tls_template: Optional[TlsTemplate] = None
    ramdisk_addr: Optional[int] = None
    ramdisk_len: int = 0
    test_sentinel: int = 0

    @classmethod
    def new(cls, memory_regions) -> BootInfo:
        """Boot info with the given memory map and default values elsewhere."""
        return cls(
            api_version=ApiVersion.new_default(),
            memory_regions=list(memory_regions),
        )