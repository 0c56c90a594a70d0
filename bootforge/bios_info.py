"""Information passed between the BIOS boot stages, and the E820 memory map."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterable, List

from bootforge.info import MemoryRegionKind, PixelFormat

MAX_MEMORY_MAP_ENTRIES = 100
_E820_USABLE = 1


@dataclass(frozen=True)
class Region:
    """A contiguous physical memory range."""

    start: int
    length: int


@dataclass(frozen=True)
class BiosFramebufferInfo:
    """The framebuffer set up through VESA."""

    region: Region
    width: int
    height: int
    bytes_per_pixel: int
    stride: int
    pixel_format: PixelFormat


@dataclass
class BiosInfo:
    """What the second stage loaded and where, handed to the later stages."""

    stage_4: Region
    kernel: Region
    ramdisk: Region
    config_file: Region
    last_used_addr: int
    framebuffer: BiosFramebufferInfo
    memory_map_addr: int
    memory_map_len: int


@dataclass(frozen=True)
class E820MemoryRegion:
    """A physical memory region reported by the BIOS ``INT 0x15, EAX=0xE820`` call."""

    start_addr: int
    length: int
    region_type: int
    acpi_extended_attributes: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> E820MemoryRegion:
        """Decode one E820 entry; the ACPI attributes are 0 unless exactly 4 bytes follow."""
        data = bytes(data)
        if len(data) < 20:
            raise ValueError(f"E820 entry too short: {len(data)} bytes")
        start, length, region_type = struct.unpack_from("<QQI", data)
        rest = data[20:]
        acpi = int.from_bytes(rest, "little") if len(rest) == 4 else 0
        return cls(start, length, region_type, acpi)

    @property
    def end(self) -> int:
        return self.start_addr + self.length

    def kind(self) -> MemoryRegionKind:
        """Type 1 is usable memory; every other type is reported as unknown BIOS memory."""
        if self.region_type == _E820_USABLE:
            return MemoryRegionKind.usable()
        return MemoryRegionKind.unknown_bios(self.region_type)

    def usable_after_bootloader_exit(self) -> bool:
        """Whether the kernel may use this region once the bootloader is gone."""
        return self.kind().is_usable


def parse_memory_map(entries: Iterable[bytes]) -> List[E820MemoryRegion]:
    """Decode raw E820 entries in order, skipping empty and zero-length ones."""
    regions: List[E820MemoryRegion] = []
    for raw in entries:
        if not raw:
            continue
        region = E820MemoryRegion.from_bytes(raw)
        if region.length == 0:
            continue
        if len(regions) >= MAX_MEMORY_MAP_ENTRIES:
            raise ValueError(
                f"memory map has more than {MAX_MEMORY_MAP_ENTRIES} entries"
            )
        regions.append(region)
    return regions