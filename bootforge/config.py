"""Kernel-side bootloader configuration and its fixed binary encoding."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Optional

VERSION_MAJOR = 0
VERSION_MINOR = 11
VERSION_PATCH = 3
VERSION_PRE = False

_U16_MAX = 0xFFFF
_U64_MAX = 0xFFFF_FFFF_FFFF_FFFF


class ConfigError(ValueError):
    """Raised when a configuration cannot be encoded or decoded."""


def _u64(value: int, what: str) -> bytes:
    if not 0 <= value <= _U64_MAX:
        raise ConfigError(f"{what} does not fit in 64 bits: {value:#x}")
    return value.to_bytes(8, "little")


def _u16(value: int, what: str) -> bytes:
    if not 0 <= value <= _U16_MAX:
        raise ConfigError(f"{what} does not fit in 16 bits: {value:#x}")
    return value.to_bytes(2, "little")


def _optional_u64(value: Optional[int], what: str) -> bytes:
    if value is None:
        return bytes(9)
    return b"\x01" + _u64(value, what)


def _decode_optional_u64(flag: int, payload: bytes, error: str) -> Optional[int]:
    if flag == 0 and payload == bytes(8):
        return None
    if flag == 1:
        return int.from_bytes(payload, "little")
    raise ConfigError(error)


class _Reader:
    """Consumes a byte string from the front in fixed-size pieces."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def take(self, n: int) -> bytes:
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def byte(self) -> int:
        return self.take(1)[0]

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos


@dataclass(frozen=True)
class ApiVersion:
    """A semver-compatible API version; the pre-release text is reduced to a flag."""

    version_major: int
    version_minor: int
    version_patch: int
    pre_release: bool

    @classmethod
    def new_default(cls) -> ApiVersion:
        """The version of this package's configuration format."""
        return cls(VERSION_MAJOR, VERSION_MINOR, VERSION_PATCH, VERSION_PRE)

    def _serialize(self) -> bytes:
        return (
            _u16(self.version_major, "major version")
            + _u16(self.version_minor, "minor version")
            + _u16(self.version_patch, "patch version")
            + bytes([1 if self.pre_release else 0])
        )


@dataclass(frozen=True)
class Mapping:
    """Where a memory region is mapped: dynamically (address None) or at a fixed address."""

    address: Optional[int] = None

    @classmethod
    def dynamic(cls) -> Mapping:
        """Look for an unused virtual memory region at runtime."""
        return cls(None)

    @classmethod
    def fixed(cls, address: int) -> Mapping:
        """Map the region at the given (page-aligned) virtual address."""
        return cls(address)

    @property
    def is_dynamic(self) -> bool:
        return self.address is None

    def serialize(self) -> bytes:
        """Encode as 9 bytes: a variant tag followed by a little-endian address."""
        if self.address is None:
            return bytes(9)
        return b"\x01" + _u64(self.address, "mapping address")

    @classmethod
    def deserialize(cls, data: bytes) -> Mapping:
        """Decode the 9-byte form produced by :meth:`serialize`."""
        data = bytes(data)
        if len(data) != 9:
            raise ConfigError("invalid mapping format")
        variant, addr = data[0], data[1:]
        if variant == 0 and addr == bytes(8):
            return cls.dynamic()
        if variant == 1:
            return cls.fixed(int.from_bytes(addr, "little"))
        raise ConfigError("invalid mapping value")


def _optional_mapping(mapping: Optional[Mapping]) -> bytes:
    if mapping is None:
        return bytes(10)
    return b"\x01" + mapping.serialize()


def _decode_optional_mapping(flag: int, payload: bytes, error: str) -> Optional[Mapping]:
    if flag == 0 and payload == bytes(9):
        return None
    if flag == 1:
        return Mapping.deserialize(payload)
    raise ConfigError(error)


@dataclass
class Mappings:
    """Virtual memory mappings the bootloader sets up for the kernel."""

    kernel_stack: Mapping = field(default_factory=Mapping.dynamic)
    boot_info: Mapping = field(default_factory=Mapping.dynamic)
    framebuffer: Mapping = field(default_factory=Mapping.dynamic)
    physical_memory: Optional[Mapping] = None
    page_table_recursive: Optional[Mapping] = None
    aslr: bool = False
    dynamic_range_start: Optional[int] = None
    dynamic_range_end: Optional[int] = None
    ramdisk_memory: Mapping = field(default_factory=Mapping.dynamic)


@dataclass
class FrameBuffer:
    """Minimum frame buffer dimensions requested from the bootloader."""

    minimum_framebuffer_height: Optional[int] = None
    minimum_framebuffer_width: Optional[int] = None


@dataclass
class BootloaderConfig:
    """Configuration embedded in the kernel and read back by the bootloader."""

    UUID = bytes(
        [
            0x74, 0x3C, 0xA9, 0x61, 0x09, 0x36, 0x46, 0xA0,
            0xBB, 0x55, 0x5C, 0x15, 0x89, 0x15, 0x25, 0x3D,
        ]
    )
    SERIALIZED_LEN = 124

    mappings: Mappings = field(default_factory=Mappings)
    kernel_stack_size: int = 80 * 1024
    frame_buffer: FrameBuffer = field(default_factory=FrameBuffer)
    version: ApiVersion = field(default_factory=ApiVersion.new_default)

    def serialize(self) -> bytes:
        """Encode to the fixed 124-byte layout."""
        m = self.mappings
        fb = self.frame_buffer
        out = b"".join(
            [
                self.UUID,
                self.version._serialize(),
                _u64(self.kernel_stack_size, "kernel stack size"),
                m.kernel_stack.serialize(),
                m.boot_info.serialize(),
                m.framebuffer.serialize(),
                _optional_mapping(m.physical_memory),
                _optional_mapping(m.page_table_recursive),
                bytes([1 if m.aslr else 0]),
                _optional_u64(m.dynamic_range_start, "dynamic range start"),
                _optional_u64(m.dynamic_range_end, "dynamic range end"),
                m.ramdisk_memory.serialize(),
                _optional_u64(fb.minimum_framebuffer_height, "minimum framebuffer height"),
                _optional_u64(fb.minimum_framebuffer_width, "minimum framebuffer width"),
            ]
        )
        assert len(out) == self.SERIALIZED_LEN
        return out

    @classmethod
    def deserialize(cls, data: bytes) -> BootloaderConfig:
        """Decode bytes produced by :meth:`serialize`, raising ConfigError if invalid."""
        data = bytes(data)
        if len(data) != cls.SERIALIZED_LEN:
            raise ConfigError("invalid len")
        r = _Reader(data)

        if r.take(16) != cls.UUID:
            raise ConfigError("invalid UUID")

        major, minor, patch = struct.unpack("<HHH", r.take(6))
        pre = r.byte()
        if pre not in (0, 1):
            raise ConfigError("invalid pre version")
        version = ApiVersion(major, minor, patch, pre == 1)

        kernel_stack_size = int.from_bytes(r.take(8), "little")

        kernel_stack = r.take(9)
        boot_info = r.take(9)
        framebuffer = r.take(9)
        phys_some, phys = r.byte(), r.take(9)
        recursive_some, recursive = r.byte(), r.take(9)
        aslr = r.byte()
        start_some, start = r.byte(), r.take(8)
        end_some, end = r.byte(), r.take(8)
        ramdisk = r.take(9)

        kernel_stack_mapping = Mapping.deserialize(kernel_stack)
        boot_info_mapping = Mapping.deserialize(boot_info)
        framebuffer_mapping = Mapping.deserialize(framebuffer)
        physical_memory = _decode_optional_mapping(
            phys_some, phys, "invalid phys memory value"
        )
        page_table_recursive = _decode_optional_mapping(
            recursive_some, recursive, "invalid page table recursive value"
        )
        if aslr not in (0, 1):
            raise ConfigError("invalid aslr value")
        dynamic_range_start = _decode_optional_u64(
            start_some, start, "invalid dynamic range start value"
        )
        dynamic_range_end = _decode_optional_u64(
            end_some, end, "invalid dynamic range end value"
        )
        ramdisk_memory = Mapping.deserialize(ramdisk)

        mappings = Mappings(
            kernel_stack=kernel_stack_mapping,
            boot_info=boot_info_mapping,
            framebuffer=framebuffer_mapping,
            physical_memory=physical_memory,
            page_table_recursive=page_table_recursive,
            aslr=aslr == 1,
            dynamic_range_start=dynamic_range_start,
            dynamic_range_end=dynamic_range_end,
            ramdisk_memory=ramdisk_memory,
        )

        height_some, height = r.byte(), r.take(8)
        width_some, width = r.byte(), r.take(8)
        frame_buffer = FrameBuffer(
            minimum_framebuffer_height=_decode_optional_u64(
                height_some, height, "minimum_framebuffer_height invalid"
            ),
            minimum_framebuffer_width=_decode_optional_u64(
                width_some, width, "minimum_framebuffer_width invalid"
            ),
        )

        if r.remaining:
            raise ConfigError("unexpected rest")

        return cls(
            mappings=mappings,
            kernel_stack_size=kernel_stack_size,
            frame_buffer=frame_buffer,
            version=version,
        )