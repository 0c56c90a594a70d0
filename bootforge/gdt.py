"""Global descriptor tables for the protected-mode and long-mode switches."""

from __future__ import annotations

import struct
from dataclasses import dataclass

_ENTRY_SIZE = 8


@dataclass(frozen=True)
class Gdt:
    """A three-entry GDT: the null descriptor, one code and one data segment."""

    zero: int
    code: int
    data: int

    @classmethod
    def protected_mode(cls) -> Gdt:
        """Flat 4 GiB 32-bit code and data segments."""
        limit = (0xF << 48) | 0xFFFF
        present = 1 << 47
        user_segment = 1 << 44
        read_write = 1 << 41
        access_common = present | user_segment | read_write
        protected = 1 << 54
        granularity = 1 << 55
        base_flags = protected | granularity | access_common | limit
        executable = 1 << 43
        return cls(zero=0, code=base_flags | executable, data=base_flags)

    @classmethod
    def long_mode(cls) -> Gdt:
        """64-bit code and data segments."""
        common = (1 << 44) | (1 << 47) | (1 << 41) | (1 << 40)
        return cls(zero=0, code=common | (1 << 43) | (1 << 53), data=common)

    def limit(self) -> int:
        """The table limit loaded by ``lgdt``: its size in bytes minus one."""
        return 3 * _ENTRY_SIZE - 1

    def pack(self) -> bytes:
        """The table as it lies in memory."""
        return struct.pack("<QQQ", self.zero, self.code, self.data)