"""MBR partition table parsing and the boot-sector loading plan."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

from bootforge.disk import DiskAddressPacket, split_transfers

ENTRY_SIZE = 16
MAX_ENTRIES = 4
BOOTABLE_FLAG = 0x80

BOOTLOADER_SECOND_STAGE_PARTITION_TYPE = 0x20
"""Partition type used to store the second bootloader stage."""

FAT12_PARTITION_TYPES = frozenset({0x01})
FAT16_PARTITION_TYPES = frozenset({0x04, 0x06, 0x0E})
FAT32_PARTITION_TYPES = frozenset({0x0B, 0x0C, 0x1B, 0x1C})
FAT_PARTITION_TYPES = FAT12_PARTITION_TYPES | FAT16_PARTITION_TYPES | FAT32_PARTITION_TYPES


class BootFailure(RuntimeError):
    """The boot sector gave up; ``code`` is the single character it reports."""

    def __init__(self, code: Union[int, str]) -> None:
        if isinstance(code, str):
            if len(code) != 1:
                raise ValueError(f"failure code must be one character: {code!r}")
            code = ord(code)
        if not 0 <= code <= 0xFF:
            raise ValueError(f"failure code out of range: {code}")
        self.code = code
        super().__init__(f"boot failure {chr(code)!r}")

    @property
    def marker(self) -> bytes:
        """What the boot sector prints before halting: ``!`` and the code."""
        return b"!" + bytes([self.code])


@dataclass(frozen=True)
class PartitionTableEntry:
    """One entry of an MBR partition table."""

    bootable: bool
    partition_type: int
    logical_block_address: int
    sector_count: int

    @property
    def is_fat(self) -> bool:
        """Whether the partition type tags a FAT12, FAT16 or FAT32 volume."""
        return self.partition_type in FAT_PARTITION_TYPES


def get_partition(partitions_raw: bytes, index: int) -> PartitionTableEntry:
    """Decode the partition entry at ``index``, failing like the boot sector does."""
    raw = bytes(partitions_raw)
    offset = index * ENTRY_SIZE
    if offset > len(raw):
        raise BootFailure("c")
    buffer = raw[offset:]
    if not buffer:
        raise BootFailure("d")
    bootable = buffer[0] == BOOTABLE_FLAG
    if len(buffer) < 5:
        raise BootFailure("e")
    partition_type = buffer[4]
    if len(buffer) < 12:
        raise BootFailure("e")
    (lba,) = struct.unpack_from("<I", buffer, 8)
    if len(buffer) < 16:
        raise BootFailure("f")
    (length,) = struct.unpack_from("<I", buffer, 12)
    return PartitionTableEntry(bootable, partition_type, lba, length)


def parse_partition_table(raw: bytes) -> List[PartitionTableEntry]:
    """Decode all four primary partition entries."""
    raw = bytes(raw)
    if len(raw) < ENTRY_SIZE * MAX_ENTRIES:
        raise ValueError(
            f"partition table needs {ENTRY_SIZE * MAX_ENTRIES} bytes, got {len(raw)}"
        )
    return [get_partition(raw, index) for index in range(MAX_ENTRIES)]


def locate_boot_partitions(
    entries: Sequence[PartitionTableEntry],
) -> Tuple[PartitionTableEntry, PartitionTableEntry]:
    """Find the second-stage partition and the FAT partition that directly follows it."""
    position = next(
        (
            pos
            for pos, entry in enumerate(entries)
            if entry.partition_type == BOOTLOADER_SECOND_STAGE_PARTITION_TYPE
        ),
        None,
    )
    if position is None:
        raise ValueError("no second stage partition found")
    if position + 1 >= len(entries):
        raise ValueError("second stage partition is not followed by a FAT partition")
    fat_partition = entries[position + 1]
    if not fat_partition.is_fat:
        raise ValueError(
            f"partition after the second stage has type "
            f"{fat_partition.partition_type:#04x}, not FAT"
        )
    return entries[position], fat_partition


def second_stage_transfers(
    entry: PartitionTableEntry, entry_point_address: int
) -> List[DiskAddressPacket]:
    """The disk reads that load the second-stage partition to its entry point."""
    try:
        return split_transfers(
            entry.logical_block_address, entry.sector_count, entry_point_address
        )
    except ValueError as exc:
        raise BootFailure("a") from exc