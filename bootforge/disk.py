"""Sector-based disk access through BIOS-style disk address packets."""

from __future__ import annotations

import io
import struct
from dataclasses import dataclass
from typing import BinaryIO, List, Union

SECTOR_SIZE = 512
MAX_SECTORS_PER_TRANSFER = 32
_SCRATCH_LEN = 2 * SECTOR_SIZE
_MAX_SEGMENT = 0xFFFF


@dataclass(frozen=True)
class DiskAddressPacket:
    """The 16-byte structure handed to ``INT 0x13, AH=0x42`` (extended read)."""

    start_lba: int
    number_of_sectors: int
    offset: int
    segment: int
    packet_size: int = 0x10

    @classmethod
    def from_lba(
        cls,
        start_lba: int,
        number_of_sectors: int,
        target_offset: int,
        target_segment: int,
    ) -> DiskAddressPacket:
        """A packet that loads sectors from ``start_lba`` to ``segment:offset``."""
        return cls(start_lba, number_of_sectors, target_offset, target_segment)

    @property
    def target_address(self) -> int:
        """The linear memory address the sectors are loaded to."""
        return (self.segment << 4) + self.offset

    def pack(self) -> bytes:
        """The packed little-endian wire form of the packet."""
        return struct.pack(
            "<BBHHHQ",
            self.packet_size,
            0,
            self.number_of_sectors,
            self.offset,
            self.segment,
            self.start_lba,
        )


def split_transfers(
    start_lba: int, sector_count: int, target_addr: int
) -> List[DiskAddressPacket]:
    """Split a load into packets of at most 32 sectors each.

    At least one packet is always produced, as the loader issues its first
    transfer before checking how many sectors remain.
    """
    if sector_count < 0:
        raise ValueError(f"negative sector count: {sector_count}")
    packets: List[DiskAddressPacket] = []
    remaining = sector_count
    lba = start_lba
    addr = target_addr
    while True:
        sectors = min(remaining, MAX_SECTORS_PER_TRANSFER)
        segment = addr >> 4
        if segment > _MAX_SEGMENT:
            raise ValueError(f"target address {addr:#x} is not reachable in real mode")
        packets.append(DiskAddressPacket.from_lba(lba, sectors, addr & 0xF, segment))
        lba += sectors
        remaining -= sectors
        addr += sectors * SECTOR_SIZE
        if remaining == 0:
            return packets


@dataclass
class DiskAccess:
    """Reads whole sectors from a disk image, relative to ``base_offset``."""

    image: Union[BinaryIO, bytes, bytearray]
    base_offset: int = 0
    current_offset: int = 0
    buffer_address: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.image, (bytes, bytearray)):
            self.image = io.BytesIO(bytes(self.image))

    def seek(self, offset: int) -> int:
        """Move to ``offset`` bytes after the base offset and return it."""
        self.current_offset = offset
        return self.current_offset

    def _load(self, packet: DiskAddressPacket) -> bytes:
        wanted = packet.number_of_sectors * SECTOR_SIZE
        self.image.seek(packet.start_lba * SECTOR_SIZE)
        data = self.image.read(wanted)
        if len(data) != wanted:
            raise EOFError(
                f"reading {packet.number_of_sectors} sectors at LBA "
                f"{packet.start_lba} runs past the end of the disk"
            )
        return data

    def read_exact_into(self, length: int) -> bytes:
        """Read ``length`` bytes (a multiple of the sector size) starting at the current sector."""
        if length % SECTOR_SIZE:
            raise ValueError(f"read length {length} is not a multiple of {SECTOR_SIZE}")
        if length == 0:
            return b""
        position = self.base_offset + self.current_offset
        start_lba = position // SECTOR_SIZE
        end_lba = (position + length - 1) // SECTOR_SIZE
        packets = split_transfers(start_lba, end_lba + 1 - start_lba, self.buffer_address)
        data = b"".join(self._load(packet) for packet in packets)
        self.current_offset += length
        return data[:length]

    def read_exact(self, length: int) -> bytes:
        """Read ``length`` bytes at the current, possibly unaligned, offset."""
        sector_offset = self.current_offset % SECTOR_SIZE
        if sector_offset + length > _SCRATCH_LEN:
            raise ValueError(
                f"cannot read {length} bytes at sector offset {sector_offset}: "
                f"scratch buffer holds {_SCRATCH_LEN} bytes"
            )
        scratch = self.read_exact_into(_SCRATCH_LEN)
        return scratch[sector_offset:sector_offset + length]