"""Identity-mapped page tables set up before entering long mode."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

ENTRIES_PER_TABLE = 512
PAGE_SIZE = 4096
HUGE_PAGE_SIZE = 2 * 1024 * 1024
GIGABYTE = 1024 * 1024 * 1024

PRESENT = 1 << 0
WRITABLE = 1 << 1
HUGE_PAGE = 1 << 7
COMMON_FLAGS = PRESENT | WRITABLE


def _zero_entries() -> List[int]:
    return [0] * ENTRIES_PER_TABLE


@dataclass
class PageTable:
    """A single page table of 512 64-bit entries."""

    entries: List[int] = field(default_factory=_zero_entries)

    def __post_init__(self) -> None:
        if len(self.entries) != ENTRIES_PER_TABLE:
            raise ValueError(
                f"a page table has {ENTRIES_PER_TABLE} entries, got {len(self.entries)}"
            )

    @classmethod
    def empty(cls) -> PageTable:
        """A table with every entry cleared."""
        return cls()


def _check_table_address(address: int, what: str) -> int:
    if address < 0 or address % PAGE_SIZE:
        raise ValueError(f"{what} address {address:#x} is not page aligned")
    return address


def create_identity_mappings(
    level_3_address: int, level_2_addresses: Sequence[int]
) -> Tuple[PageTable, PageTable, List[PageTable]]:
    """Build tables that identity-map one gigabyte per level 2 table with 2 MiB pages.

    Returns the level 4 table, the level 3 table and the level 2 tables; the
    given addresses are where the level 3 and level 2 tables lie in memory.
    """
    _check_table_address(level_3_address, "level 3 table")
    if len(level_2_addresses) > ENTRIES_PER_TABLE:
        raise ValueError(
            f"at most {ENTRIES_PER_TABLE} level 2 tables fit in one level 3 table"
        )

    level_4 = PageTable.empty()
    level_3 = PageTable.empty()
    level_4.entries[0] = level_3_address | COMMON_FLAGS

    level_2_tables: List[PageTable] = []
    for i, l2_address in enumerate(level_2_addresses):
        _check_table_address(l2_address, "level 2 table")
        level_3.entries[i] = l2_address | COMMON_FLAGS
        offset = i * GIGABYTE
        level_2_tables.append(
            PageTable(
                [
                    (offset + j * HUGE_PAGE_SIZE) | COMMON_FLAGS | HUGE_PAGE
                    for j in range(ENTRIES_PER_TABLE)
                ]
            )
        )
    return level_4, level_3, level_2_tables