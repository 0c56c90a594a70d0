# bootforge

Models of the on-disk and in-memory formats used by an x86_64 bootloader
that boots on both BIOS and UEFI machines, together with the decisions the
boot stages make from them, and a driver that builds the stages with cargo.

## What is inside

- `bootforge.config` – the `BootloaderConfig` a kernel embeds in its
  executable, with `Mappings`, `Mapping`, `FrameBuffer` and `ApiVersion`.
  `BootloaderConfig.serialize()` produces the fixed 124-byte record and
  `BootloaderConfig.deserialize(data)` reads it back, raising `ConfigError`
  on malformed input. `Mapping.dynamic()` and `Mapping.fixed(address)`
  choose how a region is mapped.
- `bootforge.info` – the `BootInfo` handed to the kernel (`BootInfo.new`),
  with `MemoryRegion`, `MemoryRegionKind`, `FrameBuffer`, `FrameBufferInfo`,
  `PixelFormat` and `TlsTemplate`.
- `bootforge.bios_info` – the structures passed between BIOS stages
  (`BiosInfo`, `Region`, `BiosFramebufferInfo`) and E820 memory map
  decoding: `E820MemoryRegion.from_bytes` and `parse_memory_map`, which
  skips empty and zero-length entries and keeps at most 100.
- `bootforge.disk` – `DiskAddressPacket` (packed with `pack()`),
  `split_transfers` to cut a sector load into reads of at most 32 sectors,
  and `DiskAccess`, a sector reader over a disk image given as bytes or a
  binary file object.
- `bootforge.mbr` – MBR partition entries (`get_partition`,
  `parse_partition_table`), `locate_boot_partitions` to find the
  second-stage partition (type `0x20`) and the FAT partition after it, and
  `second_stage_transfers`. Failures of the boot sector are raised as
  `BootFailure`, whose `marker` is the `!` plus code it would print.
- `bootforge.gdt` – `Gdt.protected_mode()` and `Gdt.long_mode()`
  descriptor tables, with `limit()` and `pack()`.
- `bootforge.paging` – `PageTable` and `create_identity_mappings`, which
  identity-maps one gigabyte per level 2 table with 2 MiB pages.
- `bootforge.vesa` – `VbeInfoBlock` and `VesaModeInfo` parsing,
  `read_mode_list`, `select_best_mode` and `encode_teletype` for BIOS
  teletype output.
- `bootforge.build` – `bios_stages`, `install_command`, `objcopy_command`,
  `linker_script_arg`, `build_stage` and `build_all`, which run
  `cargo install` for each stage and convert the BIOS stages to flat
  binaries with objcopy, raising `BuildError` on failure.

## Examples

```python
from bootforge.config import BootloaderConfig, Mapping

config = BootloaderConfig()
config.mappings.physical_memory = Mapping.fixed(0x0000_4000_0000_0000)
raw = config.serialize()
assert len(raw) == 124
assert BootloaderConfig.deserialize(raw) == config
```

Finding the boot partitions of a disk image and reading a sector of the
FAT partition:

```python
from bootforge.disk import DiskAccess
from bootforge.mbr import locate_boot_partitions, parse_partition_table

with open("disk.img", "rb") as image:
    mbr = image.read(512)
    second_stage, fat = locate_boot_partitions(parse_partition_table(mbr[446:510]))
    disk = DiskAccess(image, base_offset=fat.logical_block_address * 512)
    disk.seek(0)
    boot_sector = disk.read_exact_into(512)
```

## Building the stages

```
bootforge-build --out-dir build
```

builds the UEFI bootloader and the four BIOS stages concurrently and prints
a `cargo:rustc-env=NAME=path` line for each artifact. Options:
`--out-dir` (default `$OUT_DIR`), `--manifest-dir` (default
`$CARGO_MANIFEST_DIR` or the current directory), `--version`, `--cargo`,
`--objcopy`, `--no-uefi` and `--no-bios`. See `bootforge-build --help`.

## What it does not do

- It does not read FAT file systems: it cannot find or load files such as
  the kernel, a ramdisk or `boot.json` from a partition image.
- It does not create bootable disk images or run them.
- Nothing talks to firmware or hardware; the structures are decoded from
  and encoded to bytes you supply.

## Tests

```
pip install -e .[test]
pytest
```