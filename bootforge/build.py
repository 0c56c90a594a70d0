"""Builds the bootloader stages with cargo and converts the BIOS ones to flat binaries."""

from __future__ import annotations

import argparse
import os
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

BOOTLOADER_VERSION = "0.11.3"
DEFAULT_OBJCOPY = "llvm-objcopy"

_PathLike = Union[str, "os.PathLike[str]"]
_REMOVED_ENV = ("RUSTFLAGS", "CARGO_ENCODED_RUSTFLAGS")
_WORKSPACE_WRAPPER_ENV = "RUSTC_WORKSPACE_WRAPPER"
_BUILD_STD = ("-Zbuild-std=core", "-Zbuild-std-features=compiler-builtins-mem")


class BuildError(RuntimeError):
    """A stage could not be built or converted."""


@dataclass(frozen=True)
class StageSpec:
    """How one bootloader stage is installed with cargo and where its result lands."""

    crate: str
    description: str
    env_var: str
    target: str
    local_path: Tuple[str, ...]
    profile: Optional[str] = None
    artifact: Optional[str] = None
    extra_watch: Tuple[Tuple[str, ...], ...] = ()
    linker_script: Optional[str] = None
    flat_binary: bool = True
    hide_workspace_wrapper: bool = True

    @property
    def artifact_name(self) -> str:
        """The file name cargo installs into ``bin``."""
        return self.artifact or self.crate


UEFI_STAGE = StageSpec(
    crate="bootloader-x86_64-uefi",
    description="uefi bootloader",
    env_var="UEFI_BOOTLOADER_PATH",
    target="x86_64-unknown-uefi",
    local_path=("uefi",),
    artifact="bootloader-x86_64-uefi.efi",
    extra_watch=(("common",),),
    flat_binary=False,
    hide_workspace_wrapper=False,
)


def bios_stages() -> List[StageSpec]:
    """The four BIOS stages, in boot order."""
    return [
        StageSpec(
            crate="bootloader-x86_64-bios-boot-sector",
            description="bios boot sector",
            env_var="BIOS_BOOT_SECTOR_PATH",
            target="i386-code16-boot-sector.json",
            local_path=("bios", "boot_sector"),
            profile="stage-1",
            linker_script="boot-sector-link.ld",
        ),
        StageSpec(
            crate="bootloader-x86_64-bios-stage-2",
            description="bios second stage",
            env_var="BIOS_STAGE_2_PATH",
            target="i386-code16-stage-2.json",
            local_path=("bios", "stage-2"),
            profile="stage-2",
            extra_watch=(("bios", "common"),),
            linker_script="stage-2-link.ld",
        ),
        StageSpec(
            crate="bootloader-x86_64-bios-stage-3",
            description="bios stage-3",
            env_var="BIOS_STAGE_3_PATH",
            target="i686-stage-3.json",
            local_path=("bios", "stage-3"),
            profile="stage-3",
            linker_script="stage-3-link.ld",
        ),
        StageSpec(
            crate="bootloader-x86_64-bios-stage-4",
            description="bios stage-4",
            env_var="BIOS_STAGE_4_PATH",
            target="x86_64-stage-4.json",
            local_path=("bios", "stage-4"),
            profile="stage-4",
            linker_script="stage-4-link.ld",
        ),
    ]


def _local_path(spec: StageSpec, manifest_dir: _PathLike) -> Path:
    return Path(manifest_dir).joinpath(*spec.local_path)


def _watched_paths(spec: StageSpec, manifest_dir: _PathLike) -> List[Path]:
    local = _local_path(spec, manifest_dir)
    if not local.exists():
        return []
    return [local] + [Path(manifest_dir).joinpath(*parts) for parts in spec.extra_watch]


def install_command(
    spec: StageSpec,
    out_dir: _PathLike,
    manifest_dir: _PathLike,
    version: str,
    cargo: str,
) -> List[str]:
    """The ``cargo install`` invocation for a stage; local sources win over the registry."""
    cmd = [cargo, "install", spec.crate]
    local = _local_path(spec, manifest_dir)
    if local.exists():
        cmd += ["--path", str(local)]
    else:
        cmd += ["--version", version]
    cmd.append("--locked")
    cmd += ["--target", spec.target]
    if spec.profile:
        cmd += ["--profile", spec.profile]
    cmd += list(_BUILD_STD)
    cmd += ["--root", str(out_dir)]
    return cmd


def objcopy_command(objcopy: str, elf_path: _PathLike) -> List[str]:
    """The objcopy invocation turning an ELF file into a flat ``.bin`` next to it."""
    elf = Path(elf_path)
    return [
        objcopy,
        "-I",
        "elf64-x86-64",
        "-O",
        "binary",
        "--binary-architecture=i386:x86-64",
        str(elf),
        str(elf.with_suffix(".bin")),
    ]


def linker_script_arg(manifest_dir: _PathLike, script_name: str) -> str:
    """The cargo directive passing a stage's linker script to its binaries."""
    return f"cargo:rustc-link-arg-bins=--script={Path(manifest_dir) / script_name}"


def _stage_env(spec: StageSpec) -> Dict[str, str]:
    env = dict(os.environ)
    removed = _REMOVED_ENV + ((_WORKSPACE_WRAPPER_ENV,) if spec.hide_workspace_wrapper else ())
    for name in removed:
        env.pop(name, None)
    return env


def _convert_elf_to_bin(objcopy: str, elf_path: Path) -> Path:
    cmd = objcopy_command(objcopy, elf_path)
    try:
        result = subprocess.run(cmd, capture_output=True, check=False)
    except OSError as exc:
        raise BuildError("failed to execute llvm-objcopy command") from exc
    if result.returncode != 0:
        stderr = result.stderr or b""
        if isinstance(stderr, bytes):
            stderr = stderr.decode("utf-8", errors="replace")
        raise BuildError(f"objcopy failed: {stderr}")
    return Path(cmd[-1])


def build_stage(
    spec: StageSpec,
    out_dir: _PathLike,
    manifest_dir: _PathLike,
    version: str,
    cargo: str,
    objcopy: str,
) -> Path:
    """Build one stage and return the path of the finished artifact."""
    out = Path(out_dir)
    for path in _watched_paths(spec, manifest_dir):
        print(f"cargo:rerun-if-changed={path}")
    cmd = install_command(spec, out, manifest_dir, version, cargo)
    try:
        result = subprocess.run(cmd, env=_stage_env(spec), check=False)
    except OSError as exc:
        raise BuildError(f"failed to run cargo install for {spec.description}") from exc
    if result.returncode != 0:
        raise BuildError(f"failed to build {spec.description}")
    artifact = out / "bin" / spec.artifact_name
    if not artifact.exists():
        raise BuildError(f"{spec.description} executable does not exist after building")
    if not spec.flat_binary:
        return artifact
    return _convert_elf_to_bin(objcopy, artifact)


def _build_many(
    specs: Sequence[StageSpec],
    out_dir: _PathLike,
    manifest_dir: _PathLike,
    version: str,
    cargo: str,
    objcopy: str,
) -> Dict[str, Path]:
    if not specs:
        return {}
    with ThreadPoolExecutor(max_workers=len(specs)) as pool:
        futures = [
            pool.submit(build_stage, spec, out_dir, manifest_dir, version, cargo, objcopy)
            for spec in specs
        ]
        return {spec.env_var: future.result() for spec, future in zip(specs, futures)}


def build_all(
    out_dir: _PathLike,
    manifest_dir: _PathLike,
    version: str,
    cargo: str,
    objcopy: str,
) -> Dict[str, Path]:
    """Build the UEFI bootloader and all BIOS stages concurrently.

    Returns the environment variable name of each artifact mapped to its path.
    """
    return _build_many(
        [UEFI_STAGE, *bios_stages()], out_dir, manifest_dir, version, cargo, objcopy
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Build the stages and print the cargo directives naming their artifacts."""
    parser = argparse.ArgumentParser(
        prog="bootforge-build", description="Build the bootloader stages."
    )
    parser.add_argument("--out-dir", default=os.environ.get("OUT_DIR"))
    parser.add_argument(
        "--manifest-dir", default=os.environ.get("CARGO_MANIFEST_DIR", os.getcwd())
    )
    parser.add_argument("--version", dest="bootloader_version", default=BOOTLOADER_VERSION)
    parser.add_argument("--cargo", default=os.environ.get("CARGO", "cargo"))
    parser.add_argument("--objcopy", default=DEFAULT_OBJCOPY)
    parser.add_argument("--no-uefi", action="store_true", help="skip the UEFI bootloader")
    parser.add_argument("--no-bios", action="store_true", help="skip the BIOS stages")
    args = parser.parse_args(argv)
    if not args.out_dir:
        parser.error("an output directory is required (--out-dir or OUT_DIR)")

    specs: List[StageSpec] = []
    if not args.no_uefi:
        specs.append(UEFI_STAGE)
    if not args.no_bios:
        specs.extend(bios_stages())

    try:
        paths = _build_many(
            specs,
            args.out_dir,
            args.manifest_dir,
            args.bootloader_version,
            args.cargo,
            args.objcopy,
        )
    except BuildError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    for env_var, path in paths.items():
        print(f"cargo:rustc-env={env_var}={path}")
    return 0