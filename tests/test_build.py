import subprocess
from pathlib import Path
from unittest import mock

import pytest

from bootforge.build import (
    BOOTLOADER_VERSION,
    UEFI_STAGE,
    BuildError,
    StageSpec,
    bios_stages,
    build_all,
    build_stage,
    install_command,
    linker_script_arg,
    main,
    objcopy_command,
)


def _fake_run(calls, install_code=0, create=True, objcopy_code=0, objcopy_err=b""):
    def run(cmd, **kwargs):
        calls.append((list(cmd), kwargs))
        if cmd[1] == "install":
            if install_code == 0 and create:
                root = Path(cmd[cmd.index("--root") + 1])
                crate = cmd[2]
                name = "bootloader-x86_64-uefi.efi" if crate == UEFI_STAGE.crate else crate
                (root / "bin").mkdir(parents=True, exist_ok=True)
                (root / "bin" / name).write_bytes(b"\x7fELF")
            return subprocess.CompletedProcess(cmd, install_code)
        if objcopy_code == 0:
            Path(cmd[-1]).write_bytes(b"flat")
        return subprocess.CompletedProcess(cmd, objcopy_code, stdout=b"", stderr=objcopy_err)

    return run


def _stage(name):
    return next(s for s in bios_stages() if s.crate == name)


def test_bios_stages_in_boot_order():
    stages = bios_stages()
    assert [s.crate for s in stages] == [
        "bootloader-x86_64-bios-boot-sector",
        "bootloader-x86_64-bios-stage-2",
        "bootloader-x86_64-bios-stage-3",
        "bootloader-x86_64-bios-stage-4",
    ]
    assert [s.profile for s in stages] == ["stage-1", "stage-2", "stage-3", "stage-4"]
    assert all(s.flat_binary for s in stages)


def test_install_command_uses_registry_without_local_sources(tmp_path):
    spec = _stage("bootloader-x86_64-bios-stage-2")
    out = tmp_path / "out"
    cmd = install_command(spec, out, tmp_path, BOOTLOADER_VERSION, "cargo")
    assert cmd[:3] == ["cargo", "install", spec.crate]
    assert cmd[cmd.index("--version") + 1] == "0.11.3"
    assert "--path" not in cmd
    assert cmd[cmd.index("--target") + 1] == "i386-code16-stage-2.json"
    assert cmd[cmd.index("--profile") + 1] == "stage-2"
    assert "--locked" in cmd
    assert cmd[-2:] == ["--root", str(out)]


def test_install_command_prefers_local_sources(tmp_path):
    spec = _stage("bootloader-x86_64-bios-stage-3")
    local = tmp_path / "bios" / "stage-3"
    local.mkdir(parents=True)
    cmd = install_command(spec, tmp_path / "out", tmp_path, "9.9.9", "cargo")
    assert cmd[cmd.index("--path") + 1] == str(local)
    assert "--version" not in cmd
    assert "9.9.9" not in cmd


def test_uefi_install_command_has_no_profile(tmp_path):
    cmd = install_command(UEFI_STAGE, tmp_path, tmp_path, "1.0.0", "mycargo")
    assert "--profile" not in cmd
    assert cmd[0] == "mycargo"
    assert cmd[cmd.index("--target") + 1] == "x86_64-unknown-uefi"


def test_objcopy_command_writes_bin_next_to_elf(tmp_path):
    elf = tmp_path / "bootloader-x86_64-bios-stage-4"
    cmd = objcopy_command("llvm-objcopy", elf)
    assert cmd[:6] == ["llvm-objcopy", "-I", "elf64-x86-64", "-O", "binary",
                       "--binary-architecture=i386:x86-64"]
    assert cmd[-2] == str(elf)
    assert cmd[-1] == str(elf.with_suffix(".bin"))


def test_linker_script_arg(tmp_path):
    arg = linker_script_arg(tmp_path, "stage-2-link.ld")
    assert arg == f"cargo:rustc-link-arg-bins=--script={tmp_path / 'stage-2-link.ld'}"


def test_build_stage_converts_to_flat_binary(tmp_path, monkeypatch):
    monkeypatch.setenv("RUSTFLAGS", "-Cfoo")
    monkeypatch.setenv("RUSTC_WORKSPACE_WRAPPER", "clippy")
    calls = []
    spec = _stage("bootloader-x86_64-bios-boot-sector")
    with mock.patch.object(subprocess, "run", side_effect=_fake_run(calls)):
        result = build_stage(spec, tmp_path, tmp_path, "0.11.3", "cargo", "objcopy")
    assert result == tmp_path / "bin" / "bootloader-x86_64-bios-boot-sector.bin"
    assert result.read_bytes() == b"flat"
    install_env = calls[0][1]["env"]
    assert "RUSTFLAGS" not in install_env
    assert "RUSTC_WORKSPACE_WRAPPER" not in install_env
    assert calls[1][0][0] == "objcopy"


def test_uefi_stage_keeps_workspace_wrapper_and_skips_objcopy(tmp_path, monkeypatch):
    monkeypatch.setenv("RUSTC_WORKSPACE_WRAPPER", "clippy")
    calls = []
    with mock.patch.object(subprocess, "run", side_effect=_fake_run(calls)):
        result = build_stage(UEFI_STAGE, tmp_path, tmp_path, "0.11.3", "cargo", "objcopy")
    assert result == tmp_path / "bin" / "bootloader-x86_64-uefi.efi"
    assert len(calls) == 1
    assert calls[0][1]["env"]["RUSTC_WORKSPACE_WRAPPER"] == "clippy"


def test_build_stage_prints_rerun_paths(tmp_path, capsys):
    (tmp_path / "bios" / "stage-2").mkdir(parents=True)
    calls = []
    with mock.patch.object(subprocess, "run", side_effect=_fake_run(calls)):
        build_stage(_stage("bootloader-x86_64-bios-stage-2"), tmp_path / "out",
                    tmp_path, "0.11.3", "cargo", "objcopy")
    out = capsys.readouterr().out.splitlines()
    assert f"cargo:rerun-if-changed={tmp_path / 'bios' / 'stage-2'}" in out
    assert f"cargo:rerun-if-changed={tmp_path / 'bios' / 'common'}" in out


def test_build_stage_install_failure(tmp_path):
    calls = []
    with mock.patch.object(subprocess, "run", side_effect=_fake_run(calls, install_code=101)):
        with pytest.raises(BuildError, match="failed to build bios stage-3"):
            build_stage(_stage("bootloader-x86_64-bios-stage-3"), tmp_path, tmp_path,
                        "0.11.3", "cargo", "objcopy")


def test_build_stage_missing_artifact(tmp_path):
    calls = []
    with mock.patch.object(subprocess, "run", side_effect=_fake_run(calls, create=False)):
        with pytest.raises(BuildError, match="does not exist after building"):
            build_stage(_stage("bootloader-x86_64-bios-stage-4"), tmp_path, tmp_path,
                        "0.11.3", "cargo", "objcopy")


def test_build_stage_cargo_not_runnable(tmp_path):
    with mock.patch.object(subprocess, "run", side_effect=FileNotFoundError("cargo")):
        with pytest.raises(BuildError, match="failed to run cargo install"):
            build_stage(UEFI_STAGE, tmp_path, tmp_path, "0.11.3", "cargo", "objcopy")


def test_build_stage_objcopy_failure(tmp_path):
    calls = []
    fake = _fake_run(calls, objcopy_code=1, objcopy_err=b"boom")
    with mock.patch.object(subprocess, "run", side_effect=fake):
        with pytest.raises(BuildError, match="objcopy failed: boom"):
            build_stage(_stage("bootloader-x86_64-bios-stage-2"), tmp_path, tmp_path,
                        "0.11.3", "cargo", "objcopy")


def test_build_all_returns_every_artifact(tmp_path):
    calls = []
    with mock.patch.object(subprocess, "run", side_effect=_fake_run(calls)):
        paths = build_all(tmp_path, tmp_path, "0.11.3", "cargo", "objcopy")
    assert list(paths) == [
        "UEFI_BOOTLOADER_PATH",
        "BIOS_BOOT_SECTOR_PATH",
        "BIOS_STAGE_2_PATH",
        "BIOS_STAGE_3_PATH",
        "BIOS_STAGE_4_PATH",
    ]
    assert all(path.exists() for path in paths.values())
    assert paths["BIOS_STAGE_3_PATH"].suffix == ".bin"


def test_main_prints_env_directives(tmp_path, capsys):
    calls = []
    with mock.patch.object(subprocess, "run", side_effect=_fake_run(calls)):
        code = main(["--out-dir", str(tmp_path), "--manifest-dir", str(tmp_path), "--no-bios"])
    assert code == 0
    lines = capsys.readouterr().out.splitlines()
    expected = tmp_path / "bin" / "bootloader-x86_64-uefi.efi"
    assert lines == [f"cargo:rustc-env=UEFI_BOOTLOADER_PATH={expected}"]


def test_main_reports_failure(tmp_path, capsys):
    calls = []
    with mock.patch.object(subprocess, "run", side_effect=_fake_run(calls, install_code=1)):
        code = main(["--out-dir", str(tmp_path), "--manifest-dir", str(tmp_path)])
    assert code == 1
    assert "failed to build" in capsys.readouterr().err


def test_main_requires_out_dir(monkeypatch):
    monkeypatch.delenv("OUT_DIR", raising=False)
    with pytest.raises(SystemExit) as exc:
        main([])
    assert exc.value.code == 2


def test_stage_spec_artifact_defaults_to_crate():
    spec = StageSpec(crate="demo", description="demo", env_var="DEMO",
                     target="t.json", local_path=("demo",))
    assert spec.artifact_name == "demo"
    assert UEFI_STAGE.artifact_name == "bootloader-x86_64-uefi.efi"