[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bootforge"
version = "0.11.3"
description = "Data formats and planning logic of an x86_64 BIOS/UEFI bootloader: boot config, boot info, E820 memory maps, disk packets, MBR partitions, descriptor tables, paging and VESA mode selection."
requires-python = ">=3.10"
keywords = ["bootloader", "x86_64", "bios", "uefi", "mbr", "e820", "vesa", "gdt", "paging"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Boot",
    "Topic :: Software Development :: Embedded Systems",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest", "hypothesis"]

[project.scripts]
bootforge-build = "bootforge.build:main"

[tool.hatch.build.targets.wheel]
packages = ["bootforge"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
