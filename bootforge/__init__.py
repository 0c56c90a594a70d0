"""Boot configuration, boot info, BIOS boot-stage formats and stage builds for an x86_64 bootloader."""

__version__ = "0.11.3"