from delivery.apply import CommandApplier, EchoApplier, WallpaperApplier, create_applier
from delivery.output import deliver_cli, deliver_notice

__all__ = [
    "CommandApplier",
    "EchoApplier",
    "WallpaperApplier",
    "create_applier",
    "deliver_cli",
    "deliver_notice",
]
