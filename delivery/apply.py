"""
Hand-off to whatever actually sets the desktop background.

The engine only knows a local file path and a title. How the image ends
up on screen is the applier's business.
"""

import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from config.settings import Config

log = logging.getLogger(__name__)


class WallpaperApplier(ABC):
    @abstractmethod
    def apply(self, path: Path, title: str) -> bool:
        """Set `path` as the wallpaper. Returns True on success."""
        ...


class EchoApplier(WallpaperApplier):
    """Prints the resolved path. Default when no command is configured."""

    def apply(self, path: Path, title: str) -> bool:
        print(f"{title}\n{path}")
        return True


class CommandApplier(WallpaperApplier):
    """
    Runs a user-supplied command template, e.g.
    WALL_APPLY_COMMAND='feh --bg-fill {path}'.
    """

    def __init__(self, template: str, timeout: float = 30):
        self._template = template
        self._timeout = timeout

    def build_command(self, path: Path, title: str) -> list[str]:
        return [
            part.format(path=str(path), title=title)
            for part in shlex.split(self._template)
        ]

    def apply(self, path: Path, title: str) -> bool:
        cmd = self.build_command(path, title)
        try:
            subprocess.run(cmd, check=True, timeout=self._timeout)
        except (OSError, subprocess.SubprocessError) as e:
            log.error(f"Apply command failed: {e}")
            return False
        log.info(f"Applied wallpaper: {title}")
        return True


def create_applier(config: Config) -> WallpaperApplier:
    if config.apply_command:
        return CommandApplier(config.apply_command)
    return EchoApplier()
