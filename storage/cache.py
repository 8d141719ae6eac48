"""
Content-addressed disk cache for downloaded image bytes.

Layout:
    <root>/images/<sha256(url)[:32]><ext>
    <root>/previews/<sha256(url)[:32]><ext>

Independent of ContentStore. The ceiling is advisory: is_full() reports,
prune() evicts least-recently-used files (by mtime) when a caller asks.
Nothing here evicts on its own.
"""

import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from urllib.parse import urlparse

import requests

from models import CacheStats

log = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp"}
DEFAULT_SUFFIX = ".jpg"


class CacheWriteFailed(Exception):
    """Raised when bytes can't be written to the cache directory."""
    pass


class DownloadFailed(Exception):
    """Raised when the remote image can't be fetched."""
    pass


class DiskCache:
    def __init__(
        self,
        root: Path,
        ceiling_bytes: int = 500 * 1024 * 1024,
        session: requests.Session | None = None,
        user_agent: str = "wallstream/0.1",
    ):
        self._root = Path(root)
        self._images = self._root / "images"
        self._previews = self._root / "previews"
        self.ceiling_bytes = ceiling_bytes
        self._session = session or requests.Session()
        self._session.headers["User-Agent"] = user_agent
        self._ensure_dirs()

    def _ensure_dirs(self):
        self._images.mkdir(parents=True, exist_ok=True)
        self._previews.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    @staticmethod
    def identity(url: str) -> str:
        """Stable file name for a URL: hash plus the image extension."""
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]
        suffix = Path(urlparse(url).path).suffix.lower()
        if suffix not in IMAGE_SUFFIXES:
            suffix = DEFAULT_SUFFIX
        return f"{digest}{suffix}"

    def path(self, identity: str, preview: bool = False) -> Path:
        return (self._previews if preview else self._images) / identity

    def exists(self, identity: str, preview: bool = False) -> bool:
        return self.path(identity, preview).is_file()

    def get(self, identity: str, preview: bool = False) -> Path | None:
        """Return the cached path, marking it recently used. None on miss."""
        path = self.path(identity, preview)
        if not path.is_file():
            return None
        try:
            os.utime(path)
        except OSError as e:
            log.debug(f"Could not touch {path}: {e}")
        return path

    def _files(self) -> list[Path]:
        files = []
        for folder in (self._images, self._previews):
            if folder.is_dir():
                files.extend(p for p in folder.iterdir() if p.is_file() and not p.name.startswith("."))
        return files

    def size_bytes(self) -> int:
        total = 0
        for path in self._files():
            try:
                total += path.stat().st_size
            except FileNotFoundError:
                continue
        return total

    def count(self) -> int:
        return len(self._files())

    def is_full(self) -> bool:
        return self.size_bytes() >= self.ceiling_bytes

    def stats(self) -> CacheStats:
        return CacheStats(
            size_bytes=self.size_bytes(),
            file_count=self.count(),
            ceiling_bytes=self.ceiling_bytes,
            path=str(self._root),
        )

    def evict_one(self, identity: str) -> bool:
        """Remove both the full image and the preview for an identity."""
        removed = False
        for preview in (False, True):
            path = self.path(identity, preview)
            try:
                path.unlink()
                removed = True
            except FileNotFoundError:
                pass
        return removed

    def clear(self):
        for folder in (self._images, self._previews):
            if folder.exists():
                shutil.rmtree(folder)
        self._ensure_dirs()
        log.info(f"Cleared image cache at {self._root}")

    def prune(self) -> int:
        """
        Evict least-recently-used files until the cache is under its ceiling.
        Returns the number of files removed.
        """
        entries = []
        total = 0
        for path in self._files():
            try:
                st = path.stat()
            except FileNotFoundError:
                continue
            entries.append((st.st_mtime, st.st_size, path))
            total += st.st_size

        removed = 0
        for _, size, path in sorted(entries):
            if total < self.ceiling_bytes:
                break
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            total -= size
            removed += 1

        if removed:
            log.info(f"Pruned {removed} cached files, {total} bytes remain")
        return removed

    def download(self, url: str, preview: bool = False, timeout: float = 60) -> Path:
        """
        Fetch `url` into the cache unless it is already there.
        Writes to a temp file first so a partial download is never visible.
        """
        identity = self.identity(url)
        cached = self.get(identity, preview)
        if cached:
            return cached

        target = self.path(identity, preview)
        try:
            resp = self._session.get(url, timeout=timeout, stream=True)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise DownloadFailed(f"{url}: {e}") from e

        tmp_name = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=target.parent, prefix=".part-", delete=False
            ) as tmp:
                tmp_name = tmp.name
                for chunk in resp.iter_content(chunk_size=64 * 1024):
                    if chunk:
                        tmp.write(chunk)
            os.replace(tmp_name, target)
        except requests.RequestException as e:
            self._discard(tmp_name)
            raise DownloadFailed(f"{url}: {e}") from e
        except OSError as e:
            self._discard(tmp_name)
            raise CacheWriteFailed(f"cannot write {target}: {e}") from e
        finally:
            resp.close()

        log.debug(f"Cached {url} -> {target}")
        return target

    @staticmethod
    def _discard(tmp_name: str | None):
        if tmp_name:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
