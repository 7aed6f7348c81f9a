"""Output manager for screenshots and temporary audit snapshots."""

import hashlib
import logging
import secrets
import shutil
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from crawlaudit.constants import (
    SCREENSHOT_DIR_NAME,
    SCREENSHOT_URL_PREFIX,
    VIOLATION_SCREENSHOT_DIR_NAME,
    VIOLATION_SCREENSHOT_URL_PREFIX,
)

logger = logging.getLogger(__name__)


def generate_safe_filename(key: str) -> str:
    """Unique, filesystem-safe name for an image derived from ``key``.

    The MD5 of the key keeps names short and stable per URL; the
    millisecond timestamp prefix keeps repeated crawls of the same URL from
    overwriting each other.

    Args:
        key: URL or selector the image belongs to

    Returns:
        Filename stem such as ``1718000000000-5d41402abc4b2a76b9719d911017c592``
    """
    digest = hashlib.md5(key.encode("utf-8")).hexdigest()
    return f"{int(time.time() * 1000)}-{digest}"


class OutputManager:
    """Manages where screenshots and audit snapshots are written.

    Layout:
        public/
        ├── screenshots/              full-page images, served at /screenshots
        └── violation-screenshots/    element images, served at /violation-screenshots
        temp/
        └── <random hex>/             one offline snapshot per audit attempt
    """

    def __init__(self, public_dir: str | Path = "public", temp_dir: str | Path = "temp"):
        """Initialize output manager.

        Args:
            public_dir: Directory served to clients
            temp_dir: Directory for per-audit snapshot directories
        """
        self.public_dir = Path(public_dir)
        self.temp_dir = Path(temp_dir)

    @property
    def screenshot_dir(self) -> Path:
        return self.public_dir / SCREENSHOT_DIR_NAME

    @property
    def violation_screenshot_dir(self) -> Path:
        return self.public_dir / VIOLATION_SCREENSHOT_DIR_NAME

    def screenshot_path(self, url: str) -> tuple[Path, str]:
        """Allocate a full-page screenshot file for ``url``.

        Returns:
            (filesystem path, web path)
        """
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        filename = f"{generate_safe_filename(url)}.png"
        return self.screenshot_dir / filename, f"{SCREENSHOT_URL_PREFIX}/{filename}"

    def violation_screenshot_path(self, selector: str) -> tuple[Path, str]:
        """Allocate an element screenshot file for a violation node.

        Returns:
            (filesystem path, web path)
        """
        self.violation_screenshot_dir.mkdir(parents=True, exist_ok=True)
        # Selectors repeat across pages; add randomness on top of the timestamp
        filename = f"{generate_safe_filename(selector)}-{secrets.token_hex(4)}.png"
        return self.violation_screenshot_dir / filename, f"{VIOLATION_SCREENSHOT_URL_PREFIX}/{filename}"

    @contextmanager
    def snapshot_directory(self) -> Iterator[Path]:
        """Create a fresh snapshot directory and delete it on exit.

        Usage:
            with output.snapshot_directory() as directory:
                ...
        """
        directory = self.temp_dir / secrets.token_hex(16)
        directory.mkdir(parents=True, exist_ok=True)
        try:
            yield directory
        finally:
            self._remove(directory)

    def cleanup_screenshots(self) -> int:
        """Delete screenshots left over from previous crawls.

        Returns:
            Number of files removed
        """
        removed = 0
        for directory in (self.screenshot_dir, self.violation_screenshot_dir):
            if not directory.exists():
                continue
            for item in directory.iterdir():
                if item.is_file():
                    try:
                        item.unlink()
                        removed += 1
                    except OSError as e:
                        logger.warning(f"Error removing screenshot {item}: {e}")
        return removed

    def cleanup_temp(self, directory: Optional[Path] = None) -> None:
        """Delete everything inside ``directory`` (default: the temp dir)."""
        target = directory or self.temp_dir
        if not target.exists():
            return
        for item in target.iterdir():
            self._remove(item)

    def _remove(self, item: Path) -> None:
        try:
            if item.is_dir() and not item.is_symlink():
                shutil.rmtree(item)
            elif item.exists():
                item.unlink()
        except OSError as e:
            logger.error(f"Error cleaning up temp item {item}: {e}")
