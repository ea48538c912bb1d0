"""
Resolution and on-demand provisioning of the Chromium binary used for printing.

The binary is looked up in this order:

1. ``CHROME_PATH`` environment variable (only if the file exists).
2. The well-known install directory (``CHROMIUM_INSTALL_DIR``, default ``/opt/pdf-service/chrome``).
3. Download of a pinned Chrome for Testing release, extracted into the install directory.

Resolution runs at most once per process at a time; the first successful path is cached.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import platform
import stat
import sys
import threading
import zipfile
from pathlib import Path

import httpx

from pdf_service.errors import LocateError
from pdf_service.prometheus_metrics import increment_chromium_download

CHROME_VERSION = "131.0.6778.87"
DOWNLOAD_URL_TEMPLATE = "https://storage.googleapis.com/chrome-for-testing-public/{version}/{platform}/chrome-{platform}.zip"
DEFAULT_INSTALL_DIR = "/opt/pdf-service/chrome"
DOWNLOAD_TIMEOUT_SECONDS = 300.0
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

# Binary location inside the extracted archive, relative to the archive's top-level directory
_PLATFORM_BINARIES = {
    "linux64": Path("chrome"),
    "mac-x64": Path("Google Chrome for Testing.app/Contents/MacOS/Google Chrome for Testing"),
    "mac-arm64": Path("Google Chrome for Testing.app/Contents/MacOS/Google Chrome for Testing"),
    "win64": Path("chrome.exe"),
}


def detect_platform() -> str:
    """
    Map the running OS and architecture to a Chrome for Testing platform name.

    Raises:
        LocateError: If no Chrome for Testing build exists for this platform.
    """
    machine = platform.machine().lower()
    if sys.platform.startswith("linux") and machine in ("x86_64", "amd64"):
        return "linux64"
    if sys.platform == "darwin":
        return "mac-arm64" if machine in ("arm64", "aarch64") else "mac-x64"
    if sys.platform == "win32" and machine in ("x86_64", "amd64"):
        return "win64"
    raise LocateError(f"No Chromium build available for platform {sys.platform}/{machine}")


class ChromiumLocator:
    """Finds, or downloads once, the Chromium executable."""

    def __init__(
        self,
        install_dir: Path | None = None,
        platform_name: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.log = logger or logging.getLogger(__name__)
        self.install_dir = install_dir or Path(os.environ.get("CHROMIUM_INSTALL_DIR", DEFAULT_INSTALL_DIR))
        self._platform_name = platform_name
        self._lock = threading.Lock()
        self._cached_path: Path | None = None

    @property
    def platform_name(self) -> str:
        if self._platform_name is None:
            self._platform_name = detect_platform()
        return self._platform_name

    @property
    def download_url(self) -> str:
        return DOWNLOAD_URL_TEMPLATE.format(version=CHROME_VERSION, platform=self.platform_name)

    @property
    def archive_binary_path(self) -> Path:
        """Where the binary lands after extracting the release archive."""
        return self.install_dir / f"chrome-{self.platform_name}" / _PLATFORM_BINARIES[self.platform_name]

    def locate(self) -> Path:
        """
        Resolve the Chromium binary, downloading it if necessary.

        Concurrent callers block on a lock so that at most one download runs;
        later callers receive the cached result.

        Returns:
            Path to an existing Chromium executable.

        Raises:
            LocateError: If no binary is configured or installed and provisioning fails.
        """
        cached = self._cached_path
        if cached is not None and cached.exists():
            return cached

        with self._lock:
            if self._cached_path is not None and self._cached_path.exists():
                return self._cached_path

            path = self._find_existing()
            if path is None:
                self.log.info("Chromium not found. Downloading Chrome for Testing %s...", CHROME_VERSION)
                path = self._download()
            self._cached_path = path
            return path

    async def locate_async(self) -> Path:
        """Run locate() in a worker thread so the event loop stays responsive during a download."""
        return await asyncio.to_thread(self.locate)

    def peek(self) -> Path | None:
        """Return the binary path if one is available without downloading, else None."""
        if self._cached_path is not None and self._cached_path.exists():
            return self._cached_path
        try:
            return self._find_existing()
        except LocateError:
            return None

    def _find_existing(self) -> Path | None:
        chrome_path = os.environ.get("CHROME_PATH")
        if chrome_path:
            path = Path(chrome_path)
            if path.exists():
                self.log.info("Using Chromium from CHROME_PATH: %s", path)
                return path
            self.log.warning("CHROME_PATH is set but %s does not exist, ignoring it", path)

        candidates = [self.install_dir / "chrome"]
        # Unsupported platforms can still use a binary placed directly in the install directory
        with contextlib.suppress(LocateError):
            candidates.insert(0, self.archive_binary_path)
        for candidate in candidates:
            if candidate.is_file():
                self.log.info("Using Chromium from install directory: %s", candidate)
                return candidate
        return None

    def _download(self) -> Path:
        try:
            self.install_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocateError(f"Failed to create chromium directory {self.install_dir}: {e}") from e

        zip_path = self.install_dir / "chrome.zip"
        try:
            self._fetch_archive(zip_path)
            self._extract_archive(zip_path)
        finally:
            zip_path.unlink(missing_ok=True)

        binary = self.archive_binary_path
        if not binary.is_file():
            raise LocateError(f"Chromium binary not found after extraction: {binary}")

        try:
            mode = binary.stat().st_mode
            binary.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as e:
            raise LocateError(f"Failed to make chromium executable: {e}") from e

        increment_chromium_download()
        self.log.info("Chromium ready at: %s", binary)
        return binary

    def _fetch_archive(self, zip_path: Path) -> None:
        url = self.download_url
        self.log.info("Downloading Chromium from %s", url)
        try:
            with httpx.stream("GET", url, follow_redirects=True, timeout=DOWNLOAD_TIMEOUT_SECONDS) as response:
                response.raise_for_status()
                with zip_path.open("wb") as f:
                    for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
        except httpx.HTTPError as e:
            raise LocateError(f"Failed to download Chromium: {e}") from e
        except OSError as e:
            raise LocateError(f"Failed to write chromium archive: {e}") from e
        self.log.info("Downloaded Chromium archive (%d bytes). Extracting...", zip_path.stat().st_size)

    def _extract_archive(self, zip_path: Path) -> None:
        try:
            with zipfile.ZipFile(zip_path) as archive:
                for info in archive.infolist():
                    # extract() sanitizes the member name and returns the path it actually wrote
                    target = Path(archive.extract(info, self.install_dir))
                    # zipfile drops permission bits; restore them so helper executables stay runnable
                    mode = (info.external_attr >> 16) & 0o777
                    if mode and not info.is_dir():
                        target.chmod(mode)
        except zipfile.BadZipFile as e:
            raise LocateError(f"Failed to read chromium archive: {e}") from e
        except OSError as e:
            raise LocateError(f"Failed to extract chromium archive: {e}") from e
        self.log.info("Chromium extracted successfully")


# Global singleton instance
_chromium_locator: ChromiumLocator | None = None
_chromium_locator_lock = threading.Lock()


def get_chromium_locator() -> ChromiumLocator:
    """
    Get the global ChromiumLocator singleton instance.

    Returns:
        The ChromiumLocator instance shared by all requests of this process.
    """
    global _chromium_locator  # noqa: PLW0603
    with _chromium_locator_lock:
        if _chromium_locator is None:
            _chromium_locator = ChromiumLocator()
        return _chromium_locator
