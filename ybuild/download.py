"""Download cache.

This module handles:
- Streaming downloads with checksum computation
- A URL-keyed local cache so each URL is fetched at most once
- Cross-process file locks guarding cache entries
- Archive extraction for toolchain installs
"""

from __future__ import annotations

import fcntl
import hashlib
import logging
import os
import shutil
import tarfile
import tempfile
import threading
import time
import zipfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


class DownloadError(Exception):
    """Raised when a download fails."""

    def __init__(self, message: str, code: str = "download_error") -> None:
        """Initialize DownloadError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class ExtractionError(Exception):
    """Raised when archive extraction fails."""

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class DownloadResult:
    """Result of a download."""

    path: Path
    checksum: str
    size_bytes: int


@contextmanager
def file_lock(
    lock_dir: Path,
    key: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Hold an exclusive cross-process lock for a key.

    Args:
        lock_dir: Directory for lock files.
        key: Name to lock on.
        timeout: Lock acquisition timeout in seconds (None = blocking).

    Yields:
        None when lock is acquired.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_file = lock_dir / f"{hashlib.sha256(key.encode()).hexdigest()[:32]}.lock"

    logger.debug("Acquiring lock for %s", key)

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        if timeout is not None:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise TimeoutError(f"Timeout waiting for lock on {key}") from None
                    time.sleep(0.1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX)
            lock_acquired = True

        logger.debug("Lock acquired for %s", key)
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Lock released for %s", key)
        os.close(fd)


def compute_file_sha256(file_path: Path, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> str:
    """Compute SHA256 checksum of a file."""
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download a URL to a file.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        DownloadResult with path, checksum, and size.

    Raises:
        DownloadError: If download fails.
    """
    logger.info("Downloading %s", url)

    try:
        with client.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            response.raise_for_status()

            total_bytes = 0
            sha256 = hashlib.sha256()

            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    sha256.update(chunk)
                    total_bytes += len(chunk)

            computed_checksum = sha256.hexdigest()
            logger.info(
                "Downloaded %s (%d bytes, checksum: %s)",
                dest_path.name,
                total_bytes,
                computed_checksum[:16] + "...",
            )
            return DownloadResult(
                path=dest_path,
                checksum=computed_checksum,
                size_bytes=total_bytes,
            )

    except httpx.HTTPStatusError as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(
            f"HTTP error downloading {url}: {e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(f"Timeout downloading {url}", code="timeout") from e
    except httpx.RequestError as e:
        dest_path.unlink(missing_ok=True)
        raise DownloadError(f"Network error downloading {url}: {e}", code="network_error") from e


def _check_member_name(archive_path: Path, name: str) -> None:
    member_path = Path(name)
    if member_path.is_absolute() or ".." in member_path.parts:
        raise ExtractionError(
            f"Refusing to extract {name} from {archive_path.name}: path traversal detected",
            code="path_traversal",
        )


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract a .tar.gz/.tgz/.tar.xz/.tar.bz2/.tar/.zip archive.

    Args:
        archive_path: Path to the archive file.
        dest_dir: Destination directory for extraction.

    Returns:
        The destination directory.

    Raises:
        ExtractionError: If extraction fails.
    """
    logger.info("Extracting %s to %s", archive_path.name, dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    name = archive_path.name.lower()
    try:
        if name.endswith(".zip"):
            with zipfile.ZipFile(archive_path) as zf:
                for member in zf.namelist():
                    _check_member_name(archive_path, member)
                zf.extractall(dest_dir)
        elif name.endswith((".tar.gz", ".tgz", ".tar.xz", ".tar.bz2", ".tar")):
            with tarfile.open(archive_path, "r:*") as tar:
                members = tar.getmembers()
                if not members:
                    raise ExtractionError(f"Archive {archive_path} is empty", code="empty_archive")
                for member in members:
                    _check_member_name(archive_path, member.name)
                tar.extractall(dest_dir, filter="tar")
        else:
            raise ExtractionError(
                f"Unsupported archive format: {archive_path.name}",
                code="unsupported_format",
            )
    except (tarfile.TarError, zipfile.BadZipFile) as e:
        raise ExtractionError(f"Failed to extract {archive_path}: {e}", code="archive_error") from e
    except OSError as e:
        raise ExtractionError(f"OS error extracting {archive_path}: {e}", code="os_error") from e

    return dest_dir


def url_cache_path(cache_dir: Path, url: str) -> Path:
    """Local path a URL is cached at."""
    basename = os.path.basename(urlsplit(url).path) or "download"
    digest = hashlib.sha256(url.encode()).hexdigest()[:16]
    return cache_dir / digest / basename


class DownloadCache:
    """Fetches URLs into a local cache, at most once per URL.

    Repeated calls with the same URL return the same local path without
    touching the network. Concurrent callers (threads or processes) for the
    same URL wait for the first fetch to finish.
    """

    def __init__(
        self,
        client: httpx.Client,
        cache_dir: Path,
        timeout: float = DOWNLOAD_TIMEOUT,
    ) -> None:
        self.client = client
        self.cache_dir = cache_dir
        self.timeout = timeout
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _url_lock(self, url: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(url, threading.Lock())

    def download_file_with_cache(self, url: str) -> Path:
        """Return a local copy of a URL, downloading it if not cached.

        The SHA256 of each download is recorded beside it in a `.sha256`
        file. A cached copy that no longer matches its recorded checksum is
        discarded and fetched again.

        Raises:
            DownloadError: If the download fails.
        """
        dest = url_cache_path(self.cache_dir, url)
        checksum_path = checksum_file(dest)
        with self._url_lock(url), file_lock(self.cache_dir / ".locks", url):
            if dest.exists():
                if self._verify(dest, checksum_path):
                    logger.debug("Cache hit for %s: %s", url, dest)
                    return dest
                logger.warning("Cached copy of %s is corrupt; downloading again", url)
                dest.unlink()
                checksum_path.unlink(missing_ok=True)

            dest.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=dest.parent, suffix=".tmp", delete=False
            ) as tmp_file:
                tmp_path = Path(tmp_file.name)
            try:
                result = download_file(self.client, url, tmp_path, timeout=self.timeout)
                # Written first so a cached file never lacks its checksum
                checksum_path.write_text(f"{result.checksum}  {dest.name}\n")
                shutil.move(str(tmp_path), str(dest))
            except BaseException:
                tmp_path.unlink(missing_ok=True)
                raise
        return dest

    @staticmethod
    def _verify(path: Path, checksum_path: Path) -> bool:
        if not checksum_path.exists():
            return True
        expected = checksum_path.read_text().split(maxsplit=1)
        if not expected:
            return False
        return compute_file_sha256(path) == expected[0]


def checksum_file(path: Path) -> Path:
    """Path of the `.sha256` file recorded beside a cached download."""
    return path.with_name(path.name + ".sha256")


__all__ = [
    "DownloadCache",
    "DownloadError",
    "DownloadResult",
    "ExtractionError",
    "checksum_file",
    "compute_file_sha256",
    "download_file",
    "extract_archive",
    "file_lock",
    "url_cache_path",
]
