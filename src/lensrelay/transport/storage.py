"""
Blob storage collaborators for relayed media.

Both backends expose store(data, key) -> key and raise StorageWriteError on
failure. Writes are blocking and are run by the bridge on its own executor.

Supported backends:
- filesystem: files under a local root directory
- rclone: streamed to any rclone remote with `rclone rcat`
"""

import logging
import shutil
import subprocess
from pathlib import Path

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lensrelay.errors import StorageWriteError

logger = logging.getLogger(__name__)

# Check if rclone is available
RCLONE_AVAILABLE = shutil.which("rclone") is not None


class FilesystemBlobStorage:
    """Stores blobs as files: <root>/<key>."""

    def __init__(self, root: str | Path = "runtime/media"):
        self.root = Path(root)
        self._stored_count = 0
        logger.info(f"Filesystem storage initialized: {self.root}")

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise StorageWriteError(key, "key escapes storage root")
        return path

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, max=2),
        retry=retry_if_exception_type(OSError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".part")
        tmp.write_bytes(data)
        tmp.replace(path)

    def store(self, data: bytes, key: str) -> str:
        """
        Write bytes under key.

        Returns:
            The storage key

        Raises:
            StorageWriteError: write failed after retries
        """
        path = self._path_for(key)
        try:
            self._write(path, data)
        except OSError as e:
            raise StorageWriteError(key, str(e)) from e

        self._stored_count += 1
        logger.debug(f"Stored {len(data)} bytes at {path}")
        return key

    def get_status(self) -> dict:
        return {
            "backend": "filesystem",
            "root": str(self.root),
            "stored_count": self._stored_count,
        }


class RcloneBlobStorage:
    """
    Streams blobs to an rclone remote.

    Remote layout: <remote>:<remote_path>/<key>
    """

    def __init__(
        self,
        rclone_remote: str,
        remote_path: str = "LensRelay",
        timeout: int = 120,
        bandwidth_limit: str = "",
    ):
        self.rclone_remote = rclone_remote
        self.remote_path = remote_path.strip("/")
        self.timeout = timeout
        self.bandwidth_limit = bandwidth_limit
        self.enabled = bool(RCLONE_AVAILABLE and rclone_remote)
        self._stored_count = 0

        if not RCLONE_AVAILABLE:
            logger.warning("rclone not found in PATH - rclone storage disabled")
        elif not rclone_remote:
            logger.warning("No rclone remote configured - rclone storage disabled")
        else:
            logger.info(f"Rclone storage initialized: {rclone_remote}:{self.remote_path}")

    def _remote_for(self, key: str) -> str:
        if self.remote_path:
            return f"{self.rclone_remote}:{self.remote_path}/{key}"
        return f"{self.rclone_remote}:{key}"

    def _run_rclone(self, args: list[str], data: bytes | None = None) -> tuple[bool, str]:
        """
        Run an rclone command.

        Args:
            args: rclone command arguments
            data: Bytes piped to stdin

        Returns:
            Tuple of (success, output/error message)
        """
        cmd = ["rclone"] + args

        if self.bandwidth_limit:
            cmd.extend(["--bwlimit", self.bandwidth_limit])

        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                input=data,
                capture_output=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return False, f"Command timed out after {self.timeout}s"
        except OSError as e:
            return False, str(e)

        if result.returncode == 0:
            return True, result.stdout.decode(errors="replace")
        return False, result.stderr.decode(errors="replace").strip()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        retry=retry_if_exception_type(OSError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _rcat(self, key: str, data: bytes) -> None:
        ok, output = self._run_rclone(["rcat", self._remote_for(key)], data=data)
        if not ok:
            raise OSError(output)

    def store(self, data: bytes, key: str) -> str:
        if not self.enabled:
            raise StorageWriteError(key, "rclone storage disabled")
        try:
            self._rcat(key, data)
        except OSError as e:
            raise StorageWriteError(key, str(e)) from e

        self._stored_count += 1
        logger.debug(f"Uploaded {len(data)} bytes to {self._remote_for(key)}")
        return key

    def verify_remote(self) -> bool:
        """Check the configured remote is reachable."""
        if not self.enabled:
            return False
        ok, output = self._run_rclone(["lsd", f"{self.rclone_remote}:"])
        if not ok:
            logger.error(f"rclone remote '{self.rclone_remote}' not reachable: {output}")
        return ok

    def get_status(self) -> dict:
        return {
            "backend": "rclone",
            "enabled": self.enabled,
            "remote": f"{self.rclone_remote}:{self.remote_path}",
            "rclone_available": RCLONE_AVAILABLE,
            "stored_count": self._stored_count,
        }


def create_storage(
    backend: str = "filesystem",
    storage_root: str | Path = "runtime/media",
    rclone_remote: str = "",
    remote_path: str = "LensRelay",
):
    """Build the configured storage backend."""
    if backend == "rclone":
        return RcloneBlobStorage(rclone_remote=rclone_remote, remote_path=remote_path)
    if backend == "filesystem":
        return FilesystemBlobStorage(storage_root)
    raise ValueError(f"Unknown storage backend: {backend}")
