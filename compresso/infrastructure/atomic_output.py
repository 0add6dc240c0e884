"""Temp-then-rename output handling.

The encoder writes into a hidden temp file in the destination directory. The
temp file only becomes the final output through :meth:`AtomicOutput.commit`;
any other exit from the ``with`` block deletes it.
"""
import errno
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from compresso.domain.errors import CommitError, ProcessError

TEMP_SUFFIX = ".compresso.tmp"

logger = logging.getLogger(__name__)


def temp_path_for(final_path: Path, token: Optional[str] = None) -> Path:
    """Hidden sibling of ``final_path``: ``.<name>.<token>.compresso.tmp``."""
    token = token or uuid.uuid4().hex[:8]
    return final_path.with_name(f".{final_path.name}.{token}{TEMP_SUFFIX}")


def is_temp_file(path: Path) -> bool:
    return path.name.startswith(".") and path.name.endswith(TEMP_SUFFIX)


class AtomicOutput:
    def __init__(self, final_path: Path, temp_path: Optional[Path] = None, overwrite: bool = False):
        self.final_path = Path(final_path)
        self.temp_path = Path(temp_path) if temp_path else temp_path_for(self.final_path)
        self.overwrite = overwrite
        self.committed = False
        self.preserved = False

    def __enter__(self) -> "AtomicOutput":
        # Exclusive create; an existing temp file means a name clash, never reuse it
        try:
            fd = os.open(self.temp_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except OSError as e:
            raise CommitError(f"Cannot create temporary file {self.temp_path}: {e}", path=self.temp_path) from e
        os.close(fd)

        if os.stat(self.temp_path).st_dev != os.stat(self.final_path.parent).st_dev:
            self.discard()
            raise CommitError(
                f"Temporary file {self.temp_path} is not on the same volume as {self.final_path}",
                path=self.final_path,
            )
        logger.debug(f"TEMP_CREATED: {self.temp_path}")
        return self

    def commit(self) -> Path:
        """Moves the temp file into place. Returns the final path."""
        try:
            size = self.temp_path.stat().st_size
        except FileNotFoundError:
            raise ProcessError("Compression succeeded but output file not found", path=self.temp_path)
        if size == 0:
            raise ProcessError("Encoder exited successfully but produced an empty output", path=self.final_path)

        try:
            if self.overwrite:
                os.replace(self.temp_path, self.final_path)
            else:
                self._move_no_clobber()
        except FileExistsError as e:
            self.preserved = True
            raise CommitError(
                f"Output appeared while encoding and will not be overwritten: {self.final_path}",
                path=self.final_path,
                preserved_path=self.temp_path,
            ) from e
        except OSError as e:
            self.preserved = True
            raise CommitError(
                f"Failed to move {self.temp_path} to {self.final_path}: {e}",
                path=self.final_path,
                preserved_path=self.temp_path,
            ) from e

        self.committed = True
        logger.info(f"OUTPUT_COMMITTED: {self.final_path}")
        return self.final_path

    def _move_no_clobber(self):
        if os.name == "nt":
            # rename refuses to replace an existing file on Windows
            os.rename(self.temp_path, self.final_path)
            return
        try:
            os.link(self.temp_path, self.final_path)
        except FileExistsError:
            raise
        except OSError as e:
            if e.errno not in (errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.EMLINK):
                raise
            # no hard links on this filesystem
            if self.final_path.exists():
                raise FileExistsError(errno.EEXIST, "File exists", str(self.final_path)) from e
            os.rename(self.temp_path, self.final_path)
            return
        try:
            self.temp_path.unlink()
        except OSError as e:
            logger.warning(f"TEMP_CLEANUP_FAILED: {self.temp_path}: {e}")

    def discard(self):
        try:
            self.temp_path.unlink()
            logger.debug(f"TEMP_REMOVED: {self.temp_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"TEMP_CLEANUP_FAILED: {self.temp_path}: {e}")

    def __exit__(self, exc_type, exc, tb):
        if not self.committed and not self.preserved:
            self.discard()
        return False
