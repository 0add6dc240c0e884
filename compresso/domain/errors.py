from pathlib import Path
from typing import List, Optional


class CompressoError(Exception):
    """Base class for every failure a compression job can report."""

    kind = "error"

    def __init__(self, message: str, path: Optional[Path] = None, tail: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.tail = list(tail or [])

    def __str__(self) -> str:
        if not self.tail:
            return self.message
        snippet = "\n".join(self.tail)
        return f"{self.message}\n--- encoder output (last {len(self.tail)} lines) ---\n{snippet}"


class SecurityError(CompressoError):
    """Path is unsafe: protected directory, special file or NUL byte."""

    kind = "security"


class OverwriteError(SecurityError):
    """Output already exists and overwriting was not allowed."""

    kind = "overwrite"


class ResolutionError(CompressoError):
    """No usable encoder executable was found."""

    kind = "resolution"


class ValidationError(CompressoError):
    """Settings or input are malformed."""

    kind = "validation"


class ProcessError(CompressoError):
    """Encoder could not be spawned, exited non-zero or its stream broke."""

    kind = "process"

    def __init__(
        self,
        message: str,
        path: Optional[Path] = None,
        tail: Optional[List[str]] = None,
        return_code: Optional[int] = None,
    ):
        super().__init__(message, path=path, tail=tail)
        self.return_code = return_code


class CommitError(CompressoError):
    """Encoded output could not be moved into place. The temp file is kept."""

    kind = "commit"

    def __init__(self, message: str, path: Optional[Path] = None, preserved_path: Optional[Path] = None):
        super().__init__(message, path=path)
        self.preserved_path = preserved_path


class ConfigError(CompressoError):
    """Configuration file could not be read or is invalid."""

    kind = "config"
