import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional

from compresso.domain.errors import ResolutionError


def executable_name(name: str) -> str:
    return f"{name}.exe" if os.name == "nt" else name


def default_bundle_dir() -> Path:
    """Directory of the running tool (the frozen binary, or the launched script)."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(sys.argv[0]).resolve().parent


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class EncoderResolver:
    """Locates a trusted encoder executable.

    Priority, first success wins:
      1. explicitly configured path (fatal if unusable, never falls through)
      2. bundled binary beside the running tool, optionally verified
      3. binary on PATH (accepted with a lower-trust warning)
    """

    def __init__(
        self,
        name: str = "ffmpeg",
        bundle_dir: Optional[Path] = None,
        version_signature: str = "ffmpeg version",
        verify_timeout: float = 10.0,
    ):
        self.name = name
        self.bundle_dir = bundle_dir if bundle_dir is not None else default_bundle_dir()
        self.version_signature = version_signature
        self.verify_timeout = verify_timeout
        self.logger = logging.getLogger(__name__)

    def resolve(self, configured_path: Optional[str] = None, verify: bool = False) -> Path:
        if configured_path:
            candidate = Path(os.path.expanduser(configured_path.strip()))
            if not _is_executable(candidate):
                raise ResolutionError(
                    f"Configured {self.name} path is missing or not executable: {candidate}",
                    path=candidate,
                )
            self.logger.info(f"ENCODER_RESOLVED: configured {candidate}")
            return candidate.resolve()

        bundled = self.bundle_dir / executable_name(self.name)
        if _is_executable(bundled):
            if not verify or self.verify(bundled):
                self.logger.info(f"ENCODER_RESOLVED: bundled {bundled}")
                return bundled.resolve()
            self.logger.warning(f"ENCODER_UNVERIFIED: bundled {bundled} failed verification, skipping")

        found = shutil.which(self.name)
        if found:
            self.logger.warning(f"ENCODER_LOW_TRUST: using {self.name} from PATH: {found}")
            return Path(found).resolve()

        raise ResolutionError(
            f"{self.name} not found. Install FFmpeg (https://ffmpeg.org/download.html) "
            f"or place it next to compresso."
        )

    def resolve_companion(self, encoder: Path, name: str, configured_path: Optional[str] = None) -> Path:
        """Finds a sibling tool such as ffprobe: configured, next to ``encoder``, then PATH."""
        if configured_path:
            candidate = Path(os.path.expanduser(configured_path.strip()))
            if not _is_executable(candidate):
                raise ResolutionError(
                    f"Configured {name} path is missing or not executable: {candidate}",
                    path=candidate,
                )
            return candidate.resolve()

        sibling = encoder.parent / executable_name(name)
        if _is_executable(sibling):
            return sibling

        found = shutil.which(name)
        if found:
            self.logger.warning(f"ENCODER_LOW_TRUST: using {name} from PATH: {found}")
            return Path(found).resolve()
        raise ResolutionError(f"{name} not found next to {encoder} or on PATH")

    def verify(self, executable: Path) -> bool:
        """Runs ``<executable> -version`` and looks for the expected signature."""
        try:
            result = subprocess.run(
                [str(executable), "-version"],
                capture_output=True,
                text=True,
                timeout=self.verify_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.warning(f"ENCODER_VERIFY_FAILED: {executable}: {e}")
            return False
        output = (result.stdout or "") + (result.stderr or "")
        return result.returncode == 0 and self.version_signature in output
