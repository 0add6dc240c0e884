import glob
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from compresso.config.models import DEFAULT_EXTENSIONS
from compresso.infrastructure.atomic_output import is_temp_file


# (offset, signature) pairs of container headers
VIDEO_SIGNATURES: Tuple[Tuple[int, bytes], ...] = (
    (4, b"ftyp"),                # mp4, mov, m4v, 3gp
    (0, b"\x1aE\xdf\xa3"),       # matroska, webm
    (0, b"FLV\x01"),
    (0, b"0&\xb2u\x8e\x66\xcf\x11"),  # asf, wmv
    (0, b"\x00\x00\x01\xba"),    # mpeg program stream
    (0, b"\x00\x00\x01\xb3"),    # mpeg video
)
HEADER_BYTES = 16


def sniff_video_header(path: Path) -> bool:
    """True when the first bytes of ``path`` look like a video container."""
    try:
        with open(path, "rb") as f:
            header = f.read(HEADER_BYTES)
    except OSError:
        return False
    if header[:4] == b"RIFF" and header[8:12] == b"AVI ":
        return True
    return any(header[offset:offset + len(sig)] == sig for offset, sig in VIDEO_SIGNATURES)


class FileScanner:
    """Finds video files in directories and expands glob patterns."""

    def __init__(self, extensions: Optional[List[str]] = None, recursive: bool = False):
        self.extensions = [e.lower() for e in (extensions or DEFAULT_EXTENSIONS)]
        self.recursive = recursive
        self.logger = logging.getLogger(__name__)

    def is_video_file(self, path: Path) -> bool:
        if is_temp_file(path):
            return False
        if path.suffix.lower() in self.extensions:
            return True
        # unknown extension: decide by content
        return path.is_file() and sniff_video_header(path)

    def scan(self, directory: Path) -> Iterator[Path]:
        """Yields video files under ``directory`` in sorted order."""
        pattern = "**/*" if self.recursive else "*"
        for path in sorted(directory.glob(pattern)):
            if path.is_file() and self.is_video_file(path):
                yield path

    def expand(self, inputs: Sequence[str]) -> List[str]:
        """Expands directories and glob patterns; plain file arguments pass through untouched.

        Plain files are not checked here so that a missing or unsafe path
        becomes a failed job instead of silently disappearing.
        """
        expanded: List[str] = []
        for raw in inputs:
            path = Path(raw).expanduser()
            if path.is_dir():
                found = [str(p) for p in self.scan(path)]
                if not found:
                    self.logger.warning(f"SCAN_EMPTY: no video files in {path}")
                expanded.extend(found)
            elif glob.has_magic(raw) and not path.exists():
                matches = sorted(glob.glob(str(path), recursive=self.recursive))
                if not matches:
                    self.logger.warning(f"SCAN_EMPTY: pattern {raw} matched nothing")
                expanded.extend(m for m in matches if Path(m).is_file() and self.is_video_file(Path(m)))
            else:
                expanded.append(raw)
        self.logger.info(f"SCAN: {len(expanded)} input(s) from {len(inputs)} argument(s)")
        return expanded
