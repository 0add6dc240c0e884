import subprocess
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from compresso.domain.errors import ValidationError
from compresso.domain.models import VideoMetadata


def _parse_rate(value: Optional[str]) -> float:
    """Parses ffprobe rates like ``30000/1001`` or ``25``."""
    if not value:
        return 0.0
    try:
        if "/" in value:
            num, den = map(float, value.split("/"))
            return num / den if den else 0.0
        return float(value)
    except ValueError:
        return 0.0


class FFprobeAdapter:
    """Wrapper around ffprobe to extract stream information."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: float = 60.0):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def get_stream_info(self, file_path: Path) -> Dict[str, Any]:
        """Executes ffprobe and parses JSON output."""
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ValidationError(f"ffprobe could not be run for {file_path}: {e}", path=file_path) from e
        if result.returncode != 0:
            raise ValidationError(
                f"ffprobe failed for {file_path}: {result.stderr.strip() or 'unreadable or corrupted video'}",
                path=file_path,
            )

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ValidationError(f"ffprobe returned invalid JSON for {file_path}", path=file_path) from e

        video_stream = next((s for s in data.get("streams", []) if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ValidationError(f"No video stream found in {file_path}", path=file_path)

        # avg_frame_rate is the real rate; r_frame_rate is often the timebase
        fps = _parse_rate(video_stream.get("avg_frame_rate")) or _parse_rate(video_stream.get("r_frame_rate"))
        if fps > 240:
            fps = 0.0

        fmt = data.get("format", {})
        duration = fmt.get("duration") or video_stream.get("duration")
        bit_rate = fmt.get("bit_rate")

        return {
            "width": int(video_stream.get("width", 0)),
            "height": int(video_stream.get("height", 0)),
            "codec": video_stream.get("codec_name", "unknown"),
            "fps": round(fps, 3),
            "duration": float(duration) if duration not in (None, "N/A") else None,
            "bitrate_kbps": float(bit_rate) / 1000 if bit_rate not in (None, "N/A") else None,
        }

    def probe(self, file_path: Path) -> VideoMetadata:
        """Lightweight metadata probe used to size progress and validate transforms."""
        info = self.get_stream_info(file_path)
        self.logger.debug(f"PROBE: {file_path.name} {info}")
        return VideoMetadata(**info)
