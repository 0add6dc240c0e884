import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel

from compresso.domain.errors import ValidationError
from compresso.domain.models import (
    EncodeSettings,
    OutputFormat,
    Preset,
    ValidatedPath,
    VideoMetadata,
)
from compresso.infrastructure.atomic_output import temp_path_for

# (quality, crf) anchors; quality in between interpolates linearly
QUALITY_CRF_TABLE: Tuple[Tuple[int, int], ...] = ((0, 36), (25, 33), (50, 30), (75, 27), (100, 24))

VALID_ROTATIONS = (0, 90, 180, 270, -90, -180, -270)

# input extension -> container family used when nothing else decides the format
CONTAINER_FAMILIES: Dict[str, OutputFormat] = {
    ".mp4": OutputFormat.MP4,
    ".m4v": OutputFormat.MP4,
    ".mov": OutputFormat.MOV,
    ".webm": OutputFormat.WEBM,
    ".avi": OutputFormat.AVI,
    ".mkv": OutputFormat.MKV,
}

EVEN_DIMENSIONS_FILTER = "pad=ceil(iw/2)*2:ceil(ih/2)*2"


def quality_to_crf(quality: int) -> int:
    """Maps 0..100 quality to a CRF (higher quality gives a lower CRF)."""
    q = max(0, min(100, int(quality)))
    for (lo_q, lo_crf), (hi_q, hi_crf) in zip(QUALITY_CRF_TABLE, QUALITY_CRF_TABLE[1:]):
        if q <= hi_q:
            return hi_crf + (lo_crf - hi_crf) * (hi_q - q) // (hi_q - lo_q)
    return QUALITY_CRF_TABLE[-1][1]


def container_family(path: Path) -> OutputFormat:
    return CONTAINER_FAMILIES.get(path.suffix.lower(), OutputFormat.MP4)


def default_output_path(input_path: Path, settings: EncodeSettings) -> Path:
    """``<stem>_compressed.<ext>`` beside the input."""
    if settings.format:
        try:
            fmt = OutputFormat.parse(settings.format)
        except ValueError as e:
            raise ValidationError(str(e), path=input_path) from e
    else:
        fmt = container_family(input_path)
    return input_path.with_name(f"{input_path.stem}_compressed.{fmt.extension}")


def _rotation_filter(rotation: int) -> Optional[str]:
    if rotation in (90, -270):
        return "transpose=1"
    if rotation in (-90, 270):
        return "transpose=2"
    if rotation in (180, -180):
        return "hflip,vflip"
    return None


class ArgumentPlan(BaseModel):
    """Everything needed to launch one encode: argument vector plus the paths it touches."""

    args: List[str]
    output_format: OutputFormat
    crf: int
    filters: List[str] = []
    final_path: Path
    temp_path: Path
    expected_duration: Optional[float] = None

    def argv(self, executable) -> List[str]:
        return [str(executable)] + self.args


class SettingsCompiler:
    """Translates EncodeSettings into an encoder argument vector.

    Compilation is pure: nothing touches the filesystem and identical inputs
    give identical plans.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def resolve_format(self, settings: EncodeSettings, input_path: Path, output_path: Path) -> OutputFormat:
        if settings.format:
            requested = settings.format
        elif output_path.suffix:
            requested = output_path.suffix
        else:
            return container_family(input_path)
        try:
            return OutputFormat.parse(requested)
        except ValueError as e:
            raise ValidationError(str(e), path=output_path) from e

    def build_filters(self, settings: EncodeSettings, metadata: Optional[VideoMetadata] = None) -> List[str]:
        """Filter chain in fixed order: crop, rotate, flip, scale, pad, fps."""
        filters: List[str] = []

        if settings.crop is not None:
            c = settings.crop
            if c.width <= 0 or c.height <= 0 or c.x < 0 or c.y < 0:
                raise ValidationError(f"Invalid crop {c.width}x{c.height}:{c.x}:{c.y}")
            if metadata and metadata.width > 0 and metadata.height > 0:
                if c.x + c.width > metadata.width or c.y + c.height > metadata.height:
                    raise ValidationError(
                        f"Crop {c.width}x{c.height}:{c.x}:{c.y} exceeds source {metadata.width}x{metadata.height}"
                    )
            filters.append(f"crop={c.width}:{c.height}:{c.x}:{c.y}")

        if settings.rotation is not None:
            if settings.rotation not in VALID_ROTATIONS:
                raise ValidationError(f"Invalid rotation {settings.rotation}. Use one of 90, 180, 270, -90, -180, -270")
            rotate = _rotation_filter(settings.rotation)
            if rotate:
                filters.append(rotate)

        if settings.flip_horizontal:
            filters.append("hflip")
        if settings.flip_vertical:
            filters.append("vflip")

        for name, value in (("width", settings.width), ("height", settings.height)):
            if value is not None and value <= 0:
                raise ValidationError(f"Invalid {name} {value}: must be positive")
        if settings.width and settings.height:
            filters.append(f"scale={settings.width}:{settings.height}")
        elif settings.width:
            filters.append(f"scale={settings.width}:-2")
        elif settings.height:
            filters.append(f"scale=-2:{settings.height}")

        filters.append(EVEN_DIMENSIONS_FILTER)

        if settings.fps is not None:
            if settings.fps <= 0:
                raise ValidationError(f"Invalid fps {settings.fps}: must be positive")
            filters.append(f"fps={settings.fps:g}")

        return filters

    def _codec_args(self, settings: EncodeSettings, fmt: OutputFormat, crf: int) -> List[str]:
        if fmt is OutputFormat.WEBM:
            cmd = ["-c:v", "libvpx-vp9", "-crf", str(crf), "-b:v", "0"]
            if settings.preset == Preset.QUALITY_PRIORITY:
                cmd.extend(["-deadline", "good", "-cpu-used", "0"])
            else:
                cmd.extend(["-deadline", "realtime", "-cpu-used", "8"])
        else:
            cmd = ["-c:v", "libx264", "-crf", str(crf)]
            if settings.preset == Preset.QUALITY_PRIORITY:
                cmd.extend(["-preset", "veryslow"])
            else:
                cmd.extend(["-preset", "ultrafast", "-tune", "fastdecode"])

        if settings.preset == Preset.QUALITY_PRIORITY:
            cmd.extend(["-pix_fmt", "yuv420p"])
            if fmt in (OutputFormat.MP4, OutputFormat.MOV):
                cmd.extend(["-movflags", "+faststart"])

        if settings.mute:
            cmd.append("-an")
        elif fmt is OutputFormat.WEBM:
            cmd.extend(["-c:a", "libopus"])
        return cmd

    def validate(self, settings: EncodeSettings, input_path: Path, output_path: Path) -> OutputFormat:
        """Checks everything that does not need probe metadata.

        Called before the encoder is resolved or ffprobe runs, so invalid
        settings never spawn a process. Only the crop-versus-source bounds
        check is left for :meth:`compile`.
        """
        fmt = self.resolve_format(settings, input_path, output_path)
        self.build_filters(settings)
        return fmt

    def compile(
        self,
        settings: EncodeSettings,
        input: ValidatedPath,
        output: ValidatedPath,
        metadata: Optional[VideoMetadata] = None,
        job_id: Optional[str] = None,
        nonce: Optional[str] = None,
    ) -> ArgumentPlan:
        """Builds the plan. Raises ValidationError on semantically invalid settings.

        The temp file is named after ``job_id`` and ``nonce``; callers pass a
        fresh nonce per run so a temp file left by a killed run never clashes.
        """
        fmt = self.resolve_format(settings, input.real_path, output.real_path)
        filters = self.build_filters(settings, metadata)
        crf = quality_to_crf(settings.quality)
        temp_path = temp_path_for(output.real_path, "-".join(p for p in (job_id, nonce) if p) or None)

        cmd = [
            "-hide_banner",
            "-nostdin",
            "-y",  # temp file is pre-created
            "-loglevel", "error",
            "-nostats",
            "-progress", "pipe:2",
            "-i", str(input.real_path),
        ]
        if filters:
            cmd.extend(["-vf", ",".join(filters)])
        cmd.extend(self._codec_args(settings, fmt, crf))
        cmd.extend(["-f", fmt.muxer, str(temp_path)])

        duration = metadata.duration if metadata and metadata.duration and metadata.duration > 0 else None
        self.logger.debug(f"COMPILE: {input.real_path.name} fmt={fmt.value} crf={crf} filters={filters}")
        return ArgumentPlan(
            args=cmd,
            output_format=fmt,
            crf=crf,
            filters=filters,
            final_path=output.real_path,
            temp_path=temp_path,
            expected_duration=duration,
        )
