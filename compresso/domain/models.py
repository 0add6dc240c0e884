import uuid
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from compresso.domain.errors import CommitError, CompressoError


class Preset(str, Enum):
    SPEED_PRIORITY = "speed"
    QUALITY_PRIORITY = "quality"

    @classmethod
    def parse(cls, value) -> "Preset":
        """Accepts enum values plus the historical preset names."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        aliases = {
            "speed": cls.SPEED_PRIORITY,
            "fast": cls.SPEED_PRIORITY,
            "thunderbolt": cls.SPEED_PRIORITY,
            "quality": cls.QUALITY_PRIORITY,
            "slow": cls.QUALITY_PRIORITY,
            "ironclad": cls.QUALITY_PRIORITY,
        }
        if key not in aliases:
            raise ValueError(f"Unknown preset: {value}. Use 'speed' (thunderbolt) or 'quality' (ironclad)")
        return aliases[key]


class OutputFormat(str, Enum):
    MP4 = "mp4"
    MOV = "mov"
    WEBM = "webm"
    AVI = "avi"
    MKV = "mkv"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def muxer(self) -> str:
        return "matroska" if self is OutputFormat.MKV else self.value

    @classmethod
    def parse(cls, value: str) -> "OutputFormat":
        key = str(value).strip().lower().lstrip(".")
        for member in cls:
            if member.value == key:
                return member
        supported = ", ".join(m.value for m in cls)
        raise ValueError(f"Unsupported format: {value}. Supported: {supported}")


class PathRole(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class CropRect(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int
    x: int = 0
    y: int = 0

    @classmethod
    def parse(cls, text: str) -> "CropRect":
        """Parses ``WxH:X:Y`` or ``W:H:X:Y``."""
        parts = text.strip().split(":")
        try:
            if len(parts) == 3:
                dims = parts[0].lower().split("x")
                if len(dims) != 2:
                    raise ValueError(text)
                return cls(width=int(dims[0]), height=int(dims[1]), x=int(parts[1]), y=int(parts[2]))
            if len(parts) == 4:
                return cls(width=int(parts[0]), height=int(parts[1]), x=int(parts[2]), y=int(parts[3]))
        except ValueError:
            pass
        raise ValueError(f"Invalid crop '{text}'. Expected WxH:X:Y or W:H:X:Y")


class EncodeSettings(BaseModel):
    """User-facing compression settings. Semantic checks happen in SettingsCompiler."""

    quality: int = 70
    preset: Preset = Preset.SPEED_PRIORITY
    format: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None
    mute: bool = False
    rotation: Optional[int] = None
    flip_horizontal: bool = False
    flip_vertical: bool = False
    crop: Optional[CropRect] = None

    @field_validator("preset", mode="before")
    @classmethod
    def parse_preset(cls, v):
        return Preset.parse(v)


class VideoMetadata(BaseModel):
    width: int = 0
    height: int = 0
    codec: str = "unknown"
    fps: float = 0.0
    duration: Optional[float] = None
    bitrate_kbps: Optional[float] = None


class ValidatedPath(BaseModel):
    model_config = ConfigDict(frozen=True)

    original: str
    real_path: Path
    role: PathRole
    redirected: bool = False
    warnings: Tuple[str, ...] = ()


class JobRequest(BaseModel):
    """Unvalidated unit of work as submitted by the caller."""

    input: str
    output: Optional[str] = None
    settings: EncodeSettings = Field(default_factory=EncodeSettings)
    overwrite: bool = False
    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])


class CompressionJob(BaseModel):
    job_id: str
    input: ValidatedPath
    output: ValidatedPath
    settings: EncodeSettings
    overwrite: bool = False
    status: JobStatus = JobStatus.PENDING
    metadata: Optional[VideoMetadata] = None


class ProgressFrame(BaseModel):
    model_config = ConfigDict(frozen=True)

    elapsed_seconds: float
    fps: Optional[float] = None
    speed: Optional[float] = None
    percent: Optional[float] = None
    eta_seconds: Optional[float] = None


class ErrorDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    message: str
    path: Optional[str] = None
    tail: List[str] = Field(default_factory=list)
    preserved_path: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: Exception) -> "ErrorDetail":
        if not isinstance(exc, CompressoError):
            return cls(kind="internal", message=f"{type(exc).__name__}: {exc}")
        preserved = exc.preserved_path if isinstance(exc, CommitError) else None
        return cls(
            kind=exc.kind,
            message=exc.message,
            path=str(exc.path) if exc.path else None,
            tail=exc.tail,
            preserved_path=str(preserved) if preserved else None,
        )


class JobResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    input_path: str
    output_path: Optional[str] = None
    status: JobStatus
    original_size: int = 0
    compressed_size: Optional[int] = None
    elapsed_seconds: float = 0.0
    error: Optional[str] = None
    error_detail: Optional[ErrorDetail] = None

    @computed_field
    @property
    def success(self) -> bool:
        return self.status == JobStatus.COMPLETED

    @property
    def bytes_saved(self) -> int:
        if self.compressed_size is None:
            return 0
        return max(0, self.original_size - self.compressed_size)


class BatchSummary(BaseModel):
    """Aggregate over job results. ``fold`` returns a new summary; instances never change."""

    model_config = ConfigDict(frozen=True)

    processed: int = 0
    successful: int = 0
    failed: int = 0
    cancelled: int = 0
    total_original_bytes: int = 0
    total_compressed_bytes: int = 0
    elapsed_seconds: float = 0.0
    results: Tuple[JobResult, ...] = ()

    @computed_field
    @property
    def bytes_saved(self) -> int:
        return max(0, self.total_original_bytes - self.total_compressed_bytes)

    @property
    def saved_percent(self) -> float:
        if self.total_original_bytes == 0:
            return 0.0
        return self.bytes_saved / self.total_original_bytes * 100.0

    def fold(self, result: JobResult) -> "BatchSummary":
        update = {
            "processed": self.processed + 1,
            "elapsed_seconds": self.elapsed_seconds + result.elapsed_seconds,
            "results": self.results + (result,),
        }
        if result.status == JobStatus.COMPLETED:
            update["successful"] = self.successful + 1
            update["total_original_bytes"] = self.total_original_bytes + result.original_size
            update["total_compressed_bytes"] = self.total_compressed_bytes + (result.compressed_size or 0)
        elif result.status == JobStatus.CANCELLED:
            update["cancelled"] = self.cancelled + 1
        else:
            update["failed"] = self.failed + 1
        return self.model_copy(update=update)
