from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from compresso.domain.models import Preset

DEFAULT_EXTENSIONS = [".mp4", ".mov", ".webm", ".avi", ".mkv", ".m4v", ".wmv", ".flv"]


class GeneralConfig(BaseModel):
    extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    recursive: bool = False
    overwrite: bool = False
    debug: bool = False
    log_dir: Optional[Path] = None
    stale_temp_hours: float = Field(default=24.0, ge=0.0)

    @field_validator('extensions')
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return normalized


class EncoderConfig(BaseModel):
    ffmpeg_path: Optional[str] = None
    ffprobe_path: Optional[str] = None
    verify_bundled: bool = False
    version_signature: str = "ffmpeg version"
    verify_timeout_seconds: float = Field(default=10.0, gt=0)
    grace_period_seconds: float = Field(default=5.0, gt=0)
    tail_lines: int = Field(default=20, ge=1)


class SecurityConfig(BaseModel):
    extra_protected_dirs: List[Path] = Field(default_factory=list)


class DefaultsConfig(BaseModel):
    quality: int = Field(default=70, ge=0, le=100)
    preset: Preset = Preset.SPEED_PRIORITY

    @field_validator('preset', mode='before')
    @classmethod
    def parse_preset(cls, v):
        return Preset.parse(v)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
