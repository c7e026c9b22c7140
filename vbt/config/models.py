from typing import List, Optional
from pydantic import BaseModel, Field, field_validator


class GeneralConfig(BaseModel):
    threads: int = Field(default=4, gt=0)
    poll_interval_s: float = Field(default=0.5, ge=0.05, le=1.0)
    stop_grace_s: float = Field(default=10.0, ge=0.0)
    extensions: List[str] = Field(default_factory=lambda: [".mp4", ".mov", ".avi", ".mkv", ".flv", ".webm"])
    min_size_bytes: int = Field(default=0, ge=0)
    history_path: Optional[str] = None
    log_path: Optional[str] = None
    debug: bool = False

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]


class EncoderConfig(BaseModel):
    """Values passed through to ffmpeg; the scheduler never interprets them."""
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    video_codec: str = "libx264"
    crf: int = Field(default=23, ge=0, le=63)
    preset: str = "medium"
    audio_codec: str = "copy"
    container: str = ".mp4"
    extra_args: List[str] = Field(default_factory=list)
    use_hw_accel: bool = False
    output_suffix: str = "_out"
    enable_metadata_cache: bool = True
    metadata_cache_size: int = Field(default=100, ge=1)

    @field_validator("container")
    @classmethod
    def normalize_container(cls, v: str) -> str:
        return v if v.startswith(".") else f".{v}"


class MonitorConfig(BaseModel):
    """Memory pressure monitoring."""
    enabled: bool = True
    interval_s: float = Field(default=5.0, ge=0.1)
    memory_threshold_mb: int = Field(default=1024, gt=0)


class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    input_paths: List[str] = Field(default_factory=list)
    output_dir: Optional[str] = None
