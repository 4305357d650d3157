"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from imgbatch.imgproc.fit import TargetSpec


def _load_env_file(path: str = ".env") -> None:
    """Populate os.environ from the provided .env file if it exists."""

    env_path = Path(path)
    if not env_path.exists():
        return

    for line in env_path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True, slots=True)
class Settings:
    """Centralised service settings based on OS environment variables."""

    environment: str = "dev"
    log_level: str = "INFO"

    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: tuple[str, ...] = ("*",)
    metrics_enabled: bool = True

    target_width: int = 1260
    target_height: int = 1726
    max_file_size: int = 500_000
    start_quality: int = 95
    quality_floor: int = 10
    quality_step: int = 5
    aspect_threshold: float = 0.10
    allow_upscale: bool = False
    letterbox: bool = True
    keep_original: bool = True
    sharpen: bool = True

    zip_compression_level: int = 9
    archive_filename: str = "processed-images.zip"
    session_grace_seconds: float = 5.0
    heartbeat_seconds: float = 15.0

    def target_spec(self) -> TargetSpec:
        """Build the normalisation target from the configured values."""

        return TargetSpec(
            width=self.target_width,
            height=self.target_height,
            max_bytes=self.max_file_size,
            start_quality=self.start_quality,
            quality_floor=self.quality_floor,
            quality_step=self.quality_step,
            aspect_similarity_threshold=self.aspect_threshold,
            allow_upscale=self.allow_upscale,
            letterbox=self.letterbox,
            keep_original=self.keep_original,
            sharpen=self.sharpen,
        )


def _build_settings() -> Settings:
    _load_env_file()

    return Settings(
        environment=os.getenv("ENVIRONMENT", "dev"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        cors_origins=_env_list("CORS_ORIGINS", "*"),
        metrics_enabled=_env_bool("METRICS_ENABLED", True),
        target_width=int(os.getenv("TARGET_WIDTH", "1260")),
        target_height=int(os.getenv("TARGET_HEIGHT", "1726")),
        max_file_size=int(os.getenv("MAX_FILE_SIZE", "500000")),
        start_quality=int(os.getenv("START_QUALITY", "95")),
        quality_floor=int(os.getenv("QUALITY_FLOOR", "10")),
        quality_step=int(os.getenv("QUALITY_STEP", "5")),
        aspect_threshold=float(os.getenv("ASPECT_THRESHOLD", "0.10")),
        allow_upscale=_env_bool("ALLOW_UPSCALE", False),
        letterbox=_env_bool("LETTERBOX", True),
        keep_original=_env_bool("KEEP_ORIGINAL", True),
        sharpen=_env_bool("SHARPEN", True),
        zip_compression_level=int(os.getenv("ZIP_COMPRESSION_LEVEL", "9")),
        archive_filename=os.getenv("ARCHIVE_FILENAME", "processed-images.zip"),
        session_grace_seconds=float(os.getenv("SESSION_GRACE_SECONDS", "5")),
        heartbeat_seconds=float(os.getenv("HEARTBEAT_SECONDS", "15")),
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance to avoid re-reading configuration."""

    return _build_settings()
