"""Engine configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_EXCLUDE_DIRS = [
    ".git", "__pycache__", ".venv", "venv", "node_modules",
    "vendor", "dist", "build", ".next", ".nuxt", "coverage",
    ".pytest_cache", ".mypy_cache", "eggs", ".eggs", "backups",
]

DEFAULT_INCLUDE_EXTENSIONS = [
    ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs",
    ".py", ".rb", ".php", ".go", ".java",
    ".html", ".vue", ".svelte",
    ".json", ".yaml", ".yml", ".toml", ".env", ".txt",
]


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TRIAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Walker
    exclude_dirs: list[str] = DEFAULT_EXCLUDE_DIRS
    include_extensions: list[str] = DEFAULT_INCLUDE_EXTENSIONS
    max_file_size: int = 1 * 1024 * 1024  # 1MB

    # Workers
    scan_workers: int = 4
    unit_workers: int = 1

    # Units
    default_unit_timeout: float = 60.0

    # Report
    max_recommendations: int = 10

    @field_validator("include_extensions", mode="after")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Store extensions lower-cased with a leading dot."""
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return normalized

    @field_validator("scan_workers", "unit_workers", "max_recommendations", "max_file_size", mode="after")
    @classmethod
    def validate_positive_int(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @field_validator("default_unit_timeout", mode="after")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("default_unit_timeout must be greater than zero")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
