"""
Configuration settings for featuresignal.

Defaults for tiling, pairing detection, normalization constants and
parallelism, overridable through environment variables prefixed with
``FEATURESIGNAL_`` or a ``.env`` file.
"""

import logging
from pathlib import Path
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "featuresignal"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # Paths
    results_dir: Path = Field(default_factory=lambda: Path.cwd() / "results")

    # Tiling / fragment reconstruction defaults
    default_n_tile: int = 100
    default_pairing_mode: str = "auto"  # auto, paired or single
    pairing_probe_reads: int = 1000  # records inspected by is_paired_end_bam

    # Normalization: count * count_scale / library_size * fragment_scale / fragment_length
    count_scale: float = 1e8
    fragment_scale: float = 100.0

    # Parallel sample processing
    max_workers: int = 1

    class Config:
        env_prefix = "FEATURESIGNAL_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    def ensure_directories(self):
        """Create the results directory if it doesn't exist."""
        self.results_dir.mkdir(parents=True, exist_ok=True)


def configure_logging(level: str = None) -> None:
    """Configure root logging once, using ``settings.log_level`` by default."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# Global settings instance
settings = Settings()
