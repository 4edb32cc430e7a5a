"""
Runtime configuration, read from PVOL_* environment variables or a .env file.
"""
from multiprocessing import cpu_count
from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_CACHE_TTL_S


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PVOL_", env_file=".env", extra="ignore")

    # Archive of ODIM HDF5 scans, one file per elevation
    archive_path: str = "data/ewr/archive"
    file_pattern: str = "*.h5"

    # Default raster resolution of generated images
    image_width: int = Field(1024, gt=0)
    image_height: int = Field(1024, gt=0)

    # Cache backend
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl_seconds: int = Field(DEFAULT_CACHE_TTL_S, gt=0)
    memory_cache_max_bytes: int = Field(512 * 1024 * 1024, gt=0)

    # Background processing
    process_on_startup: bool = True
    watch_directory: bool = True
    watch_poll_interval: float = Field(1.0, gt=0)
    debounce_seconds: float = Field(2.0, ge=0)

    # Numeric loops
    n_workers: Optional[int] = Field(None, ge=1)

    # Filters applied to every channel before rasterization, in order
    filters: List[str] = ["speckle"]

    log_level: str = "INFO"

    def resolved_workers(self) -> int:
        return self.n_workers or max(1, cpu_count() - 1)
