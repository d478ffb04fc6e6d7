"""Application configuration loaded from environment variables."""

from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Redis (job store, quota counters, RQ queue)
    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_db: int = 0

    # Queue
    queue_name: str = "file-transformation"
    job_timeout_seconds: int = 600

    # Backend
    backend_host: str = "0.0.0.0"
    backend_port: int = 9200

    # Admission: files at or above this size are always queued
    sync_threshold_bytes: int = 10 * 1024 * 1024

    # Quota limits (per organization)
    max_file_size_mb: float = 50.0
    concurrent_conversion_limit: int = 5
    monthly_conversion_limit: int = 1000

    # Output delivery
    storage_dir: str = "data/outputs"
    download_base_url: str = "http://127.0.0.1:9200/api/downloads"
    signing_secret: str = "change-me"
    signing_algorithm: str = "HS256"
    sync_url_ttl_seconds: int = 60 * 60
    async_url_ttl_seconds: int = 24 * 60 * 60

    @property
    def project_root(self) -> Path:
        return Path(__file__).parent.parent.parent

    @property
    def storage_path(self) -> Path:
        path = Path(self.storage_dir)
        if not path.is_absolute():
            path = self.project_root / path
        return path

    model_config = {"env_file": ".env", "env_prefix": "MUTATE_", "extra": "ignore"}


settings = Settings()
