"""Worker configuration via environment variables."""

from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_bucket: str = "log-files"
    supabase_table: str = "log_stats"

    # Redis (queue + job update fan-out)
    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "log-processing-queue"
    updates_channel: str = "job-updates"
    recent_updates_key: str = "recent-job-updates"
    max_stored_updates: int = 100
    worker_id: Optional[str] = None

    # Collaborator backends
    queue_backend: str = "memory"  # "memory" or "redis"
    store_backend: str = "memory"  # "memory" or "supabase"
    blob_backend: str = "local"  # "local" or "supabase"
    local_blob_dir: str = "/data/uploads"

    # Job processing
    monitored_keywords: str = "error,exception,fail,timeout"
    worker_concurrency: int = 4
    job_timeout_seconds: float = 180.0
    terminal_write_timeout_seconds: float = 10.0

    # Progress checkpoints
    progress_batch_size: int = 1000
    progress_interval_seconds: float = 5.0
    progress_min_step: int = 5
    average_line_bytes: int = 200

    # Backpressure
    memory_check_interval_seconds: float = 5.0
    memory_threshold_percent: float = 80.0
    backpressure_pause_seconds: float = 0.5

    # File retrieval
    download_max_attempts: int = 3
    download_backoff_seconds: float = 1.0

    # Scratch files
    scratch_dir: Optional[str] = None
    scratch_ttl_hours: int = 2

    api_port: int = 8000
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def keyword_list(self) -> List[str]:
        """Monitored keywords, trimmed and lower-cased, empties dropped."""
        return [k.strip().lower() for k in self.monitored_keywords.split(",") if k.strip()]


settings = Settings()
