# helpcast/config.py
import sys
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 20
    pg_connect_timeout: int = 5
    pg_command_timeout: float = 30.0

    # Security
    allowed_origins: list[str] = ["*"]
    metrics_token: str | None = None  # Bearer token for /metrics (unset: open in dev, forbidden in prod)

    # Push delivery collaborator
    # Base URL of the service exposing POST /api/push/job-alert
    push_base_url: str | None = None
    push_timeout_seconds: float = 10.0

    # S3/Bucket Storage (for request media)
    s3_endpoint_url: str | None = None  # e.g., https://s3.amazonaws.com or https://xyz.r2.cloudflarestorage.com
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_bucket_name: str | None = None
    s3_region: str = "auto"
    s3_public_url: str | None = None  # Public URL prefix for serving files (e.g., https://cdn.example.com)
    s3_force_path_style: bool = True

    # Broadcast matching
    broadcast_default_radius_km: float = 15.0   # Upper bound on any helper's own radius
    broadcast_fallback_radius_km: float = 25.0  # Proximity-only fallback radius
    broadcast_fallback_limit: int = 5           # Nearest N helpers in fallback mode
    broadcast_expiry_minutes: int = 30
    job_alert_countdown_seconds: int = 30       # Acceptance window shown to helpers

    # Background worker pool (in-process)
    worker_pool_size: int = 4
    worker_queue_size: int = 1000
    worker_shutdown_grace_seconds: float = 10.0
    external_call_timeout_seconds: float = 8.0  # Bound for each storage/network call in background chains

    # Dispatch recovery sweep
    recovery_sweep_enabled: bool = True
    recovery_sweep_interval_seconds: float = 60.0
    recovery_sweep_grace_seconds: int = 300     # Age before a pending dispatch is considered lost
    recovery_sweep_batch_size: int = 20

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def s3_enabled(self) -> bool:
        """Endpoint, credentials and bucket are all present"""
        return all((self.s3_endpoint_url, self.s3_access_key, self.s3_secret_key, self.s3_bucket_name))

    @property
    def push_enabled(self) -> bool:
        return bool(self.push_base_url)

    @property
    def database_dsn(self) -> str:
        """DATABASE_URL when set, otherwise assembled from the PG* parts"""
        return self.database_url or (
            f"postgresql://{self.pguser}:{self.pgpassword}@{self.pghost}:{self.pgport}/{self.pgdatabase}"
            f"?connect_timeout={self.pg_connect_timeout}"
        )

    def validate_required_for_production(self) -> list[str]:
        """Names of settings production cannot start without"""
        if not self.is_production:
            return []
        return [name for name in PRODUCTION_REQUIRED if not getattr(self, name)]


PRODUCTION_REQUIRED = ("database_url", "push_base_url")


def warn_on_risky_config(s: Settings) -> list[str]:
    """Settings that start fine but weaken the service"""
    checks = [
        (s.is_production and s.allowed_origins == ["*"],
         "prod: allowed_origins=['*'] (CORS is wide open)."),
        (not s.push_enabled,
         "push_base_url is not set (helpers will not receive push job alerts)."),
        (not s.s3_enabled,
         "S3 storage is not configured (inline media will be kept as-is)."),
        (s.s3_enabled and not s.s3_public_url,
         "s3_public_url is not set (stored media links fall back to the raw endpoint)."),
        (s.broadcast_fallback_radius_km < s.broadcast_default_radius_km,
         "broadcast_fallback_radius_km is smaller than broadcast_default_radius_km "
         "(fallback will reach fewer helpers than strict matching)."),
        (s.worker_pool_size < 1,
         "worker_pool_size < 1: background dispatch will never run."),
    ]
    return [message for failed, message in checks if failed]


def validate_or_warn(s: Settings) -> None:
    """Fail hard on missing production settings; print risky ones (logging is not configured yet)."""
    missing = s.validate_required_for_production()
    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for message in warn_on_risky_config(s):
        print(f"[config] WARNING: {message}", file=sys.stderr)


settings = Settings()
validate_or_warn(settings)
