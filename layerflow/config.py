"""
Runtime configuration for layerflow.

Settings come from environment variables, optionally seeded from a .env file.
"""
import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Hard ceiling on error samples kept per run stage
MAX_ERROR_SAMPLES_PER_STAGE = 1000


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    """
    Application settings.

    Attributes:
        db_host: PostgreSQL host
        db_port: PostgreSQL port
        db_name: Database holding the catalog and run history
        db_user: Database user
        db_password: Database password (required to open a pool)
        db_pool_min: Minimum pool size
        db_pool_max: Maximum pool size
        worker_url: Base URL of the transform worker
        worker_connect_timeout: Seconds allowed to establish a worker connection
        stage_deadline_seconds: Seconds a single stage may run; None disables the deadline
        error_sample_limit: Error samples persisted per stage (at most 1000)
        default_warehouse_uri: Warehouse URI used when a project does not set one
        log_level: Logging level name
        log_format: "json" or "text"
    """

    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "layerflow"
    db_user: str = "layerflow"
    db_password: str | None = None
    db_pool_min: int = 1
    db_pool_max: int = 5
    worker_url: str = "http://localhost:8080"
    worker_connect_timeout: float = 10.0
    stage_deadline_seconds: float | None = 3600.0
    error_sample_limit: int = MAX_ERROR_SAMPLES_PER_STAGE
    default_warehouse_uri: str | None = None
    log_level: str = "INFO"
    log_format: str = "json"

    def __post_init__(self) -> None:
        if not 1 <= self.error_sample_limit <= MAX_ERROR_SAMPLES_PER_STAGE:
            raise ValueError(
                f"error_sample_limit must be between 1 and {MAX_ERROR_SAMPLES_PER_STAGE}, "
                f"got {self.error_sample_limit}"
            )
        if self.stage_deadline_seconds is not None and self.stage_deadline_seconds <= 0:
            raise ValueError("stage_deadline_seconds must be positive or None")
        if self.log_format not in ("json", "text"):
            raise ValueError(f"log_format must be 'json' or 'text', got {self.log_format!r}")

    def pool_kwargs(self) -> dict:
        """Keyword arguments for DatabaseConnectionPool"""
        return {
            "host": self.db_host,
            "port": self.db_port,
            "database": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
            "min_size": self.db_pool_min,
            "max_size": self.db_pool_max,
        }


def load_settings(env_file: str | None = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env_file: Optional .env file loaded before reading variables.
            Values already present in the environment win.

    Returns:
        Settings instance
    """
    if env_file:
        load_dotenv(env_file, override=False)

    deadline = _env_float("STAGE_DEADLINE_SECONDS", 3600.0)

    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=_env_int("DB_PORT", 5432),
        db_name=os.getenv("DB_NAME", "layerflow"),
        db_user=os.getenv("DB_USER", "layerflow"),
        db_password=os.getenv("DB_PASSWORD") or None,
        db_pool_min=_env_int("DB_POOL_MIN", 1),
        db_pool_max=_env_int("DB_POOL_MAX", 5),
        worker_url=os.getenv("WORKER_URL", "http://localhost:8080"),
        worker_connect_timeout=_env_float("WORKER_CONNECT_TIMEOUT", 10.0),
        stage_deadline_seconds=deadline if deadline > 0 else None,
        error_sample_limit=_env_int("ERROR_SAMPLE_LIMIT", MAX_ERROR_SAMPLES_PER_STAGE),
        default_warehouse_uri=os.getenv("DEFAULT_WAREHOUSE_URI") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "json"),
    )
