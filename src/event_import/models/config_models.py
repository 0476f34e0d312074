from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the event import tool.

Built by config.loader from config/import.yml after JSON schema validation.
Environment variables (.env included) take precedence over the database and
owner values found here.
"""

DEFAULT_CHUNK_SIZE = 10
DEFAULT_PAUSE_SECONDS = 0.05


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback configuration."""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class CommitConfig:
    """Batch committer tuning."""
    chunk_size: int = DEFAULT_CHUNK_SIZE  # 同時 create 上限
    pause_seconds: float = DEFAULT_PAUSE_SECONDS  # chunk 間の協調的 pause
    max_workers: int | None = None  # None -> chunk_size


@dataclass(frozen=True)
class ImportConfig:
    """Root configuration object for an import run."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    commit: CommitConfig = field(default_factory=CommitConfig)
    owner: str | None = None  # 作成レコードに付与する user_id
    error_log_dir: str = "logs"
    sheet_name: str | None = None  # None -> 先頭シート
