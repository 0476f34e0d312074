from __future__ import annotations

import json
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import CommitConfig, DatabaseConfig, ImportConfig

"""Config loader.

Responsibilities:
- Load YAML (default ``config/import.yml``)
- Validate against the packaged JSON schema (``config_schema.json``)
- Apply defaults (chunk size 10, 50 ms pause, ``logs`` error log dir)
- Resolve the connection string and acting owner, environment first
"""

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
    "ConfigError",
    "load_config",
    "resolve_dsn",
    "resolve_owner",
]

DEFAULT_CONFIG_PATH = Path("config") / "import.yml"
SCHEMA_PATH = Path(__file__).with_name("config_schema.json")

# libpq 環境変数 -> DatabaseConfig フィールド
_PG_ENV = {
    "PGHOST": "host",
    "PGPORT": "port",
    "PGUSER": "user",
    "PGPASSWORD": "password",
    "PGDATABASE": "database",
}


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: The schema file is missing or invalid, or the config
            data violates it (unknown keys, wrong types, out of range values).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = ".".join(str(p) for p in e.absolute_path)
        prefix = f"{where}: " if where else ""
        raise ConfigError(f"config validation failed: {prefix}{e.message}") from e


def load_config(path: Path) -> ImportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")

    _validate_config_schema(data)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    commit_raw = data.get("commit") or {}
    defaults = CommitConfig()
    commit = CommitConfig(
        chunk_size=commit_raw.get("chunk_size", defaults.chunk_size),
        pause_seconds=float(commit_raw.get("pause_seconds", defaults.pause_seconds)),
        max_workers=commit_raw.get("max_workers"),
    )
    return ImportConfig(
        database=db,
        commit=commit,
        owner=data.get("owner"),
        error_log_dir=data.get("error_log_dir", "logs"),
        sheet_name=data.get("sheet_name"),
    )


def _dsn_from_parts(parts: Mapping[str, Any]) -> str | None:
    if not any(parts.values()):
        return None
    return " ".join(f"{key}={value}" for key, value in (
        ("host", parts.get("host")),
        ("port", parts.get("port")),
        ("user", parts.get("user")),
        ("password", parts.get("password")),
        ("dbname", parts.get("database")),
    ) if value not in (None, ""))


def resolve_dsn(config: ImportConfig, environ: Mapping[str, str] | None = None) -> str:
    """Pick the connection string: DATABASE_URL > PGDSN > PG* > YAML.

    Raises:
        ConfigError: No connection information anywhere
    """
    env = os.environ if environ is None else environ
    for key in ("DATABASE_URL", "PGDSN"):
        if env.get(key):
            return env[key]

    pg_parts = {field: env.get(var) for var, field in _PG_ENV.items()}
    if any(pg_parts.values()):
        # 欠けている部分は YAML で補う
        db = config.database
        merged = {
            "host": pg_parts["host"] or db.host,
            "port": pg_parts["port"] or db.port,
            "user": pg_parts["user"] or db.user,
            "password": pg_parts["password"] or db.password,
            "database": pg_parts["database"] or db.database,
        }
        dsn = _dsn_from_parts(merged)
        if dsn:
            return dsn

    db = config.database
    if db.dsn:
        return db.dsn
    dsn = _dsn_from_parts(
        {"host": db.host, "port": db.port, "user": db.user, "password": db.password, "database": db.database}
    )
    if dsn:
        return dsn
    raise ConfigError("database connection is not configured (set DATABASE_URL or database.* in config)")


def resolve_owner(
    config: ImportConfig, cli_owner: str | None = None, environ: Mapping[str, str] | None = None
) -> str | None:
    """--owner > IMPORT_OWNER > config ``owner``."""
    env = os.environ if environ is None else environ
    return cli_owner or env.get("IMPORT_OWNER") or config.owner
