from __future__ import annotations

import json
import os
from dataclasses import replace
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import (
    ConverterConfig,
    DatabaseConfig,
    ImportSettings,
    IngestConfig,
    StorageConfig,
    UploadConfig,
)

"""Config loader.

Responsibilities:
- Load YAML (``config/ingest.yml`` by default; the default file is optional,
  an explicitly given one is not)
- Validate against the bundled JSON schema
- Apply defaults, then environment overrides (env wins over the file)
"""

__all__ = [
    "ConfigError",
    "load_config",
    "load_yaml_document",
    "validate_document",
    "DEFAULT_CONFIG_PATH",
    "SCHEMA_PATH",
]

DEFAULT_CONFIG_PATH = Path("config/ingest.yml")
SCHEMA_PATH = Path(__file__).with_name("schema.json")

# env var -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "COLLECTION_NOTICE_CHUNK_SIZE": ("uploads", "chunk_size"),
    "COLLECTION_NOTICE_MAX_FILE_SIZE": ("uploads", "max_file_size"),
    "COLLECTION_NOTICE_UPLOAD_TTL": ("uploads", "ttl_minutes"),
    "COLLECTION_STORAGE_ROOT": ("storage", "root"),
    "EXCEL_CONVERTER_BINARY": ("converter", "binary_path"),
}
_INT_KEYS = {"chunk_size", "max_file_size", "ttl_minutes"}


class ConfigError(Exception):
    pass


def validate_document(data: dict[str, Any], schema_path: Path) -> None:
    """Validate ``data`` against the JSON schema at ``schema_path``.

    Raises:
        ConfigError: schema missing or invalid, or the data violates it
    """
    if not schema_path.exists():
        raise ConfigError(f"schema not found: {schema_path}")
    try:
        schema = json.loads(schema_path.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        suffix = f" (at {where})" if where else ""
        raise ConfigError(f"validation failed: {e.message}{suffix}") from e


def load_yaml_document(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"top level of {path} must be a mapping")
    return data


def _env_value(name: str, key: str) -> Any:
    raw = os.environ[name].strip()
    if key in _INT_KEYS:
        try:
            return int(raw)
        except ValueError as e:
            raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    return raw


def _apply_env(cfg: IngestConfig) -> IngestConfig:
    sections: dict[str, Any] = {
        "storage": cfg.storage,
        "uploads": cfg.uploads,
        "converter": cfg.converter,
    }
    for name, (section, key) in ENV_OVERRIDES.items():
        if not os.environ.get(name, "").strip():
            continue
        value = _env_value(name, key)
        if key == "root":
            value = Path(value)
        sections[section] = replace(sections[section], **{key: value})
    return replace(cfg, **sections)


def load_config(path: Path | None = None) -> IngestConfig:
    if path is None:
        path = DEFAULT_CONFIG_PATH
        data = load_yaml_document(path) if path.exists() else {}
    else:
        if not path.exists():
            raise ConfigError(f"config file not found: {path}")
        data = load_yaml_document(path)

    validate_document(data, SCHEMA_PATH)

    storage = data.get("storage", {})
    uploads = data.get("uploads", {})
    converter = data.get("converter", {})
    imports = data.get("import", {})
    db_raw = data.get("database", {})
    defaults = IngestConfig()
    cfg = IngestConfig(
        storage=StorageConfig(root=Path(storage.get("root", defaults.storage.root))),
        uploads=UploadConfig(
            chunk_size=uploads.get("chunk_size", defaults.uploads.chunk_size),
            max_file_size=uploads.get("max_file_size", defaults.uploads.max_file_size),
            ttl_minutes=uploads.get("ttl_minutes", defaults.uploads.ttl_minutes),
        ),
        converter=ConverterConfig(
            binary_path=converter.get("binary_path", defaults.converter.binary_path),
            timeout_seconds=converter.get("timeout_seconds", defaults.converter.timeout_seconds),
            prefer_native=converter.get("prefer_native", defaults.converter.prefer_native),
        ),
        imports=ImportSettings(
            batch_size=imports.get("batch_size", defaults.imports.batch_size),
            progress_every=imports.get("progress_every", defaults.imports.progress_every),
            delimiter=imports.get("delimiter", defaults.imports.delimiter),
            strategy=imports.get("strategy", defaults.imports.strategy),
        ),
        database=DatabaseConfig(
            host=db_raw.get("host"),
            port=db_raw.get("port"),
            user=db_raw.get("user"),
            password=db_raw.get("password"),
            database=db_raw.get("database"),
            dsn=db_raw.get("dsn"),
        ),
        required_columns={
            code.upper(): list(cols) for code, cols in (data.get("required_columns") or {}).items()
        },
    )
    return _apply_env(cfg)
