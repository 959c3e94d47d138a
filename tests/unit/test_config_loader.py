from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from cobranza_ingest.config.loader import ENV_OVERRIDES, ConfigError, load_config
from cobranza_ingest.config.manifest import load_manifest
from cobranza_ingest.models.data_source import DataSourceCode
from cobranza_ingest.models.run import NoticeType


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


def _write(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_defaults_without_config_file(temp_workdir: Path):
    cfg = load_config()
    assert cfg.storage.root == Path("storage")
    assert cfg.uploads.chunk_size == 2 * 1024 * 1024
    assert cfg.uploads.ttl_minutes == 60
    assert cfg.imports.strategy == "resilient"
    assert cfg.imports.delimiter == ";"
    assert cfg.converter.prefer_native is True
    assert cfg.required_columns == {}


def test_default_file_is_read(temp_workdir: Path):
    _write(temp_workdir / "config" / "ingest.yml", {"import": {"batch_size": 10, "strategy": "copy"}})
    cfg = load_config()
    assert cfg.imports.batch_size == 10
    assert cfg.imports.strategy == "copy"
    assert cfg.imports.progress_every == 25


def test_full_config(temp_workdir: Path):
    path = _write(
        temp_workdir / "custom.yml",
        {
            "storage": {"root": "/data/cobranza"},
            "uploads": {"chunk_size": 1024, "max_file_size": 4096, "ttl_minutes": 0},
            "converter": {"binary_path": "/opt/conv", "timeout_seconds": 30, "prefer_native": False},
            "database": {"host": "db", "port": 5433, "user": "etl", "database": "cobranza"},
            "required_columns": {"BASCAR": ["NUM_TOMADOR"]},
        },
    )
    cfg = load_config(path)
    assert cfg.storage.root == Path("/data/cobranza")
    assert cfg.uploads.max_file_size == 4096
    assert cfg.uploads.ttl_minutes == 0
    assert cfg.converter.timeout_seconds == 30
    assert cfg.database.port == 5433
    assert cfg.database.password is None
    assert cfg.required_columns == {"BASCAR": ["NUM_TOMADOR"]}


def test_explicit_missing_file(temp_workdir: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(temp_workdir / "nope.yml")


@pytest.mark.parametrize(
    "data,match",
    [
        ({"unknown": 1}, "validation failed"),
        ({"import": {"strategy": "fast"}}, "import/strategy"),
        ({"import": {"delimiter": ";;"}}, "import/delimiter"),
        ({"uploads": {"chunk_size": 0}}, "uploads/chunk_size"),
        ({"required_columns": {"XYZ": ["A"]}}, "validation failed"),
    ],
)
def test_schema_violations(temp_workdir: Path, data, match):
    path = _write(temp_workdir / "bad.yml", data)
    with pytest.raises(ConfigError, match=match):
        load_config(path)


def test_invalid_yaml_and_non_mapping(temp_workdir: Path):
    broken = temp_workdir / "broken.yml"
    broken.write_text("storage: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid yaml"):
        load_config(broken)
    listing = temp_workdir / "list.yml"
    listing.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="must be a mapping"):
        load_config(listing)


def test_env_overrides_win(temp_workdir: Path, monkeypatch):
    path = _write(temp_workdir / "c.yml", {"uploads": {"ttl_minutes": 60}, "storage": {"root": "a"}})
    monkeypatch.setenv("COLLECTION_NOTICE_UPLOAD_TTL", "15")
    monkeypatch.setenv("COLLECTION_NOTICE_CHUNK_SIZE", " 4096 ")
    monkeypatch.setenv("COLLECTION_STORAGE_ROOT", "/srv/uploads")
    monkeypatch.setenv("EXCEL_CONVERTER_BINARY", "/bin/conv")
    cfg = load_config(path)
    assert cfg.uploads.ttl_minutes == 15
    assert cfg.uploads.chunk_size == 4096
    assert cfg.storage.root == Path("/srv/uploads")
    assert cfg.converter.binary_path == "/bin/conv"


def test_blank_env_is_ignored(temp_workdir: Path, monkeypatch):
    monkeypatch.setenv("COLLECTION_NOTICE_UPLOAD_TTL", "  ")
    assert load_config().uploads.ttl_minutes == 60


def test_non_integer_env(temp_workdir: Path, monkeypatch):
    monkeypatch.setenv("COLLECTION_NOTICE_MAX_FILE_SIZE", "lots")
    with pytest.raises(ConfigError, match="must be an integer"):
        load_config()


def test_manifest_with_path_and_mapping(temp_workdir: Path, store_file, storage_root: Path):
    bascar = store_file("upload-bascar-01", "bascar.csv", "NUM_TOMADOR;FECHA_INICIO_VIG;VALOR_TOTAL_FACT\n")
    manifest = _write(
        temp_workdir / "manifest.yml",
        {
            "run_id": 12,
            "notice_type": "aviso_incumplimiento_aportantes",
            "period": "202403",
            "strategy": "copy",
            "files": {
                "BASCAR": bascar,
                "PAGAPL": {
                    "path": "completed/upload-pagapl-01/pagos.csv",
                    "original_name": "pagos.csv",
                    "size": 10,
                    "mime": "text/csv",
                },
            },
        },
    )
    m = load_manifest(manifest, storage_root)
    assert m.run_id == 12
    assert m.notice_type is NoticeType.AVISO_INCUMPLIMIENTO_APORTANTES
    assert m.strategy == "copy"
    assert m.period == "202403"
    bascar_meta = m.files[DataSourceCode.BASCAR]
    assert bascar_meta.size == (storage_root / bascar).stat().st_size
    assert bascar_meta.extension == "csv"
    assert bascar_meta.mime is None
    assert m.files[DataSourceCode.PAGAPL].extension == "csv"


def test_manifest_errors(temp_workdir: Path, storage_root: Path):
    with pytest.raises(ConfigError, match="manifest not found"):
        load_manifest(temp_workdir / "none.yml", storage_root)

    bad_type = _write(temp_workdir / "m1.yml", {"run_id": 1, "notice_type": "otro", "files": {"BASCAR": "completed/x/a.csv"}})
    with pytest.raises(ConfigError, match="manifest"):
        load_manifest(bad_type, storage_root)

    traversal = _write(
        temp_workdir / "m2.yml",
        {"run_id": 1, "notice_type": "aviso_incumplimiento_aportantes", "files": {"BASCAR": "completed/../../etc/passwd.csv"}},
    )
    with pytest.raises(ConfigError, match="file BASCAR"):
        load_manifest(traversal, storage_root)
