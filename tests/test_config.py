"""
Tests for configuration loading, CLI wiring and upload naming.
"""
import io
from pathlib import Path
from unittest import mock

import pytest
from werkzeug.datastructures import FileStorage

from tracker.config import Config
from tracker.errors import ValidationError
from tracker.memory_store import MemoryStore
from tracker.store import SQLiteStore
from tracker.uploads import UploadStore, stored_name
import tracker_server


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_defaults_when_file_missing(tmp_path):
    cfg = Config.load(str(tmp_path / "absent.yaml"), environ={})
    assert cfg.storage == "sqlite"
    assert cfg.port == 3000
    assert cfg.strict_positions is False
    assert not cfg.db_path.startswith("~")


def test_yaml_values_and_unknown_keys(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "storage: memory\n"
        "port: 8080\n"
        "strict_positions: true\n"
        "uploads_dir: ~/tracker-uploads\n"
        "not_a_setting: 1\n"
    )
    cfg = Config.load(str(path), environ={})
    assert cfg.demo_mode
    assert cfg.port == 8080
    assert cfg.strict_positions is True
    assert cfg.uploads_dir == str(Path("~/tracker-uploads").expanduser())


def test_env_overrides_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("db_path: /from/yaml.db\n")
    cfg = Config.load(str(path), environ={
        "TRACKER_DB": "/from/env.db",
        "TRACKER_API_SECRET": "s3cret",
        "TRACKER_STRICT_POSITIONS": "yes",
    })
    assert cfg.db_path == "/from/env.db"
    assert cfg.api_secret == "s3cret"
    assert cfg.strict_positions is True


def test_method_names_in_yaml_are_ignored(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("port: 8080\nload: true\ndemo_mode: true\nresolve_paths: false\n")
    cfg = Config.load(str(path), environ={})
    assert cfg.port == 8080
    assert cfg.storage == "sqlite"


def test_broken_yaml_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("storage: [unclosed\n")
    assert Config.load(str(path), environ={}).storage == "sqlite"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Server wiring
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_build_store(tmp_path):
    sqlite_cfg = Config(db_path=str(tmp_path / "t.db"), strict_positions=True)
    store = tracker_server.build_store(sqlite_cfg)
    assert isinstance(store, SQLiteStore)
    assert store.strict_positions is True

    assert isinstance(tracker_server.build_store(Config(storage="memory")), MemoryStore)
    with pytest.raises(ValueError):
        tracker_server.build_store(Config(storage="postgres"))


def test_main_applies_cli_overrides(tmp_path):
    db = tmp_path / "cli.db"
    with mock.patch.object(tracker_server.Config, "load",
                           return_value=Config(uploads_dir=str(tmp_path / "u"))), \
            mock.patch("flask.Flask.run") as run:
        tracker_server.main(["--db", str(db), "--port", "4100", "--host", "0.0.0.0"])
    run.assert_called_once_with(host="0.0.0.0", port=4100, debug=False, threaded=True)
    assert db.exists()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Uploads
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_stored_name():
    assert stored_name("Design Spec.pdf", 1718000000000) == "Design_Spec-1718000000000.pdf"
    assert stored_name("../../etc/passwd", 5) == "etc_passwd-5"
    assert stored_name("///", 7) == "upload-7"


def test_upload_store_save_and_delete(tmp_path):
    uploads = UploadStore(str(tmp_path / "files"))
    public, size = uploads.save(FileStorage(io.BytesIO(b"abc"), filename="a.txt"))
    assert public.startswith("/uploads/a-") and public.endswith(".txt")
    assert size == 3
    assert uploads.path_for(public).read_bytes() == b"abc"

    assert uploads.delete(public) is True
    assert uploads.delete(public) is False


def test_upload_store_requires_file(tmp_path):
    with pytest.raises(ValidationError):
        UploadStore(str(tmp_path)).save(FileStorage(io.BytesIO(b""), filename=""))


def test_path_for_ignores_directories(tmp_path):
    uploads = UploadStore(str(tmp_path))
    assert uploads.path_for("/uploads/../../secret.txt") == tmp_path / "secret.txt"
