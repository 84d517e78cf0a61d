from datetime import datetime
from pathlib import Path

import pytest

from photoarchiver.core.config import CONFIG_ENV, CONFIG_NAME, load_settings
from photoarchiver.errors import ConfigError
from photoarchiver.services.reconcile import ConflictResolution
from photoarchiver.storage.base import AccessTier


def write_config(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.delenv(CONFIG_ENV, raising=False)
    monkeypatch.chdir(tmp_path)
    s = load_settings()
    assert s.source is None
    assert s.storage.container == "photos"
    assert s.storage.directory_for(datetime(2019, 5, 25)) == "2019/05/25"
    assert s.upload.conflict_resolution is ConflictResolution.SKIP
    assert s.upload.access_tier is AccessTier.COOL
    assert s.upload.take is None
    assert s.download.rehydration_tier is AccessTier.HOT
    assert not s.thumbnails.is_enabled()
    assert not s.costs.is_any_set()


def test_partial_sections_merge_over_defaults(tmp_path):
    cfg = write_config(tmp_path / "pa.toml", """
[storage]
container = "family"

[upload]
conflict_resolution = "KeepBoth"
take = 10

[thumbnails]
max_width = 320
max_height = 240

[costs]
write_price_per_10000 = 0.1

[logging]
logs_dir = ""
""")
    s = load_settings(cfg)
    assert s.source == cfg
    assert s.storage.container == "family"
    assert s.storage.directory_format == "{date:%Y}/{date:%m}/{date:%d}"
    assert s.upload.conflict_resolution is ConflictResolution.KEEP_BOTH
    assert s.upload.take == 10
    assert s.upload.verify is True
    assert s.thumbnails.is_enabled()
    assert s.thumbnails.container == "photos-thumbnails"
    assert s.costs.is_any_set()
    assert s.logs_dir is None


def test_discovery_from_parent_directory(tmp_path, monkeypatch):
    monkeypatch.delenv(CONFIG_ENV, raising=False)
    write_config(tmp_path / CONFIG_NAME, '[storage]\ncontainer = "found"\n')
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)
    assert load_settings().storage.container == "found"


def test_env_var_wins(tmp_path, monkeypatch):
    write_config(tmp_path / CONFIG_NAME, '[storage]\ncontainer = "cwd"\n')
    other = write_config(tmp_path / "other.toml", '[storage]\ncontainer = "env"\n')
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv(CONFIG_ENV, str(other))
    assert load_settings().storage.container == "env"


@pytest.mark.parametrize("text", [
    "[storage\ncontainer = 1",
    '[storage]\ncontainer = "  "',
    '[storage]\ndirectory_format = "{day:%Y}"',
    '[upload]\nconflict_resolution = "Merge"',
    "[upload]\nskip = -1",
    '[upload]\naccess_tier = "Frozen"',
    '[download]\nrehydration_tier = "Archive"',
    "[download]\nrehydration_days = 0",
    "[thumbnails]\nquality = 1.5",
    '[costs]\nread_price_per_10000 = "cheap"',
    'upload = "yes"',
])
def test_invalid_values_raise_config_error(tmp_path, text):
    with pytest.raises(ConfigError):
        load_settings(write_config(tmp_path / "bad.toml", text))


def test_missing_explicit_file(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "nope.toml")
