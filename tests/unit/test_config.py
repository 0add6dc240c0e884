import pytest
import yaml
from pathlib import Path

from compresso.config.loader import load_config
from compresso.config.models import AppConfig, DEFAULT_EXTENSIONS, GeneralConfig
from compresso.domain.errors import ConfigError
from compresso.domain.models import Preset


def test_missing_file_gives_defaults(tmp_path):
    config = load_config(tmp_path / "nope.yaml")
    assert config == AppConfig()
    assert config.general.extensions == DEFAULT_EXTENSIONS
    assert config.defaults.quality == 70
    assert config.defaults.preset == Preset.SPEED_PRIORITY


def test_load_yaml(config_yaml, fake_encoder):
    config = load_config(config_yaml)
    assert config.general.extensions == [".mp4", ".mov"]
    assert config.encoder.ffmpeg_path == str(fake_encoder)
    assert config.encoder.grace_period_seconds == 2.0
    assert config.defaults.preset == Preset.QUALITY_PRIORITY


def test_empty_file_gives_defaults(tmp_path):
    conf = tmp_path / "empty.yaml"
    conf.write_text("")
    assert load_config(conf) == AppConfig()


def test_invalid_yaml_raises(tmp_path):
    conf = tmp_path / "bad.yaml"
    conf.write_text("general: [unclosed")
    with pytest.raises(ConfigError):
        load_config(conf)


def test_non_mapping_raises(tmp_path):
    conf = tmp_path / "list.yaml"
    conf.write_text(yaml.dump(["a", "b"]))
    with pytest.raises(ConfigError):
        load_config(conf)


def test_out_of_range_quality_raises(tmp_path):
    conf = tmp_path / "q.yaml"
    conf.write_text(yaml.dump({"defaults": {"quality": 150}}))
    with pytest.raises(ConfigError) as exc:
        load_config(conf)
    assert exc.value.path == conf


def test_unknown_preset_raises(tmp_path):
    conf = tmp_path / "p.yaml"
    conf.write_text(yaml.dump({"defaults": {"preset": "turbo"}}))
    with pytest.raises(ConfigError):
        load_config(conf)


def test_extensions_normalized():
    config = GeneralConfig(extensions=["MP4", ".Mov", " ", "mkv"])
    assert config.extensions == [".mp4", ".mov", ".mkv"]


def test_extra_protected_dirs_are_paths(tmp_path):
    conf = tmp_path / "s.yaml"
    conf.write_text(yaml.dump({"security": {"extra_protected_dirs": [str(tmp_path / "vault")]}}))
    config = load_config(conf)
    assert config.security.extra_protected_dirs == [Path(tmp_path / "vault")]
