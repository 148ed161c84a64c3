"""Tests for configuration loading and encryption key resolution"""

import base64
import hashlib
from pathlib import Path

import pytest

from core.errors import ConfigurationError
from utils.config import load_config, load_settings, resolve_encryption_key


@pytest.fixture
def write_config(tmp_path):
    def _write(text):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        return path

    return _write


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_malformed_yaml(self, write_config):
        with pytest.raises(ConfigurationError, match="parsing YAML"):
            load_config(write_config("script: [unclosed"))

    def test_empty_file_is_empty_mapping(self, write_config):
        assert load_config(write_config("")) == {}

    def test_top_level_must_be_mapping(self, write_config):
        with pytest.raises(ConfigurationError):
            load_config(write_config("- a\n- b\n"))


class TestResolveEncryptionKey:
    def test_hex_key(self):
        key, source = resolve_encryption_key("ab" * 32)

        assert key == bytes([0xAB] * 32)
        assert source == "hex"

    def test_base64_key(self):
        raw = bytes(range(32))
        key, source = resolve_encryption_key(base64.b64encode(raw).decode())

        assert key == raw
        assert source == "base64"

    def test_passphrase_is_hashed(self):
        key, source = resolve_encryption_key("correct horse battery staple")

        assert key == hashlib.sha256(b"correct horse battery staple").digest()
        assert source == "passphrase"

    def test_base64_of_wrong_length_is_a_passphrase(self):
        value = base64.b64encode(b"short").decode()
        key, source = resolve_encryption_key(value)

        assert source == "passphrase"
        assert len(key) == 32

    def test_missing_key_is_random_and_warns(self, caplog):
        key, source = resolve_encryption_key(None)
        other, _ = resolve_encryption_key("")

        assert len(key) == 32
        assert key != other
        assert source == "ephemeral"
        assert "ephemeral" in caplog.text


class TestLoadSettings:
    def test_defaults_when_file_missing(self, tmp_path):
        settings = load_settings(tmp_path / "missing.yaml", env={}, use_defaults=True)

        assert settings.data_dir == Path("./data")
        assert settings.jobs_file == Path("./data/jobs.json")
        assert settings.poll_seconds == 5
        assert settings.capability_ttl_seconds == 300
        assert settings.encryption_key_source == "ephemeral"

    def test_missing_file_without_defaults(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(tmp_path / "missing.yaml", env={})

    def test_yaml_values(self, write_config, tmp_path):
        path = write_config(
            "script:\n"
            "  log_file_name: xpost\n"
            "  nosocial: true\n"
            "scheduler:\n"
            f"  data_dir: {tmp_path / 'jobs'}\n"
            "  poll_seconds: 15\n"
            "  encryption_key: hunter2\n"
            "mastodon:\n"
            "  capability_ttl_seconds: 60\n"
            "status:\n"
            "  file: /tmp/crosspost-status.json\n"
        )

        settings = load_settings(path, env={})

        assert settings.data_dir == tmp_path / "jobs"
        assert settings.poll_seconds == 15
        assert settings.capability_ttl_seconds == 60
        assert settings.log_file_name == "xpost"
        assert settings.nosocial is True
        assert settings.status_file == Path("/tmp/crosspost-status.json")
        assert settings.encryption_key == hashlib.sha256(b"hunter2").digest()

    def test_environment_overrides_yaml(self, write_config):
        path = write_config("scheduler:\n  data_dir: ./yaml-data\n  poll_seconds: 30\n")
        env = {
            "CROSSPOST_DATA_DIR": "/srv/crosspost",
            "CROSSPOST_POLL_SECONDS": "2",
            "CROSSPOST_ENCRYPTION_KEY": "00" * 32,
        }

        settings = load_settings(path, env=env)

        assert settings.data_dir == Path("/srv/crosspost")
        assert settings.poll_seconds == 2
        assert settings.encryption_key == bytes(32)
        assert settings.encryption_key_source == "hex"

    def test_poll_seconds_has_a_floor(self, write_config):
        settings = load_settings(write_config("scheduler:\n  poll_seconds: 0.1\n"), env={})

        assert settings.poll_seconds == 1

    def test_non_numeric_poll_seconds(self, write_config):
        with pytest.raises(ConfigurationError, match="poll_seconds"):
            load_settings(write_config("scheduler:\n  poll_seconds: often\n"), env={})

    def test_repr_hides_key(self, write_config):
        settings = load_settings(write_config("scheduler:\n  encryption_key: hunter2\n"), env={})

        assert "hunter2" not in repr(settings)
        assert settings.encryption_key.hex() not in repr(settings)
