"""Tests for configuration loading."""

import pytest

from plantr.config import Config, load_config


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        config = load_config()

        assert config.relay.url == "wss://relay.samt.st"
        assert config.relay.query_timeout_seconds == 3.0
        assert config.schema.plant_pot_kind == 30000
        assert config.schema.plant_log_kind == 30001
        assert config.schema.strict_validation is True
        assert config.weather.station_limit == 50

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_config(tmp_path / "missing.yaml") == Config()

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "identity:\n"
            "  owner_pubkey: abc\n"
            "relay:\n"
            "  url: wss://relay.example\n"
            "  query_timeout_seconds: 1.5\n"
            "schema:\n"
            "  plant_pot_kind: 34419\n"
            "  strict_validation: false\n"
            "weather:\n"
            "  station_limit: 10\n"
        )

        config = load_config(path)

        assert config.identity.owner_pubkey == "abc"
        assert config.identity.client == "plantr"
        assert config.relay.url == "wss://relay.example"
        assert config.relay.store_path == "~/.plantr/relay.db"
        assert config.relay.query_timeout_seconds == 1.5
        assert config.schema.plant_pot_kind == 34419
        assert config.schema.plant_log_kind == 30001
        assert config.schema.strict_validation is False
        assert config.weather.station_limit == 10

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        assert load_config(path) == Config()

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("relay:\n  url: wss://from-file\n")
        monkeypatch.setenv("PLANTR_RELAY_URL", "wss://from-env")
        monkeypatch.setenv("PLANTR_QUERY_TIMEOUT", "0.5")
        monkeypatch.setenv("PLANTR_OWNER_PUBKEY", "def")
        monkeypatch.setenv("PLANTR_PLANT_POT_KIND", "34419")
        monkeypatch.setenv("PLANTR_STRICT_VALIDATION", "no")

        config = load_config(path)

        assert config.relay.url == "wss://from-env"
        assert config.relay.query_timeout_seconds == 0.5
        assert config.identity.owner_pubkey == "def"
        assert config.schema.plant_pot_kind == 34419
        assert config.schema.strict_validation is False

    @pytest.mark.parametrize("value", ["true", "1", "YES"])
    def test_strict_env_truthy(self, monkeypatch, value):
        monkeypatch.setenv("PLANTR_STRICT_VALIDATION", value)
        assert load_config().schema.strict_validation is True
