"""Tests for probable.config: config.json > env > defaults."""

import json
import logging

from probable.config import Config, _coerce
from probable.constants import ENTRY_SERVICE


class TestLoad:
    def test_defaults(self, tmp_path, monkeypatch):
        for var in ("PROB_PRIVATE_KEY", "PROB_USE_EOA", "PROB_ENTRY_SERVICE", "PROB_LOG_LEVEL"):
            monkeypatch.delenv(var, raising=False)
        config = Config.load(str(tmp_path))
        assert config.entry_service == ENTRY_SERVICE
        assert config.use_eoa is False
        assert config.chain_id == 56
        assert config.log_level == "INFO"

    def test_env_overrides_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PROB_USE_EOA", "true")
        monkeypatch.setenv("PROB_RPC_URL", "http://localhost:8545")
        config = Config.load(str(tmp_path))
        assert config.use_eoa is True
        assert config.rpc_url == "http://localhost:8545"

    def test_file_overrides_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PROB_LOG_LEVEL", "DEBUG")
        (tmp_path / "config.json").write_text(json.dumps({"log_level": "WARNING", "max_retries": "5"}))
        config = Config.load(str(tmp_path))
        assert config.log_level == "WARNING"
        assert config.max_retries == 5

    def test_corrupt_file_ignored(self, tmp_path, caplog):
        (tmp_path / "config.json").write_text("{oops")
        with caplog.at_level(logging.WARNING):
            config = Config.load(str(tmp_path))
        assert config.chain_id == 56
        assert "Failed to load" in caplog.text


class TestSave:
    def test_private_key_never_written(self, tmp_path):
        config = Config(private_key="0xsecret", proxy_address="0xabc")
        config.save(str(tmp_path))
        data = json.loads((tmp_path / "config.json").read_text())
        assert "private_key" not in data
        assert data["proxy_address"] == "0xabc"


class TestUpdate:
    def test_coerces_values(self):
        config = Config()
        config.update({"check_balance": "no", "request_timeout": "2.5"})
        assert config.check_balance is False
        assert config.request_timeout == 2.5

    def test_unknown_key_warns(self, caplog):
        config = Config()
        with caplog.at_level(logging.WARNING):
            config.update({"bogus": 1})
        assert "Unknown config key: bogus" in caplog.text


class TestCredsPath:
    def test_relative_to_config_dir(self, tmp_path):
        assert Config().creds_path(str(tmp_path)) == tmp_path / "creds.json"

    def test_absolute_kept(self, tmp_path):
        config = Config(creds_file=str(tmp_path / "elsewhere.json"))
        assert config.creds_path("/unused") == tmp_path / "elsewhere.json"


class TestCoerce:
    def test_bool(self):
        assert _coerce("1", bool) is True
        assert _coerce("yes", "bool") is True
        assert _coerce("off", bool) is False
        assert _coerce(False, bool) is False

    def test_numbers(self):
        assert _coerce("3", int) == 3
        assert _coerce("0.5", "float") == 0.5

    def test_str(self):
        assert _coerce(10, str) == "10"
