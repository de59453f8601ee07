"""Tests for configuration loading."""

import pytest

from chatsync.config import AppConfig, load_config
from chatsync.core.types import Provider


CONFIG_YAML = """
log_level: DEBUG
data_dir: ./var
accounts:
  - id: main
    instance_id: ${TEST_INSTANCE_ID}
    token: ${TEST_TOKEN}
    default_chat: "972501234567@c.us"
  - id: support
    provider: evolution-api
    instance_id: support-line
    token: secret
history:
  page_size: 50
storage:
  db_path: ${data_dir}/sync.db
"""


class TestLoadConfig:
    def test_env_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TEST_INSTANCE_ID", "1101000001")
        monkeypatch.setenv("TEST_TOKEN", "abc123token")
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML, encoding="utf-8")

        config = load_config(path, tmp_path / "missing.env")

        assert config.log_level == "DEBUG"
        assert config.log_json is False
        assert config.accounts[0].instance_id == "1101000001"
        assert config.accounts[0].token == "abc123token"
        assert config.accounts[1].provider == Provider.EVOLUTION_API
        assert config.history.page_size == 50
        assert config.storage.db_path == "./var/sync.db"

    def test_dotenv_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("TEST_INSTANCE_ID", raising=False)
        monkeypatch.delenv("TEST_TOKEN", raising=False)
        (tmp_path / ".env").write_text("TEST_INSTANCE_ID=1101000009\nTEST_TOKEN=fromdotenv\n", encoding="utf-8")
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_YAML, encoding="utf-8")

        config = load_config(path, tmp_path / ".env")

        assert config.accounts[0].instance_id == "1101000009"
        assert config.accounts[0].token == "fromdotenv"
        monkeypatch.delenv("TEST_INSTANCE_ID", raising=False)
        monkeypatch.delenv("TEST_TOKEN", raising=False)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")

        config = load_config(path, tmp_path / "missing.env")

        assert config.accounts == []
        assert config.cache.chat_list_ttl == 30
        assert config.cache.history_ttl == 10
        assert config.polling.interval_seconds == 15
        assert config.api.max_attempts == 3


class TestAppConfig:
    def test_get_account(self):
        config = AppConfig(accounts=[
            {"id": "main", "instance_id": "1101000001", "token": "a"},
            {"id": "second", "instance_id": "1101000002", "token": "b"},
        ])

        assert config.get_account().id == "main"
        assert config.get_account("second").instance_id == "1101000002"
        assert config.get_account("1101000002").id == "second"
        with pytest.raises(ValueError):
            config.get_account("nobody")

    def test_no_accounts(self):
        with pytest.raises(ValueError):
            AppConfig().get_account()

    def test_to_account(self):
        config = AppConfig(accounts=[{"id": "main", "instance_id": "1101000001", "token": "abc"}])

        account = config.accounts[0].to_account()

        assert account.key == "1101000001"
        assert account.provider == Provider.GREEN_API
        assert account.credentials_problem() is None
