"""Tests for environment configuration."""

import os
from unittest.mock import patch

from config import DataConfig, StashConfig


class TestStashConfig:

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = StashConfig.from_env()
        assert config.url == "http://localhost:9999"
        assert config.api_key == ""

    def test_from_env(self):
        env = {"STASH_URL": "http://stash:9999", "STASH_API_KEY": "secret"}
        with patch.dict(os.environ, env, clear=True):
            config = StashConfig.from_env()
        assert config.url == "http://stash:9999"
        assert config.api_key == "secret"


class TestDataConfig:

    def test_creates_dir_and_default_db_path(self, tmp_path):
        config = DataConfig(data_dir=tmp_path / "data")
        assert config.data_dir.is_dir()
        assert config.settings_db_path == tmp_path / "data" / "stash_tagger.db"

    def test_from_env(self, tmp_path):
        with patch.dict(os.environ, {"DATA_DIR": str(tmp_path / "elsewhere")}):
            config = DataConfig.from_env()
        assert config.data_dir == tmp_path / "elsewhere"
