"""
Unit tests for configuration management.
"""

import json

import pytest

from heelix.core.config import Config


class TestConfigFiles:

    def test_defaults_written_on_first_load(self, tmp_path):
        config = Config(tmp_path)

        assert config.settings_file.exists()
        assert config.vectorization_file.exists()
        stored = json.loads(config.vectorization_file.read_text())
        assert stored["vectorize_min_chars"] == 200
        assert stored["vectorization_enabled"] is True

    def test_set_persists_across_instances(self, tmp_path):
        Config(tmp_path).set("retrieval_default_k", 8, section="vectorization")

        assert Config(tmp_path).get("retrieval_default_k", "vectorization") == 8

    def test_stored_values_merge_over_defaults(self, tmp_path):
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        (config_dir / "vectorization.json").write_text(json.dumps({"vectorize_min_chars": 50}))

        config = Config(tmp_path)
        assert config.vectorize_min_chars == 50
        assert config.embedding_dimensions == 1536

    def test_unknown_section_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            Config(tmp_path).set("key", "value", section="nope")

    def test_get_returns_default_for_missing_key(self, tmp_path):
        assert Config(tmp_path).get("missing", default="fallback") == "fallback"

    def test_home_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HEELIX_HOME", str(tmp_path / "env-home"))
        config = Config()
        assert config.home_dir == tmp_path / "env-home"


class TestPaths:

    def test_relative_paths_resolve_against_home(self, tmp_path):
        config = Config(tmp_path)
        assert config.get_database_path() == tmp_path / "data" / "heelix.db"
        assert config.get_index_directory() == tmp_path / "data" / "index"
        assert config.get_log_directory() == tmp_path / "logs"

    def test_absolute_paths_kept(self, tmp_path):
        config = Config(tmp_path)
        target = tmp_path / "elsewhere" / "db.sqlite"
        config.set("database_path", str(target))
        assert config.get_database_path() == target


class TestCredential:

    def test_stored_key_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        config = Config(tmp_path)
        config.set("openai_api_key", "sk-stored", section="vectorization")
        assert config.get_openai_api_key() == "sk-stored"

    def test_falls_back_to_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HEELIX_OPENAI_API_KEY", "sk-heelix")
        assert Config(tmp_path).get_openai_api_key() == "sk-heelix"

    def test_openai_env_var_checked_first(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        monkeypatch.setenv("HEELIX_OPENAI_API_KEY", "sk-heelix")
        assert Config(tmp_path).get_openai_api_key() == "sk-openai"

    def test_blank_key_is_missing(self, tmp_path):
        config = Config(tmp_path)
        config.set("openai_api_key", "   ", section="vectorization")
        assert config.get_openai_api_key() == ""

    def test_vectorization_flag_read_at_call_time(self, tmp_path):
        config = Config(tmp_path)
        assert config.is_vectorization_enabled()
        config.set("vectorization_enabled", False, section="vectorization")
        assert not config.is_vectorization_enabled()
