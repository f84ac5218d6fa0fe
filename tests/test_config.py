"""
Tests for app/config.py -- environment-driven configuration.
"""

import pytest

from app.config import DEFAULT_API_URL, load_config, load_env_file


@pytest.fixture
def env(tmp_path):
    return {"AUTHORIO_DATA_DIR": str(tmp_path)}


class TestLoadConfig:
    def test_defaults(self, env, tmp_path):
        config = load_config(env)
        assert config.api_url == DEFAULT_API_URL
        assert config.mode == "offline"
        assert config.debounce_ms == 500
        assert config.long_form_ms == 20 * 60 * 1000
        assert config.echo_grace_ms == 150
        assert config.http_timeout is None
        assert config.data_dir == str(tmp_path)

    def test_overrides(self, env):
        env.update({
            "AUTHORIO_API_URL": "https://books.example.com/api/",
            "AUTHORIO_MODE": "Cloud",
            "AUTHORIO_DEBOUNCE_MS": "250",
            "AUTHORIO_HTTP_TIMEOUT": "7.5",
        })
        config = load_config(env)
        assert config.api_url == "https://books.example.com/api"
        assert config.mode == "cloud"
        assert config.debounce_ms == 250
        assert config.http_timeout == 7.5

    def test_blank_values_use_defaults(self, env):
        env["AUTHORIO_DEBOUNCE_MS"] = "  "
        assert load_config(env).debounce_ms == 500

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_bad_debounce(self, env, value):
        env["AUTHORIO_DEBOUNCE_MS"] = value
        with pytest.raises(ValueError, match="AUTHORIO_DEBOUNCE_MS"):
            load_config(env)

    def test_bad_timeout(self, env):
        env["AUTHORIO_HTTP_TIMEOUT"] = "soon"
        with pytest.raises(ValueError, match="AUTHORIO_HTTP_TIMEOUT"):
            load_config(env)

    def test_bad_mode(self, env):
        env["AUTHORIO_MODE"] = "hybrid"
        with pytest.raises(ValueError, match="AUTHORIO_MODE"):
            load_config(env)


class TestEnvFile:
    def test_reads_pairs_without_overriding(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text(
            "# comment\n"
            "AUTHORIO_MODE=cloud\n"
            "AUTHORIO_API_URL=\"http://x/api\"\n"
            "\n"
            "not a pair\n",
            encoding="utf-8",
        )
        environ = {"AUTHORIO_MODE": "offline"}
        load_env_file(path, environ)
        assert environ == {"AUTHORIO_MODE": "offline", "AUTHORIO_API_URL": "http://x/api"}

    def test_missing_file(self, tmp_path):
        environ = {}
        load_env_file(tmp_path / "absent.env", environ)
        assert environ == {}
