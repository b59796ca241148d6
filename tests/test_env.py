import pytest

from knest import config, env


def test_load_env_maps_aliases_without_overriding(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# local settings\n"
        "api base url = http://stub.local/api\n"
        "ACCESS TOKEN='abc123'\n"
        "not a pair\n"
        "KNEST_TIMEOUT_SECONDS=3\n"
    )
    for key in (config.ENV_API_BASE_URL, config.ENV_TIMEOUT_SECONDS):
        # set first so the fixture restores whatever load_env exports
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    monkeypatch.setenv(config.ENV_ACCESS_TOKEN, "from-shell")

    values = env.load_env(env_file)

    assert values[config.ENV_API_BASE_URL] == "http://stub.local/api"
    assert values[config.ENV_ACCESS_TOKEN] == "abc123"
    assert env.require([config.ENV_API_BASE_URL])[config.ENV_API_BASE_URL] == "http://stub.local/api"
    # the shell wins over the file
    assert env.require([config.ENV_ACCESS_TOKEN])[config.ENV_ACCESS_TOKEN] == "from-shell"
    assert env.get_float(config.ENV_TIMEOUT_SECONDS, 10.0) == 3.0


def test_require_reports_missing_keys(monkeypatch):
    monkeypatch.delenv("KNEST_MISSING_ONE", raising=False)
    with pytest.raises(RuntimeError, match="KNEST_MISSING_ONE"):
        env.require(["KNEST_MISSING_ONE"])


def test_get_bool_parses_flags(monkeypatch):
    monkeypatch.setenv(config.ENV_ALLOW_SAMPLE_FALLBACK, "off")
    assert env.get_bool(config.ENV_ALLOW_SAMPLE_FALLBACK, True) is False
    monkeypatch.setenv(config.ENV_ALLOW_SAMPLE_FALLBACK, "maybe")
    with pytest.raises(ValueError):
        env.get_bool(config.ENV_ALLOW_SAMPLE_FALLBACK, True)
    monkeypatch.delenv(config.ENV_ALLOW_SAMPLE_FALLBACK)
    assert env.get_bool(config.ENV_ALLOW_SAMPLE_FALLBACK, True) is True
