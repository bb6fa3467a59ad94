import os
import pytest
import yaml
from pathlib import Path
from dvschema.config import load_config, get_dvschema_home, default_config_dict, DvSchemaConfig
from dvschema.errors import ConfigError

def test_get_dvschema_home_default(monkeypatch):
    monkeypatch.delenv("DVSCHEMA_HOME", raising=False)
    home = get_dvschema_home()
    assert home == Path("~/.config/dvschema").expanduser()

def test_get_dvschema_home_env_var(monkeypatch, tmp_path):
    custom_home = tmp_path / "custom_home"
    monkeypatch.setenv("DVSCHEMA_HOME", str(custom_home))
    assert get_dvschema_home() == custom_home

def test_load_config_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("DVSCHEMA_HOME", str(tmp_path))
    with pytest.raises(FileNotFoundError, match="dvschema config.yaml not found"):
        load_config()

def test_load_config_valid(monkeypatch, tmp_path):
    monkeypatch.setenv("DVSCHEMA_HOME", str(tmp_path))
    config_path = tmp_path / "config.yaml"

    config_data = {
        "environment_url": "https://contoso.crm.dynamics.com",
        "solution": "CoreSolution",
        "publisher_prefix": "new",
        "max_retries": 5,
        "columns": {"type": "Data Type"},
    }
    config_path.write_text(yaml.dump(config_data))

    cfg = load_config()
    assert isinstance(cfg, DvSchemaConfig)
    assert cfg.environment_url == "https://contoso.crm.dynamics.com"
    assert cfg.solution == "CoreSolution"
    assert cfg.retry_policy().max_retries == 5
    assert cfg.column_mapping().type == "Data Type"
    assert cfg.token_env == "DVSCHEMA_ACCESS_TOKEN"

def test_load_config_with_env_file(monkeypatch, tmp_path):
    monkeypatch.setenv("DVSCHEMA_HOME", str(tmp_path))
    config_path = tmp_path / "config.yaml"
    env_file = tmp_path / ".env.test"

    env_file.write_text("DVSCHEMA_TEST_TOKEN=loaded_from_env")

    config_data = {
        "environment_url": "https://contoso.crm.dynamics.com",
        "token_env": "DVSCHEMA_TEST_TOKEN",
        "env_file": str(env_file),
    }
    config_path.write_text(yaml.dump(config_data))

    # Pre-clean env var
    monkeypatch.delenv("DVSCHEMA_TEST_TOKEN", raising=False)

    cfg = load_config()
    assert os.environ.get("DVSCHEMA_TEST_TOKEN") == "loaded_from_env"
    assert cfg.access_token() == "loaded_from_env"
    monkeypatch.delenv("DVSCHEMA_TEST_TOKEN")

def test_load_config_explicit_path(tmp_path):
    config_path = tmp_path / "other.yaml"
    config_path.write_text(yaml.dump({"solution": "Other"}))
    assert load_config(config_path).solution == "Other"

def test_load_config_invalid_yaml(monkeypatch, tmp_path):
    monkeypatch.setenv("DVSCHEMA_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("solution: [unclosed")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config()

def test_load_config_not_a_mapping(monkeypatch, tmp_path):
    monkeypatch.setenv("DVSCHEMA_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("- a\n- b\n")
    with pytest.raises(ConfigError, match="must contain a mapping"):
        load_config()

def test_load_config_unknown_key(monkeypatch, tmp_path):
    monkeypatch.setenv("DVSCHEMA_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text(yaml.dump({"projet": "typo"}))
    with pytest.raises(ConfigError, match="Unknown config key"):
        load_config()

@pytest.mark.parametrize("data,match", [
    ({"log_level": "LOUD"}, "log_level"),
    ({"log_format": "xml"}, "log_format"),
    ({"max_retries": -1}, "max_retries"),
    ({"timeout_seconds": 0}, "timeout_seconds"),
    ({"columns": {"bogus": "X"}}, "Unknown column mapping key"),
])
def test_invalid_values(data, match):
    with pytest.raises(ConfigError, match=match):
        DvSchemaConfig.from_dict(data)

def test_default_config_dict_loads(tmp_path):
    data = default_config_dict(tmp_path)
    cfg = DvSchemaConfig.from_dict(data)
    assert cfg.env_file == str(tmp_path / ".env")
    assert cfg.max_retries == 3
