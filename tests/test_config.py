"""Tests for environment configuration"""

import pytest

from bms_config import BMSConfig, get_config
from smartbms.store import DEFAULT_STATE_FILE


ENV_VARS = [
    "BMS_DEVICE_ID",
    "BMS_COMMAND_TIMEOUT",
    "BMS_CONNECT_TIMEOUT",
    "BMS_RECONNECT_TIMEOUT",
    "BMS_SCAN_DURATION",
    "BMS_REFRESH_INTERVAL",
    "BMS_STATE_FILE",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """No BMS_* variables and no .env in the working directory"""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_defaults(clean_env):
    config = BMSConfig()
    assert config.device_id is None
    assert config.command_timeout == 5.0
    assert config.connect_timeout == 10.0
    assert config.reconnect_timeout == 15.0
    assert config.scan_duration == 15.0
    assert config.refresh_interval == 2.0
    assert config.state_file == DEFAULT_STATE_FILE
    assert config.validate() == (True, [])


def test_env_file_is_loaded(clean_env, tmp_path):
    env_file = tmp_path / "bms.env"
    env_file.write_text(
        "BMS_DEVICE_ID=A4:C1:38:00:00:01\n"
        "BMS_COMMAND_TIMEOUT=3\n"
        "BMS_REFRESH_INTERVAL=5\n"
        f"BMS_STATE_FILE={tmp_path / 'state.json'}\n"
    )
    config = BMSConfig(str(env_file))

    assert config.device_id == "A4:C1:38:00:00:01"
    assert config.command_timeout == 3.0
    assert config.refresh_interval == 5.0
    assert config.state_file == tmp_path / "state.json"
    assert config.validate() == (True, [])


def test_builders(clean_env, tmp_path):
    clean_env.setenv("BMS_CONNECT_TIMEOUT", "4")
    clean_env.setenv("BMS_REFRESH_INTERVAL", "1")
    clean_env.setenv("BMS_STATE_FILE", str(tmp_path / "state.json"))
    config = BMSConfig()

    assert config.supervisor_config().connect_timeout == 4.0
    assert config.supervisor_config().reconnect_timeout == 15.0
    assert config.refresh_config().interval == 1.0
    assert config.device_store().path == tmp_path / "state.json"


def test_validate_reports_errors(clean_env):
    clean_env.setenv("BMS_COMMAND_TIMEOUT", "soon")
    clean_env.setenv("BMS_REFRESH_INTERVAL", "3")
    clean_env.setenv("BMS_DEVICE_ID", "not-an-address")

    is_valid, errors = BMSConfig().validate()
    assert is_valid is False
    assert len(errors) == 3
    assert any("BMS_COMMAND_TIMEOUT" in e for e in errors)
    assert any("BMS_REFRESH_INTERVAL" in e for e in errors)
    assert any("BMS_DEVICE_ID" in e for e in errors)


def test_macos_uuid_address_is_valid(clean_env):
    clean_env.setenv("BMS_DEVICE_ID", "0E3F6A52-9C1B-4D7E-A1C2-3B4D5E6F7A8B")
    assert BMSConfig().validate() == (True, [])


def test_get_config_is_cached(clean_env):
    first = get_config(reload=True)
    assert get_config() is first
    assert get_config(reload=True) is not first
