from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import pytest

from virtfusion.config import (
    API_KEY_SETTING,
    HOST_SETTING,
    TIMEOUT_SETTING,
    TRAILING_SLASH_MESSAGE,
    ServiceConfig,
    load_service_config,
    resolve_config_path,
    validate_host_url,
)
from virtfusion.errors import ConfigurationError


class DictSettings:
    def __init__(self, values: Dict[str, str]) -> None:
        self._values = values

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)


def test_host_url_without_trailing_slash_is_accepted():
    assert validate_host_url("https://panel.example.com") == "https://panel.example.com"


def test_host_url_with_trailing_slash_is_rejected():
    with pytest.raises(ConfigurationError) as excinfo:
        validate_host_url("https://panel.example.com/")

    assert excinfo.value.detail == TRAILING_SLASH_MESSAGE


@pytest.mark.parametrize("value", ["", "   ", "panel.example.com", "ftp://panel.example.com", None])
def test_invalid_host_urls_are_rejected(value):
    with pytest.raises(ConfigurationError):
        validate_host_url(value)


def test_from_settings_reads_host_key_and_timeout():
    config = ServiceConfig.from_settings(
        DictSettings(
            {
                HOST_SETTING: "https://panel.example.com",
                API_KEY_SETTING: " token ",
                TIMEOUT_SETTING: "12.5",
            }
        )
    )

    assert config == ServiceConfig(host="https://panel.example.com", api_key="token", timeout=12.5)


def test_from_settings_requires_api_key():
    with pytest.raises(ConfigurationError) as excinfo:
        ServiceConfig.from_settings(DictSettings({HOST_SETTING: "https://panel.example.com"}))

    assert "api_key" in str(excinfo.value)


def test_load_service_config_from_yaml(tmp_path: Path):
    config_path = tmp_path / "virtfusion.yaml"
    config_path.write_text(
        "virtfusion:\n  host: https://panel.example.com\n  api_key: abc123\n  timeout: 30\n",
        encoding="utf-8",
    )

    config = load_service_config(config_path)

    assert config.host == "https://panel.example.com"
    assert config.api_key == "abc123"
    assert config.timeout == 30.0


def test_load_service_config_requires_section(tmp_path: Path):
    config_path = tmp_path / "virtfusion.yaml"
    config_path.write_text("other: {}\n", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_service_config(config_path)


def test_resolve_config_path_prefers_environment(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("VIRTFUSION_CONFIG", str(tmp_path / "custom.yaml"))
    assert resolve_config_path() == (tmp_path / "custom.yaml").resolve()

    monkeypatch.delenv("VIRTFUSION_CONFIG")
    assert resolve_config_path().name == "virtfusion.yaml"
