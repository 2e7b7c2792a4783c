"""Configuration management for the VirtFusion provisioning adapter."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol
from urllib.parse import urlsplit

import yaml

from .errors import ConfigurationError

SERVICE_KEY = "virtfusion"
HOST_SETTING = "virtfusion::host"
API_KEY_SETTING = "encrypted::virtfusion::api_key"
TIMEOUT_SETTING = "virtfusion::timeout"

TRAILING_SLASH_MESSAGE = (
    'VirtFusion Panel URL must not end with a slash "/". It should be like https://panel.example.com'
)


class SettingsProvider(Protocol):
    """Read-only view of the host platform's key/value settings store."""

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        ...


def host_url_errors(value: Optional[str]) -> List[str]:
    """Return the problems with a candidate panel URL (empty when valid)."""

    cleaned = (value or "").strip()
    if not cleaned:
        return ["The panel host is required"]

    problems: List[str] = []
    parts = urlsplit(cleaned)
    if parts.scheme not in {"http", "https"} or not parts.hostname:
        problems.append("The panel host must be a valid http(s) URL")
    if cleaned.endswith("/"):
        problems.append(TRAILING_SLASH_MESSAGE)
    return problems


def validate_host_url(value: Optional[str]) -> str:
    """Return the cleaned panel URL or raise :class:`ConfigurationError`."""

    problems = host_url_errors(value)
    if problems:
        raise ConfigurationError(problems[0])
    return (value or "").strip()


@dataclass(frozen=True)
class ServiceConfig:
    """Installation-wide settings used by every call to the panel."""

    host: str
    api_key: str
    timeout: Optional[float] = None

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "ServiceConfig":
        """Create a :class:`ServiceConfig` from raw dictionary data."""
        required_fields = {"host", "api_key"}
        missing = {name for name in required_fields if not data.get(name)}
        if missing:
            raise ConfigurationError(
                f"Missing required VirtFusion configuration fields: {', '.join(sorted(missing))}"
            )

        api_key = str(data["api_key"]).strip()
        if not api_key:
            raise ConfigurationError("The API key must not be empty")

        raw_timeout = data.get("timeout")
        try:
            timeout = float(raw_timeout) if raw_timeout is not None else None
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid timeout value {raw_timeout!r}") from exc

        return ServiceConfig(
            host=validate_host_url(str(data["host"])),
            api_key=api_key,
            timeout=timeout,
        )

    @staticmethod
    def from_settings(provider: SettingsProvider) -> "ServiceConfig":
        """Build the configuration from the host platform's settings store."""
        return ServiceConfig.from_dict(
            {
                "host": provider.get_setting(HOST_SETTING),
                "api_key": provider.get_setting(API_KEY_SETTING),
                "timeout": provider.get_setting(TIMEOUT_SETTING) or None,
            }
        )


def load_service_config(config_path: Path) -> ServiceConfig:
    """Load the service configuration from a YAML file."""
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    section = raw.get(SERVICE_KEY)
    if not isinstance(section, dict):
        raise ConfigurationError(
            f"Configuration file must define the panel settings under the '{SERVICE_KEY}' key"
        )
    return ServiceConfig.from_dict(section)


def resolve_config_path(env_value: Optional[str] = None) -> Path:
    """Resolve the path to the configuration file."""
    if env_value is None:
        env_value = os.getenv("VIRTFUSION_CONFIG")
    if env_value:
        candidate = Path(env_value).expanduser().resolve(strict=False)
    else:
        candidate = (Path(__file__).resolve().parent.parent / "config" / "virtfusion.yaml").resolve(strict=False)
    return candidate


__all__ = [
    "API_KEY_SETTING",
    "HOST_SETTING",
    "SERVICE_KEY",
    "ServiceConfig",
    "SettingsProvider",
    "TIMEOUT_SETTING",
    "TRAILING_SLASH_MESSAGE",
    "host_url_errors",
    "load_service_config",
    "resolve_config_path",
    "validate_host_url",
]
