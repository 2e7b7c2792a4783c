"""VirtFusion provisioning adapter for the WemX order platform."""

from __future__ import annotations

from typing import Any

from .config import ServiceConfig, load_service_config, resolve_config_path
from .database import Database, resolve_database_path
from .errors import VirtFusionError
from .gateway import HTTPMethod, PanelGateway
from .service import VirtFusionService


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the host hook application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "Database",
    "HTTPMethod",
    "PanelGateway",
    "ServiceConfig",
    "VirtFusionError",
    "VirtFusionService",
    "create_app",
    "load_service_config",
    "resolve_config_path",
    "resolve_database_path",
]
