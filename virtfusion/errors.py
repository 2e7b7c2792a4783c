"""Error types raised by the VirtFusion gateway and lifecycle adapter."""
from __future__ import annotations

import json
from typing import Any, Optional

PROVIDER_PREFIX = "[VirtFusion]"


class VirtFusionError(RuntimeError):
    """Base class for every failure surfaced to the host platform."""

    def __init__(self, message: str) -> None:
        super().__init__(f"{PROVIDER_PREFIX} {message}")
        self.detail = message


class ConfigurationError(VirtFusionError):
    """Raised when the local service settings are missing or invalid."""


class MissingServerError(VirtFusionError):
    """Raised when an order has no remote server recorded against it."""


class ProvisioningError(VirtFusionError):
    """Raised when the panel account for an order could not be created."""


class GatewayError(VirtFusionError):
    """Raised for any unsuccessful call to the panel API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class ValidationError(GatewayError):
    """The panel rejected the request with a structured ``errors`` payload."""

    def __init__(self, errors: Any, *, status_code: Optional[int] = None, payload: Any = None) -> None:
        super().__init__(_serialize_errors(errors), status_code=status_code, payload=payload)
        self.errors = errors


class RemoteMessageError(GatewayError):
    """The panel reported a failure through a plain ``message`` field."""


class AuthorizationError(GatewayError):
    """The API token was rejected or lacks the required permissions."""


class RemoteServerError(GatewayError):
    """The panel answered with a 5xx status."""


class ConnectivityError(GatewayError):
    """The panel could not be reached or returned something unusable."""


def _serialize_errors(errors: Any) -> str:
    try:
        return json.dumps(errors)
    except (TypeError, ValueError):
        return str(errors)


__all__ = [
    "AuthorizationError",
    "ConfigurationError",
    "ConnectivityError",
    "GatewayError",
    "MissingServerError",
    "PROVIDER_PREFIX",
    "ProvisioningError",
    "RemoteMessageError",
    "RemoteServerError",
    "ValidationError",
    "VirtFusionError",
]
