"""HTTP client for the VirtFusion panel REST API."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

import httpx

from .config import ServiceConfig, SettingsProvider
from .errors import (
    AuthorizationError,
    ConnectivityError,
    GatewayError,
    RemoteMessageError,
    RemoteServerError,
    ValidationError,
)

logger = logging.getLogger("virtfusion.gateway")

API_PREFIX = "/api/v1"
TERMINATION_DELAY = 5

UNAUTHORIZED_MESSAGE = "This action is unauthorized! Confirm that API token has the right permissions"
CONNECTIVITY_MESSAGE = "Failed to connect to the API. Ensure the API details and hostname are valid."


class HTTPMethod(str, Enum):
    """HTTP verbs accepted by :meth:`PanelGateway.call`."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


_BODY_METHODS = {HTTPMethod.POST, HTTPMethod.PUT}


def _coerce_method(method: Union[HTTPMethod, str]) -> HTTPMethod:
    if isinstance(method, HTTPMethod):
        return method
    try:
        return HTTPMethod(str(method).strip().upper())
    except ValueError as exc:
        raise ValueError(f"Unsupported HTTP method {method!r}") from exc


def _build_endpoint(path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    return f"{API_PREFIX}{path}"


def _parse_payload(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _raise_for_failure(response: httpx.Response) -> None:
    status_code = response.status_code
    payload = _parse_payload(response)

    if isinstance(payload, dict):
        if "errors" in payload:
            raise ValidationError(payload["errors"], status_code=status_code, payload=payload)
        message = payload.get("message")
        if message is not None and str(message).strip():
            raise RemoteMessageError(str(message).strip(), status_code=status_code, payload=payload)

    if status_code in (401, 403):
        raise AuthorizationError(UNAUTHORIZED_MESSAGE, status_code=status_code, payload=payload)
    if status_code >= 500:
        raise RemoteServerError(
            f"Internal Server Error: {status_code}",
            status_code=status_code,
            payload=payload,
        )
    raise ConnectivityError(CONNECTIVITY_MESSAGE, status_code=status_code, payload=payload)


class PanelGateway:
    """Issue authenticated requests against the panel's versioned API.

    The gateway keeps no state between calls; each request opens its own
    client so concurrent callers never share in-flight connections.
    """

    def __init__(
        self,
        config: ServiceConfig,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        provider: SettingsProvider,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "PanelGateway":
        return cls(ServiceConfig.from_settings(provider), transport=transport)

    @property
    def host(self) -> str:
        return self._config.host

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.Client:
        options: Dict[str, Any] = {"base_url": self._config.host}
        if self._transport is not None:
            options["transport"] = self._transport
        if self._config.timeout is not None:
            options["timeout"] = self._config.timeout
        return httpx.Client(**options)

    def call(
        self,
        method: Union[HTTPMethod, str],
        endpoint: str,
        body: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Perform a request and return the decoded JSON response."""

        verb = _coerce_method(method)
        path = _build_endpoint(endpoint)
        request_options: Dict[str, Any] = {"headers": self._headers()}
        if body is not None and verb in _BODY_METHODS:
            request_options["json"] = dict(body)

        logger.debug("%s %s%s", verb.value, self._config.host, path)
        try:
            with self._client() as client:
                response = client.request(verb.value, path, **request_options)
        except httpx.RequestError as exc:
            logger.warning("Request to VirtFusion failed: %s %s (%s)", verb.value, path, exc)
            raise ConnectivityError(CONNECTIVITY_MESSAGE) from exc

        if response.status_code >= 400:
            try:
                _raise_for_failure(response)
            except GatewayError as exc:
                logger.warning(
                    "VirtFusion rejected %s %s with status %s: %s",
                    verb.value,
                    path,
                    response.status_code,
                    exc.detail,
                )
                raise

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise ConnectivityError("The API returned an invalid response") from exc
        if not isinstance(data, dict):
            raise ConnectivityError("The API returned an unexpected response payload")
        return data

    # ------------------------------------------------------------------
    # Endpoint helpers
    # ------------------------------------------------------------------
    def test_connection(self) -> Dict[str, Any]:
        return self.call(HTTPMethod.GET, "/connect")

    def list_packages(self) -> List[Dict[str, Any]]:
        packages = self.call(HTTPMethod.GET, "/packages").get("data") or []
        if not isinstance(packages, list):
            raise ConnectivityError("The API returned an unexpected package listing")
        return packages

    def create_user(
        self,
        *,
        name: str,
        email: str,
        ext_relation_id: int,
        send_mail: bool = True,
    ) -> Dict[str, Any]:
        response = self.call(
            HTTPMethod.POST,
            "/users",
            {
                "name": name,
                "email": email,
                "extRelationId": ext_relation_id,
                "sendMail": send_mail,
            },
        )
        return _require_data(response, with_id=True)

    def create_server(
        self,
        *,
        package_id: int,
        user_id: int,
        hypervisor_id: int,
        ipv4: int,
        storage: int,
        memory: int,
        cpu_cores: int,
    ) -> Dict[str, Any]:
        response = self.call(
            HTTPMethod.POST,
            "/servers",
            {
                "packageId": package_id,
                "userId": user_id,
                "hypervisorId": hypervisor_id,
                "ipv4": ipv4,
                "storage": storage,
                "memory": memory,
                "cpuCores": cpu_cores,
            },
        )
        return _require_data(response, with_id=True)

    def create_login_token(self, *, user_id: int, server_id: int) -> Dict[str, Any]:
        response = self.call(
            HTTPMethod.POST,
            f"/users/{user_id}/serverAuthenticationTokens/{server_id}",
        )
        return _require_data(response)

    def suspend_server(self, server_id: int) -> Dict[str, Any]:
        return self.call(HTTPMethod.POST, f"/servers/{server_id}/suspend")

    def unsuspend_server(self, server_id: int) -> Dict[str, Any]:
        return self.call(HTTPMethod.POST, f"/servers/{server_id}/unsuspend")

    def delete_server(self, server_id: int, *, delay: int = TERMINATION_DELAY) -> Dict[str, Any]:
        return self.call(HTTPMethod.DELETE, f"/servers/{server_id}?delay={int(delay)}")


def _require_data(response: Mapping[str, Any], *, with_id: bool = False) -> Dict[str, Any]:
    data = response.get("data")
    if not isinstance(data, dict):
        raise ConnectivityError("The API response was missing the 'data' payload")
    if with_id and data.get("id") in (None, ""):
        raise ConnectivityError("The API response was missing the created resource id")
    return data


__all__ = [
    "API_PREFIX",
    "HTTPMethod",
    "PanelGateway",
    "TERMINATION_DELAY",
]
