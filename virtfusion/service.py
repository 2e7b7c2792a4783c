"""Order lifecycle handlers invoked by the host platform."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .config import SERVICE_KEY
from .errors import ConfigurationError, GatewayError, MissingServerError, ProvisioningError, VirtFusionError
from .gateway import PanelGateway, TERMINATION_DELAY
from .models import ExternalUser, Order, OrderRepository, Package, PackageConfig, RemoteServer
from .notifications import Notifier, render_credentials_email
from .schema import FieldDescriptor, config_schema, package_config_schema

logger = logging.getLogger("virtfusion.service")

USER_CREATION_FAILED_MESSAGE = (
    "Failed to create user on the panel, please make sure the email isn't already in use "
    "or that your name is longer than 10 chars"
)
LOGIN_FAILED_MESSAGE = "Something went wrong, please try again later."
CONNECTION_OK_MESSAGE = "Successfully connected to VirtFusion"


@dataclass(frozen=True)
class ServiceMetadata:
    display_name: str
    author: str
    version: str
    wemx_version: Tuple[str, ...]

    def to_dict(self) -> Dict[str, object]:
        return {
            "display_name": self.display_name,
            "author": self.author,
            "version": self.version,
            "wemx_version": list(self.wemx_version),
        }


@dataclass(frozen=True)
class LoginRedirect:
    """Where to send the customer's browser after a panel login request."""

    ok: bool
    url: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class ConnectionCheck:
    ok: bool
    message: str


def _remote_id(value: Union[str, int]) -> Union[str, int]:
    text = str(value).strip()
    return int(text) if text.isdigit() else text


def _join_panel_url(host: str, endpoint: str) -> str:
    if endpoint.startswith(("http://", "https://")):
        return endpoint
    if not endpoint.startswith("/"):
        endpoint = "/" + endpoint
    return f"{host}{endpoint}"


class VirtFusionService:
    """Translate host platform order events into VirtFusion panel calls."""

    KEY = SERVICE_KEY

    def __init__(
        self,
        order: Order,
        *,
        gateway: PanelGateway,
        repository: OrderRepository,
        notifier: Notifier,
    ) -> None:
        self.order = order
        self._gateway = gateway
        self._repository = repository
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Declarations consumed by the admin UI
    # ------------------------------------------------------------------
    @staticmethod
    def metadata() -> ServiceMetadata:
        return ServiceMetadata(
            display_name="VirtFusion",
            author="WemX",
            version="1.0.0",
            wemx_version=("dev", ">=1.8.0"),
        )

    @staticmethod
    def config_schema() -> List[FieldDescriptor]:
        return config_schema()

    @staticmethod
    def package_config_schema(package: Package, gateway: PanelGateway) -> List[FieldDescriptor]:
        """Per-package settings with the selector filled from the live catalog."""

        return package_config_schema(VirtFusionService.list_enabled_packages(gateway))

    @staticmethod
    def checkout_config_schema(package: Package) -> List[FieldDescriptor]:
        return []

    @staticmethod
    def service_buttons(order: Order) -> List[Dict[str, object]]:
        return []

    @staticmethod
    def list_enabled_packages(gateway: PanelGateway) -> Dict[Any, str]:
        """Map remote package ids to names, skipping disabled packages."""

        return {
            item["id"]: str(item.get("name", item["id"]))
            for item in gateway.list_packages()
            if item.get("enabled")
        }

    @staticmethod
    def test_connection(gateway: PanelGateway) -> ConnectionCheck:
        try:
            gateway.test_connection()
        except VirtFusionError as exc:
            logger.warning("VirtFusion connection test failed: %s", exc.detail)
            return ConnectionCheck(ok=False, message=str(exc))
        return ConnectionCheck(ok=True, message=CONNECTION_OK_MESSAGE)

    # ------------------------------------------------------------------
    # Lifecycle handlers
    # ------------------------------------------------------------------
    def provision(self, extra_data: Optional[Mapping[str, Any]] = None) -> RemoteServer:
        """Create the panel account if needed, then the server for this order.

        Calling this twice for the same order creates a second server; the
        host platform must only provision an order once.
        """

        order = self.order
        logger.info("Provisioning VirtFusion server for order %s", order.id)

        try:
            config = PackageConfig.from_mapping(order.package.config)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        if config.package_id is None or config.hypervisor_group_id is None:
            raise ConfigurationError(
                f"Package {order.package.id} is missing its VirtFusion package or hypervisor group"
            )

        external_user = self._repository.get_external_user(order.user.id)
        if external_user is None:
            external_user = self._create_external_user()

        server = self._gateway.create_server(
            package_id=config.package_id,
            user_id=_remote_id(external_user.external_id),
            hypervisor_id=config.hypervisor_group_id,
            ipv4=config.allowed_ips,
            storage=config.storage,
            memory=config.memory,
            cpu_cores=config.cpu_cores,
        )
        remote = RemoteServer(external_id=str(server["id"]), data=server)
        self._repository.update_order_external(order.id, external_id=remote.external_id, data=remote.data)
        logger.info("Order %s provisioned as VirtFusion server %s", order.id, remote.external_id)
        return remote

    def suspend(self, extra_data: Optional[Mapping[str, Any]] = None) -> None:
        server_id = self._require_server()
        logger.info("Suspending VirtFusion server %s for order %s", server_id, self.order.id)
        self._gateway.suspend_server(server_id)

    def unsuspend(self, extra_data: Optional[Mapping[str, Any]] = None) -> None:
        server_id = self._require_server()
        logger.info("Unsuspending VirtFusion server %s for order %s", server_id, self.order.id)
        self._gateway.unsuspend_server(server_id)

    def terminate(self, extra_data: Optional[Mapping[str, Any]] = None) -> None:
        server_id = self._require_server()
        logger.info("Terminating VirtFusion server %s for order %s", server_id, self.order.id)
        self._gateway.delete_server(server_id, delay=TERMINATION_DELAY)

    def login_to_panel(self) -> LoginRedirect:
        """Request a one-time login URL for the order's server."""

        try:
            server_id = self._require_server()
            data = self._gateway.create_login_token(
                user_id=self.order.user.id,
                server_id=server_id,
            )
            endpoint = data["authentication"]["endpoint_complete"]
        except VirtFusionError as exc:
            logger.warning("Panel login for order %s failed: %s", self.order.id, exc.detail)
            return LoginRedirect(ok=False, message=LOGIN_FAILED_MESSAGE)
        except (KeyError, TypeError):
            logger.warning("Panel login for order %s returned no endpoint", self.order.id)
            return LoginRedirect(ok=False, message=LOGIN_FAILED_MESSAGE)

        return LoginRedirect(ok=True, url=_join_panel_url(self._gateway.host, str(endpoint)))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _create_external_user(self) -> ExternalUser:
        order = self.order
        user = order.user
        try:
            payload = self._gateway.create_user(
                name=user.full_name,
                email=user.email,
                ext_relation_id=user.id,
                send_mail=True,
            )
        except GatewayError as exc:
            raise ProvisioningError(USER_CREATION_FAILED_MESSAGE) from exc

        password = payload.get("password")
        external_user = self._repository.create_external_user(
            order,
            external_id=str(payload["id"]),
            username=user.email,
            password=password,
            data=payload,
        )
        logger.info("Created VirtFusion user %s for user %s", external_user.external_id, user.id)

        self._notifier.send(
            user,
            render_credentials_email(self._gateway.host, user.email, str(password or "")),
        )
        return external_user

    def _require_server(self) -> Union[str, int]:
        if not self.order.external_id:
            raise MissingServerError(f"Order {self.order.id} has no VirtFusion server")
        return _remote_id(self.order.external_id)


__all__ = [
    "CONNECTION_OK_MESSAGE",
    "ConnectionCheck",
    "LOGIN_FAILED_MESSAGE",
    "LoginRedirect",
    "ServiceMetadata",
    "USER_CREATION_FAILED_MESSAGE",
    "VirtFusionService",
]
