"""FastAPI hook surface the host platform calls on order lifecycle events."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, NoReturn, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from .database import Database, DatabaseNotifier
from .errors import ConfigurationError, MissingServerError, VirtFusionError
from .gateway import PanelGateway
from .models import Order, Package
from .notifications import Notifier
from .schema import config_schema, package_config_schema, serialize_fields, validate_fields
from .service import VirtFusionService

logger = logging.getLogger("virtfusion.api")

GatewayFactory = Callable[[], PanelGateway]


class SettingsUpdateRequest(BaseModel):
    values: Dict[str, Optional[str]] = Field(default_factory=dict)


class PackageConfigUpdateRequest(BaseModel):
    values: Dict[str, Any] = Field(default_factory=dict)


class LifecycleRequest(BaseModel):
    extra_data: Dict[str, Any] = Field(default_factory=dict)


class ConnectionCheckResponse(BaseModel):
    ok: bool
    message: str


class ProvisionResponse(BaseModel):
    order_id: int
    external_id: str
    data: Dict[str, Any]


class LifecycleResponse(BaseModel):
    order_id: int
    status: str


def _raise_http(exc: VirtFusionError) -> NoReturn:
    if isinstance(exc, (ConfigurationError, MissingServerError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc


def create_app(
    *,
    database: Database,
    gateway_factory: Optional[GatewayFactory] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    """Create the hook application backed by ``database``."""

    def _settings_gateway() -> PanelGateway:
        return PanelGateway.from_settings(database)

    build_gateway: GatewayFactory = gateway_factory or _settings_gateway

    if notifier is None:
        notifier = DatabaseNotifier(database)

    app = FastAPI(title="VirtFusion Provisioning", docs_url=None, redoc_url=None)
    app.state.database = database

    def _gateway() -> PanelGateway:
        try:
            return build_gateway()
        except ConfigurationError as exc:
            _raise_http(exc)

    def _order(order_id: int) -> Order:
        order = database.get_order(order_id)
        if order is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        return order

    def _package(package_id: int) -> Package:
        package = database.get_package(package_id)
        if package is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found")
        return package

    def _service(order_id: int) -> VirtFusionService:
        order = _order(order_id)
        return VirtFusionService(order, gateway=_gateway(), repository=database, notifier=notifier)

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/metadata")
    def metadata() -> Dict[str, object]:
        return VirtFusionService.metadata().to_dict()

    # ------------------------------------------------------------------
    # Installation settings
    # ------------------------------------------------------------------
    @app.get("/v1/config/schema")
    def get_config_schema() -> List[Dict[str, object]]:
        return serialize_fields(VirtFusionService.config_schema())

    @app.put("/v1/config")
    def update_config(request: SettingsUpdateRequest) -> Dict[str, str]:
        fields = config_schema()
        errors = validate_fields(fields, request.values)
        if errors:
            raise HTTPException(status_code=422, detail={"errors": errors})

        try:
            database.set_settings({field.key: request.values.get(field.key) for field in fields})
        except ConfigurationError as exc:
            _raise_http(exc)
        logger.info("VirtFusion settings updated")
        return {"status": "saved"}

    @app.post("/v1/config/test", response_model=ConnectionCheckResponse)
    def test_connection() -> ConnectionCheckResponse:
        try:
            gateway = build_gateway()
        except ConfigurationError as exc:
            return ConnectionCheckResponse(ok=False, message=str(exc))
        check = VirtFusionService.test_connection(gateway)
        return ConnectionCheckResponse(ok=check.ok, message=check.message)

    # ------------------------------------------------------------------
    # Package settings
    # ------------------------------------------------------------------
    @app.get("/v1/packages/{package_id}/config/schema")
    def get_package_config_schema(package_id: int) -> List[Dict[str, object]]:
        package = _package(package_id)
        try:
            fields = VirtFusionService.package_config_schema(package, _gateway())
        except VirtFusionError as exc:
            _raise_http(exc)
        return serialize_fields(fields)

    @app.put("/v1/packages/{package_id}/config")
    def update_package_config(package_id: int, request: PackageConfigUpdateRequest) -> Dict[str, Any]:
        _package(package_id)
        fields = package_config_schema({})
        errors = validate_fields(fields, request.values)
        if errors:
            raise HTTPException(status_code=422, detail={"errors": errors})

        updated = database.update_package_config(
            package_id,
            {field.key: request.values.get(field.key) for field in fields},
        )
        if updated is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Package not found")
        return {"id": updated.id, "config": updated.config}

    @app.get("/v1/packages/{package_id}/checkout/schema")
    def get_checkout_schema(package_id: int) -> List[Dict[str, object]]:
        return serialize_fields(VirtFusionService.checkout_config_schema(_package(package_id)))

    # ------------------------------------------------------------------
    # Order lifecycle
    # ------------------------------------------------------------------
    @app.post("/v1/orders/{order_id}/provision", response_model=ProvisionResponse)
    def provision(order_id: int, request: Optional[LifecycleRequest] = None) -> ProvisionResponse:
        service = _service(order_id)
        try:
            server = service.provision(request.extra_data if request else None)
        except VirtFusionError as exc:
            _raise_http(exc)
        return ProvisionResponse(order_id=order_id, external_id=server.external_id, data=server.data)

    @app.post("/v1/orders/{order_id}/suspend", response_model=LifecycleResponse)
    def suspend(order_id: int, request: Optional[LifecycleRequest] = None) -> LifecycleResponse:
        service = _service(order_id)
        try:
            service.suspend(request.extra_data if request else None)
        except VirtFusionError as exc:
            _raise_http(exc)
        return LifecycleResponse(order_id=order_id, status="suspended")

    @app.post("/v1/orders/{order_id}/unsuspend", response_model=LifecycleResponse)
    def unsuspend(order_id: int, request: Optional[LifecycleRequest] = None) -> LifecycleResponse:
        service = _service(order_id)
        try:
            service.unsuspend(request.extra_data if request else None)
        except VirtFusionError as exc:
            _raise_http(exc)
        return LifecycleResponse(order_id=order_id, status="active")

    @app.post("/v1/orders/{order_id}/terminate", response_model=LifecycleResponse)
    def terminate(order_id: int, request: Optional[LifecycleRequest] = None) -> LifecycleResponse:
        service = _service(order_id)
        try:
            service.terminate(request.extra_data if request else None)
        except VirtFusionError as exc:
            _raise_http(exc)
        return LifecycleResponse(order_id=order_id, status="terminated")

    @app.get("/v1/orders/{order_id}/buttons")
    def service_buttons(order_id: int) -> List[Dict[str, object]]:
        return VirtFusionService.service_buttons(_order(order_id))

    @app.get("/v1/orders/{order_id}/login")
    def login(order_id: int) -> RedirectResponse:
        redirect = _service(order_id).login_to_panel()
        if not redirect.ok or not redirect.url:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=redirect.message)
        return RedirectResponse(url=redirect.url, status_code=status.HTTP_303_SEE_OTHER)

    return app


__all__ = ["create_app"]
