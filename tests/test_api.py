"""End-to-end tests for the host hook HTTP API."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path
from typing import Any, Dict, List, Tuple

import httpx
from fastapi.testclient import TestClient

from virtfusion.api import create_app
from virtfusion.config import API_KEY_SETTING, HOST_SETTING, ServiceConfig
from virtfusion.database import Database
from virtfusion.gateway import PanelGateway


class FakePanel:
    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Tuple[int, Any]] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, payload = self.routes.get((request.method, request.url.path), (404, None))
        if payload is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=payload)

    def gateway(self) -> PanelGateway:
        return PanelGateway(
            ServiceConfig(host="https://panel.test", api_key="token"),
            transport=httpx.MockTransport(self),
        )


class HookAPITests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        self.database = Database(Path(self._tempdir.name) / "virtfusion.sqlite3", secret="tests-secret-key")
        self.database.initialize()
        self.user = self.database.create_user("Ada", "Lovelace", "ada@example.com")
        self.package = self.database.create_package(
            "VPS Small",
            {"package": 3, "hypervisor_group_id": 7, "allowed_ips": 1, "storage": 20, "memory": 1024, "cpu_cores": 2},
        )
        self.order = self.database.create_order(self.user.id, self.package.id)
        self.panel = FakePanel()
        self.app = create_app(database=self.database, gateway_factory=self.panel.gateway)

    def tearDown(self) -> None:
        self._tempdir.cleanup()

    def _route(self, method: str, path: str, status_code: int = 200, payload: Any = None) -> None:
        self.panel.routes[(method, f"/api/v1{path}")] = (status_code, payload)

    def test_metadata_and_static_schemas(self) -> None:
        with TestClient(self.app) as client:
            metadata = client.get("/v1/metadata")
            schema = client.get("/v1/config/schema")
            checkout = client.get(f"/v1/packages/{self.package.id}/checkout/schema")
            buttons = client.get(f"/v1/orders/{self.order.id}/buttons")

        self.assertEqual(metadata.status_code, 200, metadata.text)
        self.assertEqual(metadata.json()["display_name"], "VirtFusion")
        self.assertEqual([field["key"] for field in schema.json()], [HOST_SETTING, API_KEY_SETTING])
        self.assertEqual(checkout.json(), [])
        self.assertEqual(buttons.json(), [])

    def test_settings_are_validated_before_saving(self) -> None:
        with TestClient(self.app) as client:
            rejected = client.put(
                "/v1/config",
                json={"values": {HOST_SETTING: "https://panel.example.com/", API_KEY_SETTING: "token"}},
            )
            self.assertEqual(rejected.status_code, 422, rejected.text)
            self.assertIn(HOST_SETTING, rejected.json()["detail"]["errors"])
            self.assertIsNone(self.database.get_setting(HOST_SETTING))

            saved = client.put(
                "/v1/config",
                json={"values": {HOST_SETTING: "https://panel.example.com", API_KEY_SETTING: "token"}},
            )
            self.assertEqual(saved.status_code, 200, saved.text)

        self.assertEqual(self.database.get_setting(HOST_SETTING), "https://panel.example.com")
        self.assertEqual(self.database.get_setting(API_KEY_SETTING), "token")

    def test_connection_check_without_settings(self) -> None:
        app = create_app(database=self.database)

        with TestClient(app) as client:
            response = client.post("/v1/config/test")

        self.assertEqual(response.status_code, 200, response.text)
        self.assertFalse(response.json()["ok"])

    def test_connection_check_with_rotated_secret(self) -> None:
        self.database.set_settings({HOST_SETTING: "https://panel.example.com", API_KEY_SETTING: "token"})
        rotated = Database(Path(self._tempdir.name) / "virtfusion.sqlite3", secret="another-secret")
        app = create_app(database=rotated)

        with TestClient(app) as client:
            response = client.post("/v1/config/test")

        self.assertEqual(response.status_code, 200, response.text)
        self.assertFalse(response.json()["ok"])
        self.assertIn("could not be decrypted", response.json()["message"])

    def test_settings_update_without_secret_conflicts(self) -> None:
        unkeyed = Database(Path(self._tempdir.name) / "virtfusion.sqlite3", secret="")
        app = create_app(database=unkeyed)

        with TestClient(app) as client:
            response = client.put(
                "/v1/config",
                json={"values": {HOST_SETTING: "https://panel.example.com", API_KEY_SETTING: "token"}},
            )

        self.assertEqual(response.status_code, 409, response.text)
        self.assertIn("VIRTFUSION_SECRET", response.json()["detail"])
        self.assertIsNone(self.database.get_setting(HOST_SETTING))

    def test_connection_check_with_panel(self) -> None:
        self._route("GET", "/connect", payload={})

        with TestClient(self.app) as client:
            response = client.post("/v1/config/test")

        self.assertEqual(response.json(), {"ok": True, "message": "Successfully connected to VirtFusion"})

    def test_package_schema_lists_enabled_packages(self) -> None:
        self._route(
            "GET",
            "/packages",
            payload={"data": [{"id": 1, "name": "Small", "enabled": True}, {"id": 2, "name": "Old", "enabled": False}]},
        )

        with TestClient(self.app) as client:
            response = client.get(f"/v1/packages/{self.package.id}/config/schema")

        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json()[0]["options"], {"1": "Small"})

    def test_package_config_update(self) -> None:
        with TestClient(self.app) as client:
            rejected = client.put(
                f"/v1/packages/{self.package.id}/config",
                json={"values": {"package": 3, "hypervisor_group_id": "x"}},
            )
            accepted = client.put(
                f"/v1/packages/{self.package.id}/config",
                json={
                    "values": {
                        "package": 4,
                        "hypervisor_group_id": 9,
                        "allowed_ips": 2,
                        "storage": 40,
                        "memory": 2048,
                        "cpu_cores": 4,
                    }
                },
            )

        self.assertEqual(rejected.status_code, 422, rejected.text)
        self.assertEqual(accepted.status_code, 200, accepted.text)
        package = self.database.get_package(self.package.id)
        assert package is not None
        self.assertEqual(package.config["hypervisor_group_id"], 9)

    def test_order_lifecycle(self) -> None:
        self._route("POST", "/users", payload={"data": {"id": 99, "password": "pw-123"}})
        self._route("POST", "/servers", payload={"data": {"id": 555, "name": "vps-555"}})
        self._route("POST", "/servers/555/suspend", payload={})
        self._route("POST", "/servers/555/unsuspend", payload={})
        self._route("DELETE", "/servers/555", status_code=204)
        self._route(
            "POST",
            f"/users/{self.user.id}/serverAuthenticationTokens/555",
            payload={"data": {"authentication": {"endpoint_complete": "/token_login?token=abc"}}},
        )

        with TestClient(self.app) as client:
            provisioned = client.post(f"/v1/orders/{self.order.id}/provision", json={"extra_data": {}})
            self.assertEqual(provisioned.status_code, 200, provisioned.text)
            self.assertEqual(provisioned.json()["external_id"], "555")

            suspended = client.post(f"/v1/orders/{self.order.id}/suspend")
            self.assertEqual(suspended.json()["status"], "suspended")

            unsuspended = client.post(f"/v1/orders/{self.order.id}/unsuspend")
            self.assertEqual(unsuspended.json()["status"], "active")

            login = client.get(f"/v1/orders/{self.order.id}/login", follow_redirects=False)
            self.assertEqual(login.status_code, 303, login.text)
            self.assertEqual(login.headers["location"], "https://panel.test/token_login?token=abc")

            terminated = client.post(f"/v1/orders/{self.order.id}/terminate")
            self.assertEqual(terminated.json()["status"], "terminated")

        order = self.database.get_order(self.order.id)
        assert order is not None
        self.assertEqual(order.external_id, "555")
        self.assertEqual(order.data, {"id": 555, "name": "vps-555"})

        linked = self.database.get_external_user(self.user.id)
        assert linked is not None
        self.assertEqual(linked.external_id, "99")

        emails = self.database.list_pending_emails(self.user.id)
        self.assertEqual(len(emails), 1)
        self.assertIn("pw-123", emails[0].content)

        server_request = self.panel.requests[1]
        self.assertEqual(
            json.loads(server_request.content),
            {"packageId": 3, "userId": 99, "hypervisorId": 7, "ipv4": 1, "storage": 20, "memory": 1024, "cpuCores": 2},
        )
        self.assertEqual(str(self.panel.requests[-1].url), "https://panel.test/api/v1/servers/555?delay=5")

    def test_provision_failure_is_reported(self) -> None:
        self._route("POST", "/users", status_code=422, payload={"errors": {"email": ["taken"]}})

        with TestClient(self.app) as client:
            response = client.post(f"/v1/orders/{self.order.id}/provision")

        self.assertEqual(response.status_code, 502, response.text)
        self.assertIn("Failed to create user on the panel", response.json()["detail"])

    def test_lifecycle_without_server_conflicts(self) -> None:
        with TestClient(self.app) as client:
            response = client.post(f"/v1/orders/{self.order.id}/suspend")

        self.assertEqual(response.status_code, 409, response.text)
        self.assertEqual(self.panel.requests, [])

    def test_login_failure_returns_generic_message(self) -> None:
        self.database.update_order_external(self.order.id, external_id="555", data={"id": 555})

        with TestClient(self.app) as client:
            response = client.get(f"/v1/orders/{self.order.id}/login", follow_redirects=False)

        self.assertEqual(response.status_code, 502, response.text)
        self.assertEqual(response.json()["detail"], "Something went wrong, please try again later.")

    def test_unknown_order(self) -> None:
        with TestClient(self.app) as client:
            response = client.post("/v1/orders/9999/terminate")

        self.assertEqual(response.status_code, 404, response.text)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
