"""
Unit tests for RequestContextMiddleware.

These tests verify:
- The context is visible to handlers
- Operation ids are mirrored onto responses without overriding handlers
- Generation failures produce a 500
- Operation details and the ingress deadline are recorded
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from reqobs.context import RequestContextMiddleware, current_request_context


def make_app(**middleware_kwargs) -> FastAPI:
    app = FastAPI()

    @app.get("/ctx")
    async def ctx_route(request: Request):
        ctx = current_request_context()
        return {
            "operation_id": ctx.operation_id,
            "correlation_id": ctx.correlation_id,
            "generated": ctx.operation_id_generated,
            "same_as_state": request.state.request_context is ctx,
            "has_deadline": ctx.deadline is not None,
        }

    @app.get("/own-header")
    async def own_header():
        return JSONResponse({}, headers={"x-ms-acs-operation-id": "handler-value"})

    @app.get("/subscriptions/{subscriptionId}/resourceGroups/{resourceGroup}", name="get_group")
    async def get_group(request: Request, subscriptionId: str, resourceGroup: str):
        ctx = current_request_context()
        return {
            "api_version": ctx.api_version,
            "subscription_id": ctx.subscription_id,
            "resource_group": ctx.resource_group,
            "target_uri": ctx.target_uri,
            "http_method": ctx.http_method,
            "route_name": ctx.route_name,
            "operation_id": ctx.operation_id,
            "operation_id_header": request.headers.get("x-ms-acs-operation-id"),
        }

    app.add_middleware(RequestContextMiddleware, **middleware_kwargs)
    return app


class TestRequestContextMiddleware:
    """Tests for RequestContextMiddleware.dispatch."""

    def test_received_identifiers_bound(self):
        client = TestClient(make_app())

        response = client.get(
            "/ctx",
            headers={"x-ms-acs-operation-id": "op-1", "x-ms-correlation-request-id": "corr-1"},
        )

        body = response.json()
        assert body["operation_id"] == "op-1"
        assert body["correlation_id"] == "corr-1"
        assert body["generated"] is False
        assert body["same_as_state"] is True
        assert response.headers["x-ms-acs-operation-id"] == "op-1"

    def test_generated_operation_id_mirrored(self):
        client = TestClient(make_app())

        response = client.get("/ctx")

        body = response.json()
        assert body["generated"] is True
        assert len(body["operation_id"]) == 8
        assert response.headers["x-ms-acs-operation-id"] == body["operation_id"]

    def test_handler_header_not_overwritten(self):
        """Mirroring is additive."""
        client = TestClient(make_app())

        response = client.get("/own-header", headers={"x-ms-acs-operation-id": "op-1"})

        assert response.headers["x-ms-acs-operation-id"] == "handler-value"

    def test_custom_mirroring(self):
        client = TestClient(make_app(metadata_to_header={"correlation_id": "x-corr"}))

        response = client.get("/ctx", headers={"x-ms-correlation-request-id": "corr-1"})

        assert response.headers["x-corr"] == "corr-1"
        assert "x-ms-acs-operation-id" not in response.headers

    def test_entropy_failure_returns_500(self):
        def broken_source(n):
            raise OSError("no entropy")

        client = TestClient(make_app(token_source=broken_source))

        response = client.get("/ctx")

        assert response.status_code == 500

    def test_request_timeout_sets_deadline(self):
        client = TestClient(make_app(request_timeout_seconds=30))

        assert client.get("/ctx").json()["has_deadline"] is True

    def test_invalid_customizer_extras_return_500(self):
        client = TestClient(make_app(customizer=lambda headers: {"bad": ["list"]}))

        response = client.get("/ctx")

        assert response.status_code == 500

    def test_default_deadline_applied(self):
        assert TestClient(make_app()).get("/ctx").json()["has_deadline"] is True

    def test_deadline_disabled(self):
        client = TestClient(make_app(request_timeout_seconds=None))

        assert client.get("/ctx").json()["has_deadline"] is False


class TestOperationDetails:
    """Tests for the operation details recorded on the context."""

    GROUP_URL = "/subscriptions/sub-1/resourceGroups/rg-1?api-version=2024-01-01"

    def setup_method(self):
        """Create a client for the test app."""
        self.client = TestClient(make_app())

    def test_fields_from_routed_request(self):
        body = self.client.get(self.GROUP_URL).json()

        assert body["api_version"] == "2024-01-01"
        assert body["subscription_id"] == "sub-1"
        assert body["resource_group"] == "rg-1"
        assert body["target_uri"] == f"http://testserver{self.GROUP_URL}"
        assert body["http_method"] == "GET"
        assert body["route_name"] == "get_group"

    def test_missing_api_version_recorded_empty(self):
        response = self.client.get("/subscriptions/sub-1/resourceGroups/rg-1")

        assert response.status_code == 200
        assert response.json()["api_version"] == ""

    def test_generated_operation_id_written_to_request_header(self):
        body = self.client.get(self.GROUP_URL).json()

        assert len(body["operation_id"]) == 8
        assert body["operation_id_header"] == body["operation_id"]

    def test_received_operation_id_kept_in_request_header(self):
        body = self.client.get(self.GROUP_URL, headers={"x-ms-acs-operation-id": "op-1"}).json()

        assert body["operation_id_header"] == "op-1"
