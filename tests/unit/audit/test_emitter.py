"""
Unit tests for the AuditEmitter.

These tests verify:
- Operation type and result mapping
- Caller identity collection from trust headers and the path
- Category and description overrides
- Exclusion rules
- Best-effort delivery (sink failures and timeouts are swallowed)
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from reqobs.audit import (
    AuditConfig,
    AuditEmitter,
    CallerIdentityType,
    OperationCategory,
    OperationResult,
    OperationType,
)
from reqobs.audit.emitter import (
    caller_ip_from,
    get_caller_identities,
    get_operation_result_description,
    get_operation_type,
    subscription_id_from,
)
from reqobs.context.models import RequestContext
from reqobs.core.exceptions import AuditSinkError


CLUSTER_URI = (
    "/subscriptions/sub-1/resourceGroups/rg/providers/"
    "Microsoft.ContainerService/managedClusters/c1?api-version=2024-01-01"
)
CLUSTER_URL = f"https://management.example.com{CLUSTER_URI}"

TRUST_HEADERS = {
    "X-Ms-Client-App-Id": "app-1",
    "x-ms-client-principal-name": "user@example.com",
    "x-ms-client-tenant-id": "tenant-1",
    "region": "eastus",
    "user-agent": "cli/1.0",
}


class TestOperationMapping:
    """Tests for operation type and result helpers."""

    @pytest.mark.parametrize(
        "method,expected",
        [
            ("GET", OperationType.READ),
            ("HEAD", OperationType.READ),
            ("POST", OperationType.UPDATE),
            ("PUT", OperationType.UPDATE),
            ("patch", OperationType.UPDATE),
            ("DELETE", OperationType.DELETE),
        ],
    )
    def test_operation_type(self, method, expected):
        """HTTP methods map to operation types."""
        assert get_operation_type(method) == expected

    def test_success_description(self):
        assert get_operation_result_description(200) == "succeeded to run the operation"

    def test_failure_description_includes_code_and_error(self):
        """Failure descriptions carry the status code and the error text."""
        description = get_operation_result_description(500, "boom")
        assert description == "operation failed with status code: 500, error: boom"
        assert get_operation_result_description(404) == "operation failed with status code: 404"


class TestCallerIdentities:
    """Tests for identity extraction."""

    def test_identities_from_trust_headers(self):
        """Each present trust header yields one identity entry."""
        identities = get_caller_identities(TRUST_HEADERS, "sub-1")

        assert identities[CallerIdentityType.APPLICATION_ID][0].identity == "app-1"
        assert identities[CallerIdentityType.UPN][0].identity == "user@example.com"
        assert identities[CallerIdentityType.TENANT_ID][0].identity == "tenant-1"
        assert identities[CallerIdentityType.SUBSCRIPTION_ID][0].identity == "sub-1"

    def test_missing_headers_omitted(self):
        """Identity types without a value are left out."""
        identities = get_caller_identities({"x-ms-client-app-id": "app-1"})
        assert list(identities) == [CallerIdentityType.APPLICATION_ID]

    def test_subscription_from_path_params_wins(self):
        assert subscription_id_from({"subscriptionId": "routed"}, "/subscriptions/other") == "routed"

    def test_subscription_from_path(self):
        assert subscription_id_from(None, "/Subscriptions/sub-9/resourceGroups/rg") == "sub-9"
        assert subscription_id_from({}, "/healthz") == ""

    def test_caller_ip(self):
        """Host:port and bracketed IPv6 addresses yield the IP."""
        assert caller_ip_from("10.1.2.3:5050") == "10.1.2.3"
        assert caller_ip_from("[::1]:8080") == "::1"

    def test_malformed_caller_ip_logged(self, caplog):
        """A malformed address yields None and an error log."""
        with caplog.at_level(logging.ERROR):
            assert caller_ip_from("not-an-address") is None
        assert "Failed to parse caller address" in caplog.text


class TestBuildRecord:
    """Tests for AuditEmitter.build_record."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sink = MagicMock()
        self.sink.send = AsyncMock()
        self.emitter = AuditEmitter(self.sink)

    def test_successful_read(self):
        """A 200 GET produces a successful Read record."""
        ctx = RequestContext(correlation_id="corr-1", operation_id="op-1")
        record = self.emitter.build_record(
            method="GET",
            request_uri=CLUSTER_URI,
            url=CLUSTER_URL,
            status_code=200,
            headers=TRUST_HEADERS,
            remote_addr="10.0.0.5:1234",
            ctx=ctx,
        )

        assert record.operation_name == "GET managedclusters - READ"
        assert record.operation_type == OperationType.READ
        assert record.operation_result == OperationResult.SUCCESS
        assert record.operation_categories == [OperationCategory.RESOURCE_MANAGEMENT]
        assert record.correlation_id == "corr-1"
        assert record.operation_id == "op-1"
        assert record.caller_ip_address == "10.0.0.5"
        assert record.caller_agent == "cli/1.0"
        assert record.target_resources["ResourceType"][0].name == CLUSTER_URI
        assert record.target_resources["ResourceType"][0].region == "eastus"

    def test_server_error_is_failure(self):
        """A 500 response produces a Failure record mentioning 500."""
        record = self.emitter.build_record(
            method="PUT",
            request_uri=CLUSTER_URI,
            url=CLUSTER_URL,
            status_code=500,
            headers=TRUST_HEADERS,
            error_message="internal error",
        )

        assert record.operation_result == OperationResult.FAILURE
        assert "500" in record.operation_result_description
        assert "internal error" in record.operation_result_description
        assert record.operation_type == OperationType.UPDATE

    def test_label_passed_through(self):
        """A precomputed label is used as the operation name."""
        record = self.emitter.build_record(
            method="GET",
            request_uri="/x",
            url="http://h/x",
            status_code=200,
            headers=TRUST_HEADERS,
            label="GET custom",
        )
        assert record.operation_name == "GET custom"

    def test_category_override_by_label_then_method(self):
        """Overrides are looked up by label first, then by method."""
        emitter = AuditEmitter(
            self.sink,
            AuditConfig(
                custom_operation_categories={
                    "GET custom": OperationCategory.KEY_MANAGEMENT,
                    "DELETE": OperationCategory.OTHER,
                },
                custom_operation_descriptions={"DELETE": "resource removal"},
            ),
        )

        assert emitter.get_operation_category("GET custom", "GET") == OperationCategory.KEY_MANAGEMENT
        assert emitter.get_operation_category("DELETE x", "DELETE") == OperationCategory.OTHER
        assert emitter.get_operation_category_description("DELETE x", "DELETE") == "resource removal"
        assert emitter.get_operation_category("GET other", "GET") == OperationCategory.RESOURCE_MANAGEMENT

    def test_missing_context_leaves_ids_empty(self):
        record = self.emitter.build_record(
            method="GET",
            request_uri="/x",
            url="http://h/x",
            status_code=200,
            headers=TRUST_HEADERS,
        )
        assert record.correlation_id == ""
        assert record.operation_id == ""


class TestEmit:
    """Tests for AuditEmitter.emit."""

    def setup_method(self):
        """Set up test fixtures."""
        self.sink = MagicMock()
        self.sink.send = AsyncMock()

    async def test_emit_sends_one_record(self):
        emitter = AuditEmitter(self.sink)

        sent = await emitter.emit(
            method="GET",
            request_uri=CLUSTER_URI,
            url=CLUSTER_URL,
            status_code=200,
            headers=TRUST_HEADERS,
        )

        assert sent is True
        self.sink.send.assert_awaited_once()
        record = self.sink.send.await_args.args[0]
        assert record.operation_result == OperationResult.SUCCESS

    async def test_excluded_request_not_sent(self, caplog):
        """Excluded requests produce zero sink calls."""
        emitter = AuditEmitter(self.sink, AuditConfig(exclude={"get": ["/healthz"]}))

        with caplog.at_level(logging.INFO):
            sent = await emitter.emit(
                method="GET",
                request_uri="/healthz",
                url="http://h/healthz",
                status_code=200,
                headers=TRUST_HEADERS,
            )

        assert sent is False
        self.sink.send.assert_not_awaited()
        assert "Excluding audit event" in caplog.text

    async def test_exclusion_is_per_method(self):
        """A pattern registered for GET does not exclude POST."""
        emitter = AuditEmitter(self.sink, AuditConfig(exclude={"GET": ["/healthz"]}))

        assert emitter.should_exclude("GET", "/healthz?check=1") is True
        assert emitter.should_exclude("POST", "/healthz") is False

    async def test_sink_failure_logged_not_raised(self, caplog):
        """A failing sink is logged and emit returns False."""
        self.sink.send = AsyncMock(side_effect=AuditSinkError("connection refused"))
        emitter = AuditEmitter(self.sink)

        with caplog.at_level(logging.ERROR):
            sent = await emitter.emit(
                method="GET",
                request_uri=CLUSTER_URI,
                url=CLUSTER_URL,
                status_code=200,
                headers=TRUST_HEADERS,
            )

        assert sent is False
        assert "Failed to send audit event" in caplog.text
        assert "connection refused" in caplog.text

    async def test_sink_timeout_logged_not_raised(self, caplog):
        """A sink slower than the timeout is abandoned."""

        async def slow_send(record):
            await asyncio.sleep(1)

        self.sink.send = slow_send
        emitter = AuditEmitter(self.sink, AuditConfig(send_timeout_seconds=0.01))

        with caplog.at_level(logging.ERROR):
            sent = await emitter.emit(
                method="GET",
                request_uri=CLUSTER_URI,
                url=CLUSTER_URL,
                status_code=200,
                headers=TRUST_HEADERS,
            )

        assert sent is False
        assert "Timed out sending audit event" in caplog.text
