"""
Unit tests for the gRPC server interceptors.

An in-process server with a generic bytes handler runs the full
default interceptor chain. These tests verify:
- The RequestContext and logger are visible to handlers
- Identifiers are mirrored onto trailing metadata
- Panics become UNKNOWN with provenance in the details
- Handler aborts pass through unchanged
- One "finished call" record per call
"""

import logging
from concurrent import futures

import grpc
import pytest

from reqobs.context import current_request_context
from reqobs.core.config import ObservabilitySettings
from reqobs.ctxlog import get_logger
from reqobs.rpc import default_server_interceptors
from reqobs.rpc.interceptors import (
    PANIC_LOGGER_NAME,
    REQUEST_LOGGER_NAME,
    RequestContextInterceptor,
    details_of,
    metadata_dict,
    split_full_method,
    status_code_of,
)


SERVICE = "reqobs.test.Echo"


def whoami(request, context):
    ctx = current_request_context()
    ctx_logger = get_logger()
    return f"{ctx.operation_id}|{ctx_logger.attributes['method']}".encode()


def panic(request, context):
    raise RuntimeError("nil pointer")


def not_found(request, context):
    context.abort(grpc.StatusCode.NOT_FOUND, "no such cluster")


def own_trailer(request, context):
    context.set_trailing_metadata((("x-ms-acs-operation-id", "handler-value"),))
    return b"ok"


def start_server(interceptors):
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=4), interceptors=interceptors)
    handlers = {
        name: grpc.unary_unary_rpc_method_handler(fn)
        for name, fn in {
            "WhoAmI": whoami,
            "Panic": panic,
            "NotFound": not_found,
            "OwnTrailer": own_trailer,
        }.items()
    }
    server.add_generic_rpc_handlers((grpc.method_handlers_generic_handler(SERVICE, handlers),))
    port = server.add_insecure_port("localhost:0")
    server.start()
    return server, port


class TestServerInterceptorChain:
    """End-to-end tests of default_server_interceptors."""

    def setup_method(self):
        """Start a server with the default chain."""
        config = ObservabilitySettings(audit_enabled=False)
        self.server, port = start_server(default_server_interceptors(config))
        self.channel = grpc.insecure_channel(f"localhost:{port}")

    def teardown_method(self):
        """Stop the server."""
        self.channel.close()
        self.server.stop(None)

    def call(self, method, metadata=()):
        stub = self.channel.unary_unary(f"/{SERVICE}/{method}")
        return stub.with_call(b"payload", metadata=metadata, timeout=5)

    def test_context_and_logger_visible_to_handler(self):
        response, call = self.call(
            "WhoAmI",
            metadata=(("x-ms-acs-operation-id", "op-1"), ("x-ms-client-request-id", "client-1")),
        )

        assert response == f"op-1|/{SERVICE}/WhoAmI".encode()
        trailers = dict(call.trailing_metadata())
        assert trailers["x-ms-acs-operation-id"] == "op-1"
        assert trailers["x-ms-client-request-id"] == "client-1"

    def test_generated_operation_id(self):
        response, call = self.call("WhoAmI")

        operation_id = response.decode().split("|")[0]
        assert len(operation_id) == 8
        assert dict(call.trailing_metadata())["x-ms-acs-operation-id"] == operation_id

    def test_handler_trailer_not_overwritten(self):
        _, call = self.call("OwnTrailer", metadata=(("x-ms-acs-operation-id", "op-1"),))

        values = [v for k, v in call.trailing_metadata() if k == "x-ms-acs-operation-id"]
        assert values == ["handler-value"]

    def test_panic_becomes_unknown(self, caplog):
        with caplog.at_level(logging.INFO):
            with pytest.raises(grpc.RpcError) as exc_info:
                self.call("Panic", metadata=(("x-ms-acs-operation-id", "op-1"),))

        error = exc_info.value
        assert error.code() == grpc.StatusCode.UNKNOWN
        assert error.details().startswith("panic_message: nil pointer, file: ")
        assert "test_interceptors.py" in error.details()
        assert dict(error.trailing_metadata())["x-ms-acs-operation-id"] == "op-1"

        panics = [r for r in caplog.records if r.name == PANIC_LOGGER_NAME]
        assert len(panics) == 1
        assert panics[0].attributes["function"] == "panic"
        assert panics[0].attributes["operation_id"] == "op-1"

        finished = [r for r in caplog.records if r.name == REQUEST_LOGGER_NAME]
        assert len(finished) == 1
        assert finished[0].levelno == logging.ERROR
        assert finished[0].attributes["code"] == "UNKNOWN"
        assert "panic_message" in finished[0].attributes["error"]

    def test_abort_passes_through(self, caplog):
        with caplog.at_level(logging.INFO):
            with pytest.raises(grpc.RpcError) as exc_info:
                self.call("NotFound")

        assert exc_info.value.code() == grpc.StatusCode.NOT_FOUND
        assert exc_info.value.details() == "no such cluster"
        assert not [r for r in caplog.records if r.name == PANIC_LOGGER_NAME]

        finished = [r for r in caplog.records if r.name == REQUEST_LOGGER_NAME]
        assert finished[0].levelno == logging.INFO
        assert finished[0].attributes["code"] == "NOT_FOUND"

    def test_finished_call_record(self, caplog):
        with caplog.at_level(logging.INFO):
            self.call("WhoAmI", metadata=(("x-ms-client-request-id", "client-1"),))

        finished = [r for r in caplog.records if r.name == REQUEST_LOGGER_NAME]
        assert len(finished) == 1
        attrs = finished[0].attributes
        assert attrs["protocol"] == "grpc"
        assert attrs["component"] == "server"
        assert attrs["service"] == SERVICE
        assert attrs["method"] == "WhoAmI"
        assert attrs["code"] == "OK"
        assert attrs["client_request_id"] == "client-1"
        assert attrs["headers"] == {"x-ms-client-request-id": "client-1"}
        assert "error" not in attrs


class TestRequestContextInterceptor:
    """Tests for operation id generation failures."""

    def test_entropy_failure_aborts_internal(self):
        def broken_source(n):
            raise OSError("no entropy")

        server, port = start_server([RequestContextInterceptor(token_source=broken_source)])
        channel = grpc.insecure_channel(f"localhost:{port}")
        try:
            with pytest.raises(grpc.RpcError) as exc_info:
                channel.unary_unary(f"/{SERVICE}/WhoAmI")(b"x", timeout=5)
            assert exc_info.value.code() == grpc.StatusCode.INTERNAL
        finally:
            channel.close()
            server.stop(None)


class TestOuterRecovery:
    """Failures raised by pipeline stages are recovered like handler panics."""

    def setup_method(self):
        """Start a server whose context customizer raises."""

        def broken_customizer(headers):
            raise RuntimeError("customizer exploded")

        config = ObservabilitySettings(audit_enabled=False, grpc_recovery_status="unavailable")
        self.server, port = start_server(
            default_server_interceptors(config, customizer=broken_customizer)
        )
        self.channel = grpc.insecure_channel(f"localhost:{port}")

    def teardown_method(self):
        """Stop the server."""
        self.channel.close()
        self.server.stop(None)

    def test_customizer_failure_recovered(self, caplog):
        with caplog.at_level(logging.INFO):
            with pytest.raises(grpc.RpcError) as exc_info:
                self.channel.unary_unary(f"/{SERVICE}/WhoAmI")(b"x", timeout=5)

        error = exc_info.value
        assert error.code() == grpc.StatusCode.UNAVAILABLE
        assert error.details().startswith("panic_message: customizer exploded, file: ")

        panics = [r for r in caplog.records if r.name == PANIC_LOGGER_NAME]
        assert len(panics) == 1
        assert panics[0].attributes["function"] == "broken_customizer"
        assert panics[0].attributes["method"] == "WhoAmI"

    def test_handler_panic_recovered_once(self, caplog):
        config = ObservabilitySettings(audit_enabled=False)
        server, port = start_server(default_server_interceptors(config))
        channel = grpc.insecure_channel(f"localhost:{port}")
        try:
            with caplog.at_level(logging.INFO):
                with pytest.raises(grpc.RpcError) as exc_info:
                    channel.unary_unary(f"/{SERVICE}/Panic")(b"x", timeout=5)
        finally:
            channel.close()
            server.stop(None)

        assert exc_info.value.code() == grpc.StatusCode.UNKNOWN
        assert len([r for r in caplog.records if r.name == PANIC_LOGGER_NAME]) == 1


class TestHelpers:
    """Tests for interceptor helper functions."""

    def test_split_full_method(self):
        assert split_full_method("/pkg.Service/Method") == ("pkg.Service", "Method")
        assert split_full_method("Method") == ("", "Method")

    def test_metadata_dict(self):
        metadata = (("X-Key", "a"), ("x-key", "b"), ("trace-bin", b"\x00"), ("raw", b"v"))
        assert metadata_dict(metadata) == {"x-key": "a", "raw": "v"}

    def test_status_code_of(self):
        class FakeContext:
            def __init__(self, code):
                self._code = code

            def code(self):
                return self._code

        assert status_code_of(FakeContext(None)) == grpc.StatusCode.OK
        assert status_code_of(FakeContext(grpc.StatusCode.NOT_FOUND)) == grpc.StatusCode.NOT_FOUND
        assert status_code_of(FakeContext(5)) == grpc.StatusCode.NOT_FOUND

    def test_details_of(self):
        class FakeContext:
            def __init__(self, details):
                self._details = details

            def details(self):
                return self._details

        assert details_of(FakeContext(None)) == ""
        assert details_of(FakeContext(b"oops")) == "oops"
