"""
gRPC client interceptors for dependent calls.

MetadataForwardingClientInterceptor forwards the active request's
identifiers to the callee and caps the call timeout at the remaining
ingress deadline. ClientLoggingInterceptor logs a client-side
"finished call" record.
"""

import collections
import logging
import time
from typing import Any, Dict, List, Optional

import grpc

from ..context.propagator import current_request_context, has_explicit_identifiers, outgoing_headers
from ..core.constants import API_REQUEST_LOG_SOURCE
from ..ctxlog.composer import ContextLogger
from .interceptors import split_full_method

logger = logging.getLogger(__name__)

REQUEST_LOGGER_NAME = "reqobs.request"


class _ClientCallDetails(
    collections.namedtuple(
        "_ClientCallDetails",
        ("method", "timeout", "metadata", "credentials", "wait_for_ready", "compression"),
    ),
    grpc.ClientCallDetails,
):
    pass


class MetadataForwardingClientInterceptor(grpc.UnaryUnaryClientInterceptor):
    """
    Attaches the active identifiers to outgoing unary calls.

    Calls that already carry an identifier set by the caller are left
    as they are.
    """

    def intercept_unary_unary(self, continuation, client_call_details, request):
        ctx = current_request_context()
        if ctx is None:
            return continuation(client_call_details, request)

        metadata = list(client_call_details.metadata or ())
        if not has_explicit_identifiers(metadata):
            metadata.extend((k.lower(), v) for k, v in outgoing_headers(ctx).items())

        timeout = client_call_details.timeout
        remaining = ctx.remaining_time()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)

        details = _ClientCallDetails(
            method=client_call_details.method,
            timeout=timeout,
            metadata=metadata,
            credentials=client_call_details.credentials,
            wait_for_ready=getattr(client_call_details, "wait_for_ready", None),
            compression=getattr(client_call_details, "compression", None),
        )
        return continuation(details, request)


class ClientLoggingInterceptor(grpc.UnaryUnaryClientInterceptor):
    """Logs a "finished call" record for each outgoing unary call."""

    def __init__(self, request_logger: Optional[logging.Logger] = None):
        self.request_logger = request_logger or logging.getLogger(REQUEST_LOGGER_NAME)

    def intercept_unary_unary(self, continuation, client_call_details, request):
        start_time = time.perf_counter()
        outcome = continuation(client_call_details, request)
        duration_s = time.perf_counter() - start_time

        code = outcome.code()
        service, method = split_full_method(client_call_details.method)

        attributes: Dict[str, Any] = {"source": API_REQUEST_LOG_SOURCE}
        ctx = current_request_context()
        if ctx is not None:
            attributes.update(ctx.identifiers())
        attributes.update(
            protocol="grpc",
            method_type="unary",
            component="client",
            service=service,
            method=method,
            code=code.name if code is not None else "UNKNOWN",
            time_ms=int(duration_s * 1000),
        )
        level = logging.INFO
        if code is not None and code is not grpc.StatusCode.OK:
            attributes["error"] = outcome.details() or ""
            level = logging.ERROR
        ContextLogger(self.request_logger, attributes).log(level, "finished call")
        return outcome


def default_client_interceptors() -> List[grpc.UnaryUnaryClientInterceptor]:
    """Client interceptors in order: forwarding, then logging."""
    return [MetadataForwardingClientInterceptor(), ClientLoggingInterceptor()]
