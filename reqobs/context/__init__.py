"""
Context Propagation Package.

Components:
- models: RequestContext, the frozen per-request identifier set
- propagator: extraction, operation id generation, scoping and forwarding helpers
- operation: per-request operation details resolved at ingress
- middleware: RequestContextMiddleware for FastAPI/Starlette
- forwarding: httpx clients that forward identifiers to dependencies
"""

from .models import ExtraValue, RequestContext
from .propagator import (
    OPERATION_ID_BYTES,
    bind_request_context,
    current_request_context,
    extract_request_context,
    generate_operation_id,
    has_explicit_identifiers,
    mirrored_headers,
    outgoing_headers,
)
from .operation import operation_fields, resolve_route
from .middleware import RequestContextMiddleware
from .forwarding import create_observed_async_client, create_observed_client


__all__ = [
    "ExtraValue",
    "RequestContext",
    "OPERATION_ID_BYTES",
    "bind_request_context",
    "current_request_context",
    "extract_request_context",
    "generate_operation_id",
    "has_explicit_identifiers",
    "mirrored_headers",
    "outgoing_headers",
    "operation_fields",
    "resolve_route",
    "RequestContextMiddleware",
    "create_observed_async_client",
    "create_observed_client",
]
