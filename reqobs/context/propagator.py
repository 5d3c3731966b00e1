"""
Request identifier extraction, generation and scoping.

The propagator runs first in the pipeline. It reads the identifier
headers named by an extraction rule set, synthesizes an operation id
when the caller did not send one, and makes the resulting
RequestContext available to every later stage through a contextvars
scope.
"""

import base64
import logging
import secrets
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from ..core.constants import (
    ACCEPT_LANGUAGE_KEY,
    CLIENT_REQUEST_ID_KEY,
    CORRELATION_ID_KEY,
    DEFAULT_EXTRACTION_RULES,
    FORWARDED_IDENTIFIERS,
    OPERATION_ID_KEY,
    TENANT_ID_KEY,
)
from ..core.exceptions import IdentifierGenerationError
from ..core.http_utils import header_get
from .models import ExtraValue, RequestContext

logger = logging.getLogger(__name__)


# 6 bytes = 48 bits of randomness, 8 URL-safe characters once encoded
OPERATION_ID_BYTES = 6

TokenSource = Callable[[int], bytes]
ContextCustomizer = Callable[[Mapping[str, str]], Mapping[str, ExtraValue]]

_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "reqobs_request_context", default=None
)


def generate_operation_id(token_source: TokenSource = secrets.token_bytes) -> str:
    """
    Synthesize a short operation identifier.

    Args:
        token_source: Callable returning n random bytes

    Returns:
        URL-safe base64 string without padding

    Raises:
        IdentifierGenerationError: If the entropy source fails
    """
    try:
        raw = token_source(OPERATION_ID_BYTES)
    except Exception as e:
        raise IdentifierGenerationError(f"entropy source failed: {e}") from e

    if not isinstance(raw, (bytes, bytearray)) or len(raw) != OPERATION_ID_BYTES:
        raise IdentifierGenerationError(
            f"entropy source returned {len(raw) if raw else 0} bytes, "
            f"expected {OPERATION_ID_BYTES}"
        )
    return base64.urlsafe_b64encode(bytes(raw)).decode("ascii").rstrip("=")


def extract_request_context(
    headers: Any,
    rules: Optional[Mapping[str, str]] = None,
    customizer: Optional[ContextCustomizer] = None,
    token_source: TokenSource = secrets.token_bytes,
) -> RequestContext:
    """
    Build the RequestContext for one inbound request.

    Extraction never fails: a missing header yields an empty string.
    Only a failure to synthesize a missing operation id is fatal.

    Args:
        headers: Inbound headers or gRPC invocation metadata
        rules: Canonical key -> header name; defaults to DEFAULT_EXTRACTION_RULES
        customizer: Optional callback populating the extras bag
        token_source: Entropy source for operation id generation

    Returns:
        A frozen RequestContext

    Raises:
        IdentifierGenerationError: If an operation id had to be generated and could not be
        ValueError: If the customizer returned non-scalar values
    """
    rules = DEFAULT_EXTRACTION_RULES if rules is None else rules

    values: Dict[str, str] = {}
    raw_headers: Dict[str, str] = {}
    for key, header_name in rules.items():
        value = header_get(headers, header_name)
        values[key] = value
        if value:
            raw_headers[header_name.lower()] = value

    operation_id = values.get(OPERATION_ID_KEY, "")
    generated = False
    if not operation_id:
        operation_id = generate_operation_id(token_source)
        generated = True
        logger.debug(f"Generated operation id {operation_id}")

    extras: Mapping[str, ExtraValue] = {}
    if customizer is not None:
        extras = customizer(raw_headers) or {}

    return RequestContext(
        correlation_id=values.get(CORRELATION_ID_KEY, ""),
        operation_id=operation_id,
        client_request_id=values.get(CLIENT_REQUEST_ID_KEY, ""),
        tenant_id=values.get(TENANT_ID_KEY, ""),
        accept_language=values.get(ACCEPT_LANGUAGE_KEY, "").lower(),
        operation_id_generated=generated,
        headers=raw_headers,
        extras=dict(extras),
    )


def current_request_context() -> Optional[RequestContext]:
    """Return the RequestContext of the active scope, if any."""
    return _request_context.get()


@contextmanager
def bind_request_context(ctx: RequestContext) -> Iterator[RequestContext]:
    """
    Make ctx the active RequestContext for the duration of the block.

    Scopes nest: an inner binding shadows the outer one, which becomes
    visible again once the inner block exits.
    """
    token = _request_context.set(ctx)
    try:
        yield ctx
    finally:
        _request_context.reset(token)


def outgoing_headers(ctx: Optional[RequestContext] = None) -> Dict[str, str]:
    """
    Identifier headers to attach to a dependent call.

    Args:
        ctx: Context to forward; defaults to the active one

    Returns:
        Header name -> value for every non-empty identifier
    """
    ctx = ctx if ctx is not None else current_request_context()
    if ctx is None:
        return {}
    values = {
        CORRELATION_ID_KEY: ctx.correlation_id,
        OPERATION_ID_KEY: ctx.operation_id,
        CLIENT_REQUEST_ID_KEY: ctx.client_request_id,
    }
    return {
        header: values[key]
        for key, header in FORWARDED_IDENTIFIERS.items()
        if values.get(key)
    }


def has_explicit_identifiers(headers: Any) -> bool:
    """Whether the caller already set any identifier header on an outgoing call."""
    return any(header_get(headers, name) for name in FORWARDED_IDENTIFIERS.values())


def mirrored_headers(ctx: RequestContext, metadata_to_header: Mapping[str, str]) -> Dict[str, str]:
    """
    Response headers mirroring the caller-declared subset of the context.

    Args:
        ctx: The request context
        metadata_to_header: Canonical key -> response header name

    Returns:
        Response header name -> value for non-empty identifiers
    """
    result: Dict[str, str] = {}
    for key, header in metadata_to_header.items():
        value = getattr(ctx, key, None)
        if value is None:
            value = ctx.extras.get(key)
        if value:
            result[header] = str(value)
    return result
