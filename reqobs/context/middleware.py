"""
FastAPI/Starlette middleware that establishes the RequestContext.

This is the ingress side of the Context Propagator. It extracts the
identifier headers and generates an operation id when needed. It also
records the operation details of the request, writes the resolved
operation id back onto the inbound header, binds the context for the
rest of the chain and mirrors a declared subset of the identifiers onto
the response headers.
"""

import logging
import secrets
import time
from typing import Any, Callable, Dict, Mapping, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp

from ..core.constants import (
    DEFAULT_EXTRACTION_RULES,
    DEFAULT_METADATA_TO_HEADER,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    OPERATION_ID_KEY,
)
from ..core.exceptions import IdentifierGenerationError
from .operation import operation_fields, set_request_header
from .propagator import (
    ContextCustomizer,
    TokenSource,
    bind_request_context,
    extract_request_context,
    mirrored_headers,
)

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that binds a RequestContext for every request.

    Attributes:
        rules: Canonical key -> header name extraction rules
        customizer: Optional callback populating RequestContext.extras
        metadata_to_header: Canonical key -> response header to mirror
        request_timeout_seconds: Optional ingress deadline
    """

    def __init__(
        self,
        app: ASGIApp,
        rules: Optional[Mapping[str, str]] = None,
        customizer: Optional[ContextCustomizer] = None,
        metadata_to_header: Optional[Mapping[str, str]] = None,
        request_timeout_seconds: Optional[float] = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        token_source: TokenSource = secrets.token_bytes,
    ):
        """
        Initialize the RequestContextMiddleware.

        Args:
            app: The ASGI application
            rules: Extraction rules (default: DEFAULT_EXTRACTION_RULES)
            customizer: Optional extras customizer
            metadata_to_header: Identifiers mirrored onto responses
                (default: operation id and client request id)
            request_timeout_seconds: Ingress deadline attached to the context;
                None or 0 disables it
            token_source: Entropy source for operation id generation
        """
        super().__init__(app)
        self.rules = rules
        self.customizer = customizer
        self.metadata_to_header: Dict[str, str] = dict(
            DEFAULT_METADATA_TO_HEADER if metadata_to_header is None else metadata_to_header
        )
        self.request_timeout_seconds = request_timeout_seconds
        self.token_source = token_source

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Extract the context, run the rest of the chain inside its scope and
        mirror identifiers onto the response.

        Args:
            request: The FastAPI request object
            call_next: The next middleware/handler in the chain

        Returns:
            The response from the next handler, or a 500 when no operation
            id could be established
        """
        try:
            ctx = extract_request_context(
                request.headers,
                rules=self.rules,
                customizer=self.customizer,
                token_source=self.token_source,
            )
        except IdentifierGenerationError as e:
            logger.error(f"Failed to generate operation id, aborting request: {e}")
            return PlainTextResponse("Internal Server Error", status_code=500)
        except ValueError as e:
            logger.error(f"Request context customizer returned invalid extras: {e}")
            return PlainTextResponse("Internal Server Error", status_code=500)

        updates: Dict[str, Any] = dict(operation_fields(request))
        if self.request_timeout_seconds:
            updates["deadline"] = time.monotonic() + self.request_timeout_seconds
        ctx = ctx.model_copy(update=updates)

        # Inner stages and the handler read the resolved operation id from the header
        rules = DEFAULT_EXTRACTION_RULES if self.rules is None else self.rules
        operation_id_header = rules.get(OPERATION_ID_KEY)
        if operation_id_header:
            set_request_header(request, operation_id_header, ctx.operation_id)

        request.state.request_context = ctx

        with bind_request_context(ctx):
            response = await call_next(request)

        # Additive only: values set by handler code win
        for header, value in mirrored_headers(ctx, self.metadata_to_header).items():
            if header not in response.headers:
                response.headers[header] = value

        return response
