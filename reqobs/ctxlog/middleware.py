"""
HTTP middlewares for the Logger Composer.

ContextLoggerMiddleware binds a request-scoped ContextLogger that
application code retrieves with get_logger(). RequestLogMiddleware emits
the RequestStart / RequestEnd / finished call records for each request.
"""

import logging
import time
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..classifier import classify
from ..context.propagator import current_request_context
from ..core.constants import API_REQUEST_LOG_SOURCE
from ..core.http_utils import buffer_error_body
from ..core.metrics import get_instruments
from .composer import ContextLogger, LoggerComposer, bind_logger, filter_headers, get_logger

logger = logging.getLogger(__name__)

REQUEST_LOGGER_NAME = "reqobs.request"

AttributeExtractor = Callable[[Request], Optional[Mapping[str, Any]]]


def _request_context(request: Request):
    ctx = getattr(request.state, "request_context", None)
    return ctx if ctx is not None else current_request_context()


class ContextLoggerMiddleware(BaseHTTPMiddleware):
    """
    Middleware that composes and binds a ContextLogger per request.

    The composed logger is stored on ``request.state.logger`` and is what
    get_logger() returns while the request is handled.
    """

    def __init__(
        self,
        app: ASGIApp,
        composer: Optional[LoggerComposer] = None,
        extractor: Optional[AttributeExtractor] = None,
    ):
        """
        Initialize the ContextLoggerMiddleware.

        Args:
            app: The ASGI application
            composer: LoggerComposer used to build loggers
            extractor: Optional callback returning extra attributes for a request
        """
        super().__init__(app)
        self.composer = composer or LoggerComposer()
        self.extractor = extractor

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        ctx = _request_context(request)
        label = classify(request.method, str(request.url))

        extras: Dict[str, Any] = {"request": request.url.path}
        if ctx is not None:
            extras.update(ctx.extras)
        if self.extractor is not None:
            try:
                extras.update(self.extractor(request) or {})
            except Exception as e:
                logger.error(f"Log attribute extractor failed: {e}")

        ctx_logger = self.composer.compose(ctx, extras=extras, label=label)
        request.state.logger = ctx_logger
        request.state.call_label = label

        with bind_logger(ctx_logger):
            return await call_next(request)


class RequestLogMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs the start and end of every request.

    Records carry source, protocol, method_type, component, method,
    service, url, headers and, at the end, code, time_ms and error.
    Responses with status >= 400 are logged at ERROR level with the
    (bounded) response body as error text.
    """

    def __init__(
        self,
        app: ASGIApp,
        request_logger: Optional[logging.Logger] = None,
        header_filter: Optional[Iterable[str]] = None,
        max_error_body_chars: int = 4096,
        record_metrics: bool = True,
    ):
        """
        Initialize the RequestLogMiddleware.

        Args:
            app: The ASGI application
            request_logger: Logger receiving the request records
            header_filter: Header names included in the headers attribute
            max_error_body_chars: Bound on the error text taken from the body
            record_metrics: Whether to record request count/duration metrics
        """
        super().__init__(app)
        self.request_logger = request_logger or logging.getLogger(REQUEST_LOGGER_NAME)
        self.header_filter = list(header_filter) if header_filter is not None else None
        self.max_error_body_chars = max_error_body_chars
        self.record_metrics = record_metrics

    def _base_logger(self, request: Request) -> ContextLogger:
        label = getattr(request.state, "call_label", None) or classify(
            request.method, str(request.url)
        )
        request_headers = {k: v for k, v in request.headers.items()}
        attributes = get_logger().attributes.with_attributes(
            source=API_REQUEST_LOG_SOURCE,
            protocol="HTTP",
            method_type="unary",
            component="server",
            method=label,
            service=request.url.netloc,
            url=str(request.url),
            headers=filter_headers(request_headers, self.header_filter),
        )
        return ContextLogger(self.request_logger, attributes)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        api_logger = self._base_logger(request)
        api_logger.info("RequestStart")

        response = await call_next(request)

        error_text = ""
        if response.status_code >= 400:
            response, error_text = await buffer_error_body(response, self.max_error_body_chars)

        duration_s = time.perf_counter() - start_time
        end_logger = api_logger.bind(
            code=response.status_code,
            time_ms=int(duration_s * 1000),
            error=error_text,
        )
        level = logging.ERROR if response.status_code >= 400 else logging.INFO
        end_logger.log(level, "RequestEnd")
        end_logger.log(level, "finished call")

        if self.record_metrics:
            get_instruments().record_request(
                "HTTP",
                api_logger.attributes["method"],
                str(response.status_code),
                duration_s,
            )

        return response
