"""
gRPC server interceptors running the observability pipeline.

Only unary-unary methods are wrapped; streaming handlers pass through
untouched. Interceptors wrap the method behavior, so every stage runs
on the worker thread that executes the handler and contextvars scopes
are visible to handler code.

Registration order (first is outermost):

    RecoveryInterceptor
    RequestContextInterceptor
    ContextLoggerInterceptor
    RequestLoggingInterceptor
    ResponseHeaderInterceptor
    RecoveryInterceptor

The inner recovery sits closest to the handler so a recovered panic is
reported by the request log with the status the caller receives. The
outer one catches failures raised by the other stages; a call aborted
by the inner one passes through it, so each panic is recovered once.
"""

import logging
import secrets
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import grpc
from google.protobuf.descriptor import FieldDescriptor

from ..context.propagator import (
    ContextCustomizer,
    TokenSource,
    bind_request_context,
    current_request_context,
    extract_request_context,
    mirrored_headers,
)
from ..core.config import ObservabilitySettings
from ..core.config import settings as default_settings
from ..core.constants import API_REQUEST_LOG_SOURCE, DEFAULT_METADATA_TO_HEADER
from ..core.exceptions import IdentifierGenerationError
from ..core.metrics import get_instruments
from ..ctxlog.composer import ContextLogger, LoggerComposer, bind_logger, filter_headers
from ..recovery.provenance import panic_provenance
from ..redaction.protobuf import redact_message

logger = logging.getLogger(__name__)

REQUEST_LOGGER_NAME = "reqobs.request"
PANIC_LOGGER_NAME = "reqobs.recovery"

Behavior = Callable[[Any, grpc.ServicerContext], Any]

# Status code -> log level of the finished call record
DEFAULT_SERVER_CODE_LEVELS: Dict[grpc.StatusCode, int] = {
    grpc.StatusCode.OK: logging.INFO,
    grpc.StatusCode.CANCELLED: logging.INFO,
    grpc.StatusCode.INVALID_ARGUMENT: logging.INFO,
    grpc.StatusCode.NOT_FOUND: logging.INFO,
    grpc.StatusCode.ALREADY_EXISTS: logging.INFO,
    grpc.StatusCode.UNAUTHENTICATED: logging.INFO,
    grpc.StatusCode.DEADLINE_EXCEEDED: logging.WARNING,
    grpc.StatusCode.PERMISSION_DENIED: logging.WARNING,
    grpc.StatusCode.RESOURCE_EXHAUSTED: logging.WARNING,
    grpc.StatusCode.FAILED_PRECONDITION: logging.WARNING,
    grpc.StatusCode.ABORTED: logging.WARNING,
    grpc.StatusCode.OUT_OF_RANGE: logging.WARNING,
    grpc.StatusCode.UNKNOWN: logging.ERROR,
    grpc.StatusCode.UNIMPLEMENTED: logging.ERROR,
    grpc.StatusCode.INTERNAL: logging.ERROR,
    grpc.StatusCode.UNAVAILABLE: logging.ERROR,
    grpc.StatusCode.DATA_LOSS: logging.ERROR,
}


def split_full_method(full_method: str) -> tuple:
    """Split "/pkg.Service/Method" into ("pkg.Service", "Method")."""
    name = (full_method or "").lstrip("/")
    if "/" not in name:
        return "", name
    service, method = name.rsplit("/", 1)
    return service, method


def metadata_dict(metadata: Optional[Iterable]) -> Dict[str, str]:
    """First value of each metadata key, keys lower-cased; binary keys skipped."""
    result: Dict[str, str] = {}
    for key, value in metadata or ():
        key = key.lower()
        if key.endswith("-bin") or key in result:
            continue
        result[key] = value if isinstance(value, str) else value.decode("latin-1")
    return result


def status_code_of(context: grpc.ServicerContext) -> grpc.StatusCode:
    """Status set on the servicer context so far, OK when none."""
    code = context.code()
    if code is None:
        return grpc.StatusCode.OK
    if isinstance(code, grpc.StatusCode):
        return code
    for status in grpc.StatusCode:
        if status.value[0] == code:
            return status
    return grpc.StatusCode.UNKNOWN


def details_of(context: grpc.ServicerContext) -> str:
    """Status details set on the servicer context, decoded."""
    details = context.details()
    if not details:
        return ""
    if isinstance(details, bytes):
        return details.decode("utf-8", errors="replace")
    return str(details)


def _was_aborted(context: grpc.ServicerContext) -> bool:
    return status_code_of(context) is not grpc.StatusCode.OK


class _UnaryServerInterceptor(grpc.ServerInterceptor):
    """Base class wrapping the behavior of unary-unary handlers."""

    def wrap(self, behavior: Behavior, full_method: str) -> Behavior:
        raise NotImplementedError

    def intercept_service(self, continuation, handler_call_details):
        handler = continuation(handler_call_details)
        if handler is None or handler.unary_unary is None:
            return handler
        return grpc.unary_unary_rpc_method_handler(
            self.wrap(handler.unary_unary, handler_call_details.method),
            request_deserializer=handler.request_deserializer,
            response_serializer=handler.response_serializer,
        )


class RequestContextInterceptor(_UnaryServerInterceptor):
    """
    Establishes the RequestContext from invocation metadata.

    A failure to generate a missing operation id aborts the call with
    INTERNAL.
    """

    def __init__(
        self,
        rules: Optional[Mapping[str, str]] = None,
        customizer: Optional[ContextCustomizer] = None,
        token_source: TokenSource = secrets.token_bytes,
    ):
        self.rules = rules
        self.customizer = customizer
        self.token_source = token_source

    def wrap(self, behavior: Behavior, full_method: str) -> Behavior:
        def handle(request, context):
            try:
                ctx = extract_request_context(
                    context.invocation_metadata(),
                    rules=self.rules,
                    customizer=self.customizer,
                    token_source=self.token_source,
                )
            except (IdentifierGenerationError, ValueError) as e:
                logger.error(f"Failed to establish request context for {full_method}: {e}")
                context.abort(grpc.StatusCode.INTERNAL, "failed to establish request context")

            remaining = context.time_remaining()
            if remaining is not None:
                ctx = ctx.model_copy(update={"deadline": time.monotonic() + remaining})

            with bind_request_context(ctx):
                return behavior(request, context)

        return handle


class ContextLoggerInterceptor(_UnaryServerInterceptor):
    """
    Binds a ContextLogger for the call.

    The logger carries the full method name as ``method`` and the
    redacted request payload as ``request``.
    """

    def __init__(
        self,
        composer: Optional[LoggerComposer] = None,
        extension: Optional[FieldDescriptor] = None,
    ):
        self.composer = composer or LoggerComposer()
        self.extension = extension

    def wrap(self, behavior: Behavior, full_method: str) -> Behavior:
        def handle(request, context):
            ctx = current_request_context()
            extras: Dict[str, Any] = dict(ctx.extras) if ctx is not None else {}
            extras["request"] = redact_message(request, self.extension)
            ctx_logger = self.composer.compose(
                ctx,
                extras=extras,
                label=full_method,
                headers=metadata_dict(context.invocation_metadata()),
            )
            with bind_logger(ctx_logger):
                return behavior(request, context)

        return handle


class RequestLoggingInterceptor(_UnaryServerInterceptor):
    """Logs one "finished call" record per call."""

    def __init__(
        self,
        request_logger: Optional[logging.Logger] = None,
        header_filter: Optional[Iterable[str]] = None,
        code_levels: Optional[Mapping[grpc.StatusCode, int]] = None,
        record_metrics: bool = True,
    ):
        self.request_logger = request_logger or logging.getLogger(REQUEST_LOGGER_NAME)
        self.header_filter = list(header_filter) if header_filter is not None else None
        self.code_levels = dict(code_levels or DEFAULT_SERVER_CODE_LEVELS)
        self.record_metrics = record_metrics

    def _log(self, full_method: str, context, duration_s: float, error: str) -> None:
        code = status_code_of(context)
        service, method = split_full_method(full_method)
        ctx = current_request_context()

        attributes: Dict[str, Any] = {"source": API_REQUEST_LOG_SOURCE}
        if ctx is not None:
            attributes.update(ctx.identifiers())
        attributes.update(
            protocol="grpc",
            method_type="unary",
            component="server",
            service=service,
            method=method,
            code=code.name,
            time_ms=int(duration_s * 1000),
            headers=filter_headers(metadata_dict(context.invocation_metadata()), self.header_filter),
        )
        if error:
            attributes["error"] = error

        level = self.code_levels.get(code, logging.ERROR)
        ContextLogger(self.request_logger, attributes).log(level, "finished call")

        if self.record_metrics:
            get_instruments().record_request("grpc", full_method, code.name, duration_s)

    def wrap(self, behavior: Behavior, full_method: str) -> Behavior:
        def handle(request, context):
            start_time = time.perf_counter()
            try:
                response = behavior(request, context)
            except Exception as e:
                error = details_of(context) or str(e)
                self._log(full_method, context, time.perf_counter() - start_time, error)
                raise
            self._log(full_method, context, time.perf_counter() - start_time, details_of(context))
            return response

        return handle


class ResponseHeaderInterceptor(_UnaryServerInterceptor):
    """
    Mirrors context identifiers onto trailing metadata.

    Keys already set by the handler are left untouched.
    """

    def __init__(self, metadata_to_header: Optional[Mapping[str, str]] = None):
        self.metadata_to_header = dict(
            DEFAULT_METADATA_TO_HEADER if metadata_to_header is None else metadata_to_header
        )

    def _mirror(self, context) -> None:
        ctx = current_request_context()
        if ctx is None:
            return
        existing = list(context.trailing_metadata() or ())
        present = {key.lower() for key, _ in existing}
        additions = [
            (header.lower(), value)
            for header, value in mirrored_headers(ctx, self.metadata_to_header).items()
            if header.lower() not in present
        ]
        if additions:
            context.set_trailing_metadata(tuple(existing + additions))

    def wrap(self, behavior: Behavior, full_method: str) -> Behavior:
        def handle(request, context):
            try:
                return behavior(request, context)
            finally:
                self._mirror(context)

        return handle


class RecoveryInterceptor(_UnaryServerInterceptor):
    """
    Converts exceptions escaping a handler into a gRPC status.

    Aborts raised by the handler through context.abort() are not panics
    and propagate unchanged.
    """

    def __init__(
        self,
        status_code: grpc.StatusCode = grpc.StatusCode.UNKNOWN,
        panic_logger: Optional[logging.Logger] = None,
    ):
        self.status_code = status_code
        self.panic_logger = panic_logger or logging.getLogger(PANIC_LOGGER_NAME)

    def wrap(self, behavior: Behavior, full_method: str) -> Behavior:
        def handle(request, context):
            try:
                return behavior(request, context)
            except Exception as exc:
                if _was_aborted(context):
                    raise

                info = panic_provenance(exc)
                service, method = split_full_method(full_method)
                ctx = current_request_context()
                attributes: Dict[str, Any] = {
                    "source": API_REQUEST_LOG_SOURCE,
                    "protocol": "grpc",
                    "component": "server",
                    "service": service,
                    "method": method,
                }
                if ctx is not None:
                    attributes.update(ctx.identifiers())
                attributes.update(
                    error=info.message,
                    exception_type=info.exception_type,
                    file=info.file,
                    line=info.line,
                    function=info.function,
                )
                ContextLogger(self.panic_logger, attributes).error(
                    "Panic occurred",
                    exc_info=(type(exc), exc, exc.__traceback__),
                )
                get_instruments().panic_counter.add(1, {"protocol": "grpc"})

                context.abort(
                    self.status_code,
                    f"panic_message: {info.message}, file: {info.file}, line: {info.line}",
                )

        return handle


def default_server_interceptors(
    config: Optional[ObservabilitySettings] = None,
    composer: Optional[LoggerComposer] = None,
    extension: Optional[FieldDescriptor] = None,
    customizer: Optional[ContextCustomizer] = None,
) -> List[grpc.ServerInterceptor]:
    """
    Build the server interceptor chain in pipeline order.

    Args:
        config: Settings; defaults to the module-level settings
        composer: LoggerComposer for the context logger
        extension: Loggability extension used to redact request payloads
        customizer: Optional RequestContext extras customizer

    Returns:
        Interceptors for grpc.server(..., interceptors=...)
    """
    config = config or default_settings
    composer = composer or LoggerComposer(
        static_attributes=config.static_log_attributes,
        header_filter=config.logged_headers,
    )
    recovery_status = grpc.StatusCode[config.grpc_recovery_status]
    return [
        RecoveryInterceptor(status_code=recovery_status),
        RequestContextInterceptor(customizer=customizer),
        ContextLoggerInterceptor(composer=composer, extension=extension),
        RequestLoggingInterceptor(header_filter=config.logged_headers),
        ResponseHeaderInterceptor(config.mirrored_response_headers),
        RecoveryInterceptor(status_code=recovery_status),
    ]
