"""
Context logger composition.

A ContextLogger is a stdlib LoggerAdapter carrying a LogAttributeSet.
LoggerComposer builds one per request from, in order:

1. static attributes fixed at construction
2. identifiers from the RequestContext
3. per-call extras supplied by application code
4. the classifier label (``method``)
5. the filtered header subset (``headers``)

Later layers override earlier keys. Composition never emits a record;
only explicit log calls do.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Mapping, MutableMapping, Optional, Tuple

from ..core.constants import CTX_LOG_SOURCE, NO_CONTEXT_TAG
from .attributes import LogAttributeSet

if TYPE_CHECKING:
    from ..context.models import RequestContext

logger = logging.getLogger(__name__)

DEFAULT_LOGGER_NAME = "reqobs.ctx"

_bound_logger: ContextVar[Optional["ContextLogger"]] = ContextVar(
    "reqobs_bound_logger", default=None
)


class ContextLogger(logging.LoggerAdapter):
    """
    LoggerAdapter that attaches an ordered attribute set to every record.

    Attributes reach formatters as ``record.attributes``. Keyword
    ``extra`` passed to a single log call is layered on top for that call
    only.
    """

    def __init__(self, logger: logging.Logger, attributes: Optional[Mapping[str, Any]] = None):
        if isinstance(attributes, LogAttributeSet):
            self.attributes = attributes
        else:
            self.attributes = LogAttributeSet(attributes)
        super().__init__(logger, {})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        call_extra = kwargs.get("extra") or {}
        kwargs["extra"] = {"attributes": self.attributes.with_attributes(call_extra).as_dict()}
        return msg, kwargs

    def bind(self, **attrs: Any) -> "ContextLogger":
        """Return a new logger with attrs layered over the current attributes."""
        return ContextLogger(self.logger, self.attributes.with_attributes(attrs))


def filter_headers(headers: Optional[Mapping[str, str]], allowed: Optional[Iterable[str]]) -> dict:
    """
    Keep only the allowed headers, matched case-insensitively.

    Args:
        headers: Header name -> value
        allowed: Header names to keep; None keeps everything

    Returns:
        Lower-cased header name -> value
    """
    if not headers:
        return {}
    if allowed is None:
        return {k.lower(): v for k, v in headers.items()}
    allowed_lower = {name.lower() for name in allowed}
    return {k.lower(): v for k, v in headers.items() if k.lower() in allowed_lower}


class LoggerComposer:
    """
    Builds request-scoped ContextLoggers with a deterministic attribute order.

    Attributes:
        logger: Underlying stdlib logger
        static_attributes: Attributes bound to every composed logger
        header_filter: Header names kept in the ``headers`` attribute
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        static_attributes: Optional[Mapping[str, Any]] = None,
        header_filter: Optional[Iterable[str]] = None,
    ):
        self.logger = logger or logging.getLogger(DEFAULT_LOGGER_NAME)
        self.static_attributes = LogAttributeSet(
            {"source": CTX_LOG_SOURCE, **dict(static_attributes or {})}
        )
        self.header_filter = list(header_filter) if header_filter is not None else None

    def compose(
        self,
        ctx: Optional["RequestContext"],
        extras: Optional[Mapping[str, Any]] = None,
        label: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> ContextLogger:
        """
        Compose a logger for one request.

        Args:
            ctx: The request context; None yields a logger tagged as having no context
            extras: Per-call attributes from application code
            label: Classifier label, logged as ``method``
            headers: Headers to filter; defaults to the context's raw headers

        Returns:
            A ContextLogger; nothing is logged
        """
        attrs = self.static_attributes
        if ctx is None:
            attrs = attrs.with_attributes(src=NO_CONTEXT_TAG)
        else:
            attrs = attrs.with_attributes(ctx.identifiers())

        if extras:
            attrs = attrs.with_attributes(extras)

        if label:
            attrs = attrs.with_attributes(method=label)

        if headers is None and ctx is not None:
            headers = ctx.headers
        attrs = attrs.with_attributes(headers=filter_headers(headers, self.header_filter))

        return ContextLogger(self.logger, attrs)


def get_logger() -> ContextLogger:
    """
    Return the logger bound to the current request scope.

    Outside any request this returns a fresh logger tagged with
    ``src="self gen, not available in ctx"`` rather than failing.
    """
    bound = _bound_logger.get()
    if bound is not None:
        return bound
    return ContextLogger(logging.getLogger(DEFAULT_LOGGER_NAME), {"src": NO_CONTEXT_TAG})


@contextmanager
def bind_logger(ctx_logger: ContextLogger) -> Iterator[ContextLogger]:
    """Make ctx_logger the result of get_logger() for the duration of the block."""
    token = _bound_logger.set(ctx_logger)
    try:
        yield ctx_logger
    finally:
        _bound_logger.reset(token)
