"""
Wiring of the HTTP pipeline into a FastAPI/Starlette application.
"""

import logging
from typing import Optional

from .audit.emitter import AuditConfig, AuditEmitter
from .audit.middleware import AuditMiddleware
from .audit.service import AuditSink, JsonlAuditSink
from .context.middleware import RequestContextMiddleware
from .context.propagator import ContextCustomizer
from .core.config import ObservabilitySettings
from .core.config import settings as default_settings
from .ctxlog.composer import LoggerComposer
from .ctxlog.middleware import AttributeExtractor, ContextLoggerMiddleware, RequestLogMiddleware
from .recovery.middleware import PanicHandler, RecoveryMiddleware

logger = logging.getLogger(__name__)


def install_observability(
    app,
    config: Optional[ObservabilitySettings] = None,
    audit_sink: Optional[AuditSink] = None,
    audit_config: Optional[AuditConfig] = None,
    customizer: Optional[ContextCustomizer] = None,
    extractor: Optional[AttributeExtractor] = None,
    panic_handler: Optional[PanicHandler] = None,
) -> Optional[AuditEmitter]:
    """
    Add the observability middlewares to an application.

    Resulting order, outermost first: recovery, request context, context
    logger, request log, audit, then the application's routes.

    Args:
        app: FastAPI or Starlette application instance
        config: Settings; defaults to the module-level settings
        audit_sink: Sink for audit records; a JsonlAuditSink under
            config.audit_log_dir is created when omitted
        audit_config: Emitter configuration; derived from config when omitted
        customizer: Optional RequestContext extras customizer
        extractor: Optional callback adding log attributes per request
        panic_handler: Optional callback replacing the recovery response

    Returns:
        The AuditEmitter, or None when audit is disabled
    """
    config = config or default_settings

    # add_middleware prepends, so the innermost stage is added first
    emitter = None
    if config.audit_enabled:
        if audit_sink is None:
            audit_sink = JsonlAuditSink(
                log_dir=config.audit_log_dir,
                rotation_hours=config.audit_rotation_hours,
                rotation_max_mb=config.audit_rotation_max_mb,
                local_retention_hours=config.audit_local_retention_hours,
                stream_name=config.audit_stream_name,
            )
        emitter = AuditEmitter(audit_sink, audit_config or AuditConfig.from_settings(config))
        app.add_middleware(
            AuditMiddleware,
            emitter=emitter,
            max_error_body_chars=config.max_error_body_chars,
        )

    app.add_middleware(
        RequestLogMiddleware,
        header_filter=config.logged_headers,
        max_error_body_chars=config.max_error_body_chars,
    )
    app.add_middleware(
        ContextLoggerMiddleware,
        composer=LoggerComposer(
            static_attributes=config.static_log_attributes,
            header_filter=config.logged_headers,
        ),
        extractor=extractor,
    )
    app.add_middleware(
        RequestContextMiddleware,
        customizer=customizer,
        metadata_to_header=config.mirrored_response_headers,
        request_timeout_seconds=config.request_timeout_seconds,
    )
    app.add_middleware(
        RecoveryMiddleware,
        status_code=config.recovery_status_code,
        panic_handler=panic_handler,
    )

    logger.info("Observability middlewares added to application")
    return emitter
