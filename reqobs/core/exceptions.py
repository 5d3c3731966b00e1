"""
Exception hierarchy for the request observability pipeline.

Only IdentifierGenerationError is allowed to change the outcome of a
request. Everything else is caught by the stage that raised it and
downgraded to a log line.
"""


class ReqObsError(Exception):
    """Base class for all pipeline errors."""


class IdentifierGenerationError(ReqObsError):
    """Raised when a request identifier cannot be synthesized."""


class ResourceIdParseError(ReqObsError, ValueError):
    """Raised when a path is not a hierarchical resource identifier."""


class AuditSinkError(ReqObsError):
    """Raised by an audit sink when a record could not be delivered."""


class AuditValidationError(AuditSinkError):
    """Raised by an audit sink when a record fails its validation rules."""
