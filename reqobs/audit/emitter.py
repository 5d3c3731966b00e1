"""
Audit record construction and best-effort delivery.

The emitter turns a completed request into an AuditRecord and hands it
to an AuditSink. Delivery is best-effort: failures are logged and
counted, never retried, and never change the response.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from ..classifier import classify
from ..context.models import RequestContext
from ..core.config import ObservabilitySettings
from ..core.constants import (
    CLIENT_APP_ID_HEADER,
    CLIENT_PRINCIPAL_NAME_HEADER,
    CLIENT_TENANT_ID_HEADER,
    REGION_HEADER,
    SUBSCRIPTION_ID_PATH_PARAM,
    USER_AGENT_HEADER,
)
from ..core.http_utils import header_get, parse_ip, split_host_port
from ..core.metrics import get_instruments
from .models import (
    AuditRecord,
    CallerIdentityEntry,
    CallerIdentityType,
    OperationCategory,
    OperationResult,
    OperationType,
    TargetResourceEntry,
)
from .service import AuditSink

logger = logging.getLogger(__name__)

SUCCESS_DESCRIPTION = "succeeded to run the operation"
TARGET_RESOURCE_KEY = "ResourceType"

_SUBSCRIPTION_SEGMENT = re.compile(r"/subscriptions/([^/?]+)", re.IGNORECASE)

# Header -> (identity type, description)
IDENTITY_HEADERS = (
    (CLIENT_APP_ID_HEADER, CallerIdentityType.APPLICATION_ID, "client application ID"),
    (CLIENT_PRINCIPAL_NAME_HEADER, CallerIdentityType.UPN, "client principal name"),
    (CLIENT_TENANT_ID_HEADER, CallerIdentityType.TENANT_ID, "client tenant ID"),
)


class AuditConfig(BaseModel):
    """
    Process-wide audit emitter configuration.

    Category and description overrides are keyed by classifier label
    (e.g. "PUT managedclusters") or by bare HTTP method.
    """

    custom_operation_categories: Dict[str, OperationCategory] = Field(default_factory=dict)
    custom_operation_descriptions: Dict[str, str] = Field(default_factory=dict)
    operation_access_level: str = "NA"
    exclude: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="HTTP method -> request URI substrings excluded from audit",
    )
    send_timeout_seconds: float = 5.0

    @field_validator("exclude")
    @classmethod
    def normalize_methods(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        """HTTP methods are matched upper-case."""
        return {method.upper(): list(patterns) for method, patterns in v.items()}

    @classmethod
    def from_settings(cls, config: ObservabilitySettings) -> "AuditConfig":
        """Build the emitter configuration from ObservabilitySettings."""
        return cls(
            operation_access_level=config.audit_operation_access_level,
            exclude=config.audit_exclude,
            send_timeout_seconds=config.audit_send_timeout_seconds,
        )


def get_operation_type(method: str) -> OperationType:
    """Map an HTTP method to the audited operation type."""
    method = (method or "").upper()
    if method in ("PATCH", "POST", "PUT"):
        return OperationType.UPDATE
    if method == "DELETE":
        return OperationType.DELETE
    return OperationType.READ


def get_operation_result(status_code: int) -> OperationResult:
    """Statuses >= 400 are failures."""
    if status_code >= 400:
        return OperationResult.FAILURE
    return OperationResult.SUCCESS


def get_operation_result_description(status_code: int, error_message: str = "") -> str:
    """
    Describe the outcome of a request.

    Args:
        status_code: Response status
        error_message: Error text captured from the response body

    Returns:
        "succeeded to run the operation" or
        "operation failed with status code: <code>[, error: <text>]"
    """
    if status_code >= 400:
        if error_message:
            return f"operation failed with status code: {status_code}, error: {error_message}"
        return f"operation failed with status code: {status_code}"
    return SUCCESS_DESCRIPTION


def subscription_id_from(path_params: Optional[Mapping[str, Any]], path: str) -> str:
    """
    Find the subscription id of a request.

    The routed path variable wins; otherwise the /subscriptions/{id}
    segment of the path is used.
    """
    if path_params:
        value = path_params.get(SUBSCRIPTION_ID_PATH_PARAM)
        if value:
            return str(value)
    match = _SUBSCRIPTION_SEGMENT.search(path or "")
    return match.group(1) if match else ""


def get_caller_identities(
    headers: Any,
    subscription_id: str = "",
) -> Dict[CallerIdentityType, List[CallerIdentityEntry]]:
    """
    Collect the caller identities carried by a request.

    Args:
        headers: Request headers
        subscription_id: Subscription id from the path, if any

    Returns:
        Identity type -> entries; types without a value are omitted
    """
    identities: Dict[CallerIdentityType, List[CallerIdentityEntry]] = {}
    if subscription_id:
        identities[CallerIdentityType.SUBSCRIPTION_ID] = [
            CallerIdentityEntry(identity=subscription_id, description="client subscription ID")
        ]
    for header, identity_type, description in IDENTITY_HEADERS:
        value = header_get(headers, header)
        if value:
            identities[identity_type] = [
                CallerIdentityEntry(identity=value, description=description)
            ]
    return identities


def caller_ip_from(remote_addr: Optional[str]) -> Optional[str]:
    """Extract the caller IP from a host:port remote address; None if malformed."""
    host, _ = split_host_port(remote_addr or "")
    ip = parse_ip(host)
    if ip is None:
        logger.error(f"Failed to parse caller address '{remote_addr}'")
    return ip


class AuditEmitter:
    """
    Builds and sends one AuditRecord per completed request.

    Attributes:
        sink: AuditSink receiving records
        config: AuditConfig with overrides, exclusions and timeout
    """

    def __init__(self, sink: AuditSink, config: Optional[AuditConfig] = None):
        self.sink = sink
        self.config = config or AuditConfig()

    def should_exclude(self, method: str, request_uri: str) -> bool:
        """
        Whether a request is excluded from audit.

        Args:
            method: HTTP method
            request_uri: Request target (path and query)

        Returns:
            True if any pattern registered for the method occurs in request_uri
        """
        patterns = self.config.exclude.get((method or "").upper())
        if not patterns:
            return False
        return any(pattern in (request_uri or "") for pattern in patterns)

    def get_operation_category(self, label: str, method: str) -> OperationCategory:
        """Category override by label, then by method, else ResourceManagement."""
        categories = self.config.custom_operation_categories
        if label in categories:
            return categories[label]
        if method in categories:
            return categories[method]
        return OperationCategory.RESOURCE_MANAGEMENT

    def get_operation_category_description(self, label: str, method: str) -> str:
        descriptions = self.config.custom_operation_descriptions
        return descriptions.get(label) or descriptions.get(method, "")

    def build_record(
        self,
        method: str,
        request_uri: str,
        url: str,
        status_code: int,
        headers: Any,
        remote_addr: Optional[str] = None,
        path_params: Optional[Mapping[str, Any]] = None,
        error_message: str = "",
        label: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> AuditRecord:
        """
        Build the audit record of a completed request.

        Args:
            method: HTTP method
            request_uri: Request target (path and query), used as the resource name
            url: Full request URL, used for classification
            status_code: Final response status
            headers: Request headers
            remote_addr: Caller "host:port"
            path_params: Routed path variables
            error_message: Error text captured from the response body
            label: Classifier label, computed from method and url when absent
            ctx: RequestContext supplying correlation and operation ids

        Returns:
            A frozen AuditRecord
        """
        method = (method or "").upper()
        label = label or classify(method, url)
        path = (request_uri or "").split("?", 1)[0]

        return AuditRecord(
            timestamp=datetime.now(timezone.utc),
            correlation_id=ctx.correlation_id if ctx else "",
            operation_id=ctx.operation_id if ctx else "",
            caller_identities=get_caller_identities(
                headers, subscription_id_from(path_params, path)
            ),
            caller_ip_address=caller_ip_from(remote_addr),
            caller_agent=header_get(headers, USER_AGENT_HEADER),
            caller_access_levels=["NA"],
            operation_access_level=self.config.operation_access_level,
            operation_name=label,
            operation_type=get_operation_type(method),
            operation_categories=[self.get_operation_category(label, method)],
            operation_category_description=self.get_operation_category_description(label, method),
            target_resources={
                TARGET_RESOURCE_KEY: [
                    TargetResourceEntry(
                        name=request_uri or "",
                        region=header_get(headers, REGION_HEADER),
                    )
                ]
            },
            operation_result=get_operation_result(status_code),
            operation_result_description=get_operation_result_description(
                status_code, error_message
            ),
        )

    async def emit(
        self,
        method: str,
        request_uri: str,
        url: str,
        status_code: int,
        headers: Any,
        remote_addr: Optional[str] = None,
        path_params: Optional[Mapping[str, Any]] = None,
        error_message: str = "",
        label: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> bool:
        """
        Build and send the audit record of a completed request.

        Never raises. Arguments are those of build_record().

        Returns:
            True if the sink accepted the record
        """
        if self.should_exclude(method, request_uri):
            logger.info(f"Excluding audit event. method: {method} url: {url}")
            return False

        try:
            record = self.build_record(
                method=method,
                request_uri=request_uri,
                url=url,
                status_code=status_code,
                headers=headers,
                remote_addr=remote_addr,
                path_params=path_params,
                error_message=error_message,
                label=label,
                ctx=ctx,
            )
        except Exception as e:
            logger.error(f"Failed to create audit event: {e}")
            get_instruments().audit_failure_counter.add(1, {"stage": "build"})
            return False

        try:
            await asyncio.wait_for(self.sink.send(record), timeout=self.config.send_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(
                f"Timed out sending audit event after {self.config.send_timeout_seconds}s"
            )
            get_instruments().audit_failure_counter.add(1, {"stage": "send"})
            return False
        except Exception as e:
            # Audit delivery must not affect request processing
            logger.error(f"Failed to send audit event: {e}")
            get_instruments().audit_failure_counter.add(1, {"stage": "send"})
            return False

        return True
