"""
Pydantic model for the request-scoped identifier context.
"""

import time
from typing import Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


ExtraValue = Union[str, int, float, bool]


class RequestContext(BaseModel):
    """
    Identifiers extracted (or synthesized) at ingress for one request.

    Instances are frozen: stages that need different values layer a new
    context in an inner scope instead of mutating this one.
    """

    model_config = ConfigDict(frozen=True)

    correlation_id: str = Field(
        default="",
        description="Identifier stable across the whole logical call chain",
    )
    operation_id: str = Field(
        description="Identifier of this specific request, generated if absent",
    )
    client_request_id: str = Field(
        default="",
        description="Caller-specified request identifier",
    )
    tenant_id: str = Field(
        default="",
        description="Home tenant of the caller",
    )
    accept_language: str = Field(
        default="",
        description="Lower-cased Accept-Language header",
    )
    operation_id_generated: bool = Field(
        default=False,
        description="Whether operation_id was synthesized rather than received",
    )
    api_version: str = Field(
        default="",
        description="api-version query parameter of the inbound request",
    )
    subscription_id: str = Field(
        default="",
        description="Subscription addressed by the request path",
    )
    resource_group: str = Field(
        default="",
        description="Resource group addressed by the request path",
    )
    target_uri: str = Field(
        default="",
        description="Full inbound request URI",
    )
    http_method: str = Field(
        default="",
        description="Inbound HTTP method",
    )
    route_name: str = Field(
        default="",
        description="Name of the matched application route",
    )
    headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Raw values of the extracted headers, keyed by lower-case header name",
    )
    extras: Dict[str, ExtraValue] = Field(
        default_factory=dict,
        description="Opaque key/value bag populated by a caller-supplied customizer",
    )
    deadline: Optional[float] = Field(
        default=None,
        description="Ingress deadline as a time.monotonic() timestamp",
    )

    def remaining_time(self) -> Optional[float]:
        """Seconds left before the ingress deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def identifiers(self) -> Dict[str, str]:
        """Return the non-empty correlation identifiers keyed by canonical name."""
        values = {
            "correlation_id": self.correlation_id,
            "operation_id": self.operation_id,
            "client_request_id": self.client_request_id,
        }
        return {k: v for k, v in values.items() if v}
