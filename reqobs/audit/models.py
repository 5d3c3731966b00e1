"""
Pydantic models for audit records.

This module defines the structured data model of the compliance record
emitted once per completed request: who called (caller identities and
address), what was done (operation name, type and category), to which
resources, and with which outcome.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OperationResult(str, Enum):
    """Outcome of the audited operation."""

    SUCCESS = "Success"
    FAILURE = "Failure"


class OperationType(str, Enum):
    """Kind of access performed by the audited operation."""

    CREATE = "Create"
    READ = "Read"
    UPDATE = "Update"
    DELETE = "Delete"


class OperationCategory(str, Enum):
    """Compliance category of the audited operation."""

    USER_MANAGEMENT = "UserManagement"
    GROUP_MANAGEMENT = "GroupManagement"
    AUTHENTICATION = "Authentication"
    AUTHORIZATION = "Authorization"
    ROLE_MANAGEMENT = "RoleManagement"
    APPLICATION_MANAGEMENT = "ApplicationManagement"
    KEY_MANAGEMENT = "KeyManagement"
    DIRECTORY_MANAGEMENT = "DirectoryManagement"
    RESOURCE_MANAGEMENT = "ResourceManagement"
    POLICY_MANAGEMENT = "PolicyManagement"
    DEVICE_MANAGEMENT = "DeviceManagement"
    ENTITLEMENT_MANAGEMENT = "EntitlementManagement"
    PASSWORD_MANAGEMENT = "PasswordManagement"
    OBJECT_MANAGEMENT = "ObjectManagement"
    IDENTITY_PROTECTION = "IdentityProtection"
    OTHER = "Other"


class CallerIdentityType(str, Enum):
    """Type of a caller identity entry."""

    APPLICATION_ID = "ApplicationID"
    UPN = "UPN"
    SUBSCRIPTION_ID = "SubscriptionID"
    TENANT_ID = "TenantID"
    OBJECT_KEY = "ObjectKey"
    PUID = "PUID"
    OTHER = "Other"


class RecordType(str, Enum):
    """Plane the audited operation belongs to."""

    CONTROL_PLANE = "ControlPlane"
    DATA_PLANE = "DataPlane"


class CallerIdentityEntry(BaseModel):
    """
    One identity of the caller.
    """

    model_config = ConfigDict(frozen=True)

    identity: str = Field(description="Identity value, e.g. an application id")
    description: str = Field(description="What the identity value represents")


class TargetResourceEntry(BaseModel):
    """
    A resource affected by the audited operation.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Resource name; the request URI for HTTP calls")
    region: str = Field(
        default="",
        description="Region of the resource, from the Region request header"
    )


class AuditRecord(BaseModel):
    """
    Complete compliance record for one completed request.

    Built once after the response status is known and sent at most once.
    Instances are frozen.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(description="When the request completed (UTC)")
    log_type: str = Field(
        default="api_audit",
        description="Type of audit log record"
    )
    version: str = Field(
        default="1.0",
        description="Schema version for this record type"
    )
    record_type: RecordType = Field(
        default=RecordType.CONTROL_PLANE,
        description="Control plane or data plane operation"
    )
    correlation_id: str = Field(
        default="",
        description="Correlation id of the call chain"
    )
    operation_id: str = Field(
        default="",
        description="Operation id of this request"
    )
    caller_identities: Dict[CallerIdentityType, List[CallerIdentityEntry]] = Field(
        default_factory=dict,
        description="Caller identities grouped by identity type"
    )
    caller_ip_address: Optional[str] = Field(
        default=None,
        description="Caller IP address; absent when the remote address was malformed"
    )
    caller_agent: str = Field(
        default="",
        description="User-Agent of the caller"
    )
    caller_access_levels: List[str] = Field(
        default_factory=lambda: ["NA"],
        description="Access levels held by the caller"
    )
    operation_access_level: str = Field(
        default="NA",
        description="Access level required by the operation"
    )
    operation_name: str = Field(description="Classifier label of the call")
    operation_type: OperationType = Field(description="Kind of access performed")
    operation_categories: List[OperationCategory] = Field(
        default_factory=lambda: [OperationCategory.RESOURCE_MANAGEMENT],
        description="Compliance categories of the operation"
    )
    operation_category_description: str = Field(
        default="",
        description="Free text required when the category is Other"
    )
    target_resources: Dict[str, List[TargetResourceEntry]] = Field(
        default_factory=dict,
        description="Affected resources grouped by resource type"
    )
    operation_result: OperationResult = Field(description="Success or Failure")
    operation_result_description: str = Field(
        default="",
        description="Human-readable outcome, including status code on failure"
    )

    @field_validator("operation_name")
    @classmethod
    def operation_name_not_empty(cls, v: str) -> str:
        """Every record names the operation it audits."""
        if not v or not v.strip():
            raise ValueError("operation_name must not be empty")
        return v
