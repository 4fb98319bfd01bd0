"""
Core data models for the JIT Access engine.

This module defines the Pydantic models used throughout the system for
IAM requests, IAM policies as returned by the policy store, per-scope
responses, and audit records.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Cloud Resource Manager only honours conditional bindings on this version.
CONDITIONAL_POLICY_VERSION = 3

SUPPORTED_SCOPE_PREFIXES = ("organizations", "folders", "projects")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReconcileAction(str, Enum):
    """Kind of reconciliation applied to a scope."""
    GRANT = "grant"
    REVOKE = "revoke"


class BindingRequest(BaseModel):
    """Requested association of principals with a role."""
    model_config = ConfigDict(extra="forbid")

    members: List[str] = Field(default_factory=list, description="Principals in kind:identifier form")
    role: str = Field(..., description="Role to grant, e.g. roles/viewer")


class ResourcePolicyRequest(BaseModel):
    """Requested bindings for one resource scope."""
    model_config = ConfigDict(extra="forbid")

    resource: str = Field(..., description="organizations/..., folders/... or projects/...")
    bindings: List[BindingRequest] = Field(default_factory=list)

    @property
    def scope_type(self) -> str:
        """First path segment of the scope."""
        return self.resource.split("/")[0]


class IAMRequest(BaseModel):
    """A complete IAM request document."""
    model_config = ConfigDict(extra="forbid")

    policies: List[ResourcePolicyRequest] = Field(default_factory=list)


class Condition(BaseModel):
    """Boolean expression gating a binding."""
    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    expression: str = ""
    description: Optional[str] = None


class Binding(BaseModel):
    """A role bound to a set of members, optionally conditional."""
    model_config = ConfigDict(extra="allow")

    role: str
    members: List[str] = Field(default_factory=list)
    condition: Optional[Condition] = None

    def is_managed(self, condition_title: str) -> bool:
        return self.condition is not None and self.condition.title == condition_title


class Policy(BaseModel):
    """
    IAM policy document of a single scope.

    Fields the engine does not model (e.g. future additions to the store's
    schema) are kept as extras and written back unchanged.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    version: int = 1
    bindings: List[Binding] = Field(default_factory=list)
    etag: Optional[str] = None
    audit_configs: List[Dict[str, Any]] = Field(default_factory=list, alias="auditConfigs")

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> "Policy":
        """Build a policy from a Resource Manager JSON payload."""
        return cls.model_validate(data or {})

    def to_api(self) -> Dict[str, Any]:
        """Render the policy as a Resource Manager JSON payload."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        if not data.get("auditConfigs"):
            data.pop("auditConfigs", None)
        return data


class IAMResponse(BaseModel):
    """Post-reconciliation snapshot of one scope."""
    resource: str
    policy: Policy
    warnings: List[str] = Field(default_factory=list, description="Non-fatal decode errors")


class AuditRecord(BaseModel):
    """Audit record for one scope reconciliation."""
    id: str = Field(..., description="Unique audit record ID")
    timestamp: datetime = Field(default_factory=_utcnow)
    action: ReconcileAction
    resource: str = Field(..., description="Scope that was reconciled")
    roles: List[str] = Field(default_factory=list)
    members: List[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = Field(None, description="Expiry of granted bindings")
    success: bool = Field(..., description="Whether the policy was written")
    error_message: Optional[str] = Field(None, description="Error details if failed")
    warnings: List[str] = Field(default_factory=list)
    invocation_id: Optional[str] = Field(None, description="ID of the reconciliation run")
