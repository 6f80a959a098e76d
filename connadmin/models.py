"""Domain records shared by the store, resolver, service, and synchronizer."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

HydrationPolicy = Literal["AUTO", "ALWAYS_REF", "ALWAYS_INLINE"]
ManagementType = Literal["MANAGED", "UNMANAGED"]
SchemaSyncStatus = Literal["PENDING", "SYNCED", "FAILED"]

HYDRATION_POLICIES: tuple[str, ...] = ("AUTO", "ALWAYS_REF", "ALWAYS_INLINE")
ACCOUNT_INACTIVE_REASON = "account_inactive"


@dataclass(frozen=True)
class ConnectorType:
    """Template for a class of connector with default configuration."""

    connector_type_id: str
    type_name: str
    display_name: str
    description: str | None = None
    owner: str | None = None
    documentation_url: str | None = None
    tags: list[str] = field(default_factory=list)
    management_type: ManagementType = "UNMANAGED"
    default_persist_pipedoc: bool | None = None
    default_max_inline_size_bytes: int | None = None
    default_hydration_policy: HydrationPolicy | None = None
    default_custom_config: dict[str, Any] = field(default_factory=dict)
    config_schema_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Binding:
    """An account's instantiation of a connector type."""

    binding_id: str
    account_id: str
    connector_type_id: str
    name: str
    credential_hash: str
    active: bool = True
    status_reason: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    custom_config: dict[str, Any] = field(default_factory=dict)
    config_override: bytes | None = None
    config_schema_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_rotated_at: datetime | None = None

    @property
    def status(self) -> "BindingStatus":
        return BindingStatus(active=self.active, reason=self.status_reason)


@dataclass(frozen=True)
class ConfigSchema:
    """Versioned JSON Schema pair for a connector type's custom configuration."""

    schema_id: str
    connector_type_id: str
    version: str
    custom_config_schema: dict[str, Any]
    node_custom_config_schema: dict[str, Any]
    created_by: str | None = None
    created_at: datetime | None = None
    sync_status: SchemaSyncStatus = "PENDING"
    registry_artifact_id: str | None = None
    last_sync_attempt: datetime | None = None
    sync_error: str | None = None


@dataclass(frozen=True)
class BindingStatus:
    """The (active, reason) pair that status transitions read and write."""

    active: bool
    reason: str | None = None


@dataclass(frozen=True)
class EffectiveConfig:
    """Fully merged configuration returned on successful validation."""

    persist_pipedoc: bool
    max_inline_size_bytes: int
    hydration_policy: HydrationPolicy
    custom_config: dict[str, Any]


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a credential validation."""

    valid: bool
    reason: str
    effective_config: EffectiveConfig | None = None


@dataclass(frozen=True)
class RegisteredBinding:
    """A newly created binding plus its plaintext credential (returned once)."""

    binding: Binding
    credential: str = field(repr=False)


@dataclass(frozen=True)
class RotatedCredential:
    """A rotated credential (returned once)."""

    binding_id: str
    credential: str = field(repr=False)
    rotated_at: datetime
