"""API contracts for connector binding administration."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from connadmin.lifecycle import AccountEventKind
from connadmin.models import HydrationPolicy, ManagementType, SchemaSyncStatus
from connadmin.overrides import ConfigOverride


class ConnectorTypeCreateRequest(BaseModel):
    """Register a connector type."""

    type_name: str = Field(min_length=1, max_length=100)
    display_name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=4000)
    owner: str | None = Field(default=None, max_length=255)
    documentation_url: str | None = Field(default=None, max_length=2000)
    tags: list[str] = Field(default_factory=list, max_length=50)
    management_type: ManagementType = "UNMANAGED"
    default_persist_pipedoc: bool | None = None
    default_max_inline_size_bytes: int | None = Field(default=None, ge=0)
    default_hydration_policy: HydrationPolicy | None = None
    default_custom_config: dict[str, Any] = Field(default_factory=dict)
    config_schema_id: str | None = None


class ConnectorTypeUpdateRequest(BaseModel):
    """Partial update of connector type defaults; only sent fields change."""

    display_name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=4000)
    owner: str | None = Field(default=None, max_length=255)
    documentation_url: str | None = Field(default=None, max_length=2000)
    tags: list[str] | None = Field(default=None, max_length=50)
    default_persist_pipedoc: bool | None = None
    default_max_inline_size_bytes: int | None = Field(default=None, ge=0)
    default_hydration_policy: HydrationPolicy | None = None
    default_custom_config: dict[str, Any] | None = None
    config_schema_id: str | None = None


class ConnectorTypeResponse(BaseModel):
    """Connector type with its defaults."""

    connector_type_id: str
    type_name: str
    display_name: str
    description: str | None = None
    owner: str | None = None
    documentation_url: str | None = None
    tags: list[str] = Field(default_factory=list)
    management_type: ManagementType
    default_persist_pipedoc: bool | None = None
    default_max_inline_size_bytes: int | None = None
    default_hydration_policy: HydrationPolicy | None = None
    default_custom_config: dict[str, Any] = Field(default_factory=dict)
    config_schema_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ConnectorTypeListResponse(BaseModel):
    connector_types: list[ConnectorTypeResponse]


class ConfigSchemaCreateRequest(BaseModel):
    """Create a versioned schema pair for a connector type."""

    version: str = Field(min_length=1, max_length=100)
    custom_config_schema: dict[str, Any]
    node_custom_config_schema: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = Field(default=None, max_length=255)


class ConfigSchemaSyncRequest(BaseModel):
    """Outcome of publishing a schema to the external registry."""

    succeeded: bool
    artifact_id: str | None = Field(default=None, max_length=255)
    error: str | None = Field(default=None, max_length=4000)


class ConfigSchemaResponse(BaseModel):
    schema_id: str
    connector_type_id: str
    version: str
    custom_config_schema: dict[str, Any]
    node_custom_config_schema: dict[str, Any]
    created_by: str | None = None
    created_at: datetime | None = None
    sync_status: SchemaSyncStatus
    registry_artifact_id: str | None = None
    last_sync_attempt: datetime | None = None
    sync_error: str | None = None


class ConfigSchemaListResponse(BaseModel):
    schemas: list[ConfigSchemaResponse]


class BindingCreateRequest(BaseModel):
    """Register a binding between an account and a connector type."""

    account_id: str = Field(min_length=1, max_length=255)
    connector_type_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    metadata: dict[str, str] = Field(default_factory=dict)
    custom_config: dict[str, Any] = Field(default_factory=dict)
    config_override: ConfigOverride | None = None
    config_schema_id: str | None = None


class BindingUpdateRequest(BaseModel):
    """Partial binding update; an explicit null override clears it."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    metadata: dict[str, str] | None = None
    custom_config: dict[str, Any] | None = None
    config_override: ConfigOverride | None = None
    config_schema_id: str | None = None


class BindingResponse(BaseModel):
    """Binding as returned by admin endpoints; never includes credential material."""

    binding_id: str
    account_id: str
    connector_type_id: str
    name: str
    active: bool
    status_reason: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    custom_config: dict[str, Any] = Field(default_factory=dict)
    has_config_override: bool = False
    config_schema_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_rotated_at: datetime | None = None


class BindingCreateResponse(BaseModel):
    """New binding plus the credential, which is shown only in this response."""

    binding: BindingResponse
    credential: str


class BindingListResponse(BaseModel):
    bindings: list[BindingResponse]


class EffectiveConfigResponse(BaseModel):
    persist_pipedoc: bool
    max_inline_size_bytes: int
    hydration_policy: HydrationPolicy
    custom_config: dict[str, Any] = Field(default_factory=dict)


class ValidateCredentialResponse(BaseModel):
    binding_id: str
    valid: bool
    reason: str
    effective_config: EffectiveConfigResponse | None = None


class RotateCredentialResponse(BaseModel):
    binding_id: str
    credential: str
    rotated_at: datetime


class SetStatusRequest(BaseModel):
    active: bool
    reason: str | None = Field(default=None, max_length=255)


class SetStatusResponse(BaseModel):
    binding_id: str
    success: bool
    active: bool
    status_reason: str | None = None


class DeleteResponse(BaseModel):
    accepted: bool
    message: str


class AccountEventRequest(BaseModel):
    """One account lifecycle event."""

    event_id: str | None = Field(default=None, max_length=128)
    account_id: str = Field(min_length=1, max_length=255)
    kind: AccountEventKind
    reason: str | None = Field(default=None, max_length=255)


class AccountEventResponse(BaseModel):
    account_id: str
    kind: AccountEventKind
    transitioned: int
    unchanged: int
    processed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
