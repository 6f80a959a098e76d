"""FastAPI router for connector binding administration endpoints."""

import logging

from fastapi import APIRouter, Header, HTTPException, Query, status

from connadmin.contracts import (
    AccountEventRequest,
    AccountEventResponse,
    BindingCreateRequest,
    BindingCreateResponse,
    BindingListResponse,
    BindingResponse,
    BindingUpdateRequest,
    ConfigSchemaCreateRequest,
    ConfigSchemaListResponse,
    ConfigSchemaResponse,
    ConfigSchemaSyncRequest,
    ConnectorTypeCreateRequest,
    ConnectorTypeListResponse,
    ConnectorTypeResponse,
    ConnectorTypeUpdateRequest,
    DeleteResponse,
    EffectiveConfigResponse,
    RotateCredentialResponse,
    SetStatusRequest,
    SetStatusResponse,
    ValidateCredentialResponse,
)
from connadmin.errors import BindingAdminError
from connadmin.lifecycle import AccountEvent
from connadmin.models import Binding, ConfigSchema, ConnectorType, EffectiveConfig
from connadmin.overrides import encode_override
from connadmin.runtime import get_lifecycle_synchronizer, get_validation_service

logger = logging.getLogger(__name__)

binding_router = APIRouter(prefix="/v1", tags=["bindings"])

_STATUS_BY_CODE = {
    "invalid_argument": status.HTTP_400_BAD_REQUEST,
    "already_exists": status.HTTP_409_CONFLICT,
    "not_found": status.HTTP_404_NOT_FOUND,
    "failed_precondition": status.HTTP_409_CONFLICT,
    "data_integrity": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _http_error(exc: BindingAdminError) -> HTTPException:
    status_code = _STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error("Request failed (%s): %s", exc.code, exc)
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": str(exc)})


# ----------------------------------------------------------------------
# Connector types
# ----------------------------------------------------------------------


@binding_router.get("/connector-types", response_model=ConnectorTypeListResponse)
def list_connector_types() -> ConnectorTypeListResponse:
    """List registered connector types."""
    try:
        rows = get_validation_service().list_connector_types()
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return ConnectorTypeListResponse(connector_types=[_connector_type_response(row) for row in rows])


@binding_router.post(
    "/connector-types", response_model=ConnectorTypeResponse, status_code=status.HTTP_201_CREATED
)
def create_connector_type(payload: ConnectorTypeCreateRequest) -> ConnectorTypeResponse:
    """Register a connector type."""
    fields = payload.model_dump(exclude={"type_name", "display_name"})
    try:
        created = get_validation_service().register_connector_type(payload.type_name, payload.display_name, **fields)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return _connector_type_response(created)


@binding_router.get("/connector-types/{connector_type_id}", response_model=ConnectorTypeResponse)
def get_connector_type(connector_type_id: str) -> ConnectorTypeResponse:
    try:
        connector_type = get_validation_service().get_connector_type(connector_type_id)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return _connector_type_response(connector_type)


@binding_router.patch("/connector-types/{connector_type_id}/defaults", response_model=ConnectorTypeResponse)
def update_connector_type_defaults(
    connector_type_id: str, payload: ConnectorTypeUpdateRequest
) -> ConnectorTypeResponse:
    """Update connector type defaults; omitted fields are left alone."""
    try:
        updated = get_validation_service().update_connector_type(
            connector_type_id, payload.model_dump(exclude_unset=True)
        )
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return _connector_type_response(updated)


# ----------------------------------------------------------------------
# Config schemas
# ----------------------------------------------------------------------


@binding_router.post(
    "/connector-types/{connector_type_id}/schemas",
    response_model=ConfigSchemaResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_config_schema(connector_type_id: str, payload: ConfigSchemaCreateRequest) -> ConfigSchemaResponse:
    try:
        schema = get_validation_service().create_config_schema(
            connector_type_id,
            payload.version,
            payload.custom_config_schema,
            payload.node_custom_config_schema,
            created_by=payload.created_by,
        )
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return _config_schema_response(schema)


@binding_router.get("/connector-types/{connector_type_id}/schemas", response_model=ConfigSchemaListResponse)
def list_config_schemas(connector_type_id: str) -> ConfigSchemaListResponse:
    try:
        rows = get_validation_service().list_config_schemas(connector_type_id)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return ConfigSchemaListResponse(schemas=[_config_schema_response(row) for row in rows])


@binding_router.get("/schemas/{schema_id}", response_model=ConfigSchemaResponse)
def get_config_schema(schema_id: str) -> ConfigSchemaResponse:
    try:
        schema = get_validation_service().get_config_schema(schema_id)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return _config_schema_response(schema)


@binding_router.delete("/schemas/{schema_id}", response_model=DeleteResponse)
def delete_config_schema(schema_id: str) -> DeleteResponse:
    """Delete a schema that nothing references."""
    try:
        get_validation_service().delete_config_schema(schema_id)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return DeleteResponse(accepted=True, message=f"Config schema {schema_id} deleted")


@binding_router.post("/schemas/{schema_id}/sync", response_model=ConfigSchemaResponse)
def record_schema_sync(schema_id: str, payload: ConfigSchemaSyncRequest) -> ConfigSchemaResponse:
    """Record the registry sync outcome for a schema."""
    try:
        schema = get_validation_service().record_schema_sync(
            schema_id,
            succeeded=payload.succeeded,
            artifact_id=payload.artifact_id,
            error=payload.error,
        )
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return _config_schema_response(schema)


# ----------------------------------------------------------------------
# Bindings
# ----------------------------------------------------------------------


@binding_router.post("/bindings", response_model=BindingCreateResponse, status_code=status.HTTP_201_CREATED)
def create_binding(payload: BindingCreateRequest) -> BindingCreateResponse:
    """Register a binding and return its credential once."""
    override = encode_override(payload.config_override) if payload.config_override is not None else None
    try:
        registered = get_validation_service().register(
            payload.account_id,
            payload.connector_type_id,
            payload.name,
            custom_config=payload.custom_config,
            config_override=override,
            config_schema_id=payload.config_schema_id,
            metadata=payload.metadata,
        )
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return BindingCreateResponse(binding=_binding_response(registered.binding), credential=registered.credential)


@binding_router.get("/bindings", response_model=BindingListResponse)
def list_bindings(
    account_id: str | None = Query(default=None, max_length=255),
    active_only: bool = Query(default=False),
) -> BindingListResponse:
    try:
        rows = get_validation_service().list_bindings(account_id=account_id, active_only=active_only)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return BindingListResponse(bindings=[_binding_response(row) for row in rows])


@binding_router.get("/bindings/{binding_id}", response_model=BindingResponse)
def get_binding(binding_id: str) -> BindingResponse:
    try:
        binding = get_validation_service().get_binding(binding_id)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return _binding_response(binding)


@binding_router.patch("/bindings/{binding_id}", response_model=BindingResponse)
def update_binding(binding_id: str, payload: BindingUpdateRequest) -> BindingResponse:
    """Update binding fields that were sent in the request body."""
    changes = {}
    for name in payload.model_fields_set:
        value = getattr(payload, name)
        if name == "config_override":
            value = encode_override(value) if value is not None else None
        changes[name] = value
    try:
        updated = get_validation_service().update_binding(binding_id, changes)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return _binding_response(updated)


@binding_router.delete("/bindings/{binding_id}", response_model=DeleteResponse)
def delete_binding(binding_id: str) -> DeleteResponse:
    """Deactivate a binding; the row is kept."""
    try:
        get_validation_service().delete_binding(binding_id)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return DeleteResponse(accepted=True, message=f"Binding {binding_id} deactivated")


@binding_router.post("/bindings/{binding_id}/validate", response_model=ValidateCredentialResponse)
def validate_credential(
    binding_id: str,
    x_api_key: str = Header(default="", alias="X-API-Key"),
) -> ValidateCredentialResponse:
    """Validate the credential in the X-API-Key header for one binding."""
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthorized", "message": "X-API-Key header is required"},
        )
    try:
        result = get_validation_service().validate_credential(binding_id, x_api_key)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return ValidateCredentialResponse(
        binding_id=binding_id,
        valid=result.valid,
        reason=result.reason,
        effective_config=_effective_config_response(result.effective_config) if result.effective_config else None,
    )


@binding_router.post("/bindings/{binding_id}/rotate", response_model=RotateCredentialResponse)
def rotate_credential(binding_id: str) -> RotateCredentialResponse:
    """Issue a new credential; the previous one stops working immediately."""
    try:
        rotated = get_validation_service().rotate(binding_id)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return RotateCredentialResponse(
        binding_id=rotated.binding_id,
        credential=rotated.credential,
        rotated_at=rotated.rotated_at,
    )


@binding_router.post("/bindings/{binding_id}/status", response_model=SetStatusResponse)
def set_binding_status(binding_id: str, payload: SetStatusRequest) -> SetStatusResponse:
    service = get_validation_service()
    try:
        success = service.set_status(binding_id, payload.active, payload.reason)
        binding = service.get_binding(binding_id)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return SetStatusResponse(
        binding_id=binding_id,
        success=success,
        active=binding.active,
        status_reason=binding.status_reason,
    )


@binding_router.get("/bindings/{binding_id}/effective-config", response_model=EffectiveConfigResponse)
def effective_config(binding_id: str) -> EffectiveConfigResponse:
    """Preview the merged configuration for a binding."""
    try:
        resolved = get_validation_service().resolve_effective_config(binding_id)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return _effective_config_response(resolved)


# ----------------------------------------------------------------------
# Account lifecycle
# ----------------------------------------------------------------------


@binding_router.post("/account-events", response_model=AccountEventResponse)
def ingest_account_event(payload: AccountEventRequest) -> AccountEventResponse:
    """Apply one account lifecycle event; safe to redeliver."""
    event = AccountEvent(
        account_id=payload.account_id,
        kind=payload.kind,
        reason=payload.reason,
        event_id=payload.event_id,
    )
    try:
        outcome = get_lifecycle_synchronizer().handle(event)
    except BindingAdminError as exc:
        raise _http_error(exc) from exc
    return AccountEventResponse(
        account_id=outcome.account_id,
        kind=payload.kind,
        transitioned=outcome.transitioned,
        unchanged=outcome.unchanged,
    )


def _connector_type_response(connector_type: ConnectorType) -> ConnectorTypeResponse:
    return ConnectorTypeResponse(
        connector_type_id=connector_type.connector_type_id,
        type_name=connector_type.type_name,
        display_name=connector_type.display_name,
        description=connector_type.description,
        owner=connector_type.owner,
        documentation_url=connector_type.documentation_url,
        tags=list(connector_type.tags),
        management_type=connector_type.management_type,
        default_persist_pipedoc=connector_type.default_persist_pipedoc,
        default_max_inline_size_bytes=connector_type.default_max_inline_size_bytes,
        default_hydration_policy=connector_type.default_hydration_policy,
        default_custom_config=connector_type.default_custom_config,
        config_schema_id=connector_type.config_schema_id,
        created_at=connector_type.created_at,
        updated_at=connector_type.updated_at,
    )


def _config_schema_response(schema: ConfigSchema) -> ConfigSchemaResponse:
    return ConfigSchemaResponse(
        schema_id=schema.schema_id,
        connector_type_id=schema.connector_type_id,
        version=schema.version,
        custom_config_schema=schema.custom_config_schema,
        node_custom_config_schema=schema.node_custom_config_schema,
        created_by=schema.created_by,
        created_at=schema.created_at,
        sync_status=schema.sync_status,
        registry_artifact_id=schema.registry_artifact_id,
        last_sync_attempt=schema.last_sync_attempt,
        sync_error=schema.sync_error,
    )


def _binding_response(binding: Binding) -> BindingResponse:
    return BindingResponse(
        binding_id=binding.binding_id,
        account_id=binding.account_id,
        connector_type_id=binding.connector_type_id,
        name=binding.name,
        active=binding.active,
        status_reason=binding.status_reason,
        metadata=binding.metadata,
        custom_config=binding.custom_config,
        has_config_override=bool(binding.config_override),
        config_schema_id=binding.config_schema_id,
        created_at=binding.created_at,
        updated_at=binding.updated_at,
        last_rotated_at=binding.last_rotated_at,
    )


def _effective_config_response(config: EffectiveConfig) -> EffectiveConfigResponse:
    return EffectiveConfigResponse(
        persist_pipedoc=config.persist_pipedoc,
        max_inline_size_bytes=config.max_inline_size_bytes,
        hydration_policy=config.hydration_policy,
        custom_config=config.custom_config,
    )
