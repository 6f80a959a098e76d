"""Binding administration and credential validation."""

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Iterator
from uuid import uuid4

from connadmin.credentials import CredentialManager
from connadmin.directory import AccountDirectory, AccountStatus, DirectoryUnavailableError
from connadmin.errors import (
    AlreadyExistsError,
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    UnavailableError,
)
from connadmin.ids import binding_id_for, connector_type_id_for
from connadmin.models import (
    HYDRATION_POLICIES,
    Binding,
    ConfigSchema,
    ConnectorType,
    EffectiveConfig,
    RegisteredBinding,
    RotatedCredential,
    ValidationResult,
)
from connadmin.overrides import OverrideDecodeError, decode_override
from connadmin.resolver import resolve
from connadmin.store import BindingConflictError, BindingStore, BindingStoreError, SchemaInUseError

logger = logging.getLogger(__name__)

INVALID_CREDENTIAL_REASON = "invalid credential"
VALID_CREDENTIAL_REASON = "credential valid"
DELETED_REASON = "deleted via API"

_CONNECTOR_TYPE_FIELDS = {
    "display_name",
    "description",
    "owner",
    "documentation_url",
    "tags",
    "management_type",
    "default_persist_pipedoc",
    "default_max_inline_size_bytes",
    "default_hydration_policy",
    "default_custom_config",
    "config_schema_id",
}


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Translate storage failures into caller-visible error kinds."""
    try:
        yield
    except SchemaInUseError as exc:
        raise FailedPreconditionError(str(exc)) from exc
    except BindingConflictError as exc:
        raise AlreadyExistsError(str(exc)) from exc
    except BindingStoreError as exc:
        logger.error("Store failure while %s: %s", action, exc)
        raise UnavailableError(f"Storage unavailable while {action}") from exc


class ValidationService:
    """Registers bindings, validates and rotates credentials, and resolves config."""

    def __init__(
        self,
        store: BindingStore,
        credentials: CredentialManager,
        directory: AccountDirectory,
        *,
        directory_timeout_seconds: float = 2.0,
        lookup_workers: int = 4,
        lookup_pool: ThreadPoolExecutor | None = None,
    ):
        self._store = store
        self._credentials = credentials
        self._directory = directory
        self._directory_timeout = directory_timeout_seconds
        self._owns_lookup_pool = lookup_pool is None
        if lookup_pool is None:
            lookup_pool = ThreadPoolExecutor(max_workers=lookup_workers, thread_name_prefix="account-lookup")
        self._lookup_pool = lookup_pool

    def close(self) -> None:
        """Stop the account lookup worker pool if this service created it.

        A pool passed in by the caller is left running; its owner shuts it down.
        """
        if self._owns_lookup_pool:
            self._lookup_pool.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def register(
        self,
        account_id: str,
        connector_type_id: str,
        name: str,
        *,
        custom_config: dict[str, Any] | None = None,
        config_override: bytes | None = None,
        config_schema_id: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RegisteredBinding:
        """Create a binding for an account and return its credential once.

        The binding id is derived from (account_id, connector_type_id), so the
        primary key rejects a second registration of the same pair.
        """
        account_id = _require_text(account_id, "account_id")
        connector_type_id = _require_text(connector_type_id, "connector_type_id")
        name = _require_text(name, "name")

        with _store_errors("loading connector type"):
            connector_type = self._store.get_connector_type(connector_type_id)
        if connector_type is None:
            raise NotFoundError(f"Connector type not found: {connector_type_id}")

        _check_override_bytes(config_override)
        if config_schema_id is not None:
            self._check_schema_reference(config_schema_id, connector_type_id)

        account = self._lookup_account(account_id)
        if not account.exists:
            raise InvalidArgumentError(f"Account does not exist: {account_id}")
        if not account.active:
            raise InvalidArgumentError(f"Account is inactive: {account_id}")

        credential = self._credentials.generate()
        binding = Binding(
            binding_id=binding_id_for(account_id, connector_type_id),
            account_id=account_id,
            connector_type_id=connector_type_id,
            name=name,
            credential_hash=self._credentials.hash(credential),
            active=True,
            metadata=dict(metadata or {}),
            custom_config=dict(custom_config or {}),
            config_override=config_override or None,
            config_schema_id=config_schema_id,
        )
        try:
            with _store_errors("registering binding"):
                created = self._store.insert_binding(binding)
        except AlreadyExistsError as exc:
            raise AlreadyExistsError(
                f"Binding already exists for account {account_id} and connector type {connector_type_id}"
            ) from exc
        return RegisteredBinding(binding=created, credential=credential)

    def validate_credential(self, binding_id: str, plaintext: str) -> ValidationResult:
        """Check a presented credential and attach the effective config when valid."""
        with _store_errors("loading binding"):
            binding = self._store.get_binding(binding_id)

        if binding is None:
            self._credentials.verify_decoy(plaintext)
            logger.info("Credential validation failed for %s: binding not found", binding_id)
            return ValidationResult(valid=False, reason=INVALID_CREDENTIAL_REASON)

        if not binding.active:
            logger.info("Credential validation failed for %s: binding inactive", binding_id)
            return ValidationResult(valid=False, reason=f"binding inactive: {binding.status_reason or 'unspecified'}")

        if not self._credentials.verify(plaintext, binding.credential_hash):
            logger.info("Credential validation failed for %s: credential mismatch", binding_id)
            return ValidationResult(valid=False, reason=INVALID_CREDENTIAL_REASON)

        if self._credentials.needs_rehash(binding.credential_hash):
            logger.info("Binding %s credential hash uses outdated parameters; rotate to upgrade", binding_id)

        with _store_errors("loading connector type"):
            connector_type = self._store.get_connector_type(binding.connector_type_id)
        return ValidationResult(
            valid=True,
            reason=VALID_CREDENTIAL_REASON,
            effective_config=resolve(connector_type, binding),
        )

    def rotate(self, binding_id: str) -> RotatedCredential:
        """Replace a binding's credential; the previous one stops validating at commit."""
        credential = self._credentials.generate()
        credential_hash = self._credentials.hash(credential)
        rotated_at = datetime.now(UTC)
        with _store_errors("rotating credential"):
            replaced = self._store.replace_credential_hash(binding_id, credential_hash, rotated_at)
        if not replaced:
            raise NotFoundError(f"Binding not found: {binding_id}")
        logger.info("Rotated credential for binding %s", binding_id)
        return RotatedCredential(binding_id=binding_id, credential=credential, rotated_at=rotated_at)

    def set_status(self, binding_id: str, active: bool, reason: str | None = None) -> bool:
        """Set active/reason; requesting the current active state is a successful no-op."""
        with _store_errors("setting binding status"):
            change = self._store.set_binding_status(binding_id, active=active, reason=reason)
        if change == "missing":
            raise NotFoundError(f"Binding not found: {binding_id}")
        if change == "changed":
            logger.info("Binding %s active=%s (reason=%s)", binding_id, active, reason)
        return True

    def resolve_effective_config(self, binding_id: str) -> EffectiveConfig:
        """Preview the merged configuration of a binding without checking a credential."""
        binding = self.get_binding(binding_id)
        with _store_errors("loading connector type"):
            connector_type = self._store.get_connector_type(binding.connector_type_id)
        return resolve(connector_type, binding)

    # ------------------------------------------------------------------
    # Binding administration
    # ------------------------------------------------------------------

    def get_binding(self, binding_id: str) -> Binding:
        with _store_errors("loading binding"):
            binding = self._store.get_binding(binding_id)
        if binding is None:
            raise NotFoundError(f"Binding not found: {binding_id}")
        return binding

    def list_bindings(self, *, account_id: str | None = None, active_only: bool = False) -> list[Binding]:
        with _store_errors("listing bindings"):
            return self._store.list_bindings(account_id=account_id, include_inactive=not active_only)

    def update_binding(self, binding_id: str, changes: dict[str, Any]) -> Binding:
        """Update name, metadata, custom config, override bytes, or schema reference."""
        if "name" in changes:
            changes = {**changes, "name": _require_text(changes["name"], "name")}
        if "config_override" in changes:
            _check_override_bytes(changes["config_override"])
            changes = {**changes, "config_override": changes["config_override"] or None}
        if changes.get("config_schema_id") is not None:
            current = self.get_binding(binding_id)
            self._check_schema_reference(changes["config_schema_id"], current.connector_type_id)
        if not changes:
            return self.get_binding(binding_id)

        with _store_errors("updating binding"):
            updated = self._store.update_binding(binding_id, changes)
        if updated is None:
            raise NotFoundError(f"Binding not found: {binding_id}")
        return updated

    def delete_binding(self, binding_id: str) -> bool:
        """Soft delete: deactivate with a fixed reason; rows are never removed."""
        return self.set_status(binding_id, False, DELETED_REASON)

    # ------------------------------------------------------------------
    # Connector types
    # ------------------------------------------------------------------

    def register_connector_type(self, type_name: str, display_name: str, **fields: Any) -> ConnectorType:
        """Register a connector type under the id derived from its name."""
        type_name = _require_text(type_name, "type_name")
        display_name = _require_text(display_name, "display_name")
        _check_connector_type_fields(fields)
        connector_type_id = connector_type_id_for(type_name)
        schema_id = fields.get("config_schema_id")
        if schema_id is not None:
            self._check_schema_reference(schema_id, connector_type_id)

        connector_type = ConnectorType(
            connector_type_id=connector_type_id,
            type_name=type_name,
            display_name=display_name,
            **{key: value for key, value in fields.items() if value is not None},
        )
        try:
            with _store_errors("registering connector type"):
                return self._store.create_connector_type(connector_type)
        except AlreadyExistsError as exc:
            raise AlreadyExistsError(f"Connector type already exists: {type_name}") from exc

    def get_connector_type(self, connector_type_id: str) -> ConnectorType:
        with _store_errors("loading connector type"):
            connector_type = self._store.get_connector_type(connector_type_id)
        if connector_type is None:
            raise NotFoundError(f"Connector type not found: {connector_type_id}")
        return connector_type

    def get_connector_type_by_name(self, type_name: str) -> ConnectorType:
        with _store_errors("loading connector type"):
            connector_type = self._store.get_connector_type_by_name(type_name)
        if connector_type is None:
            raise NotFoundError(f"Connector type not found: {type_name}")
        return connector_type

    def list_connector_types(self) -> list[ConnectorType]:
        with _store_errors("listing connector types"):
            return self._store.list_connector_types()

    def update_connector_type(self, connector_type_id: str, changes: dict[str, Any]) -> ConnectorType:
        """Update defaults or descriptive fields; a None typed default falls back to system defaults."""
        _check_connector_type_fields(changes)
        if "display_name" in changes:
            changes = {**changes, "display_name": _require_text(changes["display_name"], "display_name")}
        if changes.get("config_schema_id") is not None:
            self._check_schema_reference(changes["config_schema_id"], connector_type_id)
        if not changes:
            return self.get_connector_type(connector_type_id)

        with _store_errors("updating connector type"):
            updated = self._store.update_connector_type(connector_type_id, changes)
        if updated is None:
            raise NotFoundError(f"Connector type not found: {connector_type_id}")
        logger.info("Updated connector type %s (%s)", connector_type_id, ", ".join(sorted(changes)))
        return updated

    # ------------------------------------------------------------------
    # Config schemas
    # ------------------------------------------------------------------

    def create_config_schema(
        self,
        connector_type_id: str,
        version: str,
        custom_config_schema: dict[str, Any],
        node_custom_config_schema: dict[str, Any],
        *,
        created_by: str | None = None,
    ) -> ConfigSchema:
        version = _require_text(version, "version")
        self.get_connector_type(connector_type_id)
        schema = ConfigSchema(
            schema_id=str(uuid4()),
            connector_type_id=connector_type_id,
            version=version,
            custom_config_schema=custom_config_schema,
            node_custom_config_schema=node_custom_config_schema,
            created_by=created_by,
        )
        with _store_errors("creating config schema"):
            created = self._store.create_config_schema(schema)
        logger.info("Created config schema %s v%s for %s", created.schema_id, version, connector_type_id)
        return created

    def get_config_schema(self, schema_id: str) -> ConfigSchema:
        with _store_errors("loading config schema"):
            schema = self._store.get_config_schema(schema_id)
        if schema is None:
            raise NotFoundError(f"Config schema not found: {schema_id}")
        return schema

    def list_config_schemas(self, connector_type_id: str) -> list[ConfigSchema]:
        self.get_connector_type(connector_type_id)
        with _store_errors("listing config schemas"):
            return self._store.list_config_schemas(connector_type_id)

    def update_config_schema_documents(
        self,
        schema_id: str,
        *,
        custom_config_schema: dict[str, Any] | None = None,
        node_custom_config_schema: dict[str, Any] | None = None,
    ) -> ConfigSchema:
        """Replace schema documents; only allowed before the schema is synced."""
        schema = self.get_config_schema(schema_id)
        if schema.sync_status == "SYNCED":
            raise FailedPreconditionError(f"Config schema {schema_id} is synced and immutable")
        changes: dict[str, Any] = {}
        if custom_config_schema is not None:
            changes["custom_config_schema"] = custom_config_schema
        if node_custom_config_schema is not None:
            changes["node_custom_config_schema"] = node_custom_config_schema
        if not changes:
            return schema
        with _store_errors("updating config schema"):
            updated = self._store.update_config_schema(schema_id, changes)
        if updated is None:
            raise NotFoundError(f"Config schema not found: {schema_id}")
        return updated

    def record_schema_sync(
        self,
        schema_id: str,
        *,
        succeeded: bool,
        artifact_id: str | None = None,
        error: str | None = None,
    ) -> ConfigSchema:
        """Record the outcome of publishing a schema to the external registry."""
        schema = self.get_config_schema(schema_id)
        if schema.sync_status == "SYNCED":
            raise FailedPreconditionError(f"Config schema {schema_id} is already synced")
        if succeeded and not (artifact_id or "").strip():
            raise InvalidArgumentError("artifact_id is required for a successful sync")
        changes: dict[str, Any] = {
            "sync_status": "SYNCED" if succeeded else "FAILED",
            "last_sync_attempt": datetime.now(UTC),
            "registry_artifact_id": artifact_id if succeeded else schema.registry_artifact_id,
            "sync_error": None if succeeded else (error or "unknown error"),
        }
        with _store_errors("recording schema sync"):
            updated = self._store.update_config_schema(schema_id, changes)
        if updated is None:
            raise NotFoundError(f"Config schema not found: {schema_id}")
        logger.info("Config schema %s sync status %s", schema_id, changes["sync_status"])
        return updated

    def delete_config_schema(self, schema_id: str) -> None:
        """Delete a schema no connector type or binding references."""
        with _store_errors("deleting config schema"):
            deleted = self._store.delete_config_schema(schema_id)
        if not deleted:
            raise NotFoundError(f"Config schema not found: {schema_id}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lookup_account(self, account_id: str) -> AccountStatus:
        future = self._lookup_pool.submit(self._directory.lookup, account_id)
        try:
            return future.result(timeout=self._directory_timeout)
        except TimeoutError as exc:
            future.cancel()
            logger.warning("Account lookup for %s exceeded %.1fs", account_id, self._directory_timeout)
            raise UnavailableError(f"Account directory timed out for {account_id}") from exc
        except DirectoryUnavailableError as exc:
            logger.warning("Account lookup for %s failed: %s", account_id, exc)
            raise UnavailableError(f"Account directory unavailable: {exc}") from exc

    def _check_schema_reference(self, schema_id: str, connector_type_id: str) -> None:
        with _store_errors("loading config schema"):
            schema = self._store.get_config_schema(schema_id)
        if schema is None:
            raise InvalidArgumentError(f"Config schema not found: {schema_id}")
        if schema.connector_type_id != connector_type_id:
            raise InvalidArgumentError(
                f"Config schema {schema_id} belongs to connector type {schema.connector_type_id}"
            )


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{field_name} must be a non-empty string")
    return value.strip()


def _check_override_bytes(raw: bytes | None) -> None:
    if not raw:
        return
    try:
        decode_override(raw)
    except OverrideDecodeError as exc:
        raise InvalidArgumentError(f"Invalid config override: {exc}") from exc


def _check_connector_type_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - _CONNECTOR_TYPE_FIELDS
    if unknown:
        raise InvalidArgumentError(f"Unsupported connector type fields: {sorted(unknown)}")
    policy = fields.get("default_hydration_policy")
    if policy is not None and policy not in HYDRATION_POLICIES:
        raise InvalidArgumentError(f"Unknown hydration policy: {policy}")
    max_inline = fields.get("default_max_inline_size_bytes")
    if max_inline is not None and (isinstance(max_inline, bool) or not isinstance(max_inline, int) or max_inline < 0):
        raise InvalidArgumentError("default_max_inline_size_bytes must be a non-negative integer")
    management_type = fields.get("management_type")
    if management_type is not None and management_type not in ("MANAGED", "UNMANAGED"):
        raise InvalidArgumentError(f"Unknown management type: {management_type}")
