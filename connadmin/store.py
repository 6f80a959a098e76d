"""Persistence layer for connector types, bindings, and config schemas."""

import json
import logging
from datetime import UTC, datetime
from typing import Any, Literal

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    insert,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from connadmin.ids import connector_type_id_for
from connadmin.models import ACCOUNT_INACTIVE_REASON, Binding, BindingStatus, ConfigSchema, ConnectorType

logger = logging.getLogger(__name__)

binding_metadata = MetaData()

connector_types = Table(
    "connector_types",
    binding_metadata,
    Column("connector_type_id", String(64), primary_key=True),
    Column("type_name", String(100), nullable=False, unique=True),
    Column("display_name", String(255), nullable=False),
    Column("description", Text, nullable=True),
    Column("owner", String(255), nullable=True),
    Column("documentation_url", Text, nullable=True),
    Column("tags_json", Text, nullable=True),
    Column("management_type", String(20), nullable=False, default="UNMANAGED"),
    Column("default_persist_pipedoc", Boolean, nullable=True),
    Column("default_max_inline_size_bytes", Integer, nullable=True),
    Column("default_hydration_policy", String(32), nullable=True),
    Column("default_custom_config_json", Text, nullable=True),
    # No FK: schemas reference connector types, and the schema delete guard checks this column.
    Column("config_schema_id", String(64), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

config_schemas = Table(
    "config_schemas",
    binding_metadata,
    Column("schema_id", String(64), primary_key=True),
    Column(
        "connector_type_id",
        String(64),
        ForeignKey("connector_types.connector_type_id"),
        nullable=False,
    ),
    Column("version", String(100), nullable=False),
    Column("custom_config_schema_json", Text, nullable=False),
    Column("node_custom_config_schema_json", Text, nullable=False),
    Column("created_by", String(255), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("sync_status", String(16), nullable=False, default="PENDING"),
    Column("registry_artifact_id", String(255), nullable=True),
    Column("last_sync_attempt", DateTime(timezone=True), nullable=True),
    Column("sync_error", Text, nullable=True),
    UniqueConstraint("connector_type_id", "version", name="uq_config_schema_version"),
)

bindings = Table(
    "bindings",
    binding_metadata,
    # Deterministic id of (account_id, connector_type_id); the primary key is the uniqueness guard.
    Column("binding_id", String(64), primary_key=True),
    Column("account_id", String(255), nullable=False, index=True),
    Column(
        "connector_type_id",
        String(64),
        ForeignKey("connector_types.connector_type_id"),
        nullable=False,
        index=True,
    ),
    Column("name", String(255), nullable=False),
    Column("credential_hash", String(255), nullable=False),
    Column("active", Boolean, nullable=False, default=True),
    Column("status_reason", String(255), nullable=True),
    Column("metadata_json", Text, nullable=True),
    Column("custom_config_json", Text, nullable=True),
    Column("config_override", LargeBinary, nullable=True),
    Column("config_schema_id", String(64), ForeignKey("config_schemas.schema_id"), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("last_rotated_at", DateTime(timezone=True), nullable=True),
)

_SEED_CONNECTOR_TYPES = (
    {
        "type_name": "s3",
        "display_name": "S3 Bucket Crawler",
        "description": "Crawl documents from Amazon S3 buckets",
    },
    {
        "type_name": "file-crawler",
        "display_name": "File System Crawler",
        "description": "Crawl documents from local or network file systems",
    },
)

_CONNECTOR_TYPE_COLUMNS = {
    "display_name": "display_name",
    "description": "description",
    "owner": "owner",
    "documentation_url": "documentation_url",
    "tags": "tags_json",
    "management_type": "management_type",
    "default_persist_pipedoc": "default_persist_pipedoc",
    "default_max_inline_size_bytes": "default_max_inline_size_bytes",
    "default_hydration_policy": "default_hydration_policy",
    "default_custom_config": "default_custom_config_json",
    "config_schema_id": "config_schema_id",
}

_BINDING_COLUMNS = {
    "name": "name",
    "metadata": "metadata_json",
    "custom_config": "custom_config_json",
    "config_override": "config_override",
    "config_schema_id": "config_schema_id",
}

_SCHEMA_COLUMNS = {
    "custom_config_schema": "custom_config_schema_json",
    "node_custom_config_schema": "node_custom_config_schema_json",
    "sync_status": "sync_status",
    "registry_artifact_id": "registry_artifact_id",
    "last_sync_attempt": "last_sync_attempt",
    "sync_error": "sync_error",
}

_JSON_COLUMNS = {
    "tags_json",
    "default_custom_config_json",
    "metadata_json",
    "custom_config_json",
    "custom_config_schema_json",
    "node_custom_config_schema_json",
}

StatusChange = Literal["changed", "unchanged", "missing"]


class BindingStoreError(RuntimeError):
    """Storage operation failed."""


class BindingConflictError(BindingStoreError):
    """A uniqueness or integrity constraint rejected the write."""


class SchemaInUseError(BindingStoreError):
    """A config schema is still referenced by a connector type or binding."""


class BindingStore:
    """Persistence API for binding administration."""

    def __init__(self, database_url: str):
        self._engine = create_engine(database_url, pool_pre_ping=True)
        self._schema_ready = False

    def ensure_schema(self) -> None:
        """Create tables and seed default connector types if needed."""
        if self._schema_ready:
            return
        try:
            binding_metadata.create_all(self._engine, checkfirst=True)
            self._seed_connector_types_if_missing()
            self._schema_ready = True
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to create binding tables: {exc}") from exc

    def _seed_connector_types_if_missing(self) -> None:
        now = datetime.now(UTC)
        with self._engine.begin() as conn:
            existing = {row[0] for row in conn.execute(select(connector_types.c.type_name)).fetchall()}
            for seed in _SEED_CONNECTOR_TYPES:
                if seed["type_name"] in existing:
                    continue
                conn.execute(
                    insert(connector_types).values(
                        connector_type_id=connector_type_id_for(seed["type_name"]),
                        type_name=seed["type_name"],
                        display_name=seed["display_name"],
                        description=seed["description"],
                        tags_json=json.dumps([]),
                        management_type="UNMANAGED",
                        default_custom_config_json=json.dumps({}),
                        created_at=now,
                        updated_at=now,
                    )
                )
                logger.info("Seeded connector type %s", seed["type_name"])

    # ------------------------------------------------------------------
    # Connector types
    # ------------------------------------------------------------------

    def create_connector_type(self, connector_type: ConnectorType) -> ConnectorType:
        """Insert a connector type; duplicates raise BindingConflictError."""
        self.ensure_schema()
        now = datetime.now(UTC)
        payload = {
            "connector_type_id": connector_type.connector_type_id,
            "type_name": connector_type.type_name,
            "display_name": connector_type.display_name,
            "description": connector_type.description,
            "owner": connector_type.owner,
            "documentation_url": connector_type.documentation_url,
            "tags_json": json.dumps(list(connector_type.tags)),
            "management_type": connector_type.management_type,
            "default_persist_pipedoc": connector_type.default_persist_pipedoc,
            "default_max_inline_size_bytes": connector_type.default_max_inline_size_bytes,
            "default_hydration_policy": connector_type.default_hydration_policy,
            "default_custom_config_json": json.dumps(connector_type.default_custom_config or {}),
            "config_schema_id": connector_type.config_schema_id,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with self._engine.begin() as conn:
                conn.execute(insert(connector_types).values(**payload))
        except IntegrityError as exc:
            raise BindingConflictError(f"Connector type {connector_type.type_name} already exists") from exc
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to create connector type: {exc}") from exc
        created = self.get_connector_type(connector_type.connector_type_id)
        if created is None:
            raise BindingStoreError(f"Failed to load connector type {connector_type.connector_type_id}")
        return created

    def get_connector_type(self, connector_type_id: str) -> ConnectorType | None:
        """Return one connector type by id."""
        stmt = select(connector_types).where(connector_types.c.connector_type_id == connector_type_id)
        return self._fetch_one(stmt, _connector_type_from_row, f"connector type {connector_type_id}")

    def get_connector_type_by_name(self, type_name: str) -> ConnectorType | None:
        """Return one connector type by its unique type name."""
        stmt = select(connector_types).where(connector_types.c.type_name == type_name)
        return self._fetch_one(stmt, _connector_type_from_row, f"connector type {type_name}")

    def list_connector_types(self) -> list[ConnectorType]:
        """Return all connector types ordered by type name."""
        stmt = select(connector_types).order_by(connector_types.c.type_name)
        return self._fetch_all(stmt, _connector_type_from_row, "connector types")

    def update_connector_type(self, connector_type_id: str, values: dict[str, Any]) -> ConnectorType | None:
        """Apply field updates to a connector type; returns None when missing."""
        self.ensure_schema()
        row_values = _to_row_values(values, _CONNECTOR_TYPE_COLUMNS)
        row_values["updated_at"] = datetime.now(UTC)
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    connector_types.update()
                    .where(connector_types.c.connector_type_id == connector_type_id)
                    .values(**row_values)
                )
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to update connector type {connector_type_id}: {exc}") from exc
        if result.rowcount == 0:
            return None
        return self.get_connector_type(connector_type_id)

    # ------------------------------------------------------------------
    # Config schemas
    # ------------------------------------------------------------------

    def create_config_schema(self, schema: ConfigSchema) -> ConfigSchema:
        """Insert a schema; a duplicate (connector type, version) raises BindingConflictError."""
        self.ensure_schema()
        payload = {
            "schema_id": schema.schema_id,
            "connector_type_id": schema.connector_type_id,
            "version": schema.version,
            "custom_config_schema_json": json.dumps(schema.custom_config_schema),
            "node_custom_config_schema_json": json.dumps(schema.node_custom_config_schema),
            "created_by": schema.created_by,
            "created_at": datetime.now(UTC),
            "sync_status": schema.sync_status,
        }
        try:
            with self._engine.begin() as conn:
                conn.execute(insert(config_schemas).values(**payload))
        except IntegrityError as exc:
            raise BindingConflictError(
                f"Schema version {schema.version} already exists for connector type {schema.connector_type_id}"
            ) from exc
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to create config schema: {exc}") from exc
        created = self.get_config_schema(schema.schema_id)
        if created is None:
            raise BindingStoreError(f"Failed to load config schema {schema.schema_id}")
        return created

    def get_config_schema(self, schema_id: str) -> ConfigSchema | None:
        """Return one config schema by id."""
        stmt = select(config_schemas).where(config_schemas.c.schema_id == schema_id)
        return self._fetch_one(stmt, _config_schema_from_row, f"config schema {schema_id}")

    def list_config_schemas(self, connector_type_id: str) -> list[ConfigSchema]:
        """Return schemas for a connector type, oldest first."""
        stmt = (
            select(config_schemas)
            .where(config_schemas.c.connector_type_id == connector_type_id)
            .order_by(config_schemas.c.created_at, config_schemas.c.version)
        )
        return self._fetch_all(stmt, _config_schema_from_row, "config schemas")

    def update_config_schema(self, schema_id: str, values: dict[str, Any]) -> ConfigSchema | None:
        """Apply field updates to a schema; returns None when missing."""
        self.ensure_schema()
        row_values = _to_row_values(values, _SCHEMA_COLUMNS)
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    config_schemas.update().where(config_schemas.c.schema_id == schema_id).values(**row_values)
                )
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to update config schema {schema_id}: {exc}") from exc
        if result.rowcount == 0:
            return None
        return self.get_config_schema(schema_id)

    def delete_config_schema(self, schema_id: str) -> bool:
        """Delete an unreferenced schema.

        Returns False when the schema does not exist and raises
        SchemaInUseError while a connector type or binding references it.
        """
        self.ensure_schema()
        try:
            with self._engine.begin() as conn:
                exists = conn.execute(
                    select(config_schemas.c.schema_id).where(config_schemas.c.schema_id == schema_id)
                ).scalar_one_or_none()
                if exists is None:
                    return False
                type_refs = conn.execute(
                    select(func.count())
                    .select_from(connector_types)
                    .where(connector_types.c.config_schema_id == schema_id)
                ).scalar_one()
                binding_refs = conn.execute(
                    select(func.count()).select_from(bindings).where(bindings.c.config_schema_id == schema_id)
                ).scalar_one()
                if type_refs or binding_refs:
                    raise SchemaInUseError(
                        f"Config schema {schema_id} is referenced by {type_refs} connector type(s) "
                        f"and {binding_refs} binding(s)"
                    )
                conn.execute(delete(config_schemas).where(config_schemas.c.schema_id == schema_id))
        except IntegrityError as exc:
            raise SchemaInUseError(f"Config schema {schema_id} is still referenced") from exc
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to delete config schema {schema_id}: {exc}") from exc
        logger.info("Deleted config schema %s", schema_id)
        return True

    # ------------------------------------------------------------------
    # Bindings
    # ------------------------------------------------------------------

    def insert_binding(self, binding: Binding) -> Binding:
        """Insert a new binding row.

        The primary key is the deterministic pair id, so a second insert for
        the same pair raises BindingConflictError without a prior lookup.
        """
        self.ensure_schema()
        now = datetime.now(UTC)
        payload = {
            "binding_id": binding.binding_id,
            "account_id": binding.account_id,
            "connector_type_id": binding.connector_type_id,
            "name": binding.name,
            "credential_hash": binding.credential_hash,
            "active": binding.active,
            "status_reason": binding.status_reason,
            "metadata_json": json.dumps(binding.metadata or {}),
            "custom_config_json": json.dumps(binding.custom_config or {}),
            "config_override": binding.config_override,
            "config_schema_id": binding.config_schema_id,
            "created_at": now,
            "updated_at": now,
            "last_rotated_at": None,
        }
        try:
            with self._engine.begin() as conn:
                conn.execute(insert(bindings).values(**payload))
        except IntegrityError as exc:
            raise BindingConflictError(f"Binding {binding.binding_id} already exists") from exc
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to create binding: {exc}") from exc
        logger.info(
            "Created binding %s (account=%s, connector_type=%s)",
            binding.binding_id,
            binding.account_id,
            binding.connector_type_id,
        )
        created = self.get_binding(binding.binding_id)
        if created is None:
            raise BindingStoreError(f"Failed to load binding {binding.binding_id}")
        return created

    def get_binding(self, binding_id: str) -> Binding | None:
        """Return one binding by id."""
        stmt = select(bindings).where(bindings.c.binding_id == binding_id)
        return self._fetch_one(stmt, _binding_from_row, f"binding {binding_id}")

    def list_bindings(self, *, account_id: str | None = None, include_inactive: bool = True) -> list[Binding]:
        """Return bindings, optionally for one account and/or only active ones."""
        stmt = select(bindings)
        if account_id is not None:
            stmt = stmt.where(bindings.c.account_id == account_id)
        if not include_inactive:
            stmt = stmt.where(bindings.c.active.is_(True))
        stmt = stmt.order_by(bindings.c.created_at.desc(), bindings.c.binding_id)
        return self._fetch_all(stmt, _binding_from_row, "bindings")

    def update_binding(self, binding_id: str, values: dict[str, Any]) -> Binding | None:
        """Apply administrative field updates; returns None when missing."""
        self.ensure_schema()
        row_values = _to_row_values(values, _BINDING_COLUMNS)
        row_values["updated_at"] = datetime.now(UTC)
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    bindings.update().where(bindings.c.binding_id == binding_id).values(**row_values)
                )
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to update binding {binding_id}: {exc}") from exc
        if result.rowcount == 0:
            return None
        logger.info("Updated binding %s (%s)", binding_id, ", ".join(sorted(values)))
        return self.get_binding(binding_id)

    def replace_credential_hash(self, binding_id: str, credential_hash: str, rotated_at: datetime) -> bool:
        """Swap the stored hash in one statement; the old hash stops matching at commit."""
        self.ensure_schema()
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    bindings.update()
                    .where(bindings.c.binding_id == binding_id)
                    .values(credential_hash=credential_hash, last_rotated_at=rotated_at, updated_at=rotated_at)
                )
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to rotate credential for binding {binding_id}: {exc}") from exc
        return result.rowcount > 0

    def set_binding_status(self, binding_id: str, *, active: bool, reason: str | None) -> StatusChange:
        """Toggle active/reason unless the binding already has the requested active flag.

        A disable request against a binding that is off only because its
        account is inactive still records the new reason, so a later account
        reactivation leaves it disabled.
        """
        self.ensure_schema()
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    bindings.update()
                    .where(bindings.c.binding_id == binding_id)
                    .where(bindings.c.active.is_(not active))
                    .values(active=active, status_reason=reason, updated_at=datetime.now(UTC))
                )
                if result.rowcount > 0:
                    return "changed"
                if not active and reason != ACCOUNT_INACTIVE_REASON:
                    result = conn.execute(
                        bindings.update()
                        .where(bindings.c.binding_id == binding_id)
                        .where(bindings.c.active.is_(False))
                        .where(bindings.c.status_reason == ACCOUNT_INACTIVE_REASON)
                        .values(status_reason=reason, updated_at=datetime.now(UTC))
                    )
                    if result.rowcount > 0:
                        return "changed"
                existing = conn.execute(
                    select(bindings.c.binding_id).where(bindings.c.binding_id == binding_id)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to set status for binding {binding_id}: {exc}") from exc
        return "missing" if existing is None else "unchanged"

    def compare_and_set_status(self, binding_id: str, *, expected: BindingStatus, new: BindingStatus) -> bool:
        """Write ``new`` only if the row still holds ``expected``; False means the row moved on."""
        self.ensure_schema()
        try:
            with self._engine.begin() as conn:
                result = conn.execute(
                    bindings.update()
                    .where(bindings.c.binding_id == binding_id)
                    .where(bindings.c.active.is_(expected.active))
                    .where(bindings.c.status_reason.is_not_distinct_from(expected.reason))
                    .values(active=new.active, status_reason=new.reason, updated_at=datetime.now(UTC))
                )
        except SQLAlchemyError as exc:
            raise BindingStoreError(f"Failed to transition status for binding {binding_id}: {exc}") from exc
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fetch_one(self, stmt, mapper, label: str):
        self.ensure_schema()
        try:
            with self._engine.begin() as conn:
                row = conn.execute(stmt).mappings().first()
            return mapper(row) if row is not None else None
        except (SQLAlchemyError, json.JSONDecodeError) as exc:
            raise BindingStoreError(f"Failed to read {label}: {exc}") from exc

    def _fetch_all(self, stmt, mapper, label: str) -> list:
        self.ensure_schema()
        try:
            with self._engine.begin() as conn:
                rows = conn.execute(stmt).mappings().all()
            return [mapper(row) for row in rows]
        except (SQLAlchemyError, json.JSONDecodeError) as exc:
            raise BindingStoreError(f"Failed to list {label}: {exc}") from exc


def _to_row_values(values: dict[str, Any], columns: dict[str, str]) -> dict[str, Any]:
    unknown = set(values) - set(columns)
    if unknown:
        raise BindingStoreError(f"Unsupported fields: {sorted(unknown)}")
    row_values: dict[str, Any] = {}
    for name, value in values.items():
        column = columns[name]
        if column in _JSON_COLUMNS:
            row_values[column] = json.dumps(value) if value is not None else None
        else:
            row_values[column] = value
    return row_values


def _loads(raw: str | None, default: Any) -> Any:
    return json.loads(raw) if raw else default


def _connector_type_from_row(row) -> ConnectorType:
    return ConnectorType(
        connector_type_id=row["connector_type_id"],
        type_name=row["type_name"],
        display_name=row["display_name"],
        description=row["description"],
        owner=row["owner"],
        documentation_url=row["documentation_url"],
        tags=_loads(row["tags_json"], []),
        management_type=row["management_type"],
        default_persist_pipedoc=row["default_persist_pipedoc"],
        default_max_inline_size_bytes=row["default_max_inline_size_bytes"],
        default_hydration_policy=row["default_hydration_policy"],
        default_custom_config=_loads(row["default_custom_config_json"], {}),
        config_schema_id=row["config_schema_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _binding_from_row(row) -> Binding:
    override = row["config_override"]
    return Binding(
        binding_id=row["binding_id"],
        account_id=row["account_id"],
        connector_type_id=row["connector_type_id"],
        name=row["name"],
        credential_hash=row["credential_hash"],
        active=bool(row["active"]),
        status_reason=row["status_reason"],
        metadata=_loads(row["metadata_json"], {}),
        custom_config=_loads(row["custom_config_json"], {}),
        config_override=bytes(override) if override is not None else None,
        config_schema_id=row["config_schema_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_rotated_at=row["last_rotated_at"],
    )


def _config_schema_from_row(row) -> ConfigSchema:
    return ConfigSchema(
        schema_id=row["schema_id"],
        connector_type_id=row["connector_type_id"],
        version=row["version"],
        custom_config_schema=_loads(row["custom_config_schema_json"], {}),
        node_custom_config_schema=_loads(row["node_custom_config_schema_json"], {}),
        created_by=row["created_by"],
        created_at=row["created_at"],
        sync_status=row["sync_status"],
        registry_artifact_id=row["registry_artifact_id"],
        last_sync_attempt=row["last_sync_attempt"],
        sync_error=row["sync_error"],
    )
