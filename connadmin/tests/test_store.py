"""Tests for the SQLAlchemy binding store."""

import unittest
from datetime import UTC, datetime

from connadmin.ids import binding_id_for, connector_type_id_for
from connadmin.models import ACCOUNT_INACTIVE_REASON, Binding, BindingStatus, ConfigSchema
from connadmin.store import BindingConflictError, BindingStore, SchemaInUseError

S3_ID = connector_type_id_for("s3")


def _binding(account_id: str = "acct-1", **overrides) -> Binding:
    values = {
        "binding_id": binding_id_for(account_id, S3_ID),
        "account_id": account_id,
        "connector_type_id": S3_ID,
        "name": f"{account_id} bucket",
        "credential_hash": "$argon2id$stored",
    }
    values.update(overrides)
    return Binding(**values)


def _schema(version: str = "1.0.0", schema_id: str = "schema-1") -> ConfigSchema:
    return ConfigSchema(
        schema_id=schema_id,
        connector_type_id=S3_ID,
        version=version,
        custom_config_schema={"type": "object"},
        node_custom_config_schema={"type": "object", "properties": {}},
        created_by="admin",
    )


class BindingStoreTests(unittest.TestCase):
    """Persistence behavior for connector types, bindings, and schemas."""

    def setUp(self) -> None:
        self.store = BindingStore("sqlite+pysqlite:///:memory:")
        self.store.ensure_schema()

    def test_default_connector_types_are_seeded_once(self) -> None:
        self.store.ensure_schema()
        rows = self.store.list_connector_types()

        self.assertEqual([row.type_name for row in rows], ["file-crawler", "s3"])
        s3 = self.store.get_connector_type(S3_ID)
        assert s3 is not None
        self.assertEqual(s3.display_name, "S3 Bucket Crawler")
        self.assertEqual(s3.management_type, "UNMANAGED")
        self.assertIsNone(s3.default_persist_pipedoc)
        self.assertEqual(s3.default_custom_config, {})
        by_name = self.store.get_connector_type_by_name("file-crawler")
        assert by_name is not None
        self.assertEqual(by_name.connector_type_id, connector_type_id_for("file-crawler"))

    def test_update_connector_type_defaults(self) -> None:
        updated = self.store.update_connector_type(
            S3_ID,
            {"default_persist_pipedoc": False, "default_custom_config": {"region": "us-east-1"}, "tags": ["aws"]},
        )

        assert updated is not None
        self.assertFalse(updated.default_persist_pipedoc)
        self.assertEqual(updated.default_custom_config, {"region": "us-east-1"})
        self.assertEqual(updated.tags, ["aws"])
        self.assertIsNone(self.store.update_connector_type("missing", {"owner": "x"}))

    def test_binding_round_trip_keeps_json_and_override_bytes(self) -> None:
        created = self.store.insert_binding(
            _binding(
                metadata={"team": "search"},
                custom_config={"bucket": "raw", "depth": 3},
                config_override=b'{"version":1}',
            )
        )

        self.assertTrue(created.active)
        self.assertIsNone(created.status_reason)
        self.assertEqual(created.metadata, {"team": "search"})
        self.assertEqual(created.custom_config, {"bucket": "raw", "depth": 3})
        self.assertEqual(created.config_override, b'{"version":1}')
        self.assertIsNotNone(created.created_at)
        self.assertIsNone(created.last_rotated_at)

    def test_duplicate_binding_id_is_a_conflict(self) -> None:
        self.store.insert_binding(_binding())

        with self.assertRaises(BindingConflictError):
            self.store.insert_binding(_binding(name="second attempt"))

        self.assertEqual(len(self.store.list_bindings(account_id="acct-1")), 1)

    def test_list_bindings_filters(self) -> None:
        self.store.insert_binding(_binding("acct-1"))
        self.store.insert_binding(_binding("acct-2", active=False, status_reason="manual"))

        self.assertEqual(len(self.store.list_bindings()), 2)
        self.assertEqual([b.account_id for b in self.store.list_bindings(account_id="acct-2")], ["acct-2"])
        self.assertEqual([b.account_id for b in self.store.list_bindings(include_inactive=False)], ["acct-1"])

    def test_set_binding_status_reports_change(self) -> None:
        binding = self.store.insert_binding(_binding())

        self.assertEqual(self.store.set_binding_status(binding.binding_id, active=True, reason="ignored"), "unchanged")
        self.assertEqual(self.store.set_binding_status(binding.binding_id, active=False, reason="manual"), "changed")
        self.assertEqual(self.store.set_binding_status("missing", active=False, reason="manual"), "missing")

        stored = self.store.get_binding(binding.binding_id)
        assert stored is not None
        self.assertEqual(stored.status, BindingStatus(active=False, reason="manual"))

    def test_disable_replaces_account_inactive_reason_only(self) -> None:
        binding = self.store.insert_binding(_binding(active=False, status_reason=ACCOUNT_INACTIVE_REASON))

        self.assertEqual(self.store.set_binding_status(binding.binding_id, active=False, reason="manual"), "changed")
        self.assertEqual(self.store.set_binding_status(binding.binding_id, active=False, reason="audit"), "unchanged")

        stored = self.store.get_binding(binding.binding_id)
        assert stored is not None
        self.assertEqual(stored.status, BindingStatus(active=False, reason="manual"))

    def test_compare_and_set_requires_expected_state(self) -> None:
        binding = self.store.insert_binding(_binding())

        moved = self.store.compare_and_set_status(
            binding.binding_id,
            expected=BindingStatus(active=False, reason="account_inactive"),
            new=BindingStatus(active=True),
        )
        self.assertFalse(moved)

        moved = self.store.compare_and_set_status(
            binding.binding_id,
            expected=BindingStatus(active=True, reason=None),
            new=BindingStatus(active=False, reason="account_inactive"),
        )
        self.assertTrue(moved)
        stored = self.store.get_binding(binding.binding_id)
        assert stored is not None
        self.assertEqual(stored.status_reason, "account_inactive")

    def test_replace_credential_hash(self) -> None:
        binding = self.store.insert_binding(_binding())
        rotated_at = datetime.now(UTC)

        self.assertTrue(self.store.replace_credential_hash(binding.binding_id, "$argon2id$new", rotated_at))
        self.assertFalse(self.store.replace_credential_hash("missing", "$argon2id$new", rotated_at))

        stored = self.store.get_binding(binding.binding_id)
        assert stored is not None
        self.assertEqual(stored.credential_hash, "$argon2id$new")
        self.assertIsNotNone(stored.last_rotated_at)

    def test_schema_version_is_unique_per_connector_type(self) -> None:
        self.store.create_config_schema(_schema())

        with self.assertRaises(BindingConflictError):
            self.store.create_config_schema(_schema(schema_id="schema-2"))

        self.store.create_config_schema(_schema(version="1.1.0", schema_id="schema-3"))
        self.assertEqual([s.version for s in self.store.list_config_schemas(S3_ID)], ["1.0.0", "1.1.0"])

    def test_schema_delete_is_guarded_by_references(self) -> None:
        schema = self.store.create_config_schema(_schema())
        binding = self.store.insert_binding(_binding(config_schema_id=schema.schema_id))

        with self.assertRaises(SchemaInUseError):
            self.store.delete_config_schema(schema.schema_id)

        self.store.update_binding(binding.binding_id, {"config_schema_id": None})
        self.store.update_connector_type(S3_ID, {"config_schema_id": schema.schema_id})
        with self.assertRaises(SchemaInUseError):
            self.store.delete_config_schema(schema.schema_id)

        self.store.update_connector_type(S3_ID, {"config_schema_id": None})
        self.assertTrue(self.store.delete_config_schema(schema.schema_id))
        self.assertFalse(self.store.delete_config_schema(schema.schema_id))
        self.assertIsNone(self.store.get_config_schema(schema.schema_id))


if __name__ == "__main__":
    unittest.main()
