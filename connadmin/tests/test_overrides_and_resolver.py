"""Tests for override encoding and layered config resolution."""

import json
import unittest

from connadmin.errors import DataIntegrityError
from connadmin.ids import binding_id_for, connector_type_id_for
from connadmin.models import Binding, ConnectorType
from connadmin.overrides import (
    OverrideDecodeError,
    build_override,
    decode_override,
    encode_override,
)
from connadmin.resolver import (
    SYSTEM_DEFAULT_HYDRATION_POLICY,
    SYSTEM_DEFAULT_MAX_INLINE_SIZE_BYTES,
    SYSTEM_DEFAULT_PERSIST_PIPEDOC,
    resolve,
)


def _connector_type(**overrides) -> ConnectorType:
    values = {
        "connector_type_id": connector_type_id_for("s3"),
        "type_name": "s3",
        "display_name": "S3 Bucket Crawler",
    }
    values.update(overrides)
    return ConnectorType(**values)


def _binding(**overrides) -> Binding:
    connector_type_id = connector_type_id_for("s3")
    values = {
        "binding_id": binding_id_for("acct-1", connector_type_id),
        "account_id": "acct-1",
        "connector_type_id": connector_type_id,
        "name": "docs bucket",
        "credential_hash": "$argon2id$placeholder",
    }
    values.update(overrides)
    return Binding(**values)


class OverrideCodecTests(unittest.TestCase):
    """Versioned override envelope with per-field presence."""

    def test_explicit_false_survives_encoding(self) -> None:
        raw = encode_override(build_override(persist_pipedoc=False))
        decoded = decode_override(raw)

        self.assertEqual(json.loads(raw), {"version": 1, "persistence": {"persist_pipedoc": False}})
        assert decoded.persistence is not None
        self.assertTrue(decoded.persistence.is_set("persist_pipedoc"))
        self.assertFalse(decoded.persistence.is_set("max_inline_size_bytes"))
        self.assertIsNone(decoded.hydration)
        self.assertIsNone(decoded.custom_config)

    def test_unknown_version_is_rejected(self) -> None:
        with self.assertRaises(OverrideDecodeError):
            decode_override(b'{"version": 2}')

    def test_malformed_payloads_are_rejected(self) -> None:
        bad_payloads = [
            b"\xff\xfe",
            b"not json",
            b"[1, 2]",
            b'{"persistence": {}}',
            b'{"version": true}',
            b'{"version": 1, "persistence": {"persist_pipedoc": "yes"}}',
            b'{"version": 1, "hydration": {"default_policy": "SOMETIMES"}}',
            b'{"version": 1, "unexpected": 1}',
        ]
        for raw in bad_payloads:
            with self.subTest(raw=raw):
                with self.assertRaises(OverrideDecodeError):
                    decode_override(raw)


class ResolverTests(unittest.TestCase):
    """Field-level precedence and shallow custom-config merging."""

    def test_missing_inputs_resolve_to_system_defaults(self) -> None:
        resolved = resolve(None, None)

        self.assertEqual(resolved.persist_pipedoc, SYSTEM_DEFAULT_PERSIST_PIPEDOC)
        self.assertEqual(resolved.max_inline_size_bytes, SYSTEM_DEFAULT_MAX_INLINE_SIZE_BYTES)
        self.assertEqual(resolved.hydration_policy, SYSTEM_DEFAULT_HYDRATION_POLICY)
        self.assertEqual(resolved.custom_config, {})

    def test_s3_example_scenario(self) -> None:
        connector_type = _connector_type(default_max_inline_size_bytes=1_048_576)
        binding = _binding(
            custom_config={"x": 1},
            config_override=encode_override(build_override(max_inline_size_bytes=5_242_880)),
        )

        resolved = resolve(connector_type, binding)

        self.assertEqual(resolved.max_inline_size_bytes, 5_242_880)
        self.assertEqual(resolved.custom_config, {"x": 1})

    def test_override_true_beats_type_default_false(self) -> None:
        connector_type = _connector_type(default_persist_pipedoc=False)
        binding = _binding(config_override=encode_override(build_override(persist_pipedoc=True)))

        self.assertTrue(resolve(connector_type, binding).persist_pipedoc)

    def test_explicit_false_override_is_not_treated_as_unset(self) -> None:
        connector_type = _connector_type(default_persist_pipedoc=True)
        binding = _binding(config_override=encode_override(build_override(persist_pipedoc=False)))

        self.assertFalse(resolve(connector_type, binding).persist_pipedoc)

    def test_fields_resolve_independently(self) -> None:
        connector_type = _connector_type(
            default_persist_pipedoc=False,
            default_max_inline_size_bytes=2048,
            default_hydration_policy="ALWAYS_INLINE",
        )
        binding = _binding(config_override=encode_override(build_override(hydration_policy="ALWAYS_REF")))

        resolved = resolve(connector_type, binding)

        self.assertFalse(resolved.persist_pipedoc)
        self.assertEqual(resolved.max_inline_size_bytes, 2048)
        self.assertEqual(resolved.hydration_policy, "ALWAYS_REF")

    def test_full_override_scenario(self) -> None:
        binding = _binding(
            config_override=encode_override(
                build_override(
                    persist_pipedoc=False,
                    max_inline_size_bytes=5_242_880,
                    hydration_policy="ALWAYS_REF",
                )
            )
        )

        resolved = resolve(_connector_type(), binding)

        self.assertFalse(resolved.persist_pipedoc)
        self.assertEqual(resolved.max_inline_size_bytes, 5_242_880)
        self.assertEqual(resolved.hydration_policy, "ALWAYS_REF")

    def test_custom_config_layers_merge_shallowly_in_order(self) -> None:
        connector_type = _connector_type(
            default_custom_config={"k": "default_value", "nested": {"a": 1, "b": 2}, "type_only": True}
        )
        binding = _binding(
            custom_config={"k": "override_value", "nested": {"a": 9}, "column_only": 1},
            config_override=encode_override(build_override(custom_config={"column_only": 2, "blob_only": "z"})),
        )

        resolved = resolve(connector_type, binding)

        self.assertEqual(
            resolved.custom_config,
            {
                "k": "override_value",
                "nested": {"a": 9},
                "type_only": True,
                "column_only": 2,
                "blob_only": "z",
            },
        )

    def test_resolution_does_not_mutate_inputs(self) -> None:
        defaults = {"k": "default_value"}
        column = {"k": "override_value"}
        connector_type = _connector_type(default_custom_config=defaults)
        binding = _binding(custom_config=column)

        resolved = resolve(connector_type, binding)
        resolved.custom_config["extra"] = 1

        self.assertEqual(defaults, {"k": "default_value"})
        self.assertEqual(column, {"k": "override_value"})

    def test_corrupt_override_fails_loudly_with_binding_id(self) -> None:
        binding = _binding(config_override=b"\x08\x01garbage")

        with self.assertRaises(DataIntegrityError) as ctx:
            resolve(_connector_type(), binding)

        self.assertIn(binding.binding_id, str(ctx.exception))

    def test_empty_override_bytes_mean_no_override(self) -> None:
        binding = _binding(config_override=b"", custom_config={"x": 1})

        resolved = resolve(_connector_type(default_persist_pipedoc=False), binding)

        self.assertFalse(resolved.persist_pipedoc)
        self.assertEqual(resolved.custom_config, {"x": 1})


if __name__ == "__main__":
    unittest.main()
