"""Effective configuration resolution for bindings.

Four layers merge into one ``EffectiveConfig``:

1. system defaults,
2. connector-type defaults,
3. the binding's ``custom_config`` column,
4. the binding's serialized override (see ``connadmin.overrides``).

Typed fields resolve one at a time: a layer only wins for a field it
explicitly sets. Custom config is a shallow, key-level merge in layer order;
a key present in a later layer replaces the earlier value wholesale.
"""

import logging
from typing import Any

from connadmin.errors import DataIntegrityError
from connadmin.models import Binding, ConnectorType, EffectiveConfig, HydrationPolicy
from connadmin.overrides import ConfigOverride, OverrideDecodeError, decode_override

logger = logging.getLogger(__name__)

SYSTEM_DEFAULT_PERSIST_PIPEDOC = True
SYSTEM_DEFAULT_MAX_INLINE_SIZE_BYTES = 1_048_576
SYSTEM_DEFAULT_HYDRATION_POLICY: HydrationPolicy = "AUTO"


def resolve(connector_type: ConnectorType | None, binding: Binding | None) -> EffectiveConfig:
    """Merge system, connector-type, and binding configuration layers."""
    persist_pipedoc = SYSTEM_DEFAULT_PERSIST_PIPEDOC
    max_inline_size_bytes = SYSTEM_DEFAULT_MAX_INLINE_SIZE_BYTES
    hydration_policy: HydrationPolicy = SYSTEM_DEFAULT_HYDRATION_POLICY
    custom_config: dict[str, Any] = {}

    if connector_type is not None:
        if connector_type.default_persist_pipedoc is not None:
            persist_pipedoc = connector_type.default_persist_pipedoc
        if connector_type.default_max_inline_size_bytes is not None:
            max_inline_size_bytes = connector_type.default_max_inline_size_bytes
        if connector_type.default_hydration_policy is not None:
            hydration_policy = connector_type.default_hydration_policy
        custom_config.update(connector_type.default_custom_config or {})

    if binding is not None:
        custom_config.update(binding.custom_config or {})

        override = load_binding_override(binding)
        if override is not None:
            persistence = override.persistence
            if persistence is not None:
                if persistence.is_set("persist_pipedoc"):
                    persist_pipedoc = persistence.persist_pipedoc
                if persistence.is_set("max_inline_size_bytes"):
                    max_inline_size_bytes = persistence.max_inline_size_bytes
            if override.hydration is not None and override.hydration.is_set("default_policy"):
                hydration_policy = override.hydration.default_policy
            if override.custom_config is not None:
                custom_config.update(override.custom_config)

    return EffectiveConfig(
        persist_pipedoc=persist_pipedoc,
        max_inline_size_bytes=max_inline_size_bytes,
        hydration_policy=hydration_policy,
        custom_config=custom_config,
    )


def load_binding_override(binding: Binding) -> ConfigOverride | None:
    """Decode a binding's override blob; empty means no override.

    Corrupt bytes mean something wrote bad data, so this raises instead of
    falling back to lower layers.
    """
    raw = binding.config_override
    if not raw:
        return None
    try:
        return decode_override(raw)
    except OverrideDecodeError as exc:
        logger.error("Corrupt config override for binding %s: %s", binding.binding_id, exc)
        raise DataIntegrityError(
            f"Invalid config override for binding {binding.binding_id}: {exc}"
        ) from exc
