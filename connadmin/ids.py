"""Deterministic identifiers for connector types and bindings."""

import json
from uuid import UUID, uuid5

# Fixed namespaces; changing either would re-key every stored row.
CONNECTOR_TYPE_NAMESPACE = UUID("5d0f7c52-3a4e-4c0b-9a55-1f7e0a6c2d11")
BINDING_NAMESPACE = UUID("9b2e61d4-8f3a-4e57-b0c8-6a1d4f2e7c93")


def connector_type_id_for(type_name: str) -> str:
    """Return the stable id for a connector type name."""
    return str(uuid5(CONNECTOR_TYPE_NAMESPACE, type_name))


def binding_id_for(account_id: str, connector_type_id: str) -> str:
    """Return the stable id for an (account, connector type) pair.

    The pair is JSON-encoded so ("ab", "c") and ("a", "bc") never collide.
    """
    return str(uuid5(BINDING_NAMESPACE, json.dumps([account_id, connector_type_id])))
