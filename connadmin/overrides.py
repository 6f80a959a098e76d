"""Versioned codec for a binding's serialized configuration override.

The stored blob is a UTF-8 JSON envelope with an explicit integer version:

    {"version": 1,
     "persistence": {"persist_pipedoc": false},
     "hydration": {"default_policy": "ALWAYS_REF"},
     "custom_config": {"bucket": "raw"}}

A field counts as set only when its key is present in the document, so an
explicit ``false`` or ``0`` overrides lower layers while an absent key does
not. Encoding drops unset fields to keep that distinction on disk.
"""

import json
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, ValidationError

from connadmin.models import HydrationPolicy

CURRENT_OVERRIDE_VERSION = 1


class OverrideDecodeError(ValueError):
    """Serialized override bytes cannot be interpreted."""


class PersistenceOverride(BaseModel):
    """Persistence fields a binding may override."""

    model_config = ConfigDict(extra="forbid")

    persist_pipedoc: StrictBool = False
    max_inline_size_bytes: StrictInt = Field(default=0, ge=0)

    def is_set(self, name: str) -> bool:
        return name in self.model_fields_set


class HydrationOverride(BaseModel):
    """Hydration fields a binding may override."""

    model_config = ConfigDict(extra="forbid")

    default_policy: HydrationPolicy = "AUTO"

    def is_set(self, name: str) -> bool:
        return name in self.model_fields_set


class ConfigOverrideV1(BaseModel):
    """Version 1 of the serialized override message."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1]
    persistence: PersistenceOverride | None = None
    hydration: HydrationOverride | None = None
    custom_config: dict[str, Any] | None = None


ConfigOverride = ConfigOverrideV1

_DECODERS: dict[int, Callable[[dict[str, Any]], ConfigOverride]] = {
    1: ConfigOverrideV1.model_validate,
}


def build_override(
    *,
    persist_pipedoc: bool | None = None,
    max_inline_size_bytes: int | None = None,
    hydration_policy: HydrationPolicy | None = None,
    custom_config: dict[str, Any] | None = None,
) -> ConfigOverride:
    """Build a current-version override where only non-None arguments are set."""
    persistence: dict[str, Any] = {}
    if persist_pipedoc is not None:
        persistence["persist_pipedoc"] = persist_pipedoc
    if max_inline_size_bytes is not None:
        persistence["max_inline_size_bytes"] = max_inline_size_bytes

    payload: dict[str, Any] = {"version": CURRENT_OVERRIDE_VERSION}
    if persistence:
        payload["persistence"] = persistence
    if hydration_policy is not None:
        payload["hydration"] = {"default_policy": hydration_policy}
    if custom_config is not None:
        payload["custom_config"] = custom_config
    return ConfigOverrideV1.model_validate(payload)


def encode_override(override: ConfigOverride) -> bytes:
    """Serialize an override, keeping only explicitly set fields."""
    return override.model_dump_json(exclude_unset=True).encode("utf-8")


def decode_override(raw: bytes) -> ConfigOverride:
    """Parse serialized override bytes, dispatching on the envelope version."""
    try:
        payload = json.loads(bytes(raw).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise OverrideDecodeError(f"override is not UTF-8 JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise OverrideDecodeError("override must be a JSON object")
    version = payload.get("version")
    if isinstance(version, bool) or not isinstance(version, int):
        raise OverrideDecodeError("override is missing an integer 'version'")
    decoder = _DECODERS.get(version)
    if decoder is None:
        raise OverrideDecodeError(f"unsupported override version {version}")

    try:
        return decoder(payload)
    except ValidationError as exc:
        raise OverrideDecodeError(f"override v{version} failed validation: {exc}") from exc
