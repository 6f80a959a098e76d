"""Runtime settings for connector binding administration."""

import json
import logging
from dataclasses import dataclass, field
from os import getenv

from connadmin.credentials import MIN_MEMORY_KIB, MIN_PARALLELISM, MIN_TIME_COST

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///./connector_admin.db"


@dataclass(frozen=True)
class BindingSettings:
    """Environment-configurable knobs for the binding service."""

    database_url: str = DEFAULT_DATABASE_URL
    directory_url: str | None = None
    static_accounts: dict[str, bool] = field(default_factory=dict)
    directory_timeout_seconds: float = 2.0
    hash_memory_kib: int = MIN_MEMORY_KIB
    hash_time_cost: int = MIN_TIME_COST
    hash_parallelism: int = MIN_PARALLELISM
    status_retry_limit: int = 5


def load_binding_settings() -> BindingSettings:
    """Load binding service settings from environment variables."""
    return BindingSettings(
        database_url=getenv("CONNADMIN_DB_URL", "").strip() or DEFAULT_DATABASE_URL,
        directory_url=getenv("CONNADMIN_DIRECTORY_URL", "").strip() or None,
        static_accounts=_read_accounts("CONNADMIN_STATIC_ACCOUNTS_JSON"),
        directory_timeout_seconds=_read_float("CONNADMIN_DIRECTORY_TIMEOUT_SECONDS", 2.0),
        hash_memory_kib=_read_hash_cost("CONNADMIN_HASH_MEMORY_KIB", MIN_MEMORY_KIB),
        hash_time_cost=_read_hash_cost("CONNADMIN_HASH_TIME_COST", MIN_TIME_COST),
        hash_parallelism=_read_hash_cost("CONNADMIN_HASH_PARALLELISM", MIN_PARALLELISM),
        status_retry_limit=_read_int("CONNADMIN_STATUS_RETRY_LIMIT", 5),
    )


def _read_int(name: str, default: int) -> int:
    raw = getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _read_hash_cost(name: str, floor: int) -> int:
    """Argon2 cost knobs never go below the hashing floor; weaker values are raised to it."""
    value = _read_int(name, floor)
    if value < floor:
        logger.warning("%s=%d is below the Argon2 floor; using %d", name, value, floor)
        return floor
    return value


def _read_float(name: str, default: float) -> float:
    raw = getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _read_accounts(name: str) -> dict[str, bool]:
    raw = getenv(name, "").strip()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring %s: not valid JSON", name)
        return {}
    if not isinstance(payload, dict):
        logger.warning("Ignoring %s: expected a JSON object", name)
        return {}
    return {str(account_id): bool(active) for account_id, active in payload.items()}
