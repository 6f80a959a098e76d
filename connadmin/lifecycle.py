"""Apply account lifecycle events to the account's bindings.

Delivery is at-least-once, so every transition is a guarded compare-and-set
on the binding's (active, status_reason) pair:

- ACCOUNT_DEACTIVATED turns active bindings off with reason
  ``account_inactive``; bindings already off keep their existing reason.
- ACCOUNT_REACTIVATED turns back on only bindings whose reason is exactly
  ``account_inactive``; manual disables stay disabled.

Replaying an event is a no-op. A deactivate/reactivate pair delivered in
reverse order is not reconciled; the directory remains the source of truth.
"""

import logging
from dataclasses import dataclass
from typing import Literal

from connadmin.errors import InvalidArgumentError, UnavailableError
from connadmin.models import ACCOUNT_INACTIVE_REASON, BindingStatus
from connadmin.store import BindingStore, BindingStoreError

logger = logging.getLogger(__name__)

AccountEventKind = Literal["ACCOUNT_CREATED", "ACCOUNT_UPDATED", "ACCOUNT_DEACTIVATED", "ACCOUNT_REACTIVATED"]
ACCOUNT_EVENT_KINDS: tuple[str, ...] = (
    "ACCOUNT_CREATED",
    "ACCOUNT_UPDATED",
    "ACCOUNT_DEACTIVATED",
    "ACCOUNT_REACTIVATED",
)


@dataclass(frozen=True)
class AccountEvent:
    """One record from the account lifecycle feed."""

    account_id: str
    kind: AccountEventKind
    reason: str | None = None
    event_id: str | None = None


@dataclass(frozen=True)
class LifecycleOutcome:
    """Per-event summary of applied transitions."""

    account_id: str
    kind: str
    transitioned: int
    unchanged: int


def reduce_status(current: BindingStatus, kind: str) -> BindingStatus | None:
    """Return the next status for a binding, or None when the event does not apply."""
    if kind == "ACCOUNT_DEACTIVATED":
        if current.active:
            return BindingStatus(active=False, reason=ACCOUNT_INACTIVE_REASON)
        return None
    if kind == "ACCOUNT_REACTIVATED":
        if not current.active and current.reason == ACCOUNT_INACTIVE_REASON:
            return BindingStatus(active=True, reason=None)
        return None
    return None


class LifecycleSynchronizer:
    """Applies account lifecycle events through compare-and-set status writes."""

    def __init__(self, store: BindingStore, *, retry_limit: int = 5):
        self._store = store
        self._retry_limit = max(1, retry_limit)

    def handle(self, event: AccountEvent) -> LifecycleOutcome:
        """Apply one event to every binding of its account."""
        account_id = (event.account_id or "").strip()
        if not account_id:
            raise InvalidArgumentError("account_id must be a non-empty string")
        if event.kind not in ACCOUNT_EVENT_KINDS:
            raise InvalidArgumentError(f"Unknown account event kind: {event.kind}")

        if event.kind not in ("ACCOUNT_DEACTIVATED", "ACCOUNT_REACTIVATED"):
            logger.info("Ignoring %s for account %s", event.kind, account_id)
            return LifecycleOutcome(account_id=account_id, kind=event.kind, transitioned=0, unchanged=0)

        try:
            bindings = self._store.list_bindings(account_id=account_id)
        except BindingStoreError as exc:
            raise UnavailableError(f"Storage unavailable while listing bindings for {account_id}") from exc

        transitioned = 0
        unchanged = 0
        for binding in bindings:
            if self._apply(binding.binding_id, binding.status, event.kind):
                transitioned += 1
            else:
                unchanged += 1

        logger.info(
            "Applied %s for account %s (event=%s): %d transitioned, %d unchanged",
            event.kind,
            account_id,
            event.event_id or "-",
            transitioned,
            unchanged,
        )
        return LifecycleOutcome(
            account_id=account_id,
            kind=event.kind,
            transitioned=transitioned,
            unchanged=unchanged,
        )

    def _apply(self, binding_id: str, current: BindingStatus, kind: str) -> bool:
        for _attempt in range(self._retry_limit):
            target = reduce_status(current, kind)
            if target is None:
                return False
            try:
                if self._store.compare_and_set_status(binding_id, expected=current, new=target):
                    logger.debug("Binding %s: %s -> %s", binding_id, current, target)
                    return True
                latest = self._store.get_binding(binding_id)
            except BindingStoreError as exc:
                raise UnavailableError(f"Storage unavailable while updating binding {binding_id}") from exc
            if latest is None:
                return False
            current = latest.status
        raise UnavailableError(
            f"Binding {binding_id} status kept changing; gave up after {self._retry_limit} attempts"
        )
