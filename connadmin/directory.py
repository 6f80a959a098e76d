"""Account directory clients consulted when a binding is registered."""

import logging
from dataclasses import dataclass
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountStatus:
    """Directory answer for one account id."""

    exists: bool
    active: bool


class DirectoryUnavailableError(RuntimeError):
    """The directory could not give an answer (timeout, transport error, 5xx)."""


class AccountDirectory:
    """Account directory interface."""

    def lookup(self, account_id: str) -> AccountStatus:
        """Return whether the account exists and is active."""
        _ = account_id
        raise NotImplementedError


class StaticAccountDirectory(AccountDirectory):
    """In-process account map; unknown ids do not exist."""

    def __init__(self, accounts: dict[str, bool] | None = None):
        self._accounts = dict(accounts or {})

    def lookup(self, account_id: str) -> AccountStatus:
        if account_id not in self._accounts:
            return AccountStatus(exists=False, active=False)
        return AccountStatus(exists=True, active=bool(self._accounts[account_id]))


class HttpAccountDirectory(AccountDirectory):
    """Account lookups against an HTTP account service."""

    def __init__(self, base_url: str, *, timeout_seconds: float = 2.0, transport: httpx.BaseTransport | None = None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    def lookup(self, account_id: str) -> AccountStatus:
        url = f"{self._base_url}/accounts/{quote(account_id, safe='')}"
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(url)
        except httpx.TimeoutException as exc:
            raise DirectoryUnavailableError(f"Account directory timed out for {account_id}") from exc
        except httpx.HTTPError as exc:
            raise DirectoryUnavailableError(f"Account directory request failed: {exc}") from exc

        if response.status_code == 404:
            return AccountStatus(exists=False, active=False)
        if response.status_code >= 500:
            raise DirectoryUnavailableError(f"Account directory returned HTTP {response.status_code}")
        if response.status_code != 200:
            # 4xx other than 404 is a misconfigured client, not a missing account.
            raise DirectoryUnavailableError(f"Unexpected account directory response HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise DirectoryUnavailableError("Account directory returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise DirectoryUnavailableError("Account directory returned a non-object payload")
        active = payload.get("active")
        if not isinstance(active, bool):
            logger.warning("Account %s payload is missing a boolean 'active' field", account_id)
            active = False
        return AccountStatus(exists=True, active=active)
