"""Tests for environment settings and account directory clients."""

import os
import unittest
from unittest.mock import patch

import httpx

from connadmin.credentials import CredentialManager
from connadmin.directory import (
    AccountStatus,
    DirectoryUnavailableError,
    HttpAccountDirectory,
    StaticAccountDirectory,
)
from connadmin.runtime import build_credential_manager
from connadmin.settings import DEFAULT_DATABASE_URL, load_binding_settings


class BindingSettingsTests(unittest.TestCase):
    """Environment parsing with safe fallbacks."""

    def test_defaults_when_environment_is_empty(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = load_binding_settings()

        self.assertEqual(settings.database_url, DEFAULT_DATABASE_URL)
        self.assertIsNone(settings.directory_url)
        self.assertEqual(settings.static_accounts, {})
        self.assertEqual(settings.directory_timeout_seconds, 2.0)
        self.assertEqual(
            (settings.hash_memory_kib, settings.hash_time_cost, settings.hash_parallelism),
            (65536, 3, 4),
        )
        self.assertEqual(settings.status_retry_limit, 5)

    def test_values_are_read_from_environment(self) -> None:
        env = {
            "CONNADMIN_DB_URL": "postgresql+psycopg://admin@db/connectors",
            "CONNADMIN_DIRECTORY_URL": "http://accounts.internal",
            "CONNADMIN_STATIC_ACCOUNTS_JSON": '{"acct-1": true, "acct-2": false}',
            "CONNADMIN_DIRECTORY_TIMEOUT_SECONDS": "0.5",
            "CONNADMIN_HASH_TIME_COST": "4",
            "CONNADMIN_STATUS_RETRY_LIMIT": "9",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = load_binding_settings()

        self.assertEqual(settings.database_url, "postgresql+psycopg://admin@db/connectors")
        self.assertEqual(settings.directory_url, "http://accounts.internal")
        self.assertEqual(settings.static_accounts, {"acct-1": True, "acct-2": False})
        self.assertEqual(settings.directory_timeout_seconds, 0.5)
        self.assertEqual(settings.hash_time_cost, 4)
        self.assertEqual(settings.status_retry_limit, 9)

    def test_invalid_values_fall_back_to_defaults(self) -> None:
        env = {
            "CONNADMIN_STATIC_ACCOUNTS_JSON": "[1, 2]",
            "CONNADMIN_DIRECTORY_TIMEOUT_SECONDS": "soon",
            "CONNADMIN_HASH_MEMORY_KIB": "-1",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = load_binding_settings()

        self.assertEqual(settings.static_accounts, {})
        self.assertEqual(settings.directory_timeout_seconds, 2.0)
        self.assertEqual(settings.hash_memory_kib, 65536)

    def test_weak_hash_costs_are_raised_to_the_floor(self) -> None:
        env = {
            "CONNADMIN_HASH_MEMORY_KIB": "1024",
            "CONNADMIN_HASH_TIME_COST": "1",
            "CONNADMIN_HASH_PARALLELISM": "2",
        }
        with patch.dict(os.environ, env, clear=True):
            with self.assertLogs("connadmin.settings", level="WARNING") as captured:
                settings = load_binding_settings()

        self.assertEqual(
            (settings.hash_memory_kib, settings.hash_time_cost, settings.hash_parallelism),
            (65536, 3, 4),
        )
        self.assertEqual(len(captured.records), 3)
        self.assertIsInstance(build_credential_manager(settings), CredentialManager)

    def test_stronger_hash_costs_are_kept(self) -> None:
        env = {"CONNADMIN_HASH_MEMORY_KIB": "131072", "CONNADMIN_HASH_PARALLELISM": "8"}
        with patch.dict(os.environ, env, clear=True):
            settings = load_binding_settings()

        self.assertEqual((settings.hash_memory_kib, settings.hash_parallelism), (131072, 8))


class AccountDirectoryTests(unittest.TestCase):
    """Static and HTTP directory lookups."""

    def test_static_directory_fails_closed(self) -> None:
        directory = StaticAccountDirectory({"acct-1": True, "acct-2": False})

        self.assertEqual(directory.lookup("acct-1"), AccountStatus(exists=True, active=True))
        self.assertEqual(directory.lookup("acct-2"), AccountStatus(exists=True, active=False))
        self.assertEqual(directory.lookup("acct-3"), AccountStatus(exists=False, active=False))

    def test_http_directory_maps_responses(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            account_id = request.url.path.rsplit("/", 1)[-1]
            if account_id == "acct-1":
                return httpx.Response(200, json={"account_id": "acct-1", "active": True})
            if account_id == "acct-off":
                return httpx.Response(200, json={"account_id": "acct-off", "active": False})
            return httpx.Response(404, json={"error": "not found"})

        directory = HttpAccountDirectory("http://accounts.test/", transport=httpx.MockTransport(handler))

        self.assertEqual(directory.lookup("acct-1"), AccountStatus(exists=True, active=True))
        self.assertEqual(directory.lookup("acct-off"), AccountStatus(exists=True, active=False))
        self.assertEqual(directory.lookup("acct-x"), AccountStatus(exists=False, active=False))

    def test_http_directory_server_and_transport_errors_are_unavailable(self) -> None:
        def server_error(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        def timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        for handler in (server_error, timeout):
            with self.subTest(handler=handler.__name__):
                directory = HttpAccountDirectory("http://accounts.test", transport=httpx.MockTransport(handler))
                with self.assertRaises(DirectoryUnavailableError):
                    directory.lookup("acct-1")


if __name__ == "__main__":
    unittest.main()
