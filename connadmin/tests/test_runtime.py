"""Tests for runtime wiring of shared components."""

import unittest

from connadmin import runtime
from connadmin.credentials import CredentialManager
from connadmin.directory import StaticAccountDirectory
from connadmin.service import ValidationService
from connadmin.settings import BindingSettings
from connadmin.store import BindingStore

MEMORY_URL = "sqlite+pysqlite:///:memory:"


class RuntimeWiringTests(unittest.TestCase):
    """Singletons and per-database services built by the runtime module."""

    def setUp(self) -> None:
        runtime.reset_runtime()
        runtime._binding_settings = BindingSettings(database_url=MEMORY_URL)
        self.addCleanup(runtime.reset_runtime)

    def test_services_for_explicit_databases_share_one_lookup_pool(self) -> None:
        first = runtime.get_validation_service(database_url=MEMORY_URL)
        second = runtime.get_validation_service(database_url=MEMORY_URL)

        self.assertIsNot(first, second)
        self.assertIs(first._lookup_pool, second._lookup_pool)
        self.assertIs(runtime.get_validation_service()._lookup_pool, runtime.get_lookup_pool())

    def test_closing_a_service_leaves_the_shared_pool_running(self) -> None:
        service = runtime.get_validation_service(database_url=MEMORY_URL)

        service.close()

        self.assertEqual(runtime.get_lookup_pool().submit(lambda: "ok").result(timeout=1), "ok")

    def test_reset_stops_the_shared_pool(self) -> None:
        pool = runtime.get_lookup_pool()

        runtime.reset_runtime()

        with self.assertRaises(RuntimeError):
            pool.submit(lambda: None)
        self.assertIsNot(runtime.get_lookup_pool(), pool)


class OwnedPoolTests(unittest.TestCase):
    def test_service_without_a_pool_stops_its_own_on_close(self) -> None:
        service = ValidationService(BindingStore(MEMORY_URL), CredentialManager(), StaticAccountDirectory())
        pool = service._lookup_pool

        service.close()

        with self.assertRaises(RuntimeError):
            pool.submit(lambda: None)


if __name__ == "__main__":
    unittest.main()
