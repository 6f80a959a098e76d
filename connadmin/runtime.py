"""Runtime wiring for binding administration components."""

from concurrent.futures import ThreadPoolExecutor

from connadmin.credentials import CredentialManager
from connadmin.directory import AccountDirectory, HttpAccountDirectory, StaticAccountDirectory
from connadmin.lifecycle import LifecycleSynchronizer
from connadmin.service import ValidationService
from connadmin.settings import BindingSettings, load_binding_settings
from connadmin.store import BindingStore

_binding_settings: BindingSettings | None = None
_binding_store: BindingStore | None = None
_validation_service: ValidationService | None = None
_lifecycle_synchronizer: LifecycleSynchronizer | None = None
_lookup_pool: ThreadPoolExecutor | None = None


def get_binding_settings() -> BindingSettings:
    """Return process-wide settings, read from the environment once."""
    global _binding_settings
    if _binding_settings is None:
        _binding_settings = load_binding_settings()
    return _binding_settings


def build_account_directory(settings: BindingSettings) -> AccountDirectory:
    if settings.directory_url:
        return HttpAccountDirectory(settings.directory_url, timeout_seconds=settings.directory_timeout_seconds)
    return StaticAccountDirectory(settings.static_accounts)


def build_credential_manager(settings: BindingSettings) -> CredentialManager:
    return CredentialManager(
        memory_kib=settings.hash_memory_kib,
        time_cost=settings.hash_time_cost,
        parallelism=settings.hash_parallelism,
    )


def get_lookup_pool() -> ThreadPoolExecutor:
    """Return the account lookup pool shared by every service built here."""
    global _lookup_pool
    if _lookup_pool is None:
        _lookup_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="account-lookup")
    return _lookup_pool


def get_binding_store(database_url: str | None = None) -> BindingStore:
    """Return process-wide binding store singleton."""
    if database_url is not None:
        return BindingStore(database_url=database_url)

    global _binding_store
    if _binding_store is None:
        _binding_store = BindingStore(database_url=get_binding_settings().database_url)
    return _binding_store


def get_validation_service(database_url: str | None = None) -> ValidationService:
    """Return process-wide validation service singleton.

    Passing database_url builds a fresh service on that database. All services
    share the lookup pool from get_lookup_pool(), so they hold no threads of
    their own and need no close(); reset_runtime() stops the pool.
    """
    settings = get_binding_settings()
    if database_url is not None:
        return ValidationService(
            store=get_binding_store(database_url=database_url),
            credentials=build_credential_manager(settings),
            directory=build_account_directory(settings),
            directory_timeout_seconds=settings.directory_timeout_seconds,
            lookup_pool=get_lookup_pool(),
        )

    global _validation_service
    if _validation_service is None:
        _validation_service = ValidationService(
            store=get_binding_store(),
            credentials=build_credential_manager(settings),
            directory=build_account_directory(settings),
            directory_timeout_seconds=settings.directory_timeout_seconds,
            lookup_pool=get_lookup_pool(),
        )
    return _validation_service


def get_lifecycle_synchronizer(database_url: str | None = None) -> LifecycleSynchronizer:
    """Return process-wide lifecycle synchronizer singleton."""
    settings = get_binding_settings()
    if database_url is not None:
        return LifecycleSynchronizer(
            store=get_binding_store(database_url=database_url),
            retry_limit=settings.status_retry_limit,
        )

    global _lifecycle_synchronizer
    if _lifecycle_synchronizer is None:
        _lifecycle_synchronizer = LifecycleSynchronizer(
            store=get_binding_store(),
            retry_limit=settings.status_retry_limit,
        )
    return _lifecycle_synchronizer


def reset_runtime() -> None:
    """Drop cached singletons so the next call re-reads the environment."""
    global _binding_settings, _binding_store, _validation_service, _lifecycle_synchronizer, _lookup_pool
    if _lookup_pool is not None:
        _lookup_pool.shutdown(wait=False, cancel_futures=True)
    _lookup_pool = None
    _binding_settings = None
    _binding_store = None
    _validation_service = None
    _lifecycle_synchronizer = None
