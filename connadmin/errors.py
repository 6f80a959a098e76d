"""Caller-visible error kinds for binding administration."""


class BindingAdminError(RuntimeError):
    """Base class for binding administration failures."""

    code = "internal"


class InvalidArgumentError(BindingAdminError):
    """Malformed input, or the account is missing/inactive at registration."""

    code = "invalid_argument"


class AlreadyExistsError(BindingAdminError):
    """A binding already exists for the account and connector type."""

    code = "already_exists"


class NotFoundError(BindingAdminError):
    """Unknown binding, connector type, or schema id."""

    code = "not_found"


class FailedPreconditionError(BindingAdminError):
    """Entity is in a state that forbids the operation (schema in use or already synced)."""

    code = "failed_precondition"


class DataIntegrityError(BindingAdminError):
    """Persisted data cannot be interpreted, e.g. corrupt override bytes."""

    code = "data_integrity"


class UnavailableError(BindingAdminError):
    """A dependency timed out or could not be reached; the call may be retried."""

    code = "unavailable"
