"""Error taxonomy for the data-access layer"""

from contextlib import contextmanager

import asyncpg


class DataAccessError(Exception):
    """Base class for all errors raised by the data-access layer"""


class NotFound(DataAccessError, LookupError):
    """The entity addressed by a lookup, update or delete does not exist"""


class Conflict(DataAccessError):
    """A write violated a uniqueness constraint"""


class InvalidOwnership(DataAccessError):
    """A transactional precondition on ownership did not hold"""


class StoreUnavailable(DataAccessError, ConnectionError):
    """The store could not be reached"""


class InvalidArgument(DataAccessError, ValueError):
    """An operation was called with malformed arguments, or a write broke a
    NOT NULL or CHECK constraint"""


_UNAVAILABLE_ERRORS = (
    OSError,
    TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.TooManyConnectionsError,
)

_INVALID_VALUE_ERRORS = (
    asyncpg.exceptions.NotNullViolationError,
    asyncpg.exceptions.CheckViolationError,
)


@contextmanager
def translate_errors(acquiring: bool = False):
    """Re-raise driver errors as data-access errors.

    The driver error is kept as ``__cause__``. With ``acquiring`` the block
    takes a connection from a pool, so a closed or uninitialised pool
    (``InterfaceError``) means the store is unavailable.
    """
    try:
        yield
    except DataAccessError:
        # StoreUnavailable is an OSError; never wrap it twice
        raise
    except asyncpg.exceptions.UniqueViolationError as exc:
        raise Conflict(exc.detail or str(exc)) from exc
    except asyncpg.exceptions.ForeignKeyViolationError as exc:
        raise NotFound(exc.detail or str(exc)) from exc
    except _INVALID_VALUE_ERRORS as exc:
        raise InvalidArgument(exc.detail or str(exc)) from exc
    except _UNAVAILABLE_ERRORS as exc:
        raise StoreUnavailable(str(exc) or type(exc).__name__) from exc
    except asyncpg.exceptions.InterfaceError as exc:
        if not acquiring:
            raise
        raise StoreUnavailable(str(exc)) from exc
