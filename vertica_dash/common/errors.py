"""
Error taxonomy shared by the pool, the cache glue and the API layer.
"""


class ConfigInvalid(Exception):
    """Configuration is missing or malformed. Fatal at startup."""


class DatabaseError(Exception):
    """Base class for everything the connection pool raises."""

    retryable = True


class PoolExhausted(DatabaseError):
    """No connection became available within the acquire timeout."""


class PoolClosed(DatabaseError):
    """The pool is draining or closed and no longer lends connections."""

    retryable = False


class ConnectionFailed(DatabaseError):
    """A new connection could not be established."""


class QueryTimeout(DatabaseError):
    """The query ran past its timeout. The connection was discarded."""

    def __init__(self, timeout: float):
        super().__init__(f"Query timeout after {int(timeout * 1000)}ms")
        self.timeout = timeout


class QueryFailed(DatabaseError):
    """The driver reported an error while executing the query."""


class PoolShutdownError(DatabaseError):
    """One or more connections could not be closed during shutdown."""

    retryable = False


class RowShapeError(Exception):
    """Result rows did not match the expected record shape."""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = errors or []
