"""Database connection pool and Vertica driver adapter."""
from .pool import ConnectionPool, PooledConnection, PoolStats, backoff_delay, rows_to_dicts
from .vertica import QueryResult, VerticaConnection, vertica_connection_factory

__all__ = [
    'ConnectionPool',
    'PooledConnection',
    'PoolStats',
    'QueryResult',
    'VerticaConnection',
    'backoff_delay',
    'rows_to_dicts',
    'vertica_connection_factory',
]
