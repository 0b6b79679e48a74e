"""Typed data-access facade over a transactional PostgreSQL blog store"""

from blogstore.config import StoreSettings
from blogstore.db_context import QueryTracker, transactional
from blogstore.errors import (
    Conflict,
    DataAccessError,
    InvalidArgument,
    InvalidOwnership,
    NotFound,
    StoreUnavailable,
)
from blogstore.facade import DataAccessFacade
from blogstore.query_builder import QueryBuilder
from blogstore.repository import Repository
from blogstore.results import Outcome, Page
from blogstore.store import PostgresStore, StorePort

__all__ = [
    "DataAccessFacade",
    "StorePort",
    "PostgresStore",
    "StoreSettings",
    "Repository",
    "QueryBuilder",
    "QueryTracker",
    "transactional",
    "Outcome",
    "Page",
    "DataAccessError",
    "NotFound",
    "Conflict",
    "InvalidOwnership",
    "StoreUnavailable",
    "InvalidArgument",
]
