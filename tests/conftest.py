import asyncpg
import pytest
import pytest_asyncio
from testcontainers.postgres import PostgresContainer

from blogstore.facade import DataAccessFacade
from blogstore.schema import create_schema, truncate_tables
from blogstore.store import PostgresStore


@pytest.fixture(scope="session")
def postgres_container():
    """Start a PostgreSQL test container for the session."""
    with PostgresContainer("postgres:17") as postgres:
        yield postgres


@pytest.fixture(scope="session")
def postgres_dsn(postgres_container):
    host = postgres_container.get_container_host_ip()
    port = postgres_container.get_exposed_port(5432)
    return (
        f"postgresql://{postgres_container.username}:{postgres_container.password}"
        f"@{host}:{port}/{postgres_container.dbname}"
    )


@pytest_asyncio.fixture
async def store(postgres_dsn):
    """A store over a fresh pool with an empty schema for each test."""
    # A new pool per test avoids sharing connections across event loops
    pool = await asyncpg.create_pool(postgres_dsn, min_size=1, max_size=5)
    test_store = PostgresStore(pool, "test")

    await create_schema(test_store)
    await truncate_tables(test_store)

    yield test_store

    await truncate_tables(test_store)
    await test_store.close()


@pytest.fixture
def facade(store):
    return DataAccessFacade(store)
