import asyncio

import pytest

from blogstore.entities import User, UserCreate
from blogstore.errors import Conflict


class TestTransactions:
    """Atomic units on the PostgreSQL store"""

    @pytest.mark.asyncio
    async def test_get_current_connection_no_context(self, store):
        """Outside a transaction there is no current connection"""
        assert store.context.get_current_connection() is None
        assert not store.in_transaction()

    @pytest.mark.asyncio
    async def test_commit(self, store):
        users = store.repository(User)

        async with store.transaction() as conn:
            assert store.in_transaction()
            assert store.context.get_current_connection() is conn
            await users.create(UserCreate(email="alice@example.com", name="Alice"))

        assert not store.in_transaction()
        assert await users.count() == 1

    @pytest.mark.asyncio
    async def test_rollback_on_exception(self, store):
        users = store.repository(User)

        with pytest.raises(RuntimeError, match="abort"):
            async with store.transaction():
                await users.create(UserCreate(email="alice@example.com"))
                raise RuntimeError("abort")

        assert await users.count() == 0
        assert store.context.get_current_connection() is None

    @pytest.mark.asyncio
    async def test_rollback_on_translated_error(self, store):
        users = store.repository(User)

        with pytest.raises(Conflict):
            async with store.transaction():
                await users.create(UserCreate(email="alice@example.com"))
                await users.create(UserCreate(email="alice@example.com"))

        assert await users.count() == 0

    @pytest.mark.asyncio
    async def test_nested_transaction_uses_savepoint(self, store):
        users = store.repository(User)

        async with store.transaction() as outer_conn:
            await users.create(UserCreate(email="alice@example.com"))

            with pytest.raises(RuntimeError):
                async with store.transaction() as inner_conn:
                    assert inner_conn is outer_conn
                    await users.create(UserCreate(email="bob@example.com"))
                    raise RuntimeError("inner failure")

            # Only the savepoint was rolled back
            assert await users.count() == 1

        emails = [user.email for user in await users.get()]
        assert emails == ["alice@example.com"]

    @pytest.mark.asyncio
    async def test_connections_are_released(self, store):
        """More sequential transactions than the pool holds must not block"""
        for _ in range(store.pool.get_max_size() * 2):
            async with store.transaction():
                await store.ping()

        assert store.pool.get_idle_size() == store.pool.get_size()

    @pytest.mark.asyncio
    async def test_released_after_failure(self, store):
        for _ in range(store.pool.get_max_size() * 2):
            with pytest.raises(ValueError):
                async with store.transaction():
                    raise ValueError("fail")

        assert store.pool.get_idle_size() == store.pool.get_size()

    @pytest.mark.asyncio
    async def test_concurrent_tasks_get_their_own_transaction(self, store):
        seen = []

        async def unit_of_work(email):
            async with store.transaction() as conn:
                seen.append(conn)
                await asyncio.sleep(0)
                assert store.context.get_current_connection() is conn
                await store.repository(User).create(UserCreate(email=email))

        await asyncio.gather(unit_of_work("a@example.com"), unit_of_work("b@example.com"))

        assert seen[0] is not seen[1]
        assert await store.repository(User).count() == 2

    @pytest.mark.asyncio
    async def test_run_in_transaction(self, store):
        async def steps(tx_store):
            users = tx_store.repository(User)
            await users.create(UserCreate(email="alice@example.com"))
            return await users.count()

        assert await store.run_in_transaction(steps) == 1

    @pytest.mark.asyncio
    async def test_run_in_transaction_rolls_back(self, store):
        async def steps(tx_store):
            await tx_store.repository(User).create(UserCreate(email="alice@example.com"))
            raise LookupError("second step failed")

        with pytest.raises(LookupError):
            await store.run_in_transaction(steps)

        assert await store.repository(User).count() == 0


class TestStoreUtilities:
    @pytest.mark.asyncio
    async def test_ping(self, store):
        await store.ping()

    @pytest.mark.asyncio
    async def test_raw_execute_runs_several_statements(self, store):
        status = await store.raw_execute(
            "CREATE TEMP TABLE IF NOT EXISTS scratch (n INT); INSERT INTO scratch VALUES (1), (2)"
        )

        assert status == "INSERT 0 2"

    @pytest.mark.asyncio
    async def test_raw_query_inside_transaction_sees_uncommitted_rows(self, store):
        async with store.transaction():
            await store.repository(User).create(UserCreate(email="alice@example.com"))
            rows = await store.raw_query("SELECT email FROM users")

        assert [row["email"] for row in rows] == ["alice@example.com"]
