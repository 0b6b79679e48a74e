from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from pydantic import BaseModel

from blogstore.entities import (
    Post,
    PostCreate,
    PostUpdate,
    Tag,
    TagCreate,
    User,
    UserCreate,
    UserUpdate,
)
from blogstore.errors import Conflict, InvalidArgument, NotFound
from blogstore.repository import Repository


@pytest.fixture
def users(store):
    return store.repository(User)


@pytest.fixture
def posts(store):
    return store.repository(Post)


@pytest_asyncio.fixture
async def author(users):
    return await users.create(UserCreate(email="alice@example.com", name="Alice"))


def test_entity_without_table_name():
    class Anonymous(BaseModel):
        id: int

    with pytest.raises(InvalidArgument, match="does not declare a table_name"):
        Repository(Anonymous, MagicMock())


def test_explicit_table_name():
    repo = Repository(Post, MagicMock(), table_name="archive.posts")
    assert repo.to_sql() == "SELECT * FROM archive.posts"


def test_joined_reads_select_own_columns():
    repo = Repository(Post, MagicMock()).join("users", "users.id = posts.author_id")
    assert repo.to_sql() == (
        "SELECT posts.* FROM posts INNER JOIN users ON users.id = posts.author_id"
    )


class TestRepositoryOperations:
    """CRUD and fluent reads against PostgreSQL"""

    @pytest.mark.asyncio
    async def test_create_and_find_by_id(self, users):
        created = await users.create(UserCreate(email="alice@example.com", name="Alice"))

        assert created.id == 1
        assert created.created_at is not None

        found = await users.find_by_id(created.id)
        assert found == created

    @pytest.mark.asyncio
    async def test_find_by_id_not_found(self, users):
        assert await users.find_by_id(999) is None

    @pytest.mark.asyncio
    async def test_create_with_explicit_id(self, posts, author):
        post = await posts.create(PostCreate(id=10, title="Pinned", author_id=author.id))

        assert post.id == 10
        assert post.published is False
        assert post.content is None

        following = await posts.create(PostCreate(title="Following", author_id=author.id))
        assert following.id == 11

    @pytest.mark.asyncio
    async def test_explicit_id_never_moves_sequence_back(self, posts, author):
        for title in ("One", "Two", "Three"):
            await posts.create(PostCreate(title=title, author_id=author.id))

        await posts.create(PostCreate(id=1_000, title="Far", author_id=author.id))
        await posts.delete(1_000)
        await posts.delete(2)
        await posts.create(PostCreate(id=2, title="Low", author_id=author.id))

        following = await posts.create(PostCreate(title="Following", author_id=author.id))
        assert following.id == 1_001

    @pytest.mark.asyncio
    async def test_create_many_with_explicit_ids_moves_sequence(self, posts, author):
        await posts.create_many(
            [
                PostCreate(id=1, title="One", author_id=author.id),
                PostCreate(id=5, title="Five", author_id=author.id),
            ]
        )

        following = await posts.create(PostCreate(title="Following", author_id=author.id))
        assert following.id == 6

    @pytest.mark.asyncio
    async def test_create_duplicate_is_conflict(self, users, author):
        with pytest.raises(Conflict):
            await users.create(UserCreate(email=author.email))

    @pytest.mark.asyncio
    async def test_create_with_missing_reference_is_not_found(self, posts):
        with pytest.raises(NotFound):
            await posts.create(PostCreate(title="Orphan", author_id=999))

    @pytest.mark.asyncio
    async def test_find_many_by_ids(self, users):
        for name in ("a", "b", "c"):
            await users.create(UserCreate(email=f"{name}@example.com", name=name))

        found = await users.find_many_by_ids([3, 1, 42])

        assert [user.id for user in found] == [1, 3]
        assert await users.find_many_by_ids([]) == []

    @pytest.mark.asyncio
    async def test_where_in_empty_list_matches_nothing(self, users, author):
        assert await users.where_in("id", []).get() == []

    @pytest.mark.asyncio
    async def test_count_exists_and_first(self, posts, author):
        for i in range(3):
            await posts.create(
                PostCreate(title=f"Post {i}", author_id=author.id, published=i > 0)
            )

        published = posts.where("published", True)
        assert await published.count() == 2
        assert await published.exists()
        assert not await posts.where("title", "Missing").exists()

        first = await published.order_by_desc("id").first()
        assert first.title == "Post 2"

    @pytest.mark.asyncio
    async def test_custom_select_returns_dicts(self, posts, author):
        await posts.create(PostCreate(title="Hello", content="abc", author_id=author.id))

        rows = await posts.select("title", "LENGTH(content) AS length").get()

        assert rows == [{"title": "Hello", "length": 3}]

    @pytest.mark.asyncio
    async def test_create_many_fills_defaults(self, posts, author):
        created = await posts.create_many(
            [
                PostCreate(title="One", content="first", author_id=author.id, published=True),
                PostCreate(title="Two", author_id=author.id),
            ]
        )

        assert created == 2
        rows = await posts.order_by("id").get()
        assert [(p.title, p.content, p.published) for p in rows] == [
            ("One", "first", True),
            ("Two", None, False),
        ]

    @pytest.mark.asyncio
    async def test_create_many_skip_duplicates(self, store):
        tags = store.repository(Tag)
        await tags.create(TagCreate(name="web"))

        created = await tags.create_many(
            [TagCreate(name="web"), TagCreate(name="database"), TagCreate(name="database")],
            skip_duplicates=True,
        )

        assert created == 1
        assert await tags.count() == 2

    @pytest.mark.asyncio
    async def test_create_many_duplicate_without_skip(self, store):
        tags = store.repository(Tag)
        await tags.create(TagCreate(name="web"))

        with pytest.raises(Conflict):
            await tags.create_many([TagCreate(name="mobile"), TagCreate(name="web")])

        assert await tags.count() == 1

    @pytest.mark.asyncio
    async def test_create_many_empty(self, posts):
        assert await posts.create_many([]) == 0

    @pytest.mark.asyncio
    async def test_update(self, users, author):
        updated = await users.update(author.id, UserUpdate(name="Alice Smith"))

        assert updated.name == "Alice Smith"
        assert updated.email == author.email

    @pytest.mark.asyncio
    async def test_update_empty_patch_returns_current(self, users, author):
        assert await users.update(author.id, UserUpdate()) == author

    @pytest.mark.asyncio
    async def test_update_missing(self, users):
        assert await users.update(999, UserUpdate(name="Nobody")) is None

    @pytest.mark.asyncio
    async def test_update_where(self, posts, author):
        for i in range(3):
            await posts.create(PostCreate(title=f"Post {i}", author_id=author.id))

        updated = await posts.where("title", "!=", "Post 0").update_where(
            PostUpdate(published=True)
        )

        assert updated == 2
        assert await posts.where("published", True).count() == 2

    @pytest.mark.asyncio
    async def test_update_where_requires_conditions(self, posts):
        with pytest.raises(InvalidArgument):
            await posts.update_where(PostUpdate(published=True))

    @pytest.mark.asyncio
    async def test_delete(self, users, author):
        deleted = await users.delete(author.id)

        assert deleted == author
        assert await users.delete(author.id) is None

    @pytest.mark.asyncio
    async def test_delete_where(self, posts, author):
        await posts.create(PostCreate(title="Keep", author_id=author.id, published=True))
        await posts.create(PostCreate(title="Drop", author_id=author.id))

        assert await posts.where("published", False).delete_where() == 1
        assert [post.title for post in await posts.get()] == ["Keep"]

    @pytest.mark.asyncio
    async def test_delete_where_requires_conditions_unless_allowed(self, posts, author):
        await posts.create(PostCreate(title="Post", author_id=author.id))

        with pytest.raises(InvalidArgument):
            await posts.delete_where()

        assert await posts.delete_where(allow_all=True) == 1
