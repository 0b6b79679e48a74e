"""
Data-access facade over the blog store.

Each operation issues one store call, or a short fixed sequence of calls
inside one atomic unit, and returns the store's rows as typed results. The
facade holds no state besides the store handle it was built with.
"""

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from blogstore.db_context import transactional
from blogstore.entities import (
    Comment,
    CommentCreate,
    Post,
    PostCreate,
    PostOwnerUpdate,
    PostTag,
    PostUpdate,
    Profile,
    ProfileCreate,
    Tag,
    TagCreate,
    User,
    UserCreate,
    UserUpdate,
)
from blogstore.entity_mapper import EntityMapper
from blogstore.errors import InvalidArgument, InvalidOwnership, NotFound, StoreUnavailable
from blogstore.repository import Repository
from blogstore.results import (
    AuthorPostCount,
    AuthorPostLength,
    DatabaseMetadata,
    Outcome,
    Page,
    PostCommentCount,
    PostWithAuthor,
    PostWithComments,
    PostWithTags,
    SeedResult,
    TagPostCount,
    UserWithPosts,
    UserWithProfile,
)
from blogstore.store import StorePort

logger = logging.getLogger(__name__)

_LIKE_ESCAPES = str.maketrans({"\\": "\\\\", "%": "\\%", "_": "\\_"})

# Relevance of a post for a search term; $1 is the raw term
_POST_RELEVANCE = (
    "ts_rank(to_tsvector('simple', coalesce(title, '') || ' ' || coalesce(content, '')), "
    "plainto_tsquery('simple', $1))"
)


def contains_pattern(text: str) -> str:
    """ILIKE pattern matching ``text`` anywhere, with LIKE wildcards taken literally"""
    return f"%{text.translate(_LIKE_ESCAPES)}%"


def _check_limit(limit: int) -> None:
    if limit < 1:
        raise InvalidArgument("Limit must be 1 or greater")


class DataAccessFacade:
    """Typed operations over a ``StorePort``.

    Usage:
        store = await PostgresStore.connect(StoreSettings())
        facade = DataAccessFacade(store)
        user = await facade.create_user("alice@example.com", "Alice")
    """

    def __init__(self, store: StorePort):
        self.store = store

    @property
    def users(self) -> Repository[User]:
        return self.store.repository(User)

    @property
    def posts(self) -> Repository[Post]:
        return self.store.repository(Post)

    @property
    def profiles(self) -> Repository[Profile]:
        return self.store.repository(Profile)

    @property
    def tags(self) -> Repository[Tag]:
        return self.store.repository(Tag)

    @property
    def comments(self) -> Repository[Comment]:
        return self.store.repository(Comment)

    @property
    def post_tags(self) -> Repository[PostTag]:
        return self.store.repository(PostTag)

    # Point CRUD

    async def create_user(self, email: str, name: str | None = None) -> User:
        """Create a user. Raises Conflict when the email is taken."""
        return await self.users.create(UserCreate(email=email, name=name))

    async def get_user(self, user_id: int) -> User | None:
        return await self.users.find_by_id(user_id)

    async def update_user(self, user_id: int, patch: UserUpdate) -> User:
        """Apply the fields set on ``patch``. Raises NotFound or Conflict."""
        user = await self.users.update(user_id, patch)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    async def delete_user(self, user_id: int) -> User:
        """Delete a user and return the deleted row. Raises NotFound."""
        user = await self.users.delete(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    async def get_all_users(self, skip: int = 0, take: int = 10) -> list[User]:
        """Newest users first"""
        return await (
            self.users.order_by_desc("created_at")
            .order_by_desc("id")
            .offset(skip)
            .limit(take)
            .get()
        )

    async def check_email_exists(self, email: str) -> bool:
        return await self.users.where("email", email).exists()

    async def create_post(self, data: PostCreate) -> Post:
        """Create a post. Raises NotFound when the author does not exist."""
        return await self.posts.create(data)

    # Filtered reads

    async def find_users_by_name(self, substring: str) -> list[User]:
        """Users whose name contains ``substring``, ignoring case"""
        return await (
            self.users.where("name", "ILIKE", contains_pattern(substring))
            .order_by("id")
            .get()
        )

    async def search_posts(self, term: str) -> list[Post]:
        """Posts whose title or content contains ``term``, most relevant first.

        Posts with equal relevance come back in no particular order.
        """
        pattern = contains_pattern(term)
        return await (
            self.posts.where(
                lambda qb: qb.where("title", "ILIKE", pattern).or_where(
                    "content", "ILIKE", pattern
                )
            )
            .order_by_raw(_POST_RELEVANCE, [term], descending=True)
            .get()
        )

    # Relational reads

    async def get_posts_with_authors(self) -> list[PostWithAuthor]:
        """Every post whose author exists, with that author"""
        posts = await self.posts.order_by("id").get()
        author_ids = sorted({post.author_id for post in posts})
        authors = {user.id: user for user in await self.users.find_many_by_ids(author_ids)}
        return [
            PostWithAuthor(post=post, author=authors[post.author_id])
            for post in posts
            if post.author_id in authors
        ]

    async def get_users_with_posts(self) -> list[UserWithPosts]:
        """Every user with their posts; users without posts get an empty list"""
        users = await self.users.order_by("id").get()
        posts = await (
            self.posts.where_in("author_id", [user.id for user in users])
            .order_by("id")
            .get()
        )
        posts_by_author = EntityMapper.group_by_key(posts, lambda post: post.author_id)
        return [
            UserWithPosts(user=user, posts=posts_by_author.get(user.id, []))
            for user in users
        ]

    @transactional()
    async def create_post_with_author(self, data: PostCreate) -> PostWithAuthor:
        post = await self.posts.create(data)
        author = await self.users.find_by_id(post.author_id)
        return PostWithAuthor(post=post, author=author)

    async def _attach_tags(self, posts: list[Post]) -> list[PostWithTags]:
        links = await (
            self.post_tags.where_in("post_id", [post.id for post in posts])
            .order_by("tag_id")
            .get()
        )
        tag_ids = sorted({link.tag_id for link in links})
        tags = {tag.id: tag for tag in await self.tags.find_many_by_ids(tag_ids)}
        links_by_post = EntityMapper.group_by_key(links, lambda link: link.post_id)
        return [
            PostWithTags(
                post=post,
                tags=[
                    tags[link.tag_id]
                    for link in links_by_post.get(post.id, [])
                    if link.tag_id in tags
                ],
            )
            for post in posts
        ]

    async def get_posts_with_tags(self) -> list[PostWithTags]:
        return await self._attach_tags(await self.posts.order_by("id").get())

    @transactional()
    async def add_tag_to_post(self, post_id: int, tag_id: int) -> PostWithTags:
        """Link a tag to a post; linking twice is a no-op. Raises NotFound."""
        post = await self.posts.find_by_id(post_id)
        if post is None:
            raise NotFound(f"Post {post_id} not found")
        if not await self.tags.where("id", tag_id).exists():
            raise NotFound(f"Tag {tag_id} not found")

        await self.post_tags.create_many(
            [PostTag(post_id=post_id, tag_id=tag_id)], skip_duplicates=True
        )
        (post_with_tags,) = await self._attach_tags([post])
        return post_with_tags

    async def get_posts_with_comment_count(self) -> list[PostCommentCount]:
        rows = await (
            self.posts.select("posts.*", "COUNT(comments.id) AS comment_count")
            .left_join("comments", "comments.post_id = posts.id")
            .group_by("posts.id")
            .order_by("posts.id")
            .get()
        )
        return [
            PostCommentCount(post=Post.model_validate(row), comment_count=row["comment_count"])
            for row in rows
        ]

    async def get_published_posts_by_author(self, author_id: int) -> list[PostWithComments]:
        """Published posts of one author, newest first, with their comments"""
        posts = await (
            self.posts.where("author_id", author_id)
            .where("published", True)
            .order_by_desc("created_at")
            .order_by_desc("id")
            .get()
        )
        if not posts:
            return []

        author = await self.users.find_by_id(author_id)
        if author is None:
            return []

        comments = await (
            self.comments.where_in("post_id", [post.id for post in posts])
            .order_by("id")
            .get()
        )
        comments_by_post = EntityMapper.group_by_key(comments, lambda c: c.post_id)
        return [
            PostWithComments(
                post=post, author=author, comments=comments_by_post.get(post.id, [])
            )
            for post in posts
        ]

    # Aggregate reads

    def _users_with_post_count(self) -> Repository[User]:
        return (
            self.users.select("users.*", "COUNT(posts.id) AS post_count")
            .left_join("posts", "posts.author_id = users.id")
            .group_by("users.id")
            .order_by_desc("post_count")
        )

    @staticmethod
    def _author_counts(rows: list[dict[str, Any]]) -> list[AuthorPostCount]:
        return [
            AuthorPostCount(user=User.model_validate(row), post_count=row["post_count"])
            for row in rows
        ]

    async def get_post_count_by_author(self) -> list[AuthorPostCount]:
        """Every user with their number of posts, highest count first.

        Users with equal counts come back in no particular order.
        """
        return self._author_counts(await self._users_with_post_count().get())

    async def get_most_active_users(self, limit: int = 5) -> list[AuthorPostCount]:
        _check_limit(limit)
        return self._author_counts(await self._users_with_post_count().limit(limit).get())

    async def get_average_post_length(self) -> float | None:
        """Average length of non-empty post content, None when there is none"""
        row = await self.posts.select(
            "AVG(LENGTH(NULLIF(content, ''))) AS average_length"
        ).first()
        if row is None or row["average_length"] is None:
            return None
        return float(row["average_length"])

    async def get_average_post_length_by_author(self) -> list[AuthorPostLength]:
        rows = await (
            self.users.select(
                "users.id AS author_id",
                "users.name AS author_name",
                "COALESCE(AVG(LENGTH(NULLIF(posts.content, ''))), 0) AS average_post_length",
                "COUNT(posts.id) AS post_count",
            )
            .left_join("posts", "posts.author_id = users.id")
            .group_by("users.id")
            .order_by("users.id")
            .get()
        )
        return [
            AuthorPostLength(
                author_id=row["author_id"],
                author_name=row["author_name"],
                average_post_length=float(row["average_post_length"]),
                post_count=row["post_count"],
            )
            for row in rows
        ]

    async def get_most_popular_tags(self, limit: int = 5) -> list[TagPostCount]:
        """Tags used by the most posts, highest count first, at most ``limit``.

        Tags with equal counts come back in no particular order.
        """
        _check_limit(limit)
        rows = await (
            self.tags.select("tags.*", "COUNT(post_tags.post_id) AS post_count")
            .left_join("post_tags", "post_tags.tag_id = tags.id")
            .group_by("tags.id")
            .order_by_desc("post_count")
            .limit(limit)
            .get()
        )
        return [
            TagPostCount(tag=Tag.model_validate(row), post_count=row["post_count"])
            for row in rows
        ]

    # Paginated reads

    async def get_paginated_posts(self, page: int = 1, page_size: int = 10) -> Page[Post]:
        """One page of posts, newest first, with the total number of posts.

        The page and the count are fetched concurrently on separate pooled
        connections. Inside an atomic unit both share the transaction
        connection, which runs one statement at a time.
        """
        page_query = (
            self.posts.order_by_desc("created_at")
            .order_by_desc("id")
            .paginate(page, page_size)
        )

        if self.store.in_transaction():
            posts = await page_query.get()
            total = await self.posts.count()
        else:
            posts, total = await asyncio.gather(page_query.get(), self.posts.count())

        return Page[Post](data=posts, total=total, page=page, page_size=page_size)

    # Transactional composite writes

    @transactional()
    async def create_user_with_profile(self, user_data: UserCreate, bio: str) -> UserWithProfile:
        """Create a user and its profile; both persist or neither does"""
        user = await self.users.create(user_data)
        profile = await self.profiles.create(ProfileCreate(bio=bio, user_id=user.id))
        logger.info("Created user %s with profile %s", user.id, profile.id)
        return UserWithProfile(user=user, profile=profile)

    @transactional()
    async def _move_post(self, post_id: int, from_user_id: int, to_user_id: int) -> Post:
        post = await self.posts.find_by_id(post_id)
        if post is None:
            raise NotFound(f"Post {post_id} not found")
        if post.author_id != from_user_id:
            raise InvalidOwnership(
                f"Post {post_id} is owned by user {post.author_id}, not user {from_user_id}"
            )

        updated = await self.posts.update(post_id, PostOwnerUpdate(author_id=to_user_id))
        if updated is None:
            raise NotFound(f"Post {post_id} not found")
        return updated

    async def transfer_post_ownership(
        self, post_id: int, from_user_id: int, to_user_id: int
    ) -> Outcome[Post]:
        """Move a post from one author to another in one atomic unit.

        The outcome carries InvalidOwnership when ``from_user_id`` does not
        own the post, and NotFound when the post or the new author is missing.
        Nothing is written in either case.
        """
        try:
            post = await self._move_post(post_id, from_user_id, to_user_id)
        except (InvalidOwnership, NotFound) as exc:
            logger.warning("Post %s was not transferred: %s", post_id, exc)
            return Outcome.failure(exc)

        logger.info(
            "Transferred post %s from user %s to user %s", post_id, from_user_id, to_user_id
        )
        return Outcome.success(post)

    # Batch writes

    async def create_multiple_posts(self, posts: list[PostCreate]) -> int:
        """Insert posts in one statement, skipping duplicates; returns rows written"""
        created = await self.posts.create_many(posts, skip_duplicates=True)
        logger.info("Created %d of %d posts", created, len(posts))
        return created

    async def update_posts_by_author(self, author_id: int, patch: PostUpdate) -> int:
        updated = await self.posts.where("author_id", author_id).update_where(patch)
        logger.info("Updated %d posts of user %s", updated, author_id)
        return updated

    async def cleanup_old_unpublished_posts(self, cutoff: datetime) -> int:
        """Delete unpublished posts created before ``cutoff``"""
        deleted = await (
            self.posts.where("published", False)
            .where("created_at", "<", cutoff)
            .delete_where()
        )
        logger.info("Deleted %d unpublished posts older than %s", deleted, cutoff)
        return deleted

    # Raw escape hatch

    async def execute_raw_query(self, query_text: str, params: Sequence[Any] = ()) -> list[Any]:
        """Send SQL and positional parameters straight to the driver.

        Nothing is parsed, validated or escaped here; keep user input in
        ``params``. Driver errors propagate unchanged.
        """
        return await self.store.raw_query(query_text, params)

    # Utilities

    @transactional()
    async def reset_database(self) -> dict[str, int]:
        """Delete every row of every table; returns deleted rows per table"""
        deleted = {}
        for entity_class in (Comment, PostTag, Post, Profile, User, Tag):
            repository = self.store.repository(entity_class)
            deleted[repository.table_name] = await repository.delete_where(allow_all=True)
        logger.info("Reset database: %s", deleted)
        return deleted

    @transactional()
    async def seed_database(self) -> SeedResult:
        """Replace all data with a small sample data set"""
        await self.reset_database()

        alice = await self.create_user_with_profile(
            UserCreate(email="alice@example.com", name="Alice"), "I love databases!"
        )
        bob = await self.create_user_with_profile(
            UserCreate(email="bob@example.com", name="Bob"), "SQL enthusiast"
        )

        db_tag = await self.tags.create(TagCreate(name="database"))
        web_tag = await self.tags.create(TagCreate(name="web"))
        mobile_tag = await self.tags.create(TagCreate(name="mobile"))

        intro = await self.create_post(
            PostCreate(
                title="Introduction to SQL",
                content="SQL is a powerful language for managing relational databases...",
                author_id=alice.user.id,
                published=True,
            )
        )
        await self.add_tag_to_post(intro.id, db_tag.id)

        advanced = await self.create_post(
            PostCreate(
                title="Advanced Query Techniques",
                content="Query builders provide many advanced features for working with databases...",
                author_id=bob.user.id,
                published=True,
            )
        )
        await self.add_tag_to_post(advanced.id, db_tag.id)
        await self.add_tag_to_post(advanced.id, web_tag.id)

        await self.comments.create(CommentCreate(content="Great introduction!", post_id=intro.id))
        await self.comments.create(
            CommentCreate(content="Looking forward to more content like this", post_id=intro.id)
        )

        return SeedResult(
            users=[alice.user, bob.user],
            posts=[intro, advanced],
            tags=[db_tag, web_tag, mobile_tag],
        )

    async def check_database_connection(self) -> bool:
        try:
            await self.store.ping()
        except StoreUnavailable as exc:
            logger.warning("Database connection check failed: %s", exc)
            return False
        return True

    async def get_database_metadata(self) -> DatabaseMetadata:
        """Tables and columns of the current schema"""
        tables = await self.store.raw_query(
            "SELECT table_name, table_type FROM information_schema.tables "
            "WHERE table_schema = current_schema() ORDER BY table_name"
        )
        columns = await self.store.raw_query(
            "SELECT table_name, column_name, data_type FROM information_schema.columns "
            "WHERE table_schema = current_schema() ORDER BY table_name, ordinal_position"
        )
        return DatabaseMetadata(
            tables=[dict(row) for row in tables],
            columns=[dict(row) for row in columns],
        )
