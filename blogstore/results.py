"""Result types returned by the facade"""

import math
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, computed_field

from blogstore.entities import Comment, Post, Profile, Tag, User
from blogstore.errors import DataAccessError

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    """One page of results plus the size of the whole result set"""

    data: list[T]
    total: int
    page: int
    page_size: int

    @computed_field
    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size)


class PostWithAuthor(BaseModel):
    post: Post
    author: User


class UserWithPosts(BaseModel):
    user: User
    posts: list[Post]


class UserWithProfile(BaseModel):
    user: User
    profile: Profile


class PostWithTags(BaseModel):
    post: Post
    tags: list[Tag]


class PostWithComments(BaseModel):
    post: Post
    author: User
    comments: list[Comment]


class PostCommentCount(BaseModel):
    post: Post
    comment_count: int


class AuthorPostCount(BaseModel):
    user: User
    post_count: int


class AuthorPostLength(BaseModel):
    author_id: int
    author_name: str | None
    average_post_length: float
    post_count: int


class TagPostCount(BaseModel):
    tag: Tag
    post_count: int


class SeedResult(BaseModel):
    users: list[User]
    posts: list[Post]
    tags: list[Tag]


class DatabaseMetadata(BaseModel):
    tables: list[dict[str, Any]]
    columns: list[dict[str, Any]]


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or the data-access error that prevented it.

    Returned by operations whose failures are expected outcomes rather than
    exceptional paths, such as an ownership check losing a race.
    """

    value: T | None = None
    error: DataAccessError | None = None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: DataAccessError) -> "Outcome[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, or raise the carried error"""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
