from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel
from pydantic.config import ConfigDict


class BaseEntity(BaseModel):
    """Base class for rows read from the store.

    ``table_name`` names the table a repository for the entity reads and writes.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(from_attributes=True)
    table_name: ClassVar[str]

    id: int


class User(BaseEntity):
    table_name: ClassVar[str] = "users"

    email: str
    name: str | None = None
    created_at: datetime | None = None


class Post(BaseEntity):
    table_name: ClassVar[str] = "posts"

    title: str
    content: str | None = None
    author_id: int
    published: bool = False
    created_at: datetime | None = None


class Profile(BaseEntity):
    table_name: ClassVar[str] = "profiles"

    bio: str | None = None
    user_id: int


class Tag(BaseEntity):
    table_name: ClassVar[str] = "tags"

    name: str


class Comment(BaseEntity):
    table_name: ClassVar[str] = "comments"

    content: str
    post_id: int
    created_at: datetime | None = None


class PostTag(BaseModel):
    """Row of the posts/tags join table"""

    table_name: ClassVar[str] = "post_tags"

    post_id: int
    tag_id: int


# Write models - only explicitly set fields are sent to the store
class UserCreate(BaseModel):
    email: str
    name: str | None = None


class UserUpdate(BaseModel):
    email: str | None = None
    name: str | None = None


class PostCreate(BaseModel):
    # An explicit id also moves the id sequence past it
    id: int | None = None
    title: str
    content: str | None = None
    author_id: int
    published: bool = False


class PostUpdate(BaseModel):
    title: str | None = None
    content: str | None = None
    published: bool | None = None


class PostOwnerUpdate(BaseModel):
    author_id: int


class ProfileCreate(BaseModel):
    bio: str | None = None
    user_id: int


class TagCreate(BaseModel):
    name: str


class CommentCreate(BaseModel):
    content: str
    post_id: int
