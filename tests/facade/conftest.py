import pytest_asyncio

from blogstore.entities import PostCreate, TagCreate


@pytest_asyncio.fixture
async def alice(facade):
    return await facade.create_user("alice@example.com", "Alice")


@pytest_asyncio.fixture
async def bob(facade):
    return await facade.create_user("bob@example.com", "Bob")


@pytest_asyncio.fixture
async def popular_tags(facade, alice):
    """Tags database, web and mobile used by 5, 3 and 1 posts"""
    posts = [
        await facade.create_post(PostCreate(title=f"Post {i}", author_id=alice.id))
        for i in range(5)
    ]
    tags = {}
    for name, count in {"database": 5, "web": 3, "mobile": 1}.items():
        tag = await facade.tags.create(TagCreate(name=name))
        for post in posts[:count]:
            await facade.add_tag_to_post(post.id, tag.id)
        tags[name] = tag
    return tags
