import pytest

from blogstore.entities import Post
from blogstore.errors import InvalidOwnership, NotFound
from blogstore.results import Outcome, Page


class TestPage:
    @pytest.mark.parametrize(
        "total, page_size, expected",
        [(0, 10, 0), (1, 10, 1), (10, 10, 1), (25, 10, 3), (7, 1, 7)],
    )
    def test_total_pages(self, total, page_size, expected):
        page = Page[Post](data=[], total=total, page=1, page_size=page_size)
        assert page.total_pages == expected

    def test_dump_includes_total_pages(self):
        post = Post(id=1, title="Hello", author_id=1)
        page = Page[Post](data=[post], total=11, page=2, page_size=10)

        dumped = page.model_dump()

        assert dumped["total_pages"] == 2
        assert dumped["data"][0]["title"] == "Hello"


class TestOutcome:
    def test_success(self):
        outcome = Outcome.success(42)

        assert outcome.ok
        assert outcome.error is None
        assert outcome.unwrap() == 42

    def test_failure(self):
        error = InvalidOwnership("Post 10 is owned by user 2, not user 1")
        outcome = Outcome.failure(error)

        assert not outcome.ok
        assert outcome.value is None
        with pytest.raises(InvalidOwnership):
            outcome.unwrap()

    def test_is_immutable(self):
        outcome = Outcome.failure(NotFound("missing"))
        with pytest.raises(AttributeError):
            outcome.value = 1
