from typing import List, Optional

import pytest

from folio.core.errors import AlreadyExists, ExternalServiceError, ValidationFailed
from folio.services.metadata import MetadataProcessor
from folio.services.renderer import MarkdownRenderer


class ScriptedRenderer(MarkdownRenderer):
    """Returns queued titles/slugs; raises when an entry is an exception."""

    def __init__(self, titles=None, slugs=None, tags=None, excerpt=None):
        self.titles = list(titles or [])
        self.slugs = list(slugs or [])
        self.tags = tags
        self.excerpt = excerpt
        self.title_calls = 0

    async def generate_title(self, markdown_text: str) -> str:
        self.title_calls += 1
        value = self.titles.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    async def generate_slug(self, title: str) -> str:
        return self.slugs.pop(0)

    async def generate_tags(self, markdown_text: str) -> List[str]:
        if isinstance(self.tags, Exception):
            raise self.tags
        return self.tags or []

    async def generate_excerpt(self, markdown_text: str) -> str:
        return self.excerpt or ""


def existing(*values):
    async def check(value: str, exclude_id: Optional[int]) -> bool:
        return value in values
    return check


def processor(renderer, titles=(), slugs=()) -> MetadataProcessor:
    return MetadataProcessor(renderer, existing(*titles), existing(*slugs))


@pytest.mark.asyncio
async def test_provided_values_are_kept():
    meta = await processor(MarkdownRenderer()).process(
        "# Ignored", title="Mine", slug="mine", category="notes", tags=["a"], excerpt="Short"
    )
    assert (meta.title, meta.slug, meta.category, meta.tags, meta.excerpt) == ("Mine", "mine", "notes", ["a"], "Short")


@pytest.mark.asyncio
async def test_missing_values_are_generated():
    meta = await processor(MarkdownRenderer()).process("# Hello World\n\nBody text.")
    assert meta.title == "Hello World"
    assert meta.slug == "hello-world"
    assert meta.category == "Uncategorized"
    assert meta.tags == []
    assert meta.excerpt == "Hello World Body text."


@pytest.mark.asyncio
async def test_provided_duplicates_fail_fast():
    with pytest.raises(AlreadyExists):
        await processor(MarkdownRenderer(), titles=["Taken"]).process("# x", title="Taken")
    with pytest.raises(AlreadyExists):
        await processor(MarkdownRenderer(), slugs=["taken"]).process("# x", title="Free", slug="taken")


@pytest.mark.asyncio
async def test_provided_invalid_values_fail():
    with pytest.raises(ValidationFailed):
        await processor(MarkdownRenderer()).process("# x", title="Ok", slug="Bad Slug")
    with pytest.raises(ValidationFailed):
        await processor(MarkdownRenderer()).process("# x", title="Ok", slug="ok", tags=["x" * 21])


@pytest.mark.asyncio
async def test_generation_retries_invalid_and_duplicate_output():
    renderer = ScriptedRenderer(titles=["x" * 101, "Taken", "Fresh"], slugs=["fresh"])
    meta = await processor(renderer, titles=["Taken"]).process("# x")
    assert meta.title == "Fresh"
    assert renderer.title_calls == 3


@pytest.mark.asyncio
async def test_generation_gives_up_after_three_duplicates():
    renderer = ScriptedRenderer(titles=["Taken", "Taken", "Taken", "Never"])
    with pytest.raises(AlreadyExists):
        await processor(renderer, titles=["Taken"]).process("# x")
    assert renderer.title_calls == 3


@pytest.mark.asyncio
async def test_generation_service_failures_surface():
    error = ExternalServiceError("down")
    renderer = ScriptedRenderer(titles=[error, error, error])
    with pytest.raises(ExternalServiceError):
        await processor(renderer).process("# x")


@pytest.mark.asyncio
async def test_bad_generated_tags_fall_back_to_none():
    renderer = ScriptedRenderer(titles=["T"], slugs=["t"], tags=["x" * 30])
    assert (await processor(renderer).process("# x")).tags == []

    renderer = ScriptedRenderer(titles=["T"], slugs=["t"], tags=ExternalServiceError("down"))
    assert (await processor(renderer).process("# x")).tags == []
