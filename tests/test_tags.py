import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.core.errors import ValidationFailed
from folio.models.tag import Tag
from folio.schemas.article import ArticleCreate
from folio.services.article import ArticleService
from folio.services.tag import TagService


async def create(service: ArticleService, slug: str, tags, category="dev", is_published=True):
    result = await service.create_article(ArticleCreate(
        markdown=f"# {slug}", title=slug, slug=slug, tags=tags, category=category, is_published=is_published
    ))
    assert result.is_success, result.error_message
    return result.value


async def tag_names(db_session: AsyncSession):
    result = await db_session.execute(select(Tag.name).order_by(Tag.name))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_get_or_create_reuses_and_dedups(tag_service: TagService, db_session: AsyncSession):
    first = await tag_service.get_or_create([" python ", "python", "web"])
    await db_session.commit()
    assert {t.name for t in first} == {"python", "web"}

    second = await tag_service.get_or_create(["python", "api"])
    python = next(t for t in second if t.name == "python")
    assert python in first
    assert await tag_service.get_or_create([]) == set()


@pytest.mark.asyncio
async def test_get_or_create_validates_names(tag_service: TagService):
    with pytest.raises(ValidationFailed):
        await tag_service.get_or_create(["x" * 21])


@pytest.mark.asyncio
async def test_orphan_sweep(service: ArticleService, tag_service: TagService, db_session: AsyncSession):
    article = await create(service, "only-foo", ["foo"])
    await create(service, "keeps-bar", ["bar"])

    # Still referenced, so nothing is swept
    result = await tag_service.sweep_orphans()
    assert result.is_success
    assert result.value == []
    assert await tag_names(db_session) == ["bar", "foo"]

    assert (await service.delete_article(article.id)).is_success
    # Deleting the article leaves the tag in place until the sweep
    assert await tag_names(db_session) == ["bar", "foo"]

    result = await tag_service.sweep_orphans()
    assert result.value == ["foo"]
    assert await tag_names(db_session) == ["bar"]

    # Idempotent
    assert (await tag_service.sweep_orphans()).value == []


@pytest.mark.asyncio
async def test_tag_statistics(service: ArticleService, tag_service: TagService):
    await create(service, "a1", ["python", "web"])
    await create(service, "a2", ["python"], category="notes")
    await create(service, "draft", ["python", "draft-only"], is_published=False)

    stats = await tag_service.tag_statistics()
    assert [(s.name, s.count) for s in stats] == [("python", 2), ("web", 1)]

    stats = await tag_service.tag_statistics(include_unpublished=True)
    assert [(s.name, s.count) for s in stats] == [("python", 3), ("draft-only", 1), ("web", 1)]

    stats = await tag_service.tag_statistics(category="notes")
    assert [(s.name, s.count) for s in stats] == [("python", 1)]


@pytest.mark.asyncio
async def test_category_statistics_use_and_semantics(service: ArticleService, tag_service: TagService):
    await create(service, "a1", ["python", "web"], category="dev")
    await create(service, "a2", ["python"], category="dev")
    await create(service, "a3", ["python", "web"], category="notes")
    await create(service, "a4", ["web"], category="notes", is_published=False)

    stats = await tag_service.category_statistics()
    assert [(s.name, s.count) for s in stats] == [("dev", 2), ("notes", 1)]

    stats = await tag_service.category_statistics(tags=["python", "web"])
    assert [(s.name, s.count) for s in stats] == [("dev", 1), ("notes", 1)]

    stats = await tag_service.category_statistics(tags=["web"], include_unpublished=True)
    assert [(s.name, s.count) for s in stats] == [("notes", 2), ("dev", 1)]
