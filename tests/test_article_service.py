import httpx
import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.core.errors import ErrorCode, ExternalServiceError
from folio.core.html_validator import HtmlValidationStatus
from folio.models.article import Article
from folio.schemas.article import ArticleCreate, ArticleMetadataUpdate, VersionSubmit
from folio.services.article import ArticleService
from folio.services.renderer import MarkdownRenderer, OpenAICompatibleRenderer
from folio.services.storage import ContentStorage

INVALID_HTML = "<p>not a document</p>"


async def create(service: ArticleService, slug: str, **kwargs) -> Article:
    kwargs.setdefault("title", slug.replace("-", " ").title())
    kwargs.setdefault("markdown", f"# {kwargs['title']}\n\nBody of {slug}.")
    result = await service.create_article(ArticleCreate(slug=slug, **kwargs))
    assert result.is_success, result.error_message
    return result.value


@pytest.mark.asyncio
async def test_create_article_writes_first_version(service: ArticleService, storage: ContentStorage):
    article = await create(service, "hello-world", tags=["python", "web"], category="dev", is_published=True)

    assert article.id is not None
    assert article.author == "Tester"
    assert article.file_name == "hello-world"
    assert article.category == "dev"
    assert article.tag_names == ["python", "web"]
    assert [v.version_name for v in article.versions] == ["v1"]
    assert article.main_version.version_name == "v1"
    assert article.main_version.validation_status == HtmlValidationStatus.VALID
    assert article.is_published is True
    assert article.published_at is not None

    assert storage.read_markdown("", "hello-world").startswith("# Hello World")
    assert storage.read_html("", "hello-world", "v1").startswith("<!DOCTYPE html>")


@pytest.mark.asyncio
async def test_create_generates_missing_metadata(service: ArticleService):
    result = await service.create_article(ArticleCreate(markdown="# Generated Title\n\nSome body."))
    assert result.is_success, result.error_message
    article = result.value
    assert article.title == "Generated Title"
    assert article.slug == "generated-title"
    assert article.excerpt == "Generated Title Some body."
    assert article.is_published is False


@pytest.mark.asyncio
async def test_duplicate_slug_is_rejected(service: ArticleService):
    await create(service, "same", title="First")
    result = await service.create_article(ArticleCreate(markdown="# Second", title="Second", slug="same"))

    assert not result.is_success
    assert result.error_code == ErrorCode.ALREADY_EXISTS
    assert (await service.get_article_by_slug("same")).title == "First"


@pytest.mark.asyncio
async def test_duplicate_slug_is_caught_at_commit(
    monkeypatch, service: ArticleService, db_session: AsyncSession
):
    async def never_exists(self, *args, **kwargs):
        return False

    await create(service, "raced", title="First")

    # Both requests passed the pre-checks; the unique index decides
    for name in ("slug_exists", "title_exists", "file_exists"):
        monkeypatch.setattr(ArticleService, name, never_exists)
    racer = ArticleService(db_session, renderer=MarkdownRenderer(), storage=service.storage)
    result = await racer.create_article(ArticleCreate(markdown="# Second", title="Second", slug="raced"))

    assert result.error_code == ErrorCode.ALREADY_EXISTS
    total = await db_session.scalar(select(func.count(Article.id)))
    assert total == 1
    assert service.storage.read_markdown("", "raced").startswith("# First")


@pytest.mark.asyncio
async def test_failed_render_leaves_nothing_behind(db_session: AsyncSession, storage: ContentStorage):
    class BrokenRenderer(MarkdownRenderer):
        async def render(self, markdown_text, custom_prompt=None):
            raise ExternalServiceError("AI service unreachable")

    service = ArticleService(db_session, renderer=BrokenRenderer(), storage=storage)
    result = await service.create_article(ArticleCreate(markdown="# Doomed", title="Doomed", slug="doomed"))

    assert result.error_code == ErrorCode.EXTERNAL_SERVICE_ERROR
    assert await service.get_article_by_slug("doomed") is None
    assert storage.read_markdown("", "doomed") is None


@pytest.mark.asyncio
async def test_dropped_ai_connection_leaves_nothing_behind(db_session: AsyncSession, storage: ContentStorage):
    def handler(request):
        raise httpx.ReadError("connection reset", request=request)

    renderer = OpenAICompatibleRenderer(
        api_key="test-key", base_url="https://ai.test/v1", model="test-model",
        transport=httpx.MockTransport(handler)
    )
    service = ArticleService(db_session, renderer=renderer, storage=storage)
    result = await service.create_article(ArticleCreate(markdown="# Reset", title="Reset", slug="reset"))

    assert result.error_code == ErrorCode.EXTERNAL_SERVICE_ERROR
    assert await service.get_article_by_slug("reset") is None
    assert storage.read_markdown("", "reset") is None


@pytest.mark.asyncio
async def test_versions_are_never_renumbered(service: ArticleService, storage: ContentStorage):
    article = await create(service, "numbered")
    for _ in range(2):
        assert (await service.submit_version(article.id, VersionSubmit())).is_success

    result = await service.delete_version(article.id, "v2")
    assert result.is_success
    assert result.value is False

    article = await service.get_article(article.id)
    assert [v.version_name for v in article.versions] == ["v1", "v3"]
    assert storage.read_html("", "numbered", "v2") is None
    assert storage.read_html("", "numbered", "v3") is not None

    article = (await service.submit_version(article.id, VersionSubmit())).value
    assert [v.version_name for v in article.versions] == ["v1", "v3", "v4"]


@pytest.mark.asyncio
async def test_new_version_does_not_move_main_unless_published(service: ArticleService):
    article = await create(service, "main-moves")

    article = (await service.submit_version(article.id, VersionSubmit(custom_prompt="blue"))).value
    assert article.main_version.version_name == "v1"
    assert article.get_version("v2").ai_prompt == "blue"

    article = (await service.submit_version(article.id, VersionSubmit(publish=True))).value
    assert article.main_version.version_name == "v3"
    assert article.is_published is True


@pytest.mark.asyncio
async def test_submit_version_updates_markdown(service: ArticleService, storage: ContentStorage):
    article = await create(service, "rewrite")
    result = await service.submit_version(article.id, VersionSubmit(markdown="# Rewrite\n\nNew text."))
    assert result.is_success
    assert storage.read_markdown("", "rewrite") == "# Rewrite\n\nNew text."
    assert "New text." in storage.read_html("", "rewrite", "v2")


@pytest.mark.asyncio
async def test_invalid_version_blocks_publish(service: ArticleService):
    article = await create(service, "gated")
    article_id = article.id
    article = (await service.submit_version(article.id, VersionSubmit(html=INVALID_HTML))).value
    bad = article.get_version("v2")
    assert bad.validation_status == HtmlValidationStatus.INVALID
    assert bad.validation_error == "Missing DOCTYPE declaration"

    assert (await service.set_main_version(article.id, "v2")).is_success
    result = await service.publish(article.id)
    assert result.error_code == ErrorCode.INVALID_OPERATION
    assert (await service.get_article(article_id)).is_published is False

    assert (await service.set_main_version(article_id, "v1")).is_success
    assert (await service.publish(article_id)).is_success


@pytest.mark.asyncio
async def test_published_article_keeps_valid_main_version(service: ArticleService):
    article = await create(service, "live", is_published=True)
    article_id = article.id
    assert (await service.submit_version(article_id, VersionSubmit(html=INVALID_HTML))).is_success

    result = await service.set_main_version(article_id, "v2")
    assert result.error_code == ErrorCode.INVALID_OPERATION

    article = await service.get_article(article_id)
    assert article.main_version.version_name == "v1"
    assert article.is_published is True


@pytest.mark.asyncio
async def test_publish_without_versions_fails(service: ArticleService, db_session: AsyncSession):
    article = Article.create(file_name="empty")
    article.apply_metadata(title="Empty", slug="empty")
    db_session.add(article)
    await db_session.commit()
    article_id = article.id

    result = await service.publish(article_id)
    assert result.error_code == ErrorCode.INVALID_OPERATION
    assert (await service.get_article(article_id)).is_published is False


@pytest.mark.asyncio
async def test_published_at_survives_republish(service: ArticleService):
    article = await create(service, "again", is_published=True)
    first = (await service.get_article(article.id)).published_at

    assert (await service.unpublish(article.id)).is_success
    assert (await service.publish(article.id)).is_success
    assert (await service.get_article(article.id)).published_at == first


@pytest.mark.asyncio
async def test_deleting_main_version_promotes_latest(service: ArticleService):
    article = await create(service, "promote", is_published=True)
    await service.submit_version(article.id, VersionSubmit())
    await service.submit_version(article.id, VersionSubmit())

    assert (await service.delete_version(article.id, "v1")).value is False
    article = await service.get_article(article.id)
    assert article.main_version.version_name == "v3"
    assert article.is_published is False


@pytest.mark.asyncio
async def test_deleting_last_version_deletes_article(service: ArticleService, storage: ContentStorage):
    article = await create(service, "last-one", tags=["solo"], is_published=True)

    result = await service.delete_version(article.id, "v1")
    assert result.is_success
    assert result.value is True
    assert await service.get_article(article.id) is None
    assert storage.read_markdown("", "last-one") is None
    assert storage.read_html("", "last-one", "v1") is None


@pytest.mark.asyncio
async def test_delete_article_removes_files(service: ArticleService, storage: ContentStorage):
    article = await create(service, "gone")
    await service.submit_version(article.id, VersionSubmit())

    assert (await service.delete_article(article.id)).is_success
    assert await service.get_article(article.id) is None
    assert storage.read_html("", "gone", "v2") is None

    assert (await service.delete_article(article.id)).error_code == ErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_unknown_version_is_not_found(service: ArticleService):
    article = await create(service, "lookup")
    article_id = article.id
    assert (await service.set_main_version(article_id, "v9")).error_code == ErrorCode.NOT_FOUND
    assert (await service.delete_version(article_id, "v9")).error_code == ErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_save_metadata_tags_round_trip(service: ArticleService):
    article = await create(service, "tagged")
    result = await service.save_metadata(article.id, ArticleMetadataUpdate(tags=["b", "a", "b"]))
    assert result.is_success

    fetched = await service.get_article(article.id)
    assert {tag.name for tag in fetched.tags} == {"a", "b"}


@pytest.mark.asyncio
async def test_save_metadata_leaves_versions_and_state(service: ArticleService, storage: ContentStorage):
    article = await create(service, "meta", is_published=True)
    before = (await service.get_article(article.id)).last_modified

    result = await service.save_metadata(
        article.id,
        ArticleMetadataUpdate(title="Renamed", excerpt="New excerpt", is_featured=True, markdown="# Renamed")
    )
    assert result.is_success

    article = await service.get_article(article.id)
    assert article.title == "Renamed"
    assert article.is_featured is True
    assert article.is_published is True
    assert [v.version_name for v in article.versions] == ["v1"]
    assert article.last_modified >= before
    assert storage.read_markdown("", "meta") == "# Renamed"


@pytest.mark.asyncio
async def test_save_metadata_rejects_taken_slug(service: ArticleService):
    await create(service, "taken")
    other = await create(service, "other")
    other_id = other.id

    result = await service.save_metadata(other_id, ArticleMetadataUpdate(slug="taken"))
    assert result.error_code == ErrorCode.ALREADY_EXISTS

    # Keeping its own slug is fine
    assert (await service.save_metadata(other_id, ArticleMetadataUpdate(slug="other"))).is_success


@pytest.mark.asyncio
async def test_list_filters(service: ArticleService):
    await create(service, "py-one", tags=["python"], category="dev", is_published=True, excerpt="About asyncio")
    await create(service, "py-two", tags=["python"], category="dev", is_featured=True)
    await create(service, "cooking", tags=["food"], category="life", is_published=True)

    items, total = await service.get_articles()
    assert total == 2
    assert {a.slug for a in items} == {"py-one", "cooking"}

    items, total = await service.get_articles(published_only=False, tags=["python"])
    assert {a.slug for a in items} == {"py-one", "py-two"}

    items, _ = await service.get_articles(published_only=False, featured=True)
    assert [a.slug for a in items] == ["py-two"]

    items, _ = await service.get_articles(q="ASYNCIO")
    assert [a.slug for a in items] == ["py-one"]

    items, total = await service.get_articles(published_only=False, skip=0, limit=1)
    assert len(items) == 1
    assert total == 3


@pytest.mark.asyncio
async def test_stats(service: ArticleService):
    await create(service, "one", is_published=True, tags=["a"])
    article = await create(service, "two")
    await service.submit_version(article.id, VersionSubmit(html=INVALID_HTML))

    stats = await service.get_stats()
    assert stats["total_articles"] == 2
    assert stats["published_articles"] == 1
    assert stats["draft_articles"] == 1
    assert stats["total_versions"] == 3
    assert stats["invalid_versions"] == 1
    assert stats["total_tags"] == 1
