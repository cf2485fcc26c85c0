import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from folio.config import settings
from folio.core.errors import (
    AlreadyExists, InvalidOperation, LifecycleError, NotFound,
    ValidationFailed, returns_result,
)
from folio.core.html_validator import HtmlValidationResult, HtmlValidationStatus, validate_html
from folio.core.rules import RULES
from folio.models.article import Article, ArticleVersion
from folio.models.tag import Tag
from folio.schemas.article import ArticleCreate, ArticleMetadataUpdate, VersionSubmit
from folio.services.metadata import MetadataProcessor
from folio.services.renderer import BaseRenderer, get_renderer
from folio.services.storage import ContentStorage, get_storage
from folio.services.tag import TagService

logger = logging.getLogger(__name__)


class ArticleService:
    """
    Article queries and lifecycle operations.

    Every mutation runs inside the request session and commits once at the
    end. Lifecycle errors raised along the way roll the session back and come
    out as a failed ``Result``; files written by a failed operation are removed
    again.
    """

    def __init__(
        self,
        db: AsyncSession,
        renderer: Optional[BaseRenderer] = None,
        storage: Optional[ContentStorage] = None
    ):
        self.db = db
        self.renderer = renderer or get_renderer()
        self.storage = storage or get_storage()
        self.tags = TagService(db)
        self.metadata = MetadataProcessor(self.renderer, self.title_exists, self.slug_exists)

    # ============================================
    # Queries
    # ============================================

    async def get_article(self, article_id: int) -> Optional[Article]:
        result = await self.db.execute(
            select(Article).where(Article.id == article_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_article_by_slug(self, slug: str) -> Optional[Article]:
        result = await self.db.execute(
            select(Article).where(Article.slug == slug).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_articles(
        self,
        skip: int = 0,
        limit: int = 10,
        published_only: bool = True,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
        featured: Optional[bool] = None,
        q: Optional[str] = None
    ) -> Tuple[List[Article], int]:
        query = select(Article)
        if published_only:
            query = query.where(Article.is_published.is_(True))
        if category:
            query = query.where(Article.category == category)
        if tags:
            query = query.where(Article.tags.any(Tag.name.in_(tags)))
        if featured is not None:
            query = query.where(Article.is_featured.is_(featured))
        if q and q.strip():
            pattern = f"%{q.strip()}%"
            query = query.where(or_(Article.title.ilike(pattern), Article.excerpt.ilike(pattern)))

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        # Get items
        query = query.order_by(Article.created_at.desc(), Article.id.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all()), total or 0

    async def slug_exists(self, slug: str, exclude_id: Optional[int] = None) -> bool:
        query = select(Article.id).where(Article.slug == slug)
        if exclude_id is not None:
            query = query.where(Article.id != exclude_id)
        return (await self.db.scalar(query.limit(1))) is not None

    async def title_exists(self, title: str, exclude_id: Optional[int] = None) -> bool:
        query = select(Article.id).where(Article.title == title)
        if exclude_id is not None:
            query = query.where(Article.id != exclude_id)
        return (await self.db.scalar(query.limit(1))) is not None

    async def file_exists(self, file_path: str, file_name: str) -> bool:
        query = select(Article.id).where(Article.file_path == file_path, Article.file_name == file_name)
        return (await self.db.scalar(query.limit(1))) is not None

    def read_markdown(self, article: Article) -> Optional[str]:
        return self.storage.read_markdown(article.file_path, article.file_name)

    def read_version_html(self, article: Article, version_name: str) -> Optional[str]:
        if article.get_version(version_name) is None:
            return None
        return self.storage.read_html(article.file_path, article.file_name, version_name)

    def read_main_html(self, article: Article) -> Optional[str]:
        if article.main_version is None:
            return None
        return self.read_version_html(article, article.main_version.version_name)

    async def get_stats(self) -> Dict[str, int]:
        async def count(query) -> int:
            return (await self.db.scalar(query)) or 0

        return {
            "total_articles": await count(select(func.count(Article.id))),
            "published_articles": await count(
                select(func.count(Article.id)).where(Article.is_published.is_(True))
            ),
            "draft_articles": await count(
                select(func.count(Article.id)).where(Article.is_published.is_(False))
            ),
            "featured_articles": await count(
                select(func.count(Article.id)).where(Article.is_featured.is_(True))
            ),
            "total_versions": await count(select(func.count(ArticleVersion.id))),
            "invalid_versions": await count(
                select(func.count(ArticleVersion.id))
                .where(ArticleVersion.validation_status == HtmlValidationStatus.INVALID)
            ),
            "total_tags": await count(select(func.count(Tag.id))),
        }

    # ============================================
    # Lifecycle operations
    # ============================================

    @returns_result
    async def create_article(self, article_in: ArticleCreate) -> Article:
        """Create a Draft article with its first version (published on request)."""
        _check_markdown(article_in.markdown)

        meta = await self.metadata.process(
            article_in.markdown,
            title=article_in.title,
            slug=article_in.slug,
            category=article_in.category,
            tags=article_in.tags,
            excerpt=article_in.excerpt,
        )

        article = Article.create(file_name=meta.slug, author=settings.BLOG_AUTHOR, category=meta.category)
        if await self.file_exists(article.file_path, article.file_name):
            raise AlreadyExists(f"An article file named '{article.file_name}' already exists")

        article.apply_metadata(
            title=meta.title,
            slug=meta.slug,
            tags=await self.tags.get_or_create(meta.tags),
            excerpt=meta.excerpt,
            is_featured=article_in.is_featured,
        )
        self.db.add(article)
        await self._flush()

        files_written = False
        try:
            self.storage.save_markdown(article.file_path, article.file_name, article_in.markdown)
            files_written = True

            html, ai_prompt = await self._obtain_html(article_in.markdown, article_in.html, article_in.custom_prompt)
            validation = validate_html_content(html)
            version = article.submit_new_version(validation.status, validation.detail, ai_prompt)
            await self._flush()
            self.storage.save_html(article.file_path, article.file_name, version.version_name, html)

            if article_in.is_published:
                article.publish()

            await self._commit()
        except LifecycleError:
            if files_written:
                self._discard_article_files(article.file_path, article.file_name)
            raise

        logger.info("Created article %d '%s' (%s)", article.id, article.slug,
                    "published" if article.is_published else "draft")
        return article

    @returns_result
    async def save_metadata(self, article_id: int, article_in: ArticleMetadataUpdate) -> Article:
        """Update metadata (and optionally the Markdown source) without creating a version."""
        article = await self._require(article_id)
        fields = article_in.model_dump(exclude_unset=True)

        title = fields.get("title")
        if title is not None and await self.title_exists(title, exclude_id=article.id):
            raise AlreadyExists(f"Title '{title}' already exists")
        slug = fields.get("slug")
        if slug is not None and await self.slug_exists(slug, exclude_id=article.id):
            raise AlreadyExists(f"Slug '{slug}' already exists")

        tags = None
        if fields.get("tags") is not None:
            tags = await self.tags.get_or_create(fields["tags"])

        article.apply_metadata(
            title=title,
            slug=slug,
            category=fields.get("category"),
            tags=tags,
            excerpt=fields.get("excerpt"),
            is_featured=fields.get("is_featured"),
        )

        previous_markdown = None
        markdown_changed = False
        try:
            if fields.get("markdown") is not None:
                previous_markdown, markdown_changed = self._replace_markdown(article, fields["markdown"])
            await self._commit()
        except LifecycleError:
            if markdown_changed:
                self._restore_markdown(article, previous_markdown)
            raise

        logger.info("Saved metadata of article %d", article.id)
        return article

    @returns_result
    async def submit_version(self, article_id: int, version_in: VersionSubmit) -> Article:
        """Append a new version; the main version only moves when ``publish`` is set."""
        article = await self._require(article_id)

        previous_markdown = None
        markdown_changed = False
        version = None
        try:
            if version_in.markdown is not None:
                previous_markdown, markdown_changed = self._replace_markdown(article, version_in.markdown)
                markdown = version_in.markdown
            else:
                markdown = self.read_markdown(article)
            if markdown is None and version_in.html is None:
                raise InvalidOperation("Article has no Markdown source to render")

            html, ai_prompt = await self._obtain_html(markdown, version_in.html, version_in.custom_prompt)
            validation = validate_html_content(html)
            version = article.submit_new_version(validation.status, validation.detail, ai_prompt)
            await self._flush()
            self.storage.save_html(article.file_path, article.file_name, version.version_name, html)

            if version_in.publish:
                article.set_main_version(version)
                article.publish()

            await self._commit()
        except LifecycleError:
            if version is not None:
                self._discard_version_html(article, version.version_name)
            if markdown_changed:
                self._restore_markdown(article, previous_markdown)
            raise

        logger.info("Submitted version %s of article %d (%s)", version.version_name, article.id,
                    version.validation_status.value)
        return article

    @returns_result
    async def set_main_version(self, article_id: int, version_name: str) -> Article:
        article = await self._require(article_id)
        article.set_main_version(self._require_version(article, version_name))
        await self._commit()
        logger.info("Article %d main version is now %s", article.id, version_name)
        return article

    @returns_result
    async def publish(self, article_id: int) -> Article:
        article = await self._require(article_id)
        article.publish()
        await self._commit()
        logger.info("Published article %d (%s)", article.id, article.main_version.version_name)
        return article

    @returns_result
    async def unpublish(self, article_id: int) -> Article:
        article = await self._require(article_id)
        article.unpublish()
        await self._commit()
        logger.info("Unpublished article %d", article.id)
        return article

    @returns_result
    async def delete_version(self, article_id: int, version_name: str) -> bool:
        """
        Delete one version. Returns ``True`` when it was the last one and the
        whole article was deleted with it.
        """
        article = await self._require(article_id)
        version = self._require_version(article, version_name)
        file_path, file_name = article.file_path, article.file_name

        if article.remove_version(version):
            await self._delete(article)
            await self._commit()
            self._discard_article_files(file_path, file_name)
            logger.info("Deleted last version %s, article %d removed", version_name, article_id)
            return True

        await self._commit()
        self._discard_version_html(article, version_name)
        logger.info("Deleted version %s of article %d", version_name, article_id)
        return False

    @returns_result
    async def delete_article(self, article_id: int) -> None:
        article = await self._require(article_id)
        file_path, file_name = article.file_path, article.file_name

        await self._delete(article)
        await self._commit()
        self._discard_article_files(file_path, file_name)
        logger.info("Deleted article %d", article_id)

    # ============================================
    # Helpers
    # ============================================

    async def _require(self, article_id: int) -> Article:
        article = await self.get_article(article_id)
        if article is None:
            raise NotFound(f"Article {article_id} not found")
        return article

    @staticmethod
    def _require_version(article: Article, version_name: str) -> ArticleVersion:
        version = article.get_version(version_name)
        if version is None:
            raise NotFound(f"Version '{version_name}' of article {article.id} not found")
        return version

    async def _obtain_html(
        self, markdown: Optional[str], html: Optional[str], custom_prompt: Optional[str]
    ) -> Tuple[str, Optional[str]]:
        """HTML for a new version and the prompt that produced it."""
        if html is not None:
            return html, None
        html = await self.renderer.render(markdown, custom_prompt)
        return html, (custom_prompt or None)

    def _replace_markdown(self, article: Article, markdown: str) -> Tuple[Optional[str], bool]:
        _check_markdown(markdown)
        previous = self.read_markdown(article)
        if previous == markdown:
            return previous, False
        self.storage.save_markdown(article.file_path, article.file_name, markdown)
        article.touch()
        return previous, True

    def _restore_markdown(self, article: Article, previous: Optional[str]) -> None:
        try:
            if previous is None:
                self.storage.markdown_path(article.file_path, article.file_name).unlink(missing_ok=True)
            else:
                self.storage.save_markdown(article.file_path, article.file_name, previous)
        except (OSError, LifecycleError):
            logger.exception("Could not restore markdown of article %s", article.id)

    def _discard_version_html(self, article: Article, version_name: str) -> None:
        try:
            self.storage.delete_version_html(article.file_path, article.file_name, version_name)
        except LifecycleError:
            logger.exception("Could not delete html of %s/%s %s", article.file_path, article.file_name, version_name)

    def _discard_article_files(self, file_path: str, file_name: str) -> None:
        try:
            self.storage.delete_article_files(file_path, file_name)
        except LifecycleError:
            logger.exception("Could not delete files of %s/%s", file_path, file_name)

    async def _delete(self, article: Article) -> None:
        article.prepare_for_deletion()
        await self._flush()
        await self.db.delete(article)

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise AlreadyExists(_integrity_message(e)) from e

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            raise AlreadyExists(_integrity_message(e)) from e


def validate_html_content(html: str) -> HtmlValidationResult:
    return validate_html(html, settings.HTML_VALIDATION_MODE, settings.HTML_TRUSTED_DOMAINS)


def _check_markdown(markdown: Optional[str]) -> None:
    error = RULES.article.markdown.check(markdown, "Markdown")
    if error:
        raise ValidationFailed(error)


_CONFLICT_MESSAGES = (
    ("slug", "An article with this slug already exists"),
    ("title", "An article with this title already exists"),
    ("file_name", "An article file with this name already exists"),
    ("version_name", "A version with this name already exists"),
    ("tags.name", "A tag with this name already exists"),
)


def _integrity_message(error: IntegrityError) -> str:
    detail = str(error.orig).lower()
    for needle, message in _CONFLICT_MESSAGES:
        if needle in detail:
            return message
    return "A conflicting record already exists"
