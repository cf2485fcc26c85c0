import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from folio.core.errors import AlreadyExists, ExternalServiceError, LifecycleError, ValidationFailed
from folio.core.rules import RULES, ValidationRule
from folio.models.article import DEFAULT_CATEGORY
from folio.services.renderer import BaseRenderer, markdown_to_text, truncate_text

logger = logging.getLogger(__name__)

MAX_GENERATION_ATTEMPTS = 3

ExistsCheck = Callable[[str, Optional[int]], Awaitable[bool]]


@dataclass
class ProcessedMetadata:
    title: str
    slug: str
    category: str
    tags: List[str] = field(default_factory=list)
    excerpt: Optional[str] = None


class MetadataProcessor:
    """
    Completes article metadata before an article is created or updated.

    Values the author provides are validated and checked for uniqueness;
    missing title and slug are generated (retrying on invalid or duplicate
    output), missing tags and excerpt are generated on a best-effort basis.
    """

    def __init__(self, renderer: BaseRenderer, title_exists: ExistsCheck, slug_exists: ExistsCheck):
        self.renderer = renderer
        self.title_exists = title_exists
        self.slug_exists = slug_exists

    async def process(
        self,
        markdown: str,
        title: Optional[str] = None,
        slug: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[List[str]] = None,
        excerpt: Optional[str] = None,
        exclude_id: Optional[int] = None
    ) -> ProcessedMetadata:
        final_title = await self._unique_value(
            title, RULES.article.title, "Title", self.title_exists, exclude_id,
            lambda: self.renderer.generate_title(markdown)
        )
        final_slug = await self._unique_value(
            slug, RULES.article.slug, "Slug", self.slug_exists, exclude_id,
            lambda: self.renderer.generate_slug(final_title)
        )

        return ProcessedMetadata(
            title=final_title,
            slug=final_slug,
            category=self._category(category),
            tags=await self._tags(markdown, tags),
            excerpt=await self._excerpt(markdown, excerpt),
        )

    async def _unique_value(
        self,
        provided: Optional[str],
        rule: ValidationRule,
        field_name: str,
        exists: ExistsCheck,
        exclude_id: Optional[int],
        generate: Callable[[], Awaitable[str]]
    ) -> str:
        if provided is not None and provided.strip():
            error = rule.check(provided, field_name)
            if error:
                raise ValidationFailed(error)
            if await exists(provided, exclude_id):
                raise AlreadyExists(f"{field_name} '{provided}' already exists")
            return provided

        last_error = f"Could not generate a {field_name.lower()}"
        for attempt in range(1, MAX_GENERATION_ATTEMPTS + 1):
            try:
                value = (await generate()).strip()
            except ExternalServiceError as e:
                last_error = f"{field_name} generation failed: {e.message}"
                logger.warning("%s (attempt %d/%d)", last_error, attempt, MAX_GENERATION_ATTEMPTS)
                continue

            error = rule.check(value, field_name)
            if error:
                last_error = f"Generated {field_name.lower()} is invalid: {error}"
                logger.warning("%s (attempt %d/%d)", last_error, attempt, MAX_GENERATION_ATTEMPTS)
                continue

            if await exists(value, exclude_id):
                last_error = f"Generated {field_name.lower()} '{value}' already exists, please provide one"
                logger.warning("%s (attempt %d/%d)", last_error, attempt, MAX_GENERATION_ATTEMPTS)
                if attempt == MAX_GENERATION_ATTEMPTS:
                    raise AlreadyExists(last_error)
                continue

            return value

        raise ExternalServiceError(last_error)

    @staticmethod
    def _category(category: Optional[str]) -> str:
        if category is None or not category.strip():
            return DEFAULT_CATEGORY
        error = RULES.article.category.check(category, "Category")
        if error:
            raise ValidationFailed(error)
        return category

    async def _tags(self, markdown: str, tags: Optional[List[str]]) -> List[str]:
        if tags is not None:
            error = RULES.article.tags.check(tags, "Tags")
            if error:
                raise ValidationFailed(error)
            return tags

        try:
            generated = await self.renderer.generate_tags(markdown)
        except LifecycleError as e:
            logger.warning("Tag generation failed, continuing without tags: %s", e.message)
            return []

        if RULES.article.tags.check(generated, "Tags"):
            logger.warning("Generated tags are invalid, continuing without tags: %s", generated)
            return []
        return generated

    async def _excerpt(self, markdown: str, excerpt: Optional[str]) -> Optional[str]:
        max_length = RULES.article.excerpt.max_length
        if excerpt is not None:
            error = RULES.article.excerpt.check(excerpt, "Excerpt")
            if error:
                raise ValidationFailed(error)
            return excerpt

        try:
            generated = (await self.renderer.generate_excerpt(markdown)).strip()
        except LifecycleError as e:
            logger.warning("Excerpt generation failed, using article text: %s", e.message)
            generated = ""

        if not generated:
            generated = markdown_to_text(markdown)
        return truncate_text(generated, max_length) or None
