from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from folio.core.html_validator import HtmlValidationStatus
from folio.core.rules import RULES

_article = RULES.article


class ArticleMetadata(BaseModel):
    """Optional metadata; missing title/slug/tags/excerpt are generated."""
    title: Optional[str] = Field(None, min_length=1, max_length=_article.title.max_length)
    slug: Optional[str] = Field(
        None, min_length=1, max_length=_article.slug.max_length, pattern="^[a-z0-9-]+$"
    )
    category: Optional[str] = Field(None, min_length=1, max_length=_article.category.max_length)
    tags: Optional[List[str]] = Field(None, max_length=_article.tags.max_count)
    excerpt: Optional[str] = Field(None, max_length=_article.excerpt.max_length)


class ArticleCreate(ArticleMetadata):
    markdown: str = Field(..., min_length=1, max_length=_article.markdown.max_length)
    # Pre-rendered HTML; rendered from the Markdown when omitted
    html: Optional[str] = None
    custom_prompt: Optional[str] = None
    is_published: bool = False
    is_featured: bool = False


class ArticleMetadataUpdate(ArticleMetadata):
    is_featured: Optional[bool] = None
    # Replaces the stored Markdown without creating a version
    markdown: Optional[str] = Field(None, min_length=1, max_length=_article.markdown.max_length)


class VersionSubmit(BaseModel):
    markdown: Optional[str] = Field(None, min_length=1, max_length=_article.markdown.max_length)
    html: Optional[str] = None
    custom_prompt: Optional[str] = None
    # Switch the main version to the new one and publish it
    publish: bool = False


class MainVersionSwitch(BaseModel):
    version_name: str = Field(..., min_length=1, max_length=RULES.version_name_max_length)


class ArticleVersionOut(BaseModel):
    id: int
    version_name: str
    ai_prompt: Optional[str] = None
    validation_status: HtmlValidationStatus
    validation_error: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ArticleSummary(BaseModel):
    id: int
    title: Optional[str] = None
    slug: Optional[str] = None
    category: str
    excerpt: Optional[str] = None
    author: str
    tags: List[str] = []
    is_published: bool
    is_featured: bool
    published_at: Optional[datetime] = None
    created_at: datetime
    last_modified: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("tags", mode="before")
    @classmethod
    def tag_names(cls, v: Any) -> List[str]:
        return sorted(tag if isinstance(tag, str) else tag.name for tag in v or [])


class ArticleDetail(ArticleSummary):
    file_path: str
    file_name: str
    main_version: Optional[ArticleVersionOut] = None
    versions: List[ArticleVersionOut] = []


class ArticleList(BaseModel):
    items: List[ArticleSummary]
    total: int
    page: int
    per_page: int


class ArticleMarkdown(BaseModel):
    id: int
    markdown: str


class ExistsResponse(BaseModel):
    exists: bool


class DeleteVersionResponse(BaseModel):
    # True when the last version was removed and the article went with it
    article_deleted: bool
