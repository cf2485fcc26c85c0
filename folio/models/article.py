"""
Article aggregate: an Article owns an append-only list of ArticleVersions and
points at exactly one of them as its main (public) version.

The domain rules live on the entities; they raise lifecycle errors which the
service layer turns into Results.
"""
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Set

from sqlalchemy import (
    Boolean, DateTime, Enum as SAEnum, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from folio.core.errors import InvalidOperation, ValidationFailed
from folio.core.html_validator import HtmlValidationStatus
from folio.core.rules import RULES, ValidationRule
from folio.database import Base
from folio.models.tag import Tag, article_tags

DEFAULT_AUTHOR = "Anonymous"
DEFAULT_CATEGORY = "Uncategorized"

_VERSION_NAME_RE = re.compile(r"^v(\d+)$")
_INVALID_FILE_NAME_CHARS = '<>:"/\\|?*'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def version_number(version_name: str) -> int:
    match = _VERSION_NAME_RE.match(version_name)
    return int(match.group(1)) if match else 0


def _ensure_valid(rule: ValidationRule, value: Optional[str], field_name: str) -> None:
    error = rule.check(value, field_name)
    if error:
        raise ValidationFailed(error)


class ArticleVersion(Base):
    """Immutable snapshot of one rendering of an article."""
    __tablename__ = "article_versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    article_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("articles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    version_name: Mapped[str] = mapped_column(String(RULES.version_name_max_length), nullable=False)
    # Prompt used to generate the HTML; empty when the author supplied it
    ai_prompt: Mapped[Optional[str]] = mapped_column(Text)
    validation_status: Mapped[HtmlValidationStatus] = mapped_column(
        SAEnum(
            HtmlValidationStatus,
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=HtmlValidationStatus.VALID
    )
    validation_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    article: Mapped["Article"] = relationship(
        "Article",
        back_populates="versions",
        foreign_keys=[article_id]
    )

    __table_args__ = (
        UniqueConstraint("article_id", "version_name", name="uq_article_versions_article_name"),
    )

    @property
    def number(self) -> int:
        return version_number(self.version_name)

    def __repr__(self) -> str:
        return f"<ArticleVersion {self.version_name} of article {self.article_id}>"


class Article(Base):
    __tablename__ = "articles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Title and slug stay empty until metadata is applied after creation
    title: Mapped[Optional[str]] = mapped_column(String(RULES.article.title.max_length), unique=True)
    slug: Mapped[Optional[str]] = mapped_column(String(RULES.article.slug.max_length), unique=True, index=True)
    category: Mapped[str] = mapped_column(
        String(RULES.article.category.max_length), nullable=False, default=DEFAULT_CATEGORY
    )
    excerpt: Mapped[Optional[str]] = mapped_column(String(RULES.article.excerpt.max_length))
    author: Mapped[str] = mapped_column(String(RULES.article.author.max_length), nullable=False, default=DEFAULT_AUTHOR)

    # Location of the Markdown source (relative to the markdown root)
    file_path: Mapped[str] = mapped_column(String(RULES.article.file_path.max_length), nullable=False, default="")
    file_name: Mapped[str] = mapped_column(String(RULES.article.file_name.max_length), nullable=False)

    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_modified: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    main_version_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey(
            "article_versions.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_articles_main_version_id"
        )
    )

    versions: Mapped[List[ArticleVersion]] = relationship(
        ArticleVersion,
        back_populates="article",
        foreign_keys=[ArticleVersion.article_id],
        cascade="all, delete-orphan",
        order_by=ArticleVersion.id,
        lazy="selectin"
    )
    # Written after the version row exists (Article <-> ArticleVersion cycle)
    main_version: Mapped[Optional[ArticleVersion]] = relationship(
        ArticleVersion,
        foreign_keys=[main_version_id],
        post_update=True,
        lazy="selectin"
    )
    tags: Mapped[Set[Tag]] = relationship(Tag, secondary=article_tags, lazy="selectin")

    __table_args__ = (
        UniqueConstraint("file_path", "file_name", name="uq_articles_file_path_file_name"),
        Index("idx_articles_category", "category"),
        Index("idx_articles_is_published", "is_published"),
        Index("idx_articles_is_featured", "is_featured"),
    )

    # ============================================
    # Creation
    # ============================================

    @classmethod
    def create(
        cls,
        file_name: str,
        file_path: str = "",
        author: Optional[str] = None,
        category: Optional[str] = None
    ) -> "Article":
        """
        Create a Draft article with no versions.

        Title, slug, tags and excerpt are attached later with
        ``apply_metadata`` (they may be generated after the file exists).
        When no category is given, the first segment of ``file_path`` is used.
        """
        file_path = (file_path or "").strip().strip("/")
        _validate_file_name(file_name)
        _ensure_valid(RULES.article.file_path, file_path, "File path")

        author = author or DEFAULT_AUTHOR
        _ensure_valid(RULES.article.author, author, "Author")

        if category is None:
            category = file_path.split("/")[0] if file_path else DEFAULT_CATEGORY
            if not RULES.article.category.is_valid(category):
                category = DEFAULT_CATEGORY
        _ensure_valid(RULES.article.category, category, "Category")

        now = utcnow()
        # Collections are initialised eagerly so a freshly flushed article
        # never lazy-loads them
        return cls(
            file_name=file_name,
            file_path=file_path,
            author=author,
            category=category,
            is_published=False,
            is_featured=False,
            created_at=now,
            last_modified=now,
            versions=[],
            main_version=None,
            tags=set(),
        )

    # ============================================
    # Metadata
    # ============================================

    def apply_metadata(
        self,
        title: Optional[str] = None,
        slug: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[Iterable[Tag]] = None,
        excerpt: Optional[str] = None,
        is_featured: Optional[bool] = None,
        file_name: Optional[str] = None
    ) -> None:
        """
        Update any subset of the metadata; ``None`` leaves a field untouched.

        Every provided value is validated before anything is assigned, so a
        failure leaves the article unchanged. Never touches publish state or
        versions.
        """
        tag_list = list(tags) if tags is not None else None

        if title is not None:
            _ensure_valid(RULES.article.title, title, "Title")
        if slug is not None:
            _ensure_valid(RULES.article.slug, slug, "Slug")
        if category is not None:
            _ensure_valid(RULES.article.category, category, "Category")
        if excerpt is not None:
            _ensure_valid(RULES.article.excerpt, excerpt, "Excerpt")
        if tag_list is not None:
            error = RULES.article.tags.check([tag.name for tag in tag_list], "Tags")
            if error:
                raise ValidationFailed(error)
        if file_name is not None:
            _validate_file_name(file_name)

        if title is not None:
            self.title = title
        if slug is not None:
            self.slug = slug
        if category is not None:
            self.category = category
        if excerpt is not None:
            self.excerpt = excerpt
        if tag_list is not None:
            self.tags = set(tag_list)
        if is_featured is not None:
            self.is_featured = is_featured
        if file_name is not None:
            self.file_name = file_name

        self.touch()

    @property
    def tag_names(self) -> List[str]:
        return sorted(tag.name for tag in self.tags)

    def touch(self) -> None:
        self.last_modified = utcnow()

    # ============================================
    # Versions
    # ============================================

    def get_version(self, version_name: str) -> Optional[ArticleVersion]:
        for version in self.versions:
            if version.version_name == version_name:
                return version
        return None

    def next_version_name(self) -> str:
        highest = max((version.number for version in self.versions), default=0)
        return f"v{highest + 1}"

    def latest_version(self, exclude: Optional[ArticleVersion] = None) -> Optional[ArticleVersion]:
        candidates = [v for v in self.versions if v is not exclude]
        if not candidates:
            return None
        return max(candidates, key=lambda v: (v.number, v.created_at))

    def submit_new_version(
        self,
        validation_status: HtmlValidationStatus,
        validation_error: Optional[str] = None,
        ai_prompt: Optional[str] = None
    ) -> ArticleVersion:
        """
        Append a version record. Rendering the HTML is the caller's job.

        The first version becomes the main version; later ones do not.
        """
        if self.id is None:
            raise ValidationFailed("Article must be saved before it can own versions")

        version = ArticleVersion(
            article_id=self.id,
            version_name=self.next_version_name(),
            ai_prompt=ai_prompt or None,
            validation_status=validation_status,
            validation_error=validation_error,
            created_at=utcnow(),
        )
        self.versions.append(version)

        if self.main_version is None:
            self.main_version = version

        self.touch()
        return version

    def set_main_version(self, version: ArticleVersion) -> None:
        """
        Repoint the main version without changing publish state.

        A published article never points at invalid HTML, so switching one
        to an invalid version is refused.
        """
        if not self._owns(version):
            raise InvalidOperation(f"Version '{version.version_name}' does not belong to this article")
        if self.is_published and version.validation_status == HtmlValidationStatus.INVALID:
            raise InvalidOperation(
                f"Cannot switch a published article to version '{version.version_name}': it failed HTML validation"
            )

        self.main_version = version
        self.touch()

    def remove_version(self, version: ArticleVersion) -> bool:
        """
        Remove one version.

        If it was the main version, the most recent remaining version becomes
        main and the article goes back to Draft. Returns ``True`` when no
        versions are left; the caller should then delete the whole article.
        """
        if not self._owns(version):
            raise InvalidOperation(f"Version '{version.version_name}' does not belong to this article")

        if self.main_version is version:
            self.main_version = self.latest_version(exclude=version)
            self.is_published = False

        self.versions.remove(version)

        if not self.versions:
            self.main_version = None
            self.is_published = False

        self.touch()
        return not self.versions

    def _owns(self, version: ArticleVersion) -> bool:
        return any(v is version for v in self.versions)

    # ============================================
    # Publish state
    # ============================================

    def publish(self) -> None:
        """
        Publish the current main version.

        The first publication timestamp is kept across unpublish/republish.
        """
        if not self.versions:
            raise InvalidOperation("Cannot publish: article has no versions")
        if self.main_version is None:
            raise InvalidOperation("Cannot publish: article has no main version")
        if self.main_version.validation_status == HtmlValidationStatus.INVALID:
            raise InvalidOperation(
                f"Cannot publish: main version '{self.main_version.version_name}' failed HTML validation"
            )

        self.is_published = True
        if self.published_at is None:
            self.published_at = utcnow()
        self.touch()

    def unpublish(self) -> None:
        self.is_published = False
        self.touch()

    def prepare_for_deletion(self) -> None:
        """Break the main-version reference before the rows are deleted."""
        self.main_version = None
        self.is_published = False

    def __repr__(self) -> str:
        return f"<Article {self.id} {self.slug!r}>"


def _validate_file_name(file_name: str) -> None:
    _ensure_valid(RULES.article.file_name, file_name, "File name")
    if any(char in _INVALID_FILE_NAME_CHARS for char in file_name):
        raise ValidationFailed(
            f"File name cannot contain any of the following characters: {' '.join(_INVALID_FILE_NAME_CHARS)}"
        )
