import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from folio.core.errors import ValidationFailed, returns_result
from folio.core.rules import RULES
from folio.models.article import Article
from folio.models.tag import Tag, article_tags
from folio.schemas.tag import CategoryStat, TagStat

logger = logging.getLogger(__name__)


def normalize_tag_names(names: Iterable[str]) -> List[str]:
    """Strip and de-duplicate names, keeping first-seen order."""
    seen = set()
    result = []
    for name in names:
        name = (name or "").strip()
        if name and name not in seen:
            seen.add(name)
            result.append(name)
    return result


class TagService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_or_create(self, names: Iterable[str]) -> Set[Tag]:
        """
        Existing tags plus new pending ones for the given names.

        New tags are added to the session but not committed; they are written
        together with the article that references them.
        """
        names = normalize_tag_names(names)
        for name in names:
            error = RULES.tag.check(name, "Tag name")
            if error:
                raise ValidationFailed(error)
        if not names:
            return set()

        result = await self.db.execute(select(Tag).where(Tag.name.in_(names)))
        tags = {tag.name: tag for tag in result.scalars().all()}

        for name in names:
            if name not in tags:
                tag = Tag.create(name)
                self.db.add(tag)
                tags[name] = tag

        return set(tags.values())

    @returns_result
    async def sweep_orphans(self) -> List[str]:
        """Delete every tag no article references; returns the deleted names."""
        orphaned = ~exists().where(article_tags.c.tag_id == Tag.id)
        result = await self.db.execute(select(Tag.id, Tag.name).where(orphaned).order_by(Tag.name))
        rows = result.all()

        if rows:
            await self.db.execute(delete(Tag).where(Tag.id.in_([row.id for row in rows])))
        await self.db.commit()

        names = [row.name for row in rows]
        if names:
            logger.info("Swept %d orphaned tags: %s", len(names), ", ".join(names))
        return names

    async def tag_statistics(
        self,
        category: Optional[str] = None,
        include_unpublished: bool = False
    ) -> List[TagStat]:
        """Number of articles per tag, optionally within one category."""
        count = func.count(func.distinct(Article.id)).label("count")
        query = (
            select(Tag.name, count)
            .join(article_tags, article_tags.c.tag_id == Tag.id)
            .join(Article, Article.id == article_tags.c.article_id)
            .group_by(Tag.name)
        )
        if not include_unpublished:
            query = query.where(Article.is_published.is_(True))
        if category:
            query = query.where(Article.category == category)
        query = query.order_by(count.desc(), Tag.name)

        result = await self.db.execute(query)
        return [TagStat(name=row.name, count=row.count) for row in result.all() if row.count > 0]

    async def category_statistics(
        self,
        tags: Optional[List[str]] = None,
        include_unpublished: bool = False
    ) -> List[CategoryStat]:
        """Number of articles per category among articles carrying all of ``tags``."""
        count = func.count(Article.id).label("count")
        query = select(Article.category, count).group_by(Article.category)
        if not include_unpublished:
            query = query.where(Article.is_published.is_(True))

        for name in normalize_tag_names(tags or []):
            query = query.where(
                exists()
                .where(article_tags.c.article_id == Article.id)
                .where(article_tags.c.tag_id == Tag.id)
                .where(Tag.name == name)
            )
        query = query.order_by(count.desc(), Article.category)

        result = await self.db.execute(query)
        return [CategoryStat(name=row.category, count=row.count) for row in result.all() if row.count > 0]
