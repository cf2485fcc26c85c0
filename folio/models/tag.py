from sqlalchemy import Column, ForeignKey, Integer, String, Table
from sqlalchemy.orm import Mapped, mapped_column

from folio.core.errors import ValidationFailed
from folio.core.rules import RULES
from folio.database import Base

article_tags = Table(
    "article_tags",
    Base.metadata,
    Column("article_id", Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True, index=True),
)


class Tag(Base):
    """
    Name-keyed label shared by many articles.

    Tags are never removed when an article drops them; orphans are cleaned up
    by an explicit sweep (see ``TagService.sweep_orphans``).
    """
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(RULES.tag.max_length), unique=True, nullable=False, index=True)

    @classmethod
    def create(cls, name: str) -> "Tag":
        error = RULES.tag.check(name, "Tag name")
        if error:
            raise ValidationFailed(error)
        return cls(name=name)

    def __repr__(self) -> str:
        return f"<Tag {self.name!r}>"
