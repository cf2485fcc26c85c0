"""initial

Revision ID: 001
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from folio.core.rules import RULES

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

article = RULES.article


def upgrade() -> None:
    # Create tags table
    op.create_table('tags',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=RULES.tag.max_length), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_tags_name'), 'tags', ['name'], unique=True)

    # Create articles table (main version FK is added once versions exist)
    op.create_table('articles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(length=article.title.max_length), nullable=True),
        sa.Column('slug', sa.String(length=article.slug.max_length), nullable=True),
        sa.Column('category', sa.String(length=article.category.max_length), nullable=False),
        sa.Column('excerpt', sa.String(length=article.excerpt.max_length), nullable=True),
        sa.Column('author', sa.String(length=article.author.max_length), nullable=False),
        sa.Column('file_path', sa.String(length=article.file_path.max_length), nullable=False),
        sa.Column('file_name', sa.String(length=article.file_name.max_length), nullable=False),
        sa.Column('is_published', sa.Boolean(), nullable=False),
        sa.Column('is_featured', sa.Boolean(), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_modified', sa.DateTime(timezone=True), nullable=False),
        sa.Column('main_version_id', sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('title'),
        sa.UniqueConstraint('file_path', 'file_name', name='uq_articles_file_path_file_name')
    )
    op.create_index(op.f('ix_articles_slug'), 'articles', ['slug'], unique=True)
    op.create_index('idx_articles_category', 'articles', ['category'], unique=False)
    op.create_index('idx_articles_is_published', 'articles', ['is_published'], unique=False)
    op.create_index('idx_articles_is_featured', 'articles', ['is_featured'], unique=False)

    # Create article_versions table
    op.create_table('article_versions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('article_id', sa.Integer(), nullable=False),
        sa.Column('version_name', sa.String(length=RULES.version_name_max_length), nullable=False),
        sa.Column('ai_prompt', sa.Text(), nullable=True),
        sa.Column('validation_status', sa.String(length=20), nullable=False),
        sa.Column('validation_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['article_id'], ['articles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('article_id', 'version_name', name='uq_article_versions_article_name')
    )
    op.create_index(op.f('ix_article_versions_article_id'), 'article_versions', ['article_id'], unique=False)

    op.create_foreign_key(
        'fk_articles_main_version_id', 'articles', 'article_versions',
        ['main_version_id'], ['id'], ondelete='SET NULL'
    )

    # Create article_tags association table
    op.create_table('article_tags',
        sa.Column('article_id', sa.Integer(), nullable=False),
        sa.Column('tag_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['article_id'], ['articles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['tag_id'], ['tags.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('article_id', 'tag_id')
    )
    op.create_index(op.f('ix_article_tags_tag_id'), 'article_tags', ['tag_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_article_tags_tag_id'), table_name='article_tags')
    op.drop_table('article_tags')
    op.drop_constraint('fk_articles_main_version_id', 'articles', type_='foreignkey')
    op.drop_index(op.f('ix_article_versions_article_id'), table_name='article_versions')
    op.drop_table('article_versions')
    op.drop_index('idx_articles_is_featured', table_name='articles')
    op.drop_index('idx_articles_is_published', table_name='articles')
    op.drop_index('idx_articles_category', table_name='articles')
    op.drop_index(op.f('ix_articles_slug'), table_name='articles')
    op.drop_table('articles')
    op.drop_index(op.f('ix_tags_name'), table_name='tags')
    op.drop_table('tags')
