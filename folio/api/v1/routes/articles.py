from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse

from folio.api.v1 import dependencies
from folio.api.v1.errors import not_found
from folio.config import settings
from folio.schemas.article import ArticleDetail, ArticleList
from folio.services.article import ArticleService

router = APIRouter()


@router.get("/", response_model=ArticleList)
async def list_articles(
    page: int = Query(1, ge=1),
    per_page: int = Query(settings.ARTICLES_PER_PAGE, ge=1, le=100),
    category: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    featured: Optional[bool] = None,
    q: Optional[str] = None,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    """
    List published articles.
    """
    skip = (page - 1) * per_page
    items, total = await service.get_articles(
        skip=skip, limit=per_page, published_only=True,
        category=category, tags=tags, featured=featured, q=q
    )

    return {
        "items": items,
        "total": total,
        "page": page,
        "per_page": per_page
    }


async def _visible_article(slug: str, service: ArticleService, admin: Optional[str]):
    article = await service.get_article_by_slug(slug)
    # Drafts are only visible to the admin
    if not article or (not article.is_published and admin is None):
        raise not_found(f"Article '{slug}' not found", public=admin is None)
    return article


@router.get("/{slug}", response_model=ArticleDetail)
async def get_article(
    slug: str,
    service: ArticleService = Depends(dependencies.get_article_service),
    admin: Optional[str] = Depends(dependencies.get_optional_admin)
) -> Any:
    """
    Get a specific article by slug.
    """
    return await _visible_article(slug, service, admin)


@router.get("/{slug}/html", response_class=HTMLResponse)
async def get_article_html(
    slug: str,
    service: ArticleService = Depends(dependencies.get_article_service),
    admin: Optional[str] = Depends(dependencies.get_optional_admin)
) -> Any:
    """
    Rendered HTML of the article's main version.
    """
    article = await _visible_article(slug, service, admin)
    html = service.read_main_html(article)
    if html is None:
        raise not_found(f"Article '{slug}' has no rendered content", public=admin is None)
    return HTMLResponse(content=html)
