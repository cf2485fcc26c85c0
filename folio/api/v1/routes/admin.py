import json
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import HTMLResponse, StreamingResponse

from folio.api.v1 import dependencies
from folio.api.v1.errors import not_found, raise_for_result
from folio.config import settings
from folio.core.html_validator import validate_html
from folio.schemas.article import (
    ArticleCreate, ArticleDetail, ArticleList, ArticleMarkdown, ArticleMetadataUpdate,
    DeleteVersionResponse, ExistsResponse, MainVersionSwitch, VersionSubmit,
)
from folio.schemas.render import HtmlValidationRequest, HtmlValidationResponse, RenderRequest
from folio.schemas.tag import SweepResult
from folio.services.article import ArticleService
from folio.services.renderer import BaseRenderer, get_renderer
from folio.services.tag import TagService

router = APIRouter(dependencies=[Depends(dependencies.get_current_admin)])


@router.get("/stats")
async def get_stats(
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    """
    Get dashboard statistics.
    """
    return await service.get_stats()


# Articles

@router.get("/articles", response_model=ArticleList)
async def list_all_articles(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    featured: Optional[bool] = None,
    q: Optional[str] = None,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    """
    List ALL articles (including drafts) for admin.
    """
    items, total = await service.get_articles(
        skip=(page - 1) * per_page, limit=per_page, published_only=False,
        category=category, tags=tags, featured=featured, q=q
    )
    return {"items": items, "total": total, "page": page, "per_page": per_page}


@router.post("/articles", response_model=ArticleDetail, status_code=status.HTTP_201_CREATED)
async def create_article(
    article_in: ArticleCreate,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    """
    Create a new article with its first version.
    """
    return raise_for_result(await service.create_article(article_in))


async def _require_article(article_id: int, service: ArticleService):
    article = await service.get_article(article_id)
    if article is None:
        raise not_found(f"Article {article_id} not found")
    return article


@router.get("/articles/{article_id}", response_model=ArticleDetail)
async def get_article(
    article_id: int,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    return await _require_article(article_id, service)


@router.get("/articles/{article_id}/markdown", response_model=ArticleMarkdown)
async def get_article_markdown(
    article_id: int,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    article = await _require_article(article_id, service)
    markdown = service.read_markdown(article)
    if markdown is None:
        raise not_found(f"Markdown source of article {article_id} not found")
    return {"id": article.id, "markdown": markdown}


@router.get("/articles/{article_id}/versions/{version_name}/html", response_class=HTMLResponse)
async def get_version_html(
    article_id: int,
    version_name: str,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    """
    Preview any version, including ones that failed validation.
    """
    article = await _require_article(article_id, service)
    html = service.read_version_html(article, version_name)
    if html is None:
        raise not_found(f"Version '{version_name}' of article {article_id} not found")
    return HTMLResponse(content=html)


@router.patch("/articles/{article_id}", response_model=ArticleDetail)
async def save_metadata(
    article_id: int,
    article_in: ArticleMetadataUpdate,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    return raise_for_result(await service.save_metadata(article_id, article_in))


@router.post("/articles/{article_id}/versions", response_model=ArticleDetail, status_code=status.HTTP_201_CREATED)
async def submit_version(
    article_id: int,
    version_in: VersionSubmit,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    return raise_for_result(await service.submit_version(article_id, version_in))


@router.put("/articles/{article_id}/main-version", response_model=ArticleDetail)
async def set_main_version(
    article_id: int,
    switch: MainVersionSwitch,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    return raise_for_result(await service.set_main_version(article_id, switch.version_name))


@router.post("/articles/{article_id}/publish", response_model=ArticleDetail)
async def publish_article(
    article_id: int,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    return raise_for_result(await service.publish(article_id))


@router.post("/articles/{article_id}/unpublish", response_model=ArticleDetail)
async def unpublish_article(
    article_id: int,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    return raise_for_result(await service.unpublish(article_id))


@router.delete("/articles/{article_id}/versions/{version_name}", response_model=DeleteVersionResponse)
async def delete_version(
    article_id: int,
    version_name: str,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    article_deleted = raise_for_result(await service.delete_version(article_id, version_name))
    return {"article_deleted": article_deleted}


@router.delete("/articles/{article_id}")
async def delete_article(
    article_id: int,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    raise_for_result(await service.delete_article(article_id))
    return {"status": "ok"}


# Uniqueness checks

@router.get("/exists/slug", response_model=ExistsResponse)
async def slug_exists(
    slug: str,
    exclude_id: Optional[int] = None,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    return {"exists": await service.slug_exists(slug, exclude_id)}


@router.get("/exists/title", response_model=ExistsResponse)
async def title_exists(
    title: str,
    exclude_id: Optional[int] = None,
    service: ArticleService = Depends(dependencies.get_article_service)
) -> Any:
    return {"exists": await service.title_exists(title, exclude_id)}


# Tags

@router.post("/tags/sweep", response_model=SweepResult)
async def sweep_orphan_tags(
    service: TagService = Depends(dependencies.get_tag_service)
) -> Any:
    """
    Delete tags no article uses any more.
    """
    deleted = raise_for_result(await service.sweep_orphans())
    return {"deleted": deleted, "count": len(deleted)}


# Rendering

@router.post("/render/stream")
async def render_stream(
    render_in: RenderRequest,
    renderer: BaseRenderer = Depends(get_renderer)
) -> Any:
    """
    Render Markdown for preview, streamed as newline-delimited JSON progress events.
    """
    async def events():
        async for progress in renderer.render_stream(render_in.markdown, render_in.custom_prompt):
            yield json.dumps(progress.to_dict()) + "\n"

    return StreamingResponse(events(), media_type="application/x-ndjson")


@router.post("/validate-html", response_model=HtmlValidationResponse)
async def validate_html_content(validation_in: HtmlValidationRequest) -> Any:
    result = validate_html(
        validation_in.html,
        validation_in.mode or settings.HTML_VALIDATION_MODE,
        settings.HTML_TRUSTED_DOMAINS,
    )
    return {
        "status": result.status,
        "is_valid": result.is_valid,
        "error_message": result.error_message,
        "warnings": result.warnings,
    }
