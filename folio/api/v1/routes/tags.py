from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query

from folio.api.v1 import dependencies
from folio.schemas.tag import CategoryStat, TagStat
from folio.services.tag import TagService

router = APIRouter()


@router.get("/", response_model=List[TagStat])
async def tag_statistics(
    category: Optional[str] = None,
    include_unpublished: bool = False,
    service: TagService = Depends(dependencies.get_tag_service),
    admin: Optional[str] = Depends(dependencies.get_optional_admin)
) -> Any:
    """
    Number of articles per tag. Drafts are counted only for the admin.
    """
    return await service.tag_statistics(
        category=category, include_unpublished=include_unpublished and admin is not None
    )


@router.get("/categories", response_model=List[CategoryStat])
async def category_statistics(
    tags: Optional[List[str]] = Query(None),
    include_unpublished: bool = False,
    service: TagService = Depends(dependencies.get_tag_service),
    admin: Optional[str] = Depends(dependencies.get_optional_admin)
) -> Any:
    """
    Number of articles per category among articles carrying all given tags.
    """
    return await service.category_statistics(
        tags=tags, include_unpublished=include_unpublished and admin is not None
    )
