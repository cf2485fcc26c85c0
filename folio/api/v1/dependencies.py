from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from folio.api.v1.errors import error_detail
from folio.config import settings
from folio.core.errors import ErrorCode
from folio.core.security import ALGORITHM
from folio.database import get_db
from folio.services.article import ArticleService
from folio.services.auth import AuthService
from folio.services.renderer import BaseRenderer, get_renderer
from folio.services.storage import ContentStorage, get_storage
from folio.services.tag import TagService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


def _username_from_token(token: str) -> Optional[str]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    username = payload.get("sub")
    if not AuthService().is_admin(username):
        return None
    return username


async def get_current_admin(token: str = Depends(oauth2_scheme)) -> str:
    username = _username_from_token(token)
    if username is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_detail(ErrorCode.UNAUTHORIZED, "Could not validate credentials"),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return username


async def get_optional_admin(token: Optional[str] = Depends(optional_oauth2_scheme)) -> Optional[str]:
    """The admin's name when a valid token is sent; public callers get ``None``."""
    if not token:
        return None
    return _username_from_token(token)


def get_article_service(
    db: AsyncSession = Depends(get_db),
    renderer: BaseRenderer = Depends(get_renderer),
    storage: ContentStorage = Depends(get_storage)
) -> ArticleService:
    return ArticleService(db, renderer=renderer, storage=storage)


def get_tag_service(db: AsyncSession = Depends(get_db)) -> TagService:
    return TagService(db)
