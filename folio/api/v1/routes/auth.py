from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

from folio.api.v1 import dependencies
from folio.api.v1.errors import error_detail
from folio.core import security
from folio.core.errors import ErrorCode
from folio.schemas.render import Token
from folio.services.auth import AuthService

router = APIRouter()


@router.post("/login", response_model=Token)
async def login_access_token(form_data: OAuth2PasswordRequestForm = Depends()) -> Any:
    """
    OAuth2 compatible token login, get an access token for future requests
    """
    username = AuthService().authenticate(form_data.username, form_data.password)
    if not username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_detail(ErrorCode.UNAUTHORIZED, "Incorrect username or password"),
            headers={"WWW-Authenticate": "Bearer"},
        )

    return {
        "access_token": security.create_access_token(subject=username),
        "token_type": "bearer",
    }


@router.get("/me")
async def read_current_admin(username: str = Depends(dependencies.get_current_admin)) -> Any:
    """
    Check the access token
    """
    return {"username": username}
