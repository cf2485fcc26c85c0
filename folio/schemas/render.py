from typing import List, Optional

from pydantic import BaseModel, Field

from folio.core.html_validator import HtmlValidationStatus, ValidationMode
from folio.core.rules import RULES


class RenderRequest(BaseModel):
    markdown: str = Field(..., min_length=1, max_length=RULES.article.markdown.max_length)
    custom_prompt: Optional[str] = None


class HtmlValidationRequest(BaseModel):
    html: str
    # Defaults to the configured mode
    mode: Optional[ValidationMode] = None


class HtmlValidationResponse(BaseModel):
    status: HtmlValidationStatus
    is_valid: bool
    error_message: Optional[str] = None
    warnings: List[str] = []


class Token(BaseModel):
    access_token: str
    token_type: str
