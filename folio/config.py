from typing import List, Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from folio.core.html_validator import ValidationMode


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ADMIN_USERNAME: str
    ADMIN_PASSWORD_HASH: str
    ENVIRONMENT: Literal["development", "production"] = "development"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: List[str] = [
        "http://localhost",
        "http://localhost:8000",
        "http://localhost:3000",
    ]

    # Blog
    BLOG_NAME: str = "Folio"
    BLOG_AUTHOR: str = "Anonymous"
    ARTICLES_PER_PAGE: int = 10

    # Markdown and rendered HTML live under this directory
    DATA_ROOT_PATH: str = "./data"

    # HTML validation of rendered versions
    HTML_VALIDATION_MODE: ValidationMode = ValidationMode.WARNING
    HTML_TRUSTED_DOMAINS: List[str] = [
        "cdn.jsdelivr.net",
        "cdnjs.cloudflare.com",
        "unpkg.com",
    ]

    # AI rendering (OpenAI-compatible chat completions); without a key the
    # local Markdown renderer is used
    AI_API_KEY: Optional[str] = None
    AI_BASE_URL: str = "https://api.openai.com/v1"
    AI_MODEL: str = "gpt-4o-mini"
    AI_MAX_TOKENS: int = 16384
    AI_TEMPERATURE: float = 0.7
    AI_TIMEOUT_SECONDS: int = 600
    AI_MAX_RETRIES: int = 3
    AI_GLOBAL_PROMPT: Optional[str] = None

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> str:
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("postgresql://"):
                return v.replace("postgresql://", "postgresql+asyncpg://", 1)
            elif v.startswith("postgres://"):
                return v.replace("postgres://", "postgresql+asyncpg://", 1)
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


settings = Settings()
