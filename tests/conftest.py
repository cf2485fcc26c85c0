import os
import shutil
import tempfile
from typing import AsyncGenerator

import bcrypt

# Settings are read at import time, so the environment must be ready first
_TEST_DIR = tempfile.mkdtemp(prefix="folio-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ADMIN_USERNAME"] = "admin_test"
os.environ["ADMIN_PASSWORD_HASH"] = bcrypt.hashpw(b"password", bcrypt.gensalt()).decode("utf-8")
os.environ["DATA_ROOT_PATH"] = os.path.join(_TEST_DIR, "data")
os.environ["AI_API_KEY"] = ""
os.environ["BLOG_AUTHOR"] = "Tester"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from folio.config import settings
from folio.database import Base, get_db
from folio.main import app
from folio.models import article as _article_models  # noqa: F401  registers tables
from folio.services.article import ArticleService
from folio.services.renderer import MarkdownRenderer
from folio.services.storage import ContentStorage
from folio.services.tag import TagService

engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
TestingSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
async def setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    shutil.rmtree(settings.DATA_ROOT_PATH, ignore_errors=True)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def storage() -> ContentStorage:
    return ContentStorage(settings.DATA_ROOT_PATH)


@pytest.fixture
def renderer() -> MarkdownRenderer:
    return MarkdownRenderer()


@pytest.fixture
def service(db_session: AsyncSession, renderer: MarkdownRenderer, storage: ContentStorage) -> ArticleService:
    return ArticleService(db_session, renderer=renderer, storage=storage)


@pytest.fixture
def tag_service(db_session: AsyncSession) -> TagService:
    return TagService(db_session)


@pytest.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
async def admin_token_headers(client: AsyncClient) -> dict:
    response = await client.post("/api/v1/auth/login", data={"username": "admin_test", "password": "password"})
    token = response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
