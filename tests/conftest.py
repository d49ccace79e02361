"""Shared pytest fixtures for backend tests."""

import os
from datetime import datetime
from typing import AsyncGenerator, Optional
from uuid import UUID

# Settings are read at import time; provide test values before importing the app
os.environ.setdefault("JWT_SECRET", "letra-test-secret")
os.environ.setdefault("DB_WARMUP_ON_STARTUP", "false")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from letra.database import Base, get_db
from letra.main import app
from letra.models import Document
from letra.services.auth_service import create_access_token

# Use in-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

USER_ID = "user_2aLetraOwner"
OTHER_USER_ID = "user_2bSomeoneElse"


@pytest_asyncio.fixture
async def engine():
    """Create a test database engine with SQLite."""
    engine = create_async_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_maker) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app with a fresh session per request."""

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    """Authorization headers for the document owner."""
    token = create_access_token(data={"sub": USER_ID, "email": "owner@example.com"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers_2() -> dict:
    """Authorization headers for a second user."""
    token = create_access_token(data={"sub": OTHER_USER_ID, "email": "other@example.com"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_document(db_session: AsyncSession):
    """Factory inserting a document directly through the session."""

    async def _make(
        title: str = "Untitled",
        user_id: str = USER_ID,
        parent_document: Optional[UUID] = None,
        is_archived: bool = False,
        is_published: bool = False,
        created_at: Optional[datetime] = None,
        **fields,
    ) -> Document:
        document = Document(
            title=title,
            user_id=user_id,
            parent_document=parent_document,
            is_archived=is_archived,
            is_published=is_published,
            **fields,
        )
        if created_at is not None:
            document.created_at = created_at
        db_session.add(document)
        await db_session.commit()
        await db_session.refresh(document)
        return document

    return _make


async def fetch_document(db: AsyncSession, document_id: UUID) -> Optional[Document]:
    """Reload a document from the database, bypassing the identity map."""
    result = await db.execute(
        select(Document)
        .where(Document.id == document_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
