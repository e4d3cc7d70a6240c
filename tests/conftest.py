"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- HTTP test client over the ASGI app
- Test data factories (vendors, accounts, posts, webhook events)
- Signed webhook payloads
"""
# secrets must be in the environment before the settings singleton is built
import os
os.environ.setdefault("INSTAGRAM_APP_SECRET", "test-app-secret")
os.environ.setdefault("INSTAGRAM_VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

import json
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from engagement_hub.api.dependencies.webhook_auth import compute_signature
from engagement_hub.core.config import settings
from engagement_hub.db.compat import utcnow
from engagement_hub.db.database import Base, get_db
from engagement_hub.db.models.social_media_account import AccountStatus, SocialMediaAccount, SocialPlatform
from engagement_hub.db.models.social_media_post import PostContentType, SocialMediaPost
from engagement_hub.db.models.vendor import Vendor
from engagement_hub.db.models.webhook_event import EventType, WebhookEvent
from engagement_hub.domain.event_classifier import determine_priority
from engagement_hub.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_HEADERS = {"X-Admin-API-Key": "test-admin-key"}


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def app_secret(monkeypatch) -> str:
    """Pin the app secret the signature dependency reads"""
    monkeypatch.setattr(settings, "INSTAGRAM_APP_SECRET", "test-app-secret")
    return "test-app-secret"


@pytest.fixture
def admin_headers(monkeypatch) -> dict[str, str]:
    monkeypatch.setattr(settings, "ADMIN_API_KEY", "test-admin-key")
    return dict(ADMIN_HEADERS)


def signed_request(payload: Any, secret: str = "test-app-secret") -> tuple[bytes, dict[str, str]]:
    """Body and headers of a correctly signed webhook delivery"""
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    return body, {
        "Content-Type": "application/json",
        "X-Hub-Signature-256": compute_signature(body, secret),
    }


def comment_payload(
    account_id: str = "17841400000000001",
    comment_id: str = "c-1",
    text: str = "Love this, amazing quality!",
    media_id: str = "m-1",
    time: int = 1_700_000_000,
) -> dict[str, Any]:
    return {
        "object": "instagram",
        "entry": [{
            "id": account_id,
            "time": time,
            "changes": [{
                "field": "comments",
                "value": {
                    "id": comment_id,
                    "text": text,
                    "from": {"id": "u-1", "username": "shopper"},
                    "media": {"id": media_id},
                },
            }],
        }],
    }


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def vendor_factory(db_session: AsyncSession):
    """Factory for creating vendors"""
    async def _create_vendor(
        name: str = "Test Vendor",
        notification_preferences: dict[str, bool] | None = None,
        notification_webhook_url: str | None = None,
    ) -> Vendor:
        vendor = Vendor(
            name=name,
            notification_preferences=notification_preferences or {},
            notification_webhook_url=notification_webhook_url,
        )
        db_session.add(vendor)
        await db_session.commit()
        await db_session.refresh(vendor)
        return vendor

    return _create_vendor


@pytest.fixture
def account_factory(db_session: AsyncSession, vendor_factory):
    """Factory for creating connected Instagram accounts"""
    async def _create_account(
        vendor: Vendor | None = None,
        platform_account_id: str = "17841400000000001",
        status: AccountStatus = AccountStatus.ACTIVE,
        access_token: str | None = "long-lived-token",
        expires_at: datetime | None = None,
        token_refreshed_at: datetime | None = None,
        created_at: datetime | None = None,
    ) -> SocialMediaAccount:
        vendor = vendor or await vendor_factory()
        account = SocialMediaAccount(
            vendor_id=vendor.id,
            platform=SocialPlatform.INSTAGRAM,
            platform_account_id=platform_account_id,
            username="test_shop",
            access_token=access_token,
            expires_at=expires_at or utcnow() + timedelta(days=50),
            token_refreshed_at=token_refreshed_at,
            status=status,
        )
        if created_at is not None:
            account.created_at = created_at
        db_session.add(account)
        await db_session.commit()
        await db_session.refresh(account)
        return account

    return _create_account


@pytest.fixture
def post_factory(db_session: AsyncSession):
    """Factory for creating tracked posts"""
    async def _create_post(
        account: SocialMediaAccount,
        platform_post_id: str = "m-1",
        content_type: PostContentType = PostContentType.POST,
        likes_count: int = 0,
        comments_count: int = 0,
        caption: str | None = "New collection is live",
    ) -> SocialMediaPost:
        post = SocialMediaPost(
            account_id=account.id,
            platform_post_id=platform_post_id,
            content_type=content_type,
            caption=caption,
            likes_count=likes_count,
            comments_count=comments_count,
        )
        db_session.add(post)
        await db_session.commit()
        await db_session.refresh(post)
        return post

    return _create_post


@pytest.fixture
def event_factory(db_session: AsyncSession):
    """Factory for creating stored webhook events in any processing state"""
    async def _create_event(
        account: SocialMediaAccount | None = None,
        event_type: EventType = EventType.LIKE,
        payload: dict[str, Any] | None = None,
        processed: bool = False,
        processing_attempts: int = 0,
        occurred_at: datetime | None = None,
        processed_at: datetime | None = None,
        last_attempted_at: datetime | None = None,
        last_error: str | None = None,
        subject_id: int | None = None,
    ) -> WebhookEvent:
        event = WebhookEvent(
            account_id=account.id if account is not None else None,
            event_type=event_type,
            priority=determine_priority(event_type),
            payload=payload or {},
            occurred_at=occurred_at or utcnow(),
            processed=processed,
            processed_at=processed_at,
            processing_attempts=processing_attempts,
            last_attempted_at=last_attempted_at,
            last_error=last_error,
            subject_id=subject_id,
        )
        db_session.add(event)
        await db_session.commit()
        await db_session.refresh(event)
        return event

    return _create_event


@pytest.fixture
async def sample_account(account_factory) -> SocialMediaAccount:
    return await account_factory()


# ============================================================================
# Celery task mocks
# ============================================================================

DISPATCHED_TASKS = (
    "process_comment",
    "process_message",
    "process_mention",
    "process_webhook_event",
    "send_notification",
)


@pytest.fixture
def mock_tasks():
    """Replace the dispatch targets in the tasks module; ``.delay`` calls are recorded"""
    from contextlib import ExitStack
    from types import SimpleNamespace
    from unittest.mock import MagicMock, patch

    from engagement_hub.workers import tasks

    with ExitStack() as stack:
        mocks = {
            name: stack.enter_context(patch.object(tasks, name, MagicMock(name=name)))
            for name in DISPATCHED_TASKS
        }
        yield SimpleNamespace(**mocks)


# ============================================================================
# Circuit Breaker Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from engagement_hub.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()
