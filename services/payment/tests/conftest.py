"""Payment Service テスト共通フィクスチャ"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app import schema
from app.config import PaymentContext, Settings
from app.signature import compute_signature
from app.stripe_client import StripeClient

WEBHOOK_SECRET = "whsec_test_secret"
FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


class FakeStripe:
    """httpx.MockTransport 用のハンドラ。受け取ったリクエストを記録する。"""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status = 200
        self.payload: Any = {
            "id": "cs_test_1",
            "url": "https://checkout.stripe.com/c/pay/cs_test_1",
        }
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status, json=self.payload)

    def last_form(self) -> dict[str, str]:
        form = httpx.QueryParams(self.requests[-1].content.decode())
        return dict(form.items())


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'payment.db'}"


@pytest.fixture
def settings(db_url) -> Settings:
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        app_url="https://shop.example.com",
        database_url=db_url,
    )


@pytest.fixture
async def engine(db_url):
    engine = create_async_engine(db_url, connect_args={"timeout": 30})
    async with engine.begin() as conn:
        await conn.run_sync(schema.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def async_session(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def seeded(async_session):
    """p1 (500 usd, 有効) と p2 (無効) を登録する"""
    async with async_session() as session:
        await session.execute(
            insert(schema.products),
            [
                {
                    "id": "p1",
                    "name": "Classic Tee",
                    "description": "Cotton t-shirt",
                    "price_cents": 500,
                    "currency": "usd",
                    "active": True,
                },
                {
                    "id": "p2",
                    "name": "Retired Mug",
                    "description": "No longer sold",
                    "price_cents": 900,
                    "currency": "usd",
                    "active": False,
                },
            ],
        )
        await session.commit()


@pytest.fixture
def fake_stripe() -> FakeStripe:
    return FakeStripe()


@pytest.fixture
def redis() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
async def stripe_client(settings, fake_stripe):
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake_stripe))
    yield StripeClient(http, settings.stripe_secret_key, settings.stripe_api_base)
    await http.aclose()


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def make_ctx(settings, redis, stripe_client, now):
    """セッションを受け取り、決定的な乱数源と時計を持つ PaymentContext を返す"""

    def _make(session: AsyncSession, **overrides) -> PaymentContext:
        values = {
            "settings": settings,
            "session": session,
            "redis": redis,
            "stripe": stripe_client,
            "token_bytes": lambda n: b"\xab" * n,
            "clock": lambda: now,
        }
        values.update(overrides)
        return PaymentContext(**values)

    return _make


@pytest.fixture
def sign():
    """Stripe-Signature ヘッダーを組み立てる"""

    def _sign(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = 1700000000) -> str:
        return f"t={timestamp},v1={compute_signature(secret, str(timestamp), body)}"

    return _sign


def checkout_completed(
    event_id: str = "evt_1",
    session_id: str = "cs_test_1",
    payment_status: str = "paid",
    metadata: dict | None = None,
    **session_fields,
) -> dict:
    if metadata is None:
        metadata = {"product_id": "p1", "quantity": "2", "status_token": "tok_1"}
    obj = {
        "id": session_id,
        "object": "checkout.session",
        "payment_status": payment_status,
        "payment_intent": "pi_test_1",
        "customer_details": {"email": "buyer@example.com"},
        "metadata": metadata,
    }
    obj.update(session_fields)
    return {"id": event_id, "type": "checkout.session.completed", "data": {"object": obj}}


@pytest.fixture
def event_factory():
    return checkout_completed


@pytest.fixture
def to_body():
    def _to_body(event: dict) -> bytes:
        return json.dumps(event, indent=2).encode()

    return _to_body
