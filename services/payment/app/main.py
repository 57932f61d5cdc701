"""
Payment Service: FastAPI エントリーポイント

┌──────────┐  POST /api/checkout/session   ┌─────────────────┐
│ Frontend │ ────────────────────────────▶ │ Payment Service │ ── Stripe API
└──────────┘                                └────────▲────────┘
                                                     │ POST /api/webhooks/stripe
                                            ┌────────┴────────┐
                                            │     Stripe      │ (at-least-once)
                                            └─────────────────┘

注文は Webhook 経由でのみ作成される。作成時に Redis の order_events へ
OrderPaid を発行する。
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import redis.asyncio as aioredis
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from . import checkout, queries, schema, webhooks
from .config import PaymentContext, Settings, configure_logging
from .errors import ConfigurationError, NotFound, PaymentError
from .stripe_client import StripeClient

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    redis: aioredis.Redis | None = None,
    stripe_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """
    アプリケーションを組み立てる。

    redis / stripe_transport はテストで差し替えるためのもの。
    省略時は設定の REDIS_URL と実際の Stripe API を使う。
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_async_engine(settings.database_url, echo=False)
        async with engine.begin() as conn:
            await conn.run_sync(schema.metadata.create_all)
        app.state.async_session = sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        app.state.redis = redis or aioredis.from_url(
            settings.redis_url, decode_responses=True
        )
        http = httpx.AsyncClient(timeout=settings.stripe_timeout, transport=stripe_transport)
        app.state.stripe = StripeClient(
            http, settings.stripe_secret_key, settings.stripe_api_base
        )
        yield
        await http.aclose()
        if redis is None:
            await app.state.redis.aclose()
        await engine.dispose()

    app = FastAPI(title="Payment Service", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["content-type"],
    )

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError):
        if isinstance(exc, ConfigurationError):
            logger.error("Service misconfigured: %s", exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    # ── Catalog / Checkout ───────────────────────────

    @app.get("/api/products")
    async def list_products(ctx: PaymentContext = Depends(get_context)):
        """有効な商品を新しい順に返す"""
        return {"products": await queries.list_active_products(ctx.session)}

    @app.post("/api/checkout/session")
    async def create_checkout_session(
        request: Request,
        ctx: PaymentContext = Depends(get_context),
    ):
        """Checkout セッションを作成し、Stripe のリダイレクト URL を返す"""
        raw_body = await request.body()
        return await checkout.create_checkout_intent(ctx, raw_body)

    # ── Webhook ──────────────────────────────────────

    @app.post("/api/webhooks/stripe")
    async def stripe_webhook(
        request: Request,
        ctx: PaymentContext = Depends(get_context),
    ):
        # 署名検証には生ボディが必要
        raw_body = await request.body()
        return await webhooks.handle_stripe_webhook(
            ctx, request.headers.get("stripe-signature"), raw_body
        )

    # ── Order status ─────────────────────────────────

    @app.get("/api/orders/status/{status_token}")
    async def order_status(
        status_token: str,
        ctx: PaymentContext = Depends(get_context),
    ):
        order = await queries.get_order_status(ctx.session, status_token)
        if not order:
            raise NotFound("Order not found")
        return order

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "payment-service"}

    return app


async def get_context(request: Request) -> AsyncIterator[PaymentContext]:
    """リクエストごとに DB セッションを開き、PaymentContext を組み立てる。"""
    state = request.app.state
    async with state.async_session() as session:
        yield PaymentContext(
            settings=state.settings,
            session=session,
            redis=state.redis,
            stripe=state.stripe,
        )


def main() -> None:
    """uvicorn で起動する。ログ設定はここでのみ行う。"""
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
