"""
Payment Service: 設定と実行コンテキスト

設定値は環境変数から読み込む。秘密鍵などの必須値はリクエスト時に
require() で検証し、欠落していれば ConfigurationError (500) になる。

PaymentContext は各操作に明示的に渡す依存オブジェクト。
設定・DB セッション・Redis・Stripe クライアント・乱数源・時計をまとめる。
テストでは乱数源と時計を差し替えて決定的にできる。
"""

import logging
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import redis.asyncio as aioredis
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConfigurationError
from .stripe_client import StripeClient

# フィールド名 → 環境変数名
ENV_VARS = {
    "stripe_secret_key": "STRIPE_SECRET_KEY",
    "stripe_webhook_secret": "STRIPE_WEBHOOK_SECRET",
    "app_url": "APP_URL",
    "database_url": "DATABASE_URL",
    "redis_url": "REDIS_URL",
    "stripe_api_base": "STRIPE_API_BASE",
    "stripe_timeout": "STRIPE_TIMEOUT",
    "webhook_tolerance_seconds": "STRIPE_WEBHOOK_TOLERANCE",
    "log_level": "LOG_LEVEL",
}


class Settings(BaseModel):
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    app_url: str = ""
    database_url: str = "sqlite+aiosqlite:///./payment.db"
    redis_url: str = "redis://localhost:6379"
    stripe_api_base: str = "https://api.stripe.com/v1"
    stripe_timeout: float = 10.0
    # None = タイムスタンプの鮮度チェックなし（従来の挙動）
    webhook_tolerance_seconds: int | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """環境変数から設定を組み立てる。空文字の変数は未設定として扱う。"""
        environ = os.environ if environ is None else environ
        values = {
            name: environ[var]
            for name, var in ENV_VARS.items()
            if environ.get(var, "") != ""
        }
        return cls(**values)

    @property
    def webhook_secrets(self) -> list[str]:
        """署名シークレット一覧。ローテーション中はカンマ区切りで複数指定できる。"""
        return [s.strip() for s in self.stripe_webhook_secret.split(",") if s.strip()]

    def require(self, *names: str) -> None:
        for name in names:
            if not getattr(self, name):
                raise ConfigurationError(f"Missing {ENV_VARS[name]}")

    def require_webhook_secrets(self) -> list[str]:
        """カンマだけの値など、有効なシークレットが 1 つもなければ設定不備とする。"""
        webhook_secrets = self.webhook_secrets
        if not webhook_secrets:
            raise ConfigurationError(f"Missing {ENV_VARS['stripe_webhook_secret']}")
        return webhook_secrets


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PaymentContext:
    settings: Settings
    session: AsyncSession
    redis: aioredis.Redis
    stripe: StripeClient
    token_bytes: Callable[[int], bytes] = secrets.token_bytes
    clock: Callable[[], datetime] = utcnow


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
