"""
Payment Service: イベント定義

受信側: Stripe から届く Webhook イベント（必要なフィールドのみ定義）
発行側: 注文が支払い済みになったことを order_events チャネルへ通知する OrderPaid
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EventData(BaseModel):
    object: dict[str, Any] = Field(default_factory=dict)


class StripeEvent(BaseModel):
    """Webhook イベント本体 {id, type, data: {object}}"""
    id: str = Field(min_length=1)
    type: str
    data: EventData = Field(default_factory=EventData)


class CustomerDetails(BaseModel):
    email: str | None = None


class CheckoutSession(BaseModel):
    """checkout.session.completed の data.object"""
    id: str
    payment_status: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    customer_details: CustomerDetails | None = None
    customer_email: str | None = None
    # 展開指定時はオブジェクトになる
    payment_intent: str | dict[str, Any] | None = None


class OrderPaid(BaseModel):
    """注文が支払い済みになった"""
    order_id: str
    product_id: str
    quantity: int
    customer_email: str
    checkout_session_id: str
    timestamp: datetime
