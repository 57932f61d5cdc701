"""
Payment Service: テーブル定義

冪等性は DB の一意制約で担保する:
- stripe_events_processed.id (PRIMARY KEY): イベント ID ごとに 1 行
- orders.stripe_checkout_session_id (UNIQUE): checkout session ごとに注文は 1 件

アプリ側の「確認してから挿入」だけでは同時配信の競合を防げない。
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    true,
)

metadata = MetaData()

products = Table(
    "products",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("price_cents", Integer, nullable=False),
    Column("currency", String(3), nullable=False, server_default="usd"),
    Column("image_url", String),
    Column("active", Boolean, nullable=False, server_default=true()),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)

stripe_events_processed = Table(
    "stripe_events_processed",
    metadata,
    Column("id", String, primary_key=True),
    Column("processed_at", DateTime(timezone=True), server_default=func.now()),
)

orders = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("product_id", String, nullable=False),
    Column("customer_email", String, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("status_current", String, nullable=False),
    Column("status_token", String, nullable=False, index=True),
    Column("stripe_checkout_session_id", String, nullable=False, unique=True),
    Column("stripe_payment_intent_id", String),
    Column("paid_at", DateTime(timezone=True)),
)

order_status_events = Table(
    "order_status_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, nullable=False, index=True),
    Column("status", String, nullable=False),
    Column("note", Text),
    Column("created_by", String, nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)
