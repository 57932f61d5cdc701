"""
Payment Service: クエリハンドラ (Read 側)

商品カタログの参照と、status_token による注文ステータス照会。
"""

from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import OrderAggregate
from .schema import order_status_events, orders


def _product_dict(row) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "price_cents": row.price_cents,
        "currency": row.currency,
        "image_url": row.image_url,
    }


async def list_active_products(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("""
            SELECT id, name, description, price_cents, currency, image_url
            FROM products
            WHERE active = :active
            ORDER BY created_at DESC
        """),
        {"active": True},
    )
    return [_product_dict(row) for row in result.fetchall()]


async def get_active_product(session: AsyncSession, product_id: str) -> dict | None:
    result = await session.execute(
        text("""
            SELECT id, name, description, price_cents, currency, image_url
            FROM products
            WHERE id = :id AND active = :active
        """),
        {"id": product_id, "active": True},
    )
    row = result.fetchone()
    if not row:
        return None
    return _product_dict(row)


async def get_order_status(session: AsyncSession, status_token: str) -> dict | None:
    """
    status_token から注文を引き、監査イベントをリプレイした現在ステータスを返す。
    """
    result = await session.execute(
        select(orders).where(orders.c.status_token == status_token)
    )
    order = result.fetchone()
    if not order:
        return None

    events = await session.execute(
        select(order_status_events)
        .where(order_status_events.c.order_id == order.id)
        .order_by(order_status_events.c.created_at, order_status_events.c.id)
    )
    agg = OrderAggregate.from_events(
        [
            {
                "order_id": e.order_id,
                "status": e.status,
                "note": e.note,
                "created_by": e.created_by,
                "created_at": e.created_at.isoformat() if e.created_at else None,
            }
            for e in events.fetchall()
        ]
    )
    return {
        "order_id": order.id,
        "product_id": order.product_id,
        "quantity": order.quantity,
        "status": agg.status if agg.history else order.status_current,
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        "history": agg.history,
    }
