"""
Payment Service: 注文ストア

Webhook 処理の書き込み側。すべての書き込みは一意制約で守られた単一行の INSERT。
明示的なロックは使わず、同時実行の競合は DB の制約違反として検出する。

一意制約違反は is_unique_violation() で分類し、既知の冪等ケースだけを
成功扱いにする。それ以外のストレージエラーは呼び出し元へ伝播させる。
"""

import logging
from datetime import datetime

from sqlalchemy import insert, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregate import OrderStatus
from .schema import order_status_events, orders
from .tokens import generate_id

logger = logging.getLogger(__name__)

# PostgreSQL の unique_violation
_PG_UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    """IntegrityError が一意制約 (PRIMARY KEY / UNIQUE) 違反かどうか。"""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == _PG_UNIQUE_VIOLATION
    message = str(orig)
    return "UNIQUE constraint failed" in message or "duplicate key value" in message


# ── 処理済みイベントログ ─────────────────────────


async def is_event_processed(session: AsyncSession, event_id: str) -> bool:
    result = await session.execute(
        text("SELECT id FROM stripe_events_processed WHERE id = :id"),
        {"id": event_id},
    )
    return result.first() is not None


async def mark_event_processed(session: AsyncSession, event_id: str) -> None:
    """
    イベント ID を処理済みとして記録する。

    同じ ID の同時配信が先に記録していた場合は制約違反になるが、
    結果は同じ（処理済み）なので成功として扱う。
    """
    try:
        await session.execute(
            text("INSERT INTO stripe_events_processed (id) VALUES (:id)"),
            {"id": event_id},
        )
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if not is_unique_violation(e):
            raise
        logger.info("Event %s was already recorded by a concurrent delivery", event_id)


# ── 注文 ─────────────────────────────────────────


async def order_exists_for_session(session: AsyncSession, checkout_session_id: str) -> bool:
    result = await session.execute(
        select(orders.c.id).where(
            orders.c.stripe_checkout_session_id == checkout_session_id
        )
    )
    return result.first() is not None


async def create_paid_order(
    session: AsyncSession,
    *,
    order_id: str,
    product_id: str,
    customer_email: str,
    quantity: int,
    status_token: str,
    checkout_session_id: str,
    payment_intent_id: str | None,
    paid_at: datetime,
) -> bool:
    """
    PAID 状態の注文と最初のステータスイベントを同一トランザクションで作成する。

    戻り値:
        True: 新規作成した
        False: 同じ checkout session の注文が既に存在した（冪等な成功）
    """
    try:
        await session.execute(
            insert(orders).values(
                id=order_id,
                product_id=product_id,
                customer_email=customer_email,
                quantity=quantity,
                status_current=OrderStatus.PAID.value,
                status_token=status_token,
                stripe_checkout_session_id=checkout_session_id,
                stripe_payment_intent_id=payment_intent_id,
                paid_at=paid_at,
            )
        )
        await session.execute(
            insert(order_status_events).values(
                id=generate_id("ose"),
                order_id=order_id,
                status=OrderStatus.PAID.value,
                note="Payment received",
                created_by="system",
                created_at=paid_at,
            )
        )
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        if not is_unique_violation(e):
            raise
        if not await order_exists_for_session(session, checkout_session_id):
            raise
        logger.info(
            "Order for checkout session %s already exists, treating as idempotent",
            checkout_session_id,
        )
        return False

    logger.info("Order %s created for checkout session %s", order_id, checkout_session_id)
    return True
