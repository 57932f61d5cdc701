"""注文ストアのテスト（制約違反の分類）"""

from __future__ import annotations

import sqlite3

import pytest
from sqlalchemy.exc import IntegrityError

from app import store


class _PgError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _integrity(orig: Exception) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, orig)


@pytest.mark.parametrize(
    "orig, expected",
    [
        (_PgError("23505"), True),
        (_PgError("23502"), False),
        (_PgError("23503"), False),
        (sqlite3.IntegrityError("UNIQUE constraint failed: orders.stripe_checkout_session_id"), True),
        (sqlite3.IntegrityError("NOT NULL constraint failed: orders.quantity"), False),
        (Exception('duplicate key value violates unique constraint "orders_pkey"'), True),
    ],
)
def test_is_unique_violation(orig, expected):
    assert store.is_unique_violation(_integrity(orig)) is expected


def _order(**overrides) -> dict:
    values = {
        "order_id": "ord_1",
        "product_id": "p1",
        "customer_email": "buyer@example.com",
        "quantity": 1,
        "status_token": "tok_1",
        "checkout_session_id": "cs_1",
        "payment_intent_id": None,
    }
    values.update(overrides)
    return values


async def test_second_order_for_same_session_is_not_created(async_session, now):
    async with async_session() as session:
        assert await store.create_paid_order(session, paid_at=now, **_order())
    async with async_session() as session:
        assert not await store.create_paid_order(
            session, paid_at=now, **_order(order_id="ord_2")
        )
        assert await store.order_exists_for_session(session, "cs_1")


async def test_other_integrity_errors_propagate(async_session, now):
    async with async_session() as session:
        with pytest.raises(IntegrityError):
            await store.create_paid_order(session, paid_at=now, **_order(quantity=None))
    async with async_session() as session:
        assert not await store.order_exists_for_session(session, "cs_1")


async def test_unique_violation_on_unrelated_key_propagates(async_session, now):
    """order id の衝突は checkout session の重複ではないので伝播する"""
    async with async_session() as session:
        await store.create_paid_order(session, paid_at=now, **_order())
    async with async_session() as session:
        with pytest.raises(IntegrityError):
            await store.create_paid_order(
                session, paid_at=now, **_order(checkout_session_id="cs_2")
            )


async def test_mark_event_processed_twice_is_harmless(async_session):
    async with async_session() as session:
        await store.mark_event_processed(session, "evt_1")
        await store.mark_event_processed(session, "evt_1")
        assert await store.is_event_processed(session, "evt_1")
        assert not await store.is_event_processed(session, "evt_2")
