"""
Payment Service: Webhook イベント処理 (Write 側)

Stripe は at-least-once 配信なので同じイベントが何度も届く。
イベント ID ごとの状態機械で、最初の配信だけが副作用を持つようにする。

    UNSEEN ──(処理完了)──▶ PROCESSED   (以降の配信はすべて deduped)

  1. stripe_events_processed に ID があれば deduped を返す（副作用なし）
  2. ハンドラ未登録のイベント型、または未払いの session は処理済みにして ignored
  3. 支払い済みなら metadata を検証（不足は InvalidEventMetadata、処理済みにしない）
  4. 注文 + 監査イベントを作成（checkout session の一意制約で重複作成を防ぐ）
  5. 処理済みとして記録

1 と 5 の間はアトミックではない。同じ ID の同時配信が両方 UNSEEN を観測しても、
4 の一意制約により注文は 1 件しか作られない。
"""

import json
import logging
from typing import Awaitable, Callable

from pydantic import ValidationError
from redis.exceptions import RedisError

from . import store
from .config import PaymentContext
from .errors import InvalidEventMetadata, InvalidRequest
from .events import CheckoutSession, OrderPaid, StripeEvent
from .signature import verify_signature
from .tokens import generate_id

logger = logging.getLogger(__name__)

UNKNOWN_EMAIL = "unknown@example.com"

EventHandler = Callable[[PaymentContext, StripeEvent], Awaitable[dict]]


async def handle_stripe_webhook(
    ctx: PaymentContext,
    signature_header: str | None,
    raw_body: bytes,
) -> dict:
    """署名を検証してからイベントを処理する。"""
    webhook_secrets = ctx.settings.require_webhook_secrets()

    verified = verify_signature(
        signature_header,
        raw_body,
        webhook_secrets,
        tolerance=ctx.settings.webhook_tolerance_seconds,
    )
    try:
        event = StripeEvent.model_validate(verified.json())
    except ValidationError as e:
        raise InvalidRequest("Invalid event payload") from e

    return await process_event(ctx, event)


async def process_event(ctx: PaymentContext, event: StripeEvent) -> dict:
    if await store.is_event_processed(ctx.session, event.id):
        logger.info("Event %s (%s) already processed, deduped", event.id, event.type)
        return {"received": True, "deduped": True}

    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        result = {"received": True, "ignored": "unsupported_event_type"}
    else:
        result = await handler(ctx, event)

    await store.mark_event_processed(ctx.session, event.id)
    if "ignored" in result:
        logger.info("Event %s (%s) ignored: %s", event.id, event.type, result["ignored"])
    return result


def _parse_metadata(metadata: dict) -> tuple[str, int, str]:
    product_id = metadata.get("product_id")
    status_token = metadata.get("status_token")
    if not product_id or not status_token:
        raise InvalidEventMetadata("Missing required metadata on session")

    try:
        quantity = int(metadata.get("quantity") or 1)
    except (TypeError, ValueError):
        raise InvalidEventMetadata("Invalid quantity in session metadata") from None
    if quantity < 1:
        raise InvalidEventMetadata("Invalid quantity in session metadata")
    return str(product_id), quantity, str(status_token)


async def handle_checkout_session_completed(
    ctx: PaymentContext,
    event: StripeEvent,
) -> dict:
    """checkout.session.completed: 支払い済みなら注文を PAID で作成する。"""
    # 未払いなら session の他のフィールドは読まない
    if event.data.object.get("payment_status") != "paid":
        return {"received": True, "ignored": "not_paid"}

    try:
        session = CheckoutSession.model_validate(event.data.object)
    except ValidationError as e:
        raise InvalidRequest("Invalid checkout session payload") from e

    try:
        product_id, quantity, status_token = _parse_metadata(session.metadata)
    except InvalidEventMetadata:
        logger.warning(
            "Event %s: checkout session %s has incomplete metadata",
            event.id,
            session.id,
        )
        raise

    email = (
        (session.customer_details.email if session.customer_details else None)
        or session.customer_email
        or UNKNOWN_EMAIL
    )
    payment_intent_id = (
        session.payment_intent if isinstance(session.payment_intent, str) else None
    )
    order_id = generate_id("ord")
    paid_at = ctx.clock()

    created = await store.create_paid_order(
        ctx.session,
        order_id=order_id,
        product_id=product_id,
        customer_email=email,
        quantity=quantity,
        status_token=status_token,
        checkout_session_id=session.id,
        payment_intent_id=payment_intent_id,
        paid_at=paid_at,
    )
    if created:
        await _publish_order_paid(
            ctx,
            OrderPaid(
                order_id=order_id,
                product_id=product_id,
                quantity=quantity,
                customer_email=email,
                checkout_session_id=session.id,
                timestamp=paid_at,
            ),
        )
    return {"received": True}


async def _publish_order_paid(ctx: PaymentContext, event: OrderPaid) -> None:
    """
    Redis Pub/Sub で他サービスへ通知する（fire-and-forget）。

    注文はコミット済みなので、Redis の障害で Webhook を失敗させない。
    """
    try:
        await ctx.redis.publish(
            "order_events",
            json.dumps(
                {
                    "event_type": "OrderPaid",
                    "data": event.model_dump(mode="json"),
                },
                default=str,
            ),
        )
    except RedisError:
        logger.exception("Failed to publish OrderPaid for order %s", event.order_id)


# イベント型 → ハンドラ。新しいイベント型はここに明示的に追加する
EVENT_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_session_completed,
}
