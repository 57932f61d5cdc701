"""
Payment Service: Checkout セッション作成

購入リクエストを検証し、Stripe Checkout セッションを作成してリダイレクト URL を返す。

検証順:
  1. 必須設定 (STRIPE_SECRET_KEY, APP_URL)  → ConfigurationError
  2. ボディが JSON オブジェクトか          → InvalidRequest
  3. productId が空でないか                → InvalidRequest
  4. quantity が 1..10 の整数か            → InvalidRequest
  5. 商品が存在し有効か                    → NotFound

価格・通貨・商品名はクライアント入力ではなく商品レコードから取る（改ざん防止）。
"""

import json
import logging
from typing import Any

from . import queries
from .config import PaymentContext
from .errors import InvalidRequest, NotFound, UpstreamError
from .tokens import generate_status_token

logger = logging.getLogger(__name__)

MIN_QUANTITY = 1
MAX_QUANTITY = 10


def parse_quantity(value: Any) -> int:
    """JSON の数値として整数であるものだけを受け付ける（2.0 は可、"2" や true は不可）。"""
    if isinstance(value, bool):
        raise InvalidRequest("quantity must be an integer 1..10")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or not MIN_QUANTITY <= value <= MAX_QUANTITY:
        raise InvalidRequest("quantity must be an integer 1..10")
    return value


def build_session_params(
    app_url: str,
    product: dict,
    quantity: int,
    status_token: str,
    customer_email: str = "",
) -> dict[str, str]:
    """Stripe の form 形式パラメータ。price_data を使うので Stripe 側に Price は不要。"""
    params = {
        "mode": "payment",
        "success_url": f"{app_url}/success.html?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{app_url}/index.html?canceled=1",
        "line_items[0][quantity]": str(quantity),
        "line_items[0][price_data][currency]": str(product.get("currency") or "usd"),
        "line_items[0][price_data][unit_amount]": str(product["price_cents"]),
        "line_items[0][price_data][product_data][name]": str(product["name"]),
        "line_items[0][price_data][product_data][description]": str(
            product.get("description") or ""
        ),
        "metadata[product_id]": str(product["id"]),
        "metadata[quantity]": str(quantity),
        "metadata[status_token]": status_token,
    }
    if customer_email:
        params["customer_email"] = customer_email
    return params


async def create_checkout_intent(ctx: PaymentContext, raw_body: bytes) -> dict:
    ctx.settings.require("stripe_secret_key", "app_url")

    try:
        body = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    if not isinstance(body, dict):
        raise InvalidRequest("Invalid JSON")

    product_id = body.get("productId")
    product_id = "" if product_id is None else str(product_id)
    if not product_id:
        raise InvalidRequest("productId required")

    quantity = body.get("quantity")
    quantity = parse_quantity(MIN_QUANTITY if quantity is None else quantity)
    customer_email = str(body["customerEmail"]) if body.get("customerEmail") else ""

    product = await queries.get_active_product(ctx.session, product_id)
    if not product:
        raise NotFound("Product not found")

    status_token = generate_status_token(ctx.token_bytes)
    params = build_session_params(
        ctx.settings.app_url.rstrip("/"),
        product,
        quantity,
        status_token,
        customer_email,
    )

    resp = await ctx.stripe.create_checkout_session(params)
    if not resp.ok:
        logger.warning(
            "Stripe rejected checkout session for product %s: status=%s",
            product_id,
            resp.status,
        )
        raise UpstreamError("Stripe error", status_code=400, details=resp.json)

    logger.info("Checkout session %s created for product %s", resp.json.get("id"), product_id)
    return {"checkoutUrl": resp.json.get("url")}
