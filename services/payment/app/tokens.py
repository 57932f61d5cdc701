"""
Payment Service: 相関トークン生成

status_token は checkout session の metadata に埋め込まれ、
Webhook で届いたイベントを元の購入リクエストに結び付ける。
推測可能だと metadata の偽造を許すので、必ず CSPRNG を使う。
"""

import secrets
from typing import Callable
from uuid import uuid4

MIN_TOKEN_BYTES = 24


def generate_status_token(
    token_bytes: Callable[[int], bytes] = secrets.token_bytes,
    nbytes: int = MIN_TOKEN_BYTES,
) -> str:
    """nbytes (最低 24) バイトの乱数を小文字 16 進で返す。"""
    return token_bytes(max(nbytes, MIN_TOKEN_BYTES)).hex()


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"
