"""
Payment Service: Webhook 署名検証

Stripe-Signature ヘッダー形式:
    t=<unix 秒>,v1=<hex HMAC>[,v1=<hex HMAC>...]

署名対象は "<t>." + 受信した生ボディ。JSON を再シリアライズすると
空白やキー順が変わり署名が一致しなくなるので、必ず生バイト列を使う。

- v1 は複数あり得る（シークレットのローテーション中）。どれか 1 つ一致すれば有効
- 比較は hmac.compare_digest（定数時間）
- タイムスタンプの鮮度チェックは既定で無効。tolerance を渡した場合のみ検査する
"""

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Sequence

from .errors import InvalidRequest, MalformedSignatureHeader, SignatureMismatch

logger = logging.getLogger(__name__)

# 失敗理由は外部に出さない（ログにのみ残す）
PUBLIC_MESSAGE = "Signature verification failed"


@dataclass
class SignatureHeader:
    timestamp: str
    signatures: list[str]


@dataclass
class VerifiedPayload:
    timestamp: str
    body: bytes

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidRequest("Invalid JSON") from e


def parse_signature_header(header: str | None) -> SignatureHeader:
    if not header:
        logger.warning("Webhook rejected: missing signature header")
        raise MalformedSignatureHeader(PUBLIC_MESSAGE)

    values: dict[str, list[str]] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if not key or not sep or not value:
            continue
        values.setdefault(key, []).append(value)

    timestamp = values.get("t", [""])[0]
    signatures = values.get("v1", [])
    if not timestamp or not signatures:
        logger.warning("Webhook rejected: signature header lacks t or v1")
        raise MalformedSignatureHeader(PUBLIC_MESSAGE)
    return SignatureHeader(timestamp=timestamp, signatures=signatures)


def compute_signature(secret: str, timestamp: str, body: bytes | str) -> str:
    if isinstance(body, str):
        body = body.encode("utf-8")
    signed_payload = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(
    header: str | None,
    body: bytes | str,
    secrets: str | Sequence[str],
    tolerance: int | None = None,
    now: float | None = None,
) -> VerifiedPayload:
    """
    署名ヘッダーと生ボディを検証し、VerifiedPayload を返す。

    secrets は単一の文字列か、同時に有効なシークレットのリスト。
    いずれかのシークレットで計算した署名が、いずれかの v1 と一致すれば成功。
    """
    parsed = parse_signature_header(header)
    if isinstance(secrets, str):
        secrets = [secrets]
    if isinstance(body, str):
        body = body.encode("utf-8")

    if tolerance is not None:
        try:
            ts = int(parsed.timestamp)
        except ValueError:
            logger.warning("Webhook rejected: non-numeric timestamp %r", parsed.timestamp)
            raise MalformedSignatureHeader(PUBLIC_MESSAGE) from None
        current = time.time() if now is None else now
        if abs(current - ts) > tolerance:
            logger.warning("Webhook rejected: timestamp %s outside tolerance", ts)
            raise SignatureMismatch(PUBLIC_MESSAGE)

    expected = [
        compute_signature(secret, parsed.timestamp, body).encode("ascii")
        for secret in secrets
    ]
    # any() で打ち切らず全組み合わせを比較する
    matched = False
    for sig in parsed.signatures:
        candidate = sig.encode("utf-8")
        for digest in expected:
            if hmac.compare_digest(digest, candidate):
                matched = True

    if not matched:
        logger.warning("Webhook rejected: no v1 signature matched")
        raise SignatureMismatch(PUBLIC_MESSAGE)
    return VerifiedPayload(timestamp=parsed.timestamp, body=body)
