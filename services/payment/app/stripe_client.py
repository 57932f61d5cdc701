"""
Payment Service: Stripe REST API クライアント

Stripe API は application/x-www-form-urlencoded の POST を受け付ける。
タイムアウトは httpx クライアント側で制限し、内部リトライはしない。
通信失敗は UpstreamError (502) として呼び出し元に返す。
"""

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import httpx

from .errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class StripeResponse:
    status: int
    json: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class StripeClient:
    def __init__(self, http: httpx.AsyncClient, secret_key: str, api_base: str):
        self.http = http
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")

    async def submit_form_request(
        self,
        url: str,
        headers: dict[str, str],
        body: str,
    ) -> StripeResponse:
        try:
            resp = await self.http.post(url, headers=headers, content=body)
        except httpx.HTTPError as e:
            logger.warning("Stripe request to %s failed: %s", url, e)
            raise UpstreamError("Stripe request failed", status_code=502) from e

        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}
        return StripeResponse(status=resp.status_code, json=data)

    async def create_checkout_session(self, params: dict[str, str]) -> StripeResponse:
        """POST /v1/checkout/sessions"""
        return await self.submit_form_request(
            f"{self.api_base}/checkout/sessions",
            {
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            urlencode(params),
        )
