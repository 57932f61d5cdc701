"""
Payment Service: エラー定義

すべてのドメインエラーは PaymentError を継承し、HTTP ステータスを持つ。
main.py の例外ハンドラが {"error": ..., "details": ...} に変換して返す。
"""

from typing import Any


class PaymentError(Exception):
    status_code = 500

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ConfigurationError(PaymentError):
    """必須設定の欠落（運用側で対処が必要）"""

    status_code = 500


class InvalidRequest(PaymentError):
    status_code = 400


class NotFound(PaymentError):
    status_code = 404


class MalformedSignatureHeader(PaymentError):
    """署名ヘッダーを解析できない（t または v1 が無い）"""

    status_code = 400


class SignatureMismatch(PaymentError):
    """どの v1 署名も期待値と一致しない"""

    status_code = 400


class UpstreamError(PaymentError):
    """
    決済プロセッサ API の失敗。

    プロセッサがエラー応答を返した場合は 400 + 応答ボディ、
    通信エラー・タイムアウトの場合は 502。
    """

    status_code = 502


class InvalidEventMetadata(PaymentError):
    """
    checkout session の metadata が不完全。

    処理済みとして記録しないので、修正された再配信は成功できる。
    """

    status_code = 400
