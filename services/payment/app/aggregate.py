"""
Payment Service: 注文集約 (Order Aggregate)

order_status_events は追記専用の監査ログ。
監査イベントを古い順にリプレイして注文の現在ステータスと履歴を復元する。

状態遷移:
    (存在しない) → PAID  (checkout.session.completed かつ payment_status = paid)
"""

from enum import Enum


class OrderStatus(str, Enum):
    PAID = "PAID"


class OrderAggregate:
    def __init__(self) -> None:
        self.order_id: str | None = None
        self.status: str = "UNKNOWN"
        self.history: list[dict] = []

    def apply_status_event(self, event: dict) -> None:
        self.order_id = event["order_id"]
        self.status = event["status"]
        self.history.append(
            {
                "status": event["status"],
                "note": event.get("note"),
                "created_by": event.get("created_by"),
                "created_at": event.get("created_at"),
            }
        )

    @classmethod
    def from_events(cls, events: list[dict]) -> "OrderAggregate":
        """ステータスイベント列から集約を再構築する。"""
        agg = cls()
        for e in events:
            agg.apply_status_event(e)
        return agg
