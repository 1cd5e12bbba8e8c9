"""
Structured JSON event logger for the pending-order sweep loop.

Emits one JSON object per line to stderr, ready for a log aggregator.

Optional webhook: when configured, trade_executed and error events are
POSTed to the URL.
"""

from __future__ import annotations

import json
import logging
import sys
import urllib.request
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

logger = logging.getLogger("papertrade.events")

ALERT_EVENTS = frozenset({"trade_executed", "error"})


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class StructuredEventLogger:
    """Emit structured JSON events to stderr and optional webhook."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        webhook_url: str = "",
        stream: Any = None,
    ) -> None:
        self._enabled = enabled
        self._webhook_url = webhook_url.strip()
        self._stream = stream or sys.stderr

    def _emit(self, event_type: str, **fields: Any) -> dict:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event_type,
            **fields,
        }
        if self._enabled:
            self._stream.write(json.dumps(record, default=_default) + "\n")
            self._stream.flush()

        if self._webhook_url and event_type in ALERT_EVENTS:
            self._post_webhook(record)

        return record

    def _post_webhook(self, record: dict) -> None:
        try:
            data = json.dumps(record, default=_default).encode("utf-8")
            req = urllib.request.Request(
                self._webhook_url,
                data=data,
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            urllib.request.urlopen(req, timeout=5)
        except Exception as exc:
            logger.warning("Webhook POST failed: %s", exc)

    def sweep_start(self, price_updates: int, instruments: list[str]) -> dict:
        return self._emit(
            "sweep_start",
            price_updates=price_updates,
            instruments=instruments,
        )

    def trade_executed(
        self,
        order_id: int,
        symbol: str,
        side: str,
        quantity: int,
        price: Decimal,
        net_amount: Decimal,
    ) -> dict:
        return self._emit(
            "trade_executed",
            order_id=order_id,
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            net_amount=net_amount,
        )

    def order_rejected(self, order_id: int, reason: str) -> dict:
        return self._emit("order_rejected", order_id=order_id, reason=reason)

    def sweep_complete(self, executed: int, skipped: int, failed: int) -> dict:
        return self._emit(
            "sweep_complete",
            executed=executed,
            skipped=skipped,
            failed=failed,
        )

    def market_closed(self, next_open: str, wait_hours: float) -> dict:
        return self._emit(
            "market_closed",
            next_open=next_open,
            wait_hours=round(wait_hours, 1),
        )

    def error(self, message: str, detail: str = "") -> dict:
        return self._emit("error", message=message, detail=detail)

    def shutdown(self, cycles: int) -> dict:
        return self._emit("shutdown", cycles=cycles)
