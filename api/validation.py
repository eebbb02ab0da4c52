"""Inbound alert validation.

Alerts come from charting tools whose template placeholders are often quoted,
so numeric fields accept numbers or numeric strings. Booleans are never
accepted where a number is expected.
"""
from __future__ import annotations

import math
from typing import Any, Mapping, Optional

from strategy.execution_types import BUY, LONG, SELL, SHORT, Alert

LEGACY_EXCHANGE = "dydxv3"

_ORDER_MODES = ("", "full")
_DIRECTIONS = (LONG, SHORT)
_SIZE_FIELDS = ("size", "sizeUsd", "sizeByLeverage")


class AlertValidationError(ValueError):
    """Raised when an alert payload is missing fields or has the wrong types."""


def _number(payload: Mapping[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise AlertValidationError(f"'{key}' must be numeric")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise AlertValidationError(f"'{key}' must be numeric") from exc
    if not math.isfinite(number):
        raise AlertValidationError(f"'{key}' must be finite")
    return number


def _text(payload: Mapping[str, Any], key: str, required: bool = False) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        if required:
            raise AlertValidationError(f"'{key}' is required")
        return None
    if not isinstance(value, str):
        raise AlertValidationError(f"'{key}' must be a string")
    if required and not value.strip():
        raise AlertValidationError(f"'{key}' is required")
    return value


def validate_alert(
    payload: Any,
    passphrase: Optional[str] = None,
    default_exchange: str = LEGACY_EXCHANGE,
) -> Alert:
    if not isinstance(payload, Mapping):
        raise AlertValidationError("alert body must be a JSON object")

    if passphrase and payload.get("passphrase") != passphrase:
        raise AlertValidationError("passphrase mismatch")

    strategy = _text(payload, "strategy", required=True)
    market = _text(payload, "market", required=True).strip()

    order = _text(payload, "order", required=True).strip().lower()
    if order not in (BUY, SELL):
        raise AlertValidationError("'order' must be 'buy' or 'sell'")

    price = _number(payload, "price")
    if price is None or price <= 0:
        raise AlertValidationError("'price' must be a positive number")

    reverse = payload.get("reverse", False)
    if reverse is None:
        reverse = False
    if not isinstance(reverse, bool):
        raise AlertValidationError("'reverse' must be a boolean")

    sizes = {key: _number(payload, key) for key in _SIZE_FIELDS}
    if not any(value is not None and value > 0 for value in sizes.values()):
        raise AlertValidationError("one of 'size', 'sizeUsd' or 'sizeByLeverage' must be positive")

    slippage = _number(payload, "slippagePercentage")
    new_position_size = _number(payload, "newPositionSize")
    if new_position_size is None and isinstance(payload.get("newPositionSize"), str):
        # a blank template value reads as a flat target
        new_position_size = 0.0
    min_profit = _number(payload, "minProfit")

    order_mode = _text(payload, "orderMode") or ""
    if order_mode not in _ORDER_MODES:
        raise AlertValidationError("'orderMode' must be empty or 'full'")

    direction = _text(payload, "direction")
    if direction is not None:
        direction = direction.strip().lower() or None
    if direction is not None and direction not in _DIRECTIONS:
        raise AlertValidationError("'direction' must be 'long' or 'short'")

    exchange = _text(payload, "exchange")
    exchange = (exchange or "").strip().lower() or default_exchange

    return Alert(
        exchange=exchange,
        strategy=strategy,
        market=market,
        order=order,
        price=price,
        reverse=reverse,
        size=sizes["size"],
        size_usd=sizes["sizeUsd"],
        size_by_leverage=sizes["sizeByLeverage"],
        slippage_pct=slippage or 0.0,
        order_mode=order_mode,
        new_position_size=new_position_size,
        direction=direction,
        min_profit=min_profit,
        passphrase=_text(payload, "passphrase"),
        collateral=_text(payload, "collateral"),
        raw=dict(payload),
    )
