from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging

from orchestration.position_cache import PositionSnapshot
from strategy.execution_types import BUY, LONG, SHORT, Alert, OrderInstruction


logger = logging.getLogger(__name__)


class SkipReason(Enum):
    MODE_GATE = "only-sell mode"
    POSITION_NOT_EXISTS = "position not exists"
    PROFIT_NOT_REACHED = "profit level not reached"
    ZERO_TARGET_NO_POSITION = "new position size is 0 and no current position"
    NON_POSITIVE_SIZE = "order size is not positive"


@dataclass(frozen=True)
class SizingDecision:
    instruction: Optional[OrderInstruction] = None
    skip_reason: Optional[SkipReason] = None
    limit_price: Optional[float] = None
    profit_pct: Optional[float] = None

    @property
    def skipped(self) -> bool:
        return self.instruction is None


def calculate_profit(reference_price: float, entry_price: float) -> float:
    """Percent move from entry to reference; positive favors a long."""
    if entry_price <= 0:
        return 0.0
    return (reference_price - entry_price) * 100.0 / entry_price


def adjust_price(reference_price: float, side: str, slippage_pct: float) -> float:
    if side == BUY:
        return reference_price * ((100.0 + slippage_pct) / 100.0)
    return reference_price * ((100.0 - slippage_pct) / 100.0)


class PositionSizer:
    """Turn an alert plus a position snapshot into a sized limit order, or a skip.

    Closing-direction alerts (sell+long, buy+short) need an open position and,
    when a threshold applies, a minimum profit. Full-mode or zero-target alerts
    without a closing direction flatten an opposing position. Anything else
    passes the requested size through.
    """

    def __init__(self, default_min_profit_pct: Optional[float] = None):
        self.default_min_profit_pct = default_min_profit_pct

    def decide(
        self,
        alert: Alert,
        requested_size: float,
        positions: PositionSnapshot,
        market: Optional[str] = None,
        only_sell: bool = False,
    ) -> SizingDecision:
        market = market or alert.market
        side = alert.order

        if only_sell and alert.is_buy:
            logger.debug("Buy alert for %s ignored in only-sell mode", market)
            return SizingDecision(skip_reason=SkipReason.MODE_GATE)

        limit_price = adjust_price(alert.price, side, alert.slippage_pct)
        size = requested_size
        profit = None

        if alert.is_closing:
            position = positions.find(market)
            if position is None:
                logger.info("Order for %s ignored because position not exists", market)
                return SizingDecision(skip_reason=SkipReason.POSITION_NOT_EXISTS, limit_price=limit_price)

            profit = calculate_profit(alert.price, position.entry_price)
            threshold = self._min_profit(alert)
            if threshold is not None and self._below_threshold(alert.direction, profit, threshold):
                logger.info(
                    "Order for %s ignored because profit level not reached: profit=%.4f%% threshold=%.4f%% direction=%s",
                    market,
                    profit,
                    threshold,
                    alert.direction,
                )
                return SizingDecision(
                    skip_reason=SkipReason.PROFIT_NOT_REACHED,
                    limit_price=limit_price,
                    profit_pct=profit,
                )

            if alert.is_full_mode or alert.targets_flat:
                size = position.size
            else:
                size = min(requested_size, position.size)

        elif alert.is_full_mode or alert.targets_flat:
            position = positions.find(market)
            if position is None:
                if alert.targets_flat:
                    logger.info(
                        "Order for %s ignored because new position size is 0 and no current position",
                        market,
                    )
                    return SizingDecision(
                        skip_reason=SkipReason.ZERO_TARGET_NO_POSITION,
                        limit_price=limit_price,
                    )
            elif position.opposes(side):
                size = position.size

        if size is None or size <= 0:
            logger.warning("Order for %s ignored because size %s is not positive", market, size)
            return SizingDecision(skip_reason=SkipReason.NON_POSITIVE_SIZE, limit_price=limit_price)

        instruction = OrderInstruction(
            market=market,
            side=side,
            size=size,
            limit_price=limit_price,
            reference_price=alert.price,
            slippage_pct=alert.slippage_pct,
            direction=alert.direction,
        )
        return SizingDecision(instruction=instruction, limit_price=limit_price, profit_pct=profit)

    def _min_profit(self, alert: Alert) -> Optional[float]:
        if alert.min_profit is not None:
            return alert.min_profit
        return self.default_min_profit_pct

    @staticmethod
    def _below_threshold(direction: Optional[str], profit: float, threshold: float) -> bool:
        if direction == LONG:
            return profit < threshold
        if direction == SHORT:
            return -profit < threshold
        return False
