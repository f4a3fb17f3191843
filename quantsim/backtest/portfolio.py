import logging
import math
from dataclasses import dataclass
from typing import List, Optional

from quantsim.core.models import (
    DEFAULT_RISK_PROFILE,
    CostModel,
    RiskProfile,
    Side,
    TradeFill,
)

logger = logging.getLogger(__name__)

# Floors applied when deriving operating limits from a risk profile.
MIN_DAILY_LOSS_PCT = 0.0
MIN_POSITION_PCT = 0.05
MIN_ORDER_CAP_PCT = 0.02
MIN_KILL_SWITCH_PCT = 0.01


@dataclass(frozen=True)
class RiskLimits:
    max_daily_loss_pct: float
    max_position_pct: float
    per_order_cap_pct: float
    kill_switch_drawdown_pct: float


def resolve_risk_limits(profile: Optional[RiskProfile] = None) -> RiskLimits:
    source = profile or DEFAULT_RISK_PROFILE
    return RiskLimits(
        max_daily_loss_pct=max(source.max_daily_loss_pct, MIN_DAILY_LOSS_PCT),
        max_position_pct=max(source.max_position_pct, MIN_POSITION_PCT),
        per_order_cap_pct=max(source.per_order_cap_pct, MIN_ORDER_CAP_PCT),
        kill_switch_drawdown_pct=max(source.global_dd_kill_pct, MIN_KILL_SWITCH_PCT),
    )


@dataclass
class PositionState:
    quantity: int = 0
    average_price: float = 0.0
    realized_pnl: float = 0.0


class Portfolio:
    """Single-symbol, long-only simulated portfolio.

    Converts buy/sell signals into fills under the risk limits:
    - buy targets the max position size, sell targets flat
    - each order is capped, shorts are impossible, buys must be affordable
    - fees and slippage are charged on both sides as basis points of notional

    Attributes:
        cash (float): Available cash balance.
        position (PositionState): Open quantity, average cost and realized P&L.
        trades (List[TradeFill]): Every executed fill, in order.
    """

    def __init__(
        self,
        symbol: str,
        initial_cash: float,
        limits: RiskLimits,
        costs: Optional[CostModel] = None,
    ):
        self.symbol = symbol
        self.cash = initial_cash
        self.limits = limits
        costs = costs or CostModel()
        self.fee_rate = (costs.fee_bps + costs.slippage_bps) / 10_000
        self.position = PositionState()
        self.trades: List[TradeFill] = []

    def equity(self, price: float) -> float:
        return self.cash + self.position.quantity * price

    def execute_signal(
        self, side: Side, reason: str, timestamp: str, price: float, equity: float
    ) -> Optional[TradeFill]:
        """
        Size and execute one signal at `price`, using `equity` (pre-fill) for
        sizing. Returns the fill, or None when nothing trades.
        """
        if price <= 0:
            return None

        limits = self.limits
        max_position_qty = max(0, math.floor(equity * limits.max_position_pct / price))
        max_order_qty = max(1, math.floor(equity * limits.per_order_cap_pct / price))

        target_qty = max_position_qty if side == "buy" else 0
        delta = target_qty - self.position.quantity
        if delta == 0:
            return None

        delta = max(-max_order_qty, min(delta, max_order_qty))
        if side == "sell":
            delta = max(-self.position.quantity, delta)

        if delta > 0:
            affordable_qty = math.floor(self.cash / price)
            if affordable_qty <= 0:
                return None
            delta = min(delta, affordable_qty)

        if delta == 0:
            return None

        trade_id = f"{self.symbol}-{side}-{timestamp}-{len(self.trades) + 1}"
        if delta > 0:
            fill = self._open(trade_id, side, delta, price, timestamp, reason)
        else:
            fill = self._close(trade_id, side, -delta, price, timestamp, reason)

        self.trades.append(fill)
        logger.debug(
            f"{fill.side.upper()} {fill.quantity} {self.symbol} @ {price:.4f} "
            f"({reason}) pnl={fill.pnl:.2f}"
        )
        return fill

    def _open(
        self, trade_id: str, side: Side, quantity: int, price: float, timestamp: str, reason: str
    ) -> TradeFill:
        cost = quantity * price
        fees = cost * self.fee_rate
        self.cash -= cost + fees
        position = self.position
        total_cost = position.average_price * position.quantity + cost
        position.quantity += quantity
        position.average_price = total_cost / position.quantity if position.quantity > 0 else 0.0
        return TradeFill(
            id=trade_id,
            symbol=self.symbol,
            side=side,
            quantity=quantity,
            price=price,
            timestamp=timestamp,
            pnl=0.0,
            fees=fees,
            reason=reason,
        )

    def _close(
        self, trade_id: str, side: Side, quantity: int, price: float, timestamp: str, reason: str
    ) -> TradeFill:
        position = self.position
        quantity = min(quantity, position.quantity)
        proceeds = quantity * price
        fees = proceeds * self.fee_rate
        self.cash += proceeds - fees
        realized = quantity * (price - position.average_price)
        position.quantity -= quantity
        if position.quantity == 0:
            position.average_price = 0.0
        position.realized_pnl += realized
        return TradeFill(
            id=trade_id,
            symbol=self.symbol,
            side=side,
            quantity=quantity,
            price=price,
            timestamp=timestamp,
            pnl=realized,
            fees=fees,
            reason=reason,
        )
