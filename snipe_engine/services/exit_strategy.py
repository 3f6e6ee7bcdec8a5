"""Position exit rules: stop-loss, take-profit, partial selling and trailing stop."""

from typing import Optional
import logging

from ..models.snipe_config import SnipeConfig
from ..models.trading import ExitDecision, ExitTrigger, Position, Urgency


def price_change_percent(buy_price: float, current_price: float) -> float:
    return (current_price - buy_price) / buy_price * 100


class ExitStrategyEvaluator:
    """Decide whether a position should be closed, fully or in part.

    Rules are checked in a fixed order and the first match wins:
    stop-loss, take-profit, partial selling, trailing stop.

    When a ``Position`` is passed it carries state across calls: the peak
    price seen since entry (for the trailing stop) and the partial-sell
    targets that already fired, so a target sells only once per position.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def evaluate(
        self,
        buy_price: float,
        current_price: float,
        config: SnipeConfig,
        position: Optional[Position] = None
    ) -> Optional[ExitDecision]:
        """Return None when auto-sell is off, else an ExitDecision."""
        auto_sell = config.auto_sell
        if auto_sell is None or not auto_sell.enabled:
            return None

        if buy_price <= 0:
            self.logger.warning(f"Cannot evaluate exit for {config.id}: buy price {buy_price}")
            return ExitDecision()

        change = price_change_percent(buy_price, current_price)
        if position is not None:
            position.peak_price = max(position.peak_price, current_price)

        if change <= auto_sell.stop_loss:
            return ExitDecision(
                should_sell=True,
                reason=f"Stop-loss triggered at {change:.2f}%",
                urgency=Urgency.HIGH,
                trigger=ExitTrigger.STOP_LOSS,
            )

        if change >= auto_sell.profit_target:
            return ExitDecision(
                should_sell=True,
                reason=f"Take-profit triggered at {change:.2f}%",
                urgency=Urgency.NORMAL,
                trigger=ExitTrigger.TAKE_PROFIT,
            )

        partial = auto_sell.partial_selling
        if partial.enabled:
            for target, percentage in partial.pairs():
                if position is not None and target in position.fired_targets:
                    continue
                if change >= target:
                    if position is not None:
                        position.fired_targets.append(target)
                    return ExitDecision(
                        should_sell=True,
                        sell_percentage=percentage,
                        reason=f"Partial sell {percentage:g}% at {change:.2f}%",
                        urgency=Urgency.LOW,
                        trigger=ExitTrigger.PARTIAL_SELL,
                    )

        trailing = auto_sell.trailing_stop
        if trailing.enabled:
            peak = position.peak_price if position is not None else current_price
            armed = price_change_percent(buy_price, peak) >= trailing.activation_price
            if position is not None:
                position.trailing_active = position.trailing_active or armed
                armed = position.trailing_active

            if armed:
                stop_price = peak * (1 - trailing.percentage / 100)
                if current_price <= stop_price:
                    return ExitDecision(
                        should_sell=True,
                        reason=(
                            f"Trailing stop triggered at {change:.2f}% "
                            f"({trailing.percentage:g}% below peak {peak:.8f})"
                        ),
                        urgency=Urgency.HIGH,
                        trigger=ExitTrigger.TRAILING_STOP,
                    )

        return ExitDecision()
