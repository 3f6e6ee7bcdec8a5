from typing import Callable, Dict, Optional
from dataclasses import dataclass
import logging
import numpy as np

from ..models.snipe_config import SlippageMode, SnipeConfig
from ..models.trading import SlippageCalculation


@dataclass
class MarketConditions:
    liquidity: float  # USD
    volatility: float  # percent
    volume_24h: float  # USD


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class SlippageModel:
    """Adjust slippage tolerance to liquidity, volatility and volume.

    Market conditions come from ``conditions_provider`` when given; otherwise
    they are drawn from the simulated ranges ($100K-$5M liquidity, 5%-55%
    volatility, $10K-$1M daily volume).
    """

    def __init__(
        self,
        conditions_provider: Optional[Callable[[str], MarketConditions]] = None,
        rng: Optional[np.random.Generator] = None
    ):
        self.conditions_provider = conditions_provider
        self.rng = rng or np.random.default_rng()
        self.logger = logging.getLogger(__name__)

        # Latest calculation per token address
        self.calculations: Dict[str, SlippageCalculation] = {}

    def _get_conditions(self, token_address: str) -> MarketConditions:
        if self.conditions_provider is not None:
            return self.conditions_provider(token_address)
        return MarketConditions(
            liquidity=float(self.rng.uniform(100_000, 5_100_000)),
            volatility=float(self.rng.uniform(5, 55)),
            volume_24h=float(self.rng.uniform(10_000, 1_010_000)),
        )

    def calculate_smart_slippage(
        self,
        token_address: str,
        base_slippage: float,
        max_slippage: float,
        liquidity_threshold: float,
        volatility_multiplier: float
    ) -> SlippageCalculation:
        """Recommend a slippage within [base_slippage * 0.5, max_slippage]."""
        conditions = self._get_conditions(token_address)

        liquidity_factor = clamp(
            liquidity_threshold / conditions.liquidity if conditions.liquidity > 0 else 2.0,
            0.5,
            2.0
        )
        volatility_factor = clamp(conditions.volatility / 20, 0.5, 3.0)
        volume_factor = clamp(conditions.volume_24h / 500_000, 0.8, 1.5)

        adjusted = (
            base_slippage
            * liquidity_factor
            * volatility_factor
            * volume_factor
            * volatility_multiplier
        )
        recommended = min(max_slippage, max(base_slippage * 0.5, adjusted))

        calculation = SlippageCalculation(
            base_slippage=base_slippage,
            adjusted_slippage=adjusted,
            liquidity_factor=liquidity_factor,
            volatility_factor=volatility_factor,
            recommended_slippage=recommended,
            confidence=float(self.rng.uniform(0.6, 1.0)),
        )
        self.calculations[token_address] = calculation
        return calculation

    def for_config(self, config: SnipeConfig) -> SlippageCalculation:
        """Slippage to trade ``config`` with, honouring its slippage mode."""
        settings = config.slippage_settings
        if settings.mode == SlippageMode.ADAPTIVE:
            return self.calculate_smart_slippage(
                config.token_address,
                settings.base_slippage,
                settings.max_slippage,
                settings.liquidity_threshold,
                settings.volatility_multiplier
            )

        # Fixed mode trades at the configured tolerance
        calculation = SlippageCalculation(
            base_slippage=config.slippage,
            adjusted_slippage=config.slippage,
            liquidity_factor=1.0,
            volatility_factor=1.0,
            recommended_slippage=config.slippage,
            confidence=1.0,
        )
        self.calculations[config.token_address] = calculation
        return calculation

    def get(self, token_address: str) -> Optional[SlippageCalculation]:
        return self.calculations.get(token_address)

    def snapshot(self) -> Dict[str, SlippageCalculation]:
        return dict(self.calculations)
