from typing import Callable, Dict, List, Optional
from abc import ABC, abstractmethod
import logging
import time
import numpy as np

from ..config.settings import MarketConfig
from ..models.trading import MarketData


class MarketOracle(ABC):
    """Source of per-token market snapshots."""

    @abstractmethod
    async def sample(
        self,
        token_address: str,
        previous: Optional[MarketData] = None
    ) -> MarketData:
        """Return the latest snapshot for ``token_address``."""


class RandomWalkOracle(MarketOracle):
    """Simulated feed: each sample moves the last price by a uniform step."""

    def __init__(
        self,
        config: Optional[MarketConfig] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or MarketConfig()
        self.rng = rng or np.random.default_rng()
        self.clock = clock

    async def sample(
        self,
        token_address: str,
        previous: Optional[MarketData] = None
    ) -> MarketData:
        if previous is not None and previous.price > 0:
            base_price = previous.price
        else:
            base_price = self.rng.uniform(
                self.config.min_start_price,
                self.config.max_start_price
            )
        step = (self.rng.random() - 0.5) * self.config.price_step

        timestamp = self.clock()
        if previous is not None:
            timestamp = max(timestamp, previous.timestamp)

        return MarketData(
            token_address=token_address,
            price=float(max(0.0, base_price * (1 + step))),
            price_change_1m=float((self.rng.random() - 0.5) * 5),
            price_change_5m=float((self.rng.random() - 0.5) * 15),
            price_change_1h=float((self.rng.random() - 0.5) * 30),
            volume_1h=float(self.rng.random() * 1_000_000),
            liquidity=float(self.rng.random() * 5_000_000),
            holders=int(self.rng.integers(100, 10_100)),
            timestamp=timestamp,
        )


class MarketDataStore:
    """Latest snapshot per token; no history is kept."""

    def __init__(self, oracle: MarketOracle):
        self.oracle = oracle
        self.logger = logging.getLogger(__name__)
        self._data: Dict[str, MarketData] = {}

    def get(self, token_address: str) -> Optional[MarketData]:
        return self._data.get(token_address)

    async def refresh(self, token_address: str) -> MarketData:
        """Pull a new snapshot from the oracle and replace the old one."""
        previous = self._data.get(token_address)
        data = await self.oracle.sample(token_address, previous)
        if previous is not None and data.timestamp < previous.timestamp:
            # Keep timestamps non-decreasing per token
            data.timestamp = previous.timestamp
        self._data[token_address] = data
        return data

    async def refresh_many(self, token_addresses: List[str]) -> Dict[str, MarketData]:
        results = {}
        for address in dict.fromkeys(token_addresses):
            try:
                results[address] = await self.refresh(address)
            except Exception as e:
                self.logger.error(f"Error refreshing market data for {address}: {str(e)}")
        return results

    def forget(self, token_address: str):
        self._data.pop(token_address, None)

    def snapshot(self) -> Dict[str, MarketData]:
        return dict(self._data)
