from typing import Dict, List, Optional
import asyncio
import logging
import numpy as np
from web3 import Web3

from ..config.settings import NetworkConfig
from ..models.snipe_config import GasMode, SnipeConfig
from ..models.trading import CongestionLevel, GasEstimation, NetworkStats

# Extra confirmation wait on top of block time, by congestion
CONGESTION_PENALTY = {
    CongestionLevel.LOW: 5.0,
    CongestionLevel.MEDIUM: 10.0,
    CongestionLevel.HIGH: 20.0,
}

MIN_PRIORITY_FEE = 2.0  # gwei
MIN_GAS_LIMIT = 150000
MAX_GAS_LIMIT = 200000


class NetworkStatsMonitor:
    """Keeps the process-wide network stats fresh.

    The simulated feed perturbs the previous values with uniform jitter; a
    live implementation would read fee history from a node instead.
    """

    def __init__(
        self,
        config: Optional[NetworkConfig] = None,
        rng: Optional[np.random.Generator] = None
    ):
        self.config = config or NetworkConfig()
        self.rng = rng or np.random.default_rng()
        self.logger = logging.getLogger(__name__)

        self.stats = NetworkStats(
            base_fee=self.config.base_fee,
            fast_gas_price=self.config.fast_gas_price,
            congestion=CongestionLevel(self.config.congestion),
            avg_block_time=self.config.avg_block_time,
        )
        self.update_interval = self.config.refresh_interval
        self.monitoring_task: Optional[asyncio.Task] = None
        self._listeners: List = []

    def add_listener(self, callback):
        """Register a callable invoked with each new NetworkStats."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    async def start_monitoring(self):
        """Start network stats monitoring."""
        if self.monitoring_task is None:
            self.monitoring_task = asyncio.create_task(self._monitor_network())

    async def stop_monitoring(self):
        """Stop network stats monitoring."""
        if self.monitoring_task:
            self.monitoring_task.cancel()
            try:
                await self.monitoring_task
            except asyncio.CancelledError:
                pass
            self.monitoring_task = None

    async def _monitor_network(self):
        while True:
            await asyncio.sleep(self.update_interval)
            try:
                self.update_network_stats()
            except Exception as e:
                self.logger.error(f"Error updating network stats: {str(e)}")

    def update_network_stats(self) -> NetworkStats:
        """Perturb fees, re-roll congestion and jitter block time."""
        previous = self.stats
        levels = list(CongestionLevel)

        self.stats = NetworkStats(
            base_fee=float(max(
                0.0,
                previous.base_fee + (self.rng.random() - 0.5) * self.config.base_fee_jitter
            )),
            fast_gas_price=float(max(
                0.0,
                previous.fast_gas_price + (self.rng.random() - 0.5) * self.config.fast_gas_jitter
            )),
            congestion=levels[int(self.rng.integers(0, len(levels)))],
            avg_block_time=float(max(
                0.0,
                self.config.avg_block_time + (self.rng.random() - 0.5) * self.config.block_time_jitter
            )),
        )
        self.logger.debug(
            f"Network stats: base fee {self.stats.base_fee:.2f} gwei, "
            f"congestion {self.stats.congestion.value}"
        )

        for callback in self._listeners:
            try:
                callback(self.stats)
            except Exception as e:
                self.logger.error(f"Error in network stats listener: {str(e)}")
        return self.stats


class GasModel:
    """EIP-1559 style fee estimates derived from the current network stats."""

    def __init__(
        self,
        network: NetworkStatsMonitor,
        rng: Optional[np.random.Generator] = None
    ):
        self.network = network
        self.rng = rng or np.random.default_rng()
        self.logger = logging.getLogger(__name__)

        # Latest estimate per token address
        self.estimations: Dict[str, GasEstimation] = {}

    def quote(self, gas_limit: Optional[int] = None) -> GasEstimation:
        """Build an estimate from current stats without caching it."""
        stats = self.network.stats
        base_fee = stats.base_fee
        priority_fee = max(MIN_PRIORITY_FEE, base_fee * 0.1)
        max_fee_per_gas = base_fee * 2 + priority_fee
        if gas_limit is None:
            gas_limit = int(self.rng.integers(MIN_GAS_LIMIT, MAX_GAS_LIMIT))

        return GasEstimation(
            base_fee=base_fee,
            max_fee_per_gas=max_fee_per_gas,
            max_priority_fee_per_gas=priority_fee,
            gas_limit=gas_limit,
            estimated_cost=self.fee_to_native(max_fee_per_gas, gas_limit),
            execution_time=stats.avg_block_time + CONGESTION_PENALTY[CongestionLevel(stats.congestion)],
            confidence=float(self.rng.uniform(0.7, 1.0)),
        )

    async def estimate_gas(self, token_address: str, amount: float) -> GasEstimation:
        """Estimate fees for a trade of ``amount`` on ``token_address``.

        The simulated gas limit does not depend on ``amount``. The result
        replaces any earlier estimate cached for the token.
        """
        estimation = self.quote()
        self.estimations[token_address] = estimation
        self.logger.debug(
            f"Gas estimate for {token_address}: max fee {estimation.max_fee_per_gas:.2f} gwei, "
            f"limit {estimation.gas_limit}"
        )
        return estimation

    @staticmethod
    def fee_to_native(fee_per_gas_gwei: float, gas_limit: int) -> float:
        """Convert a per-gas fee in gwei times a gas limit to ether."""
        wei = Web3.to_wei(round(fee_per_gas_gwei, 9), "gwei") * gas_limit
        return float(Web3.from_wei(wei, "ether"))

    def recommended_gas_price(self) -> float:
        """Max fee per gas an estimate would use right now."""
        base_fee = self.network.stats.base_fee
        return base_fee * 2 + max(MIN_PRIORITY_FEE, base_fee * 0.1)

    def get(self, token_address: str) -> Optional[GasEstimation]:
        return self.estimations.get(token_address)

    def snapshot(self) -> Dict[str, GasEstimation]:
        return dict(self.estimations)

    async def estimate_for_config(self, config: SnipeConfig) -> GasEstimation:
        """Estimate for a config's trade.

        The gas limit is capped at ``config.max_gas`` and manual mode swaps in
        the configured priority fee; the cost is recomputed after either.
        """
        estimation = await self.estimate_gas(config.token_address, config.amount)
        estimation.gas_limit = min(estimation.gas_limit, config.max_gas)
        if config.gas_settings.mode == GasMode.MANUAL:
            priority_fee = config.gas_settings.priority_fee
            estimation.max_priority_fee_per_gas = priority_fee
            estimation.max_fee_per_gas = estimation.base_fee * 2 + priority_fee
        estimation.estimated_cost = self.fee_to_native(
            estimation.max_fee_per_gas,
            estimation.gas_limit
        )
        return estimation
