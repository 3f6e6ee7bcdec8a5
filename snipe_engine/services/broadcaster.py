from typing import Optional
from abc import ABC, abstractmethod
from dataclasses import dataclass
import asyncio
import logging
import numpy as np

from ..models.trading import GasEstimation, TradeType


@dataclass
class ExecutionRequest:
    """What a broadcaster needs to submit one queued trade."""
    item_id: str
    to: str
    type: TradeType
    amount: float
    gas_settings: GasEstimation
    nonce: int


@dataclass
class ExecutionResult:
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[str] = None


class Broadcaster(ABC):
    """Submits trades to the network."""

    async def ensure_ready(self):
        """Raise ProviderUnavailableError when no wallet/backend is usable."""

    @abstractmethod
    async def send(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute ``request`` and wait for its outcome.

        Transient failures are reported as ``success=False`` or by raising
        ExecutionError; both are retried by the queue processor.
        """


class SimulatedBroadcaster(Broadcaster):
    """Practice-mode broadcaster: random latency and random outcome."""

    def __init__(
        self,
        min_latency: float = 1.0,
        max_latency: float = 3.0,
        success_rate: float = 0.9,
        rng: Optional[np.random.Generator] = None
    ):
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.success_rate = success_rate
        self.rng = rng or np.random.default_rng()
        self.logger = logging.getLogger(__name__)

    async def send(self, request: ExecutionRequest) -> ExecutionResult:
        latency = float(self.rng.uniform(self.min_latency, self.max_latency))
        if latency > 0:
            await asyncio.sleep(latency)

        if self.rng.random() < self.success_rate:
            tx_hash = "0x" + self.rng.bytes(32).hex()
            self.logger.debug(f"Simulated {request.type.value} nonce {request.nonce} confirmed: {tx_hash}")
            return ExecutionResult(success=True, tx_hash=tx_hash)

        return ExecutionResult(success=False, error="simulated execution failure")
