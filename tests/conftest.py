import pytest
import asyncio
from typing import Dict, List, Optional

from snipe_engine.config.settings import EngineSettings, LedgerConfig, QueueConfig
from snipe_engine.core.engine import SnipeEngine
from snipe_engine.core.transaction_queue import QueueProcessor, TransactionQueue
from snipe_engine.models.snipe_config import SnipeConfig
from snipe_engine.models.trading import GasEstimation, MarketData
from snipe_engine.services.broadcaster import Broadcaster, ExecutionRequest, ExecutionResult
from snipe_engine.services.config_store import SnipeConfigStore, default_config
from snipe_engine.services.market_data import MarketOracle

# Test tokens (Mainnet addresses)
TEST_TOKENS = {
    "UNI": "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984",
    "WETH": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
    "USDC": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
}


class FakeClock:
    """Manually advanced clock."""
    def __init__(self, start: float = 1_000.0, step: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current

    def advance(self, seconds: float):
        self.now += seconds


class ScriptedBroadcaster(Broadcaster):
    """Returns scripted outcomes in order, then ``default``."""
    def __init__(self, outcomes: Optional[List] = None, default: bool = True):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.requests: List[ExecutionRequest] = []

    async def send(self, request: ExecutionRequest) -> ExecutionResult:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        if outcome:
            return ExecutionResult(success=True, tx_hash=f"0x{request.nonce:064x}")
        return ExecutionResult(success=False, error="scripted failure")


class BlockingBroadcaster(Broadcaster):
    """Holds every send until ``release`` is set."""
    def __init__(self):
        self.release = asyncio.Event()
        self.requests: List[ExecutionRequest] = []

    async def send(self, request: ExecutionRequest) -> ExecutionResult:
        self.requests.append(request)
        await self.release.wait()
        return ExecutionResult(success=True, tx_hash="0x01")


class StaticOracle(MarketOracle):
    """Serves prices set by the test."""
    def __init__(self, prices: Optional[Dict[str, float]] = None):
        self.prices = dict(prices or {})

    async def sample(self, token_address: str, previous: Optional[MarketData] = None) -> MarketData:
        return MarketData(
            token_address=token_address,
            price=self.prices.get(token_address, 1.0),
            price_change_1m=0.0,
            price_change_5m=0.0,
            price_change_1h=0.0,
            volume_1h=250_000.0,
            liquidity=1_000_000.0,
            holders=1_000,
        )


def make_gas(**overrides) -> GasEstimation:
    data = dict(
        base_fee=15.0,
        max_fee_per_gas=32.0,
        max_priority_fee_per_gas=2.0,
        gas_limit=175_000,
        estimated_cost=0.0056,
        execution_time=22.0,
        confidence=0.9,
    )
    data.update(overrides)
    return GasEstimation(**data)


@pytest.fixture
def clock():
    return FakeClock(step=0.001)


@pytest.fixture
def fast_queue_config():
    """Queue settings with every delay removed."""
    return QueueConfig(batch_size=3, retry_delay=0.0, batch_delay=0.0, min_latency=0.0, max_latency=0.0)


@pytest.fixture
def fast_settings(fast_queue_config):
    return EngineSettings(
        queue=fast_queue_config,
        ledger=LedgerConfig(min_confirmation_delay=0.0, max_confirmation_delay=0.0),
        seed=7,
    )


@pytest.fixture
def queue(clock):
    return TransactionQueue(clock)


@pytest.fixture
def broadcaster():
    return ScriptedBroadcaster()


@pytest.fixture
def processor(queue, broadcaster, fast_queue_config):
    return QueueProcessor(queue, broadcaster, fast_queue_config)


@pytest.fixture
def store():
    return SnipeConfigStore()


@pytest.fixture
def valid_config() -> SnipeConfig:
    return default_config(
        TEST_TOKENS["UNI"],
        target_price=0.001,
        max_price=0.0012,
        amount=0.5,
        slippage=12.0,
    )


@pytest.fixture
def oracle():
    return StaticOracle({TEST_TOKENS["UNI"]: 0.0011})


@pytest.fixture
async def engine(fast_settings, oracle, broadcaster, clock):
    """Engine with static prices, scripted execution and no delays."""
    snipe_engine = SnipeEngine(fast_settings, oracle=oracle, broadcaster=broadcaster, clock=clock)
    yield snipe_engine
    await snipe_engine.shutdown()
