from typing import Dict, List, Optional
from dataclasses import dataclass, field
from enum import Enum
import time


class TradeType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class CongestionLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class QueueItemStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Urgency(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ExitTrigger(str, Enum):
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    PARTIAL_SELL = "partial_sell"
    TRAILING_STOP = "trailing_stop"


@dataclass
class MarketData:
    token_address: str
    price: float
    price_change_1m: float
    price_change_5m: float
    price_change_1h: float
    volume_1h: float
    liquidity: float
    holders: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class NetworkStats:
    base_fee: float  # gwei
    fast_gas_price: float  # gwei
    congestion: CongestionLevel
    avg_block_time: float  # seconds


@dataclass
class GasEstimation:
    base_fee: float
    max_fee_per_gas: float
    max_priority_fee_per_gas: float
    gas_limit: int
    estimated_cost: float  # native units
    execution_time: float  # seconds
    confidence: float


@dataclass
class SlippageCalculation:
    base_slippage: float
    adjusted_slippage: float
    liquidity_factor: float
    volatility_factor: float
    recommended_slippage: float
    confidence: float


@dataclass
class TransactionQueueItem:
    id: str
    snipe_config_id: str
    type: TradeType
    priority: int
    nonce: int
    gas_settings: GasEstimation
    status: QueueItemStatus = QueueItemStatus.QUEUED
    created_at: float = field(default_factory=time.time)
    executed_at: Optional[float] = None
    retry_count: int = 0
    max_retries: int = 3
    retry_at: Optional[float] = None
    error: Optional[str] = None
    tx_hash: Optional[str] = None
    token_address: Optional[str] = None
    amount: float = 0.0
    timeout: Optional[float] = None  # seconds; None waits indefinitely

    @property
    def is_terminal(self) -> bool:
        if self.status == QueueItemStatus.CONFIRMED:
            return True
        return self.status == QueueItemStatus.FAILED and self.retry_at is None


@dataclass
class Transaction:
    """Historical record of a simulated execution."""
    id: str
    hash: str
    type: TradeType
    token_address: str
    token_symbol: str
    amount: float
    price: float
    gas_used: int
    gas_price: float
    timestamp: float = field(default_factory=time.time)
    status: TransactionStatus = TransactionStatus.PENDING
    profit: Optional[float] = None
    error: Optional[str] = None
    retries: int = 0


@dataclass
class ExitDecision:
    should_sell: bool = False
    sell_percentage: float = 100.0
    reason: str = ""
    urgency: Urgency = Urgency.NORMAL
    trigger: Optional[ExitTrigger] = None


@dataclass
class Position:
    """An open holding created by a snipe buy."""
    snipe_config_id: str
    token_address: str
    entry_price: float
    amount: float
    opened_at: float = field(default_factory=time.time)
    remaining: float = -1.0
    peak_price: float = 0.0
    trailing_active: bool = False
    fired_targets: List[float] = field(default_factory=list)

    def __post_init__(self):
        if self.peak_price <= 0:
            self.peak_price = self.entry_price
        if self.remaining < 0:
            self.remaining = self.amount


@dataclass
class BotStatus:
    is_running: bool = False
    active_snipes: int = 0
    total_transactions: int = 0
    total_profit: float = 0.0
    success_rate: float = 0.0
    uptime: float = 0.0
    gas_estimator: Dict[str, object] = field(default_factory=dict)
    transaction_queue: Dict[str, int] = field(default_factory=dict)
