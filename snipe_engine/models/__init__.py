from .snipe_config import (
    AutoSellSettings,
    BatchSettings,
    GasSettings,
    PartialSellingSettings,
    SlippageSettings,
    SnipeConfig,
    TrailingStopSettings,
)
from .trading import (
    BotStatus,
    CongestionLevel,
    ExitDecision,
    ExitTrigger,
    GasEstimation,
    MarketData,
    NetworkStats,
    Position,
    QueueItemStatus,
    SlippageCalculation,
    Transaction,
    TransactionQueueItem,
    TransactionStatus,
    TradeType,
    Urgency,
)
