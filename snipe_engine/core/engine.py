from typing import Dict, List, Optional
from dataclasses import dataclass
import asyncio
import logging
import time
import numpy as np

from ..config.settings import EngineSettings, DEFAULT_SETTINGS
from ..exceptions import ProviderUnavailableError
from ..models.snipe_config import SnipeConfig
from ..models.trading import (
    BotStatus,
    ExitDecision,
    ExitTrigger,
    MarketData,
    Position,
    QueueItemStatus,
    TradeType,
    TransactionQueueItem,
)
from ..services.broadcaster import Broadcaster, ExecutionResult, SimulatedBroadcaster
from ..services.config_store import SnipeConfigStore
from ..services.exit_strategy import ExitStrategyEvaluator
from ..services.gas_model import GasModel, NetworkStatsMonitor
from ..services.ledger import TransactionLedger
from ..services.market_data import MarketDataStore, MarketOracle, RandomWalkOracle
from ..services.metrics import MetricsService
from ..services.slippage_model import SlippageModel
from .transaction_queue import QueueProcessor, TransactionQueue

# Remaining position size treated as fully closed
DUST = 1e-12


@dataclass
class PendingTrade:
    """A queued buy or sell waiting for its execution outcome."""
    snipe_config_id: str
    transaction_id: str
    type: TradeType
    price: float
    amount: float
    partial_target: Optional[float] = None


class SnipeEngine:
    """Owns every store and model and drives them from a market tick.

    Each tick refreshes market data for the configured tokens. While the bot
    is running, enabled configs whose price reaches the target queue a buy,
    and open positions are checked against their exit rules. Positions only
    change once the queue confirms the trade; a config has at most one trade
    in flight.
    """

    def __init__(
        self,
        settings: EngineSettings = DEFAULT_SETTINGS,
        oracle: Optional[MarketOracle] = None,
        broadcaster: Optional[Broadcaster] = None,
        clock=time.time
    ):
        self.settings = settings
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self.rng = np.random.default_rng(settings.seed)

        self.metrics = MetricsService()
        self.network = NetworkStatsMonitor(settings.network, self.rng)
        self.gas = GasModel(self.network, self.rng)
        self.slippage = SlippageModel(rng=self.rng)
        self.exits = ExitStrategyEvaluator()
        self.configs = SnipeConfigStore(settings.validation)
        self.market = MarketDataStore(oracle or RandomWalkOracle(settings.market, self.rng, clock))
        self.ledger = TransactionLedger(settings.ledger, self.rng, clock)
        self.queue = TransactionQueue(clock, settings.queue.max_retries)
        self.processor = QueueProcessor(
            self.queue,
            broadcaster or self._practice_broadcaster(),
            settings.queue,
            self.metrics
        )

        self.positions: Dict[str, Position] = {}
        # Queue item id -> trade awaiting its outcome
        self.pending_trades: Dict[str, PendingTrade] = {}
        self.is_running = False
        self.practice_mode = broadcaster is None
        self.started_at: Optional[float] = None
        self.market_task: Optional[asyncio.Task] = None

        self.network.add_listener(self.metrics.update_network)
        self.processor.add_listener(lambda item, result: self.metrics.update_queue_depth(self.queue.summary()))
        self.processor.add_listener(self._on_execution)
        self.ledger.add_listener(self.metrics.record_transaction)
        self.configs.register_callback(self._on_config_changed)

    def _practice_broadcaster(self) -> SimulatedBroadcaster:
        queue_config = self.settings.queue
        return SimulatedBroadcaster(
            queue_config.min_latency,
            queue_config.max_latency,
            queue_config.success_rate,
            self.rng
        )

    def _on_config_changed(self, config: SnipeConfig):
        if self.configs.find(config.id) is None:
            # Removed: forget its position and, if unused, its market data
            self.positions.pop(config.id, None)
            if all(c.token_address != config.token_address for c in self.configs.live_configs()):
                self.market.forget(config.token_address)

    async def start(self):
        """Start background services: network stats, queue, market ticks."""
        try:
            await self.processor.broadcaster.ensure_ready()
        except ProviderUnavailableError as e:
            self.logger.warning(f"Execution backend unavailable ({str(e)}), switching to practice mode")
            self.processor.broadcaster = self._practice_broadcaster()
            self.practice_mode = True

        if self.settings.monitoring.metrics_enabled:
            self.metrics.start_server(self.settings.monitoring.metrics_port)

        await self.network.start_monitoring()
        await self.processor.start()
        if self.market_task is None:
            self.market_task = asyncio.create_task(self._market_loop())
        self.logger.info("Snipe engine started")

    async def shutdown(self):
        """Stop all background work."""
        self.stop_bot()
        if self.market_task:
            self.market_task.cancel()
            try:
                await self.market_task
            except asyncio.CancelledError:
                pass
            self.market_task = None
        await self.processor.stop()
        await self.network.stop_monitoring()
        await self.ledger.stop()
        self.logger.info("Snipe engine stopped")

    def start_bot(self):
        if not self.is_running:
            self.is_running = True
            self.started_at = self.clock()
            self.logger.info("Bot started")

    def stop_bot(self):
        if self.is_running:
            self.is_running = False
            self.started_at = None
            self.logger.info("Bot stopped")

    def add_demo_data(self) -> str:
        self.ledger.add_demo_data()
        return self.configs.add_demo_data()

    async def _market_loop(self):
        while True:
            await asyncio.sleep(self.settings.market.tick_interval)
            try:
                await self.tick()
            except Exception as e:
                self.logger.error(f"Error in market tick: {str(e)}")

    async def tick(self) -> Dict[str, MarketData]:
        """Refresh market data and act on snipes and exits."""
        configs = self.configs.live_configs()
        data = await self.market.refresh_many([config.token_address for config in configs])
        self._drop_vanished_trades()

        if not self.is_running:
            return data

        for config in configs:
            snapshot = data.get(config.token_address)
            if snapshot is None or self.has_trade_in_flight(config.id):
                continue
            try:
                position = self.positions.get(config.id)
                if position is not None:
                    await self.check_exit(config, position, snapshot.price)
                elif self._should_snipe(config, snapshot):
                    await self.open_position(config, snapshot.price)
            except Exception as e:
                self.logger.error(f"Error handling config {config.id}: {str(e)}")
        return data

    @staticmethod
    def _should_snipe(config: SnipeConfig, snapshot: MarketData) -> bool:
        return (
            config.enabled
            and 0 < snapshot.price <= config.target_price
            and snapshot.price <= config.max_price
        )

    def has_trade_in_flight(self, config_id: str) -> bool:
        return any(trade.snipe_config_id == config_id for trade in self.pending_trades.values())

    async def open_position(self, config: SnipeConfig, price: float) -> Optional[str]:
        """Queue a buy for ``config`` at ``price``.

        The position opens when the queue confirms the buy.
        """
        gas = await self.gas.estimate_for_config(config)
        if gas.max_fee_per_gas > config.gas_settings.max_gas_price:
            self.logger.warning(
                f"Skipping buy for {config.id}: max fee {gas.max_fee_per_gas:.2f} gwei "
                f"exceeds limit {config.gas_settings.max_gas_price:g}"
            )
            return None

        slippage = self.slippage.for_config(config)
        item_id = self.queue.enqueue(
            config.id,
            TradeType.BUY,
            config.batch_settings.priority,
            gas,
            max_retries=config.gas_settings.retry_count,
            token_address=config.token_address,
            amount=config.amount,
            timeout=config.gas_settings.execution_timeout
        )
        self.metrics.record_enqueued(TradeType.BUY.value)
        transaction = self.ledger.record(
            TradeType.BUY,
            config.token_address,
            config.amount,
            price,
            gas_used=gas.gas_limit,
            gas_price=gas.max_fee_per_gas
        )
        self.pending_trades[item_id] = PendingTrade(
            snipe_config_id=config.id,
            transaction_id=transaction.id,
            type=TradeType.BUY,
            price=price,
            amount=config.amount,
        )
        self.logger.info(
            f"Snipe triggered for {config.token_address} at {price:.8f} "
            f"(slippage {slippage.recommended_slippage:.2f}%)"
        )
        return item_id

    async def check_exit(
        self,
        config: SnipeConfig,
        position: Position,
        price: float
    ) -> Optional[ExitDecision]:
        """Evaluate exit rules and queue a sell when one fires."""
        decision = self.exits.evaluate(position.entry_price, price, config, position)
        if decision is None or not decision.should_sell:
            return decision

        sell_amount = min(position.remaining, position.amount * decision.sell_percentage / 100)
        profit = sell_amount * (price - position.entry_price) / position.entry_price

        gas = await self.gas.estimate_for_config(config)
        item_id = self.queue.enqueue(
            config.id,
            TradeType.SELL,
            config.batch_settings.priority,
            gas,
            max_retries=config.gas_settings.retry_count,
            token_address=config.token_address,
            amount=sell_amount,
            timeout=config.gas_settings.execution_timeout
        )
        self.metrics.record_enqueued(TradeType.SELL.value)
        transaction = self.ledger.record(
            TradeType.SELL,
            config.token_address,
            sell_amount,
            price,
            gas_used=gas.gas_limit,
            gas_price=gas.max_fee_per_gas,
            profit=profit
        )
        self.pending_trades[item_id] = PendingTrade(
            snipe_config_id=config.id,
            transaction_id=transaction.id,
            type=TradeType.SELL,
            price=price,
            amount=sell_amount,
            partial_target=(
                position.fired_targets[-1]
                if decision.trigger == ExitTrigger.PARTIAL_SELL else None
            ),
        )
        self.logger.info(f"{decision.reason} for {config.token_address} ({decision.urgency.value} urgency)")
        return decision

    def _on_execution(self, item: TransactionQueueItem, result: ExecutionResult):
        """Settle history and positions once a queued trade is final."""
        trade = self.pending_trades.get(item.id)
        if trade is None or not item.is_terminal:
            return
        del self.pending_trades[item.id]

        if item.status == QueueItemStatus.CONFIRMED:
            self.ledger.confirm(trade.transaction_id, result.tx_hash)
            self._apply_fill(trade)
            return

        self.ledger.resolve(
            trade.transaction_id,
            False,
            error=item.error,
            retries=item.retry_count
        )
        position = self.positions.get(trade.snipe_config_id)
        if position is not None and trade.partial_target in position.fired_targets:
            # Let the target fire again on a later tick
            position.fired_targets.remove(trade.partial_target)
        self.logger.error(
            f"{trade.type.value.capitalize()} for config {trade.snipe_config_id} failed: {item.error}"
        )

    def _apply_fill(self, trade: PendingTrade):
        if trade.type == TradeType.BUY:
            config = self.configs.find(trade.snipe_config_id)
            if config is None:
                self.logger.warning(f"Buy confirmed for removed config {trade.snipe_config_id}")
                return
            self.positions[trade.snipe_config_id] = Position(
                snipe_config_id=trade.snipe_config_id,
                token_address=config.token_address,
                entry_price=trade.price,
                amount=trade.amount,
                opened_at=self.clock(),
            )
            self.logger.info(f"Opened position for {config.token_address} at {trade.price:.8f}")
            return

        position = self.positions.get(trade.snipe_config_id)
        if position is None:
            return
        position.remaining -= trade.amount
        if position.remaining <= DUST:
            self.positions.pop(trade.snipe_config_id, None)
            self.logger.info(f"Closed position for {position.token_address}")

    def _drop_vanished_trades(self):
        """Fail trades whose queue item was cancelled or purged before it settled."""
        for item_id, trade in list(self.pending_trades.items()):
            if self.queue.get(item_id) is None:
                del self.pending_trades[item_id]
                self.ledger.resolve(trade.transaction_id, False, error="removed from queue")

    def status(self) -> BotStatus:
        stats = self.ledger.stats()
        network = self.network.stats
        queue = self.queue.summary()
        return BotStatus(
            is_running=self.is_running,
            active_snipes=len(self.configs.enabled_configs()),
            total_transactions=int(stats["total_transactions"]),
            total_profit=stats["total_profit"],
            success_rate=stats["success_rate"],
            uptime=(self.clock() - self.started_at) if self.started_at is not None else 0.0,
            gas_estimator={
                "current_base_fee": network.base_fee,
                "recommended_gas_price": self.gas.recommended_gas_price(),
                "fast_gas_price": network.fast_gas_price,
                "network_congestion": network.congestion.value,
            },
            transaction_queue={
                "pending": queue["pending"],
                "processing": queue["processing"],
                "failed": queue["failed"],
                "next_nonce": queue["next_nonce"],
            },
        )

    def open_positions(self) -> List[Position]:
        return list(self.positions.values())
