from typing import Optional
import logging
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    start_http_server
)

from ..models.trading import (
    CongestionLevel,
    NetworkStats,
    QueueItemStatus,
    Transaction,
    TransactionQueueItem,
)

CONGESTION_VALUES = {
    CongestionLevel.LOW: 0,
    CongestionLevel.MEDIUM: 1,
    CongestionLevel.HIGH: 2,
}


class MetricsService:
    """Prometheus metrics for the queue, the ledger and network conditions."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry or CollectorRegistry()
        self._init_metrics()

    def _init_metrics(self):
        """Initialize Prometheus metrics."""
        # Queue metrics
        self.items_enqueued = Counter(
            'snipe_queue_items_enqueued_total',
            'Trades added to the transaction queue',
            ['type'],
            registry=self.registry
        )
        self.items_confirmed = Counter(
            'snipe_queue_items_confirmed_total',
            'Queue items confirmed',
            registry=self.registry
        )
        self.items_failed = Counter(
            'snipe_queue_items_failed_total',
            'Queue items failed permanently',
            registry=self.registry
        )
        self.items_retried = Counter(
            'snipe_queue_items_retried_total',
            'Failed executions scheduled for retry',
            registry=self.registry
        )
        self.queue_depth = Gauge(
            'snipe_queue_depth',
            'Queue items by status',
            ['status'],
            registry=self.registry
        )

        # Ledger metrics
        self.transactions = Counter(
            'snipe_transactions_total',
            'Ledger transactions by final status',
            ['type', 'status'],
            registry=self.registry
        )

        # Network metrics
        self.base_fee = Gauge(
            'snipe_base_fee_gwei',
            'Current base fee in gwei',
            registry=self.registry
        )
        self.congestion = Gauge(
            'snipe_network_congestion',
            'Network congestion (0 low, 1 medium, 2 high)',
            registry=self.registry
        )

    def start_server(self, port: int):
        """Expose metrics over HTTP."""
        start_http_server(port, registry=self.registry)
        self.logger.info(f"Metrics server started on port {port}")

    def record_enqueued(self, trade_type: str):
        self.items_enqueued.labels(type=trade_type).inc()

    def record_queue_result(self, item: TransactionQueueItem, retried: bool):
        if item.status == QueueItemStatus.CONFIRMED:
            self.items_confirmed.inc()
        elif retried:
            self.items_retried.inc()
        else:
            self.items_failed.inc()

    def update_queue_depth(self, summary: dict):
        for status in ("pending", "processing", "confirmed", "failed"):
            self.queue_depth.labels(status=status).set(summary.get(status, 0))

    def record_transaction(self, transaction: Transaction):
        self.transactions.labels(
            type=transaction.type.value,
            status=transaction.status.value
        ).inc()

    def update_network(self, stats: NetworkStats):
        self.base_fee.set(stats.base_fee)
        self.congestion.set(CONGESTION_VALUES[CongestionLevel(stats.congestion)])
