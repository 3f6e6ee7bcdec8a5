"""Nonce-assigning priority queue of trade intents and its batch processor."""

from typing import Callable, Dict, List, Optional, Set
import asyncio
import logging
import time
import uuid

from ..config.settings import QueueConfig
from ..exceptions import ExecutionError
from ..models.trading import (
    GasEstimation,
    QueueItemStatus,
    TradeType,
    TransactionQueueItem,
)
from ..services.broadcaster import Broadcaster, ExecutionRequest, ExecutionResult


def _sort_key(item: TransactionQueueItem):
    # Higher priority first, then FIFO; nonce breaks identical timestamps
    return (-item.priority, item.created_at, item.nonce)


class TransactionQueue:
    """Ordered queue of pending trades.

    Nonces come from a counter that lives as long as the queue object and
    are never reused, even after items are purged.
    """

    def __init__(self, clock: Callable[[], float] = time.time, max_retries: int = 3):
        self.clock = clock
        self.max_retries = max_retries
        self.logger = logging.getLogger(__name__)
        self._items: List[TransactionQueueItem] = []
        self._index: Dict[str, TransactionQueueItem] = {}
        self._next_nonce = 0

    @property
    def next_nonce(self) -> int:
        return self._next_nonce

    def __len__(self) -> int:
        return len(self._items)

    def enqueue(
        self,
        snipe_config_id: str,
        trade_type: TradeType,
        priority: int,
        gas_settings: GasEstimation,
        max_retries: Optional[int] = None,
        token_address: Optional[str] = None,
        amount: float = 0.0,
        timeout: Optional[float] = None
    ) -> str:
        """Add a trade intent and return its id."""
        item = TransactionQueueItem(
            id=uuid.uuid4().hex,
            snipe_config_id=snipe_config_id,
            type=TradeType(trade_type),
            priority=priority,
            nonce=self._next_nonce,
            gas_settings=gas_settings,
            created_at=self.clock(),
            max_retries=self.max_retries if max_retries is None else max_retries,
            token_address=token_address,
            amount=amount,
            timeout=timeout or None,
        )
        self._next_nonce += 1

        self._items.append(item)
        self._items.sort(key=_sort_key)
        self._index[item.id] = item

        self.logger.info(
            f"Queued {item.type.value} {item.id} for config {snipe_config_id} "
            f"(priority {priority}, nonce {item.nonce})"
        )
        return item.id

    def get(self, item_id: str) -> Optional[TransactionQueueItem]:
        return self._index.get(item_id)

    def items(self) -> List[TransactionQueueItem]:
        """All items in queue order."""
        return list(self._items)

    def queued(self) -> List[TransactionQueueItem]:
        return [item for item in self._items if item.status == QueueItemStatus.QUEUED]

    def next_batch(self, size: int) -> List[TransactionQueueItem]:
        return self.queued()[:size]

    def mark_processing(self, item: TransactionQueueItem):
        item.status = QueueItemStatus.PROCESSING
        item.executed_at = self.clock()

    def mark_confirmed(self, item: TransactionQueueItem, tx_hash: Optional[str] = None):
        item.status = QueueItemStatus.CONFIRMED
        item.tx_hash = tx_hash
        item.error = None

    def mark_failed(
        self,
        item: TransactionQueueItem,
        error: Optional[str] = None,
        retry_delay: float = 0.0
    ) -> bool:
        """Record a failed execution.

        Returns True when the item will be retried, False when the failure
        is terminal.
        """
        item.status = QueueItemStatus.FAILED
        item.error = error
        if item.retry_count < item.max_retries:
            item.retry_count += 1
            item.retry_at = self.clock() + retry_delay
            return True
        item.retry_at = None
        return False

    def requeue(self, item_id: str) -> bool:
        """Put a retryable failed item back in line."""
        item = self._index.get(item_id)
        if item is None or item.status != QueueItemStatus.FAILED or item.retry_at is None:
            return False
        item.status = QueueItemStatus.QUEUED
        item.retry_at = None
        return True

    def cancel(self, item_id: str) -> bool:
        """Remove an item that has not started executing."""
        item = self._index.get(item_id)
        if item is None or item.status != QueueItemStatus.QUEUED:
            return False
        self._remove(item)
        self.logger.info(f"Cancelled queued item {item_id} (nonce {item.nonce})")
        return True

    def purge_expired(self, max_age: float = 300.0, now: Optional[float] = None) -> int:
        """Drop every item created more than ``max_age`` seconds ago."""
        now = self.clock() if now is None else now
        expired = [item for item in self._items if now - item.created_at > max_age]
        for item in expired:
            self._remove(item)
        if expired:
            self.logger.info(f"Purged {len(expired)} expired queue items")
        return len(expired)

    def _remove(self, item: TransactionQueueItem):
        self._items.remove(item)
        self._index.pop(item.id, None)

    def summary(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in QueueItemStatus}
        for item in self._items:
            counts[item.status.value] += 1
        return {
            "pending": counts[QueueItemStatus.QUEUED.value],
            "processing": counts[QueueItemStatus.PROCESSING.value],
            "confirmed": counts[QueueItemStatus.CONFIRMED.value],
            "failed": counts[QueueItemStatus.FAILED.value],
            "next_nonce": self._next_nonce,
        }


class QueueProcessor:
    """Drains the queue in bounded batches through a broadcaster.

    Only one drain runs at a time; a call made while a drain is in flight
    returns immediately without processing anything.
    """

    def __init__(
        self,
        queue: TransactionQueue,
        broadcaster: Broadcaster,
        config: Optional[QueueConfig] = None,
        metrics=None
    ):
        self.queue = queue
        self.broadcaster = broadcaster
        self.config = config or QueueConfig()
        self.metrics = metrics
        self.logger = logging.getLogger(__name__)

        self._lock = asyncio.Lock()
        self._retry_tasks: Set[asyncio.Task] = set()
        self._loop_tasks: List[asyncio.Task] = []
        self._listeners: List[Callable] = []

    @property
    def is_processing(self) -> bool:
        return self._lock.locked()

    def add_listener(self, callback: Callable):
        """Register ``callback(item, result)`` called after each execution."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    async def process_queue(self) -> List[TransactionQueueItem]:
        """Execute up to ``batch_size`` queued items, one after another."""
        if self._lock.locked():
            self.logger.debug("Queue drain already in flight, skipping")
            return []

        async with self._lock:
            batch = self.queue.next_batch(self.config.batch_size)
            for index, item in enumerate(batch):
                if self.queue.get(item.id) is None or item.status != QueueItemStatus.QUEUED:
                    # Cancelled or purged while earlier items ran
                    continue
                await self._execute(item)
                if index < len(batch) - 1 and self.config.batch_delay > 0:
                    await asyncio.sleep(self.config.batch_delay)
            return batch

    async def _execute(self, item: TransactionQueueItem):
        self.queue.mark_processing(item)
        request = ExecutionRequest(
            item_id=item.id,
            to=item.token_address or "",
            type=item.type,
            amount=item.amount,
            gas_settings=item.gas_settings,
            nonce=item.nonce,
        )

        try:
            if item.timeout:
                result = await asyncio.wait_for(self.broadcaster.send(request), item.timeout)
            else:
                result = await self.broadcaster.send(request)
        except asyncio.TimeoutError:
            result = ExecutionResult(success=False, error=f"execution timed out after {item.timeout:g}s")
        except ExecutionError as e:
            result = ExecutionResult(success=False, error=str(e))
        except Exception as e:
            self.logger.error(f"Unexpected error executing {item.id}: {str(e)}")
            result = ExecutionResult(success=False, error=str(e))

        retry = False
        if result.success:
            self.queue.mark_confirmed(item, result.tx_hash)
            self.logger.info(f"Confirmed {item.type.value} {item.id} (nonce {item.nonce})")
        else:
            retry = self.queue.mark_failed(item, result.error, self.config.retry_delay)
            if retry:
                self.logger.warning(
                    f"Execution of {item.id} failed ({result.error}), "
                    f"retry {item.retry_count}/{item.max_retries} in {self.config.retry_delay}s"
                )
                self._schedule_retry(item)
            else:
                self.logger.error(
                    f"Execution of {item.id} failed permanently after "
                    f"{item.retry_count} retries: {result.error}"
                )

        if self.metrics is not None:
            self.metrics.record_queue_result(item, retried=retry)

        for callback in self._listeners:
            try:
                callback(item, result)
            except Exception as e:
                self.logger.error(f"Error in queue listener: {str(e)}")

    def _schedule_retry(self, item: TransactionQueueItem):
        if self.config.retry_delay <= 0:
            self.queue.requeue(item.id)
            return
        task = asyncio.create_task(self._requeue_later(item.id))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _requeue_later(self, item_id: str):
        await asyncio.sleep(self.config.retry_delay)
        self.queue.requeue(item_id)

    def purge_expired(self, now: Optional[float] = None) -> int:
        return self.queue.purge_expired(self.config.retention, now)

    async def start(self):
        """Start the periodic drain and retention sweep."""
        if self._loop_tasks:
            return
        self._loop_tasks = [
            asyncio.create_task(self._run_periodically(self.config.process_interval, self.process_queue)),
            asyncio.create_task(self._run_periodically(self.config.cleanup_interval, self._sweep)),
        ]

    async def stop(self):
        """Stop periodic work and drop pending retry timers."""
        tasks = self._loop_tasks + list(self._retry_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._loop_tasks = []
        self._retry_tasks.clear()

    async def _sweep(self):
        self.purge_expired()

    async def _run_periodically(self, interval: float, job):
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except Exception as e:
                self.logger.error(f"Error in periodic queue job: {str(e)}")
