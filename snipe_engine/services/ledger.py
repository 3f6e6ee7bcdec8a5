from typing import Callable, Dict, List, Optional, Set
import asyncio
import logging
import time
import uuid
import numpy as np

from ..config.settings import LedgerConfig
from ..models.trading import TradeType, Transaction, TransactionStatus


class TransactionLedger:
    """History of simulated executions, newest first.

    Records start ``pending`` when a trade is queued. A failed execution
    settles them at once; a confirmed one settles after a random block
    confirmation delay. Records are never deleted.
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or LedgerConfig()
        self.rng = rng or np.random.default_rng()
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self._transactions: List[Transaction] = []
        self._index: Dict[str, Transaction] = {}
        self._pending_tasks: Set[asyncio.Task] = set()
        self._listeners: List[Callable] = []

    def add_listener(self, callback: Callable):
        """Register ``callback(transaction)`` called when a record resolves."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def record(
        self,
        trade_type: TradeType,
        token_address: str,
        amount: float,
        price: float,
        gas_used: Optional[int] = None,
        gas_price: Optional[float] = None,
        profit: Optional[float] = None,
        tx_hash: Optional[str] = None,
        token_symbol: str = "TOKEN"
    ) -> Transaction:
        """Create a pending record; the caller settles it once the trade resolves."""
        transaction = Transaction(
            id=uuid.uuid4().hex,
            hash=tx_hash or "0x" + self.rng.bytes(32).hex(),
            type=TradeType(trade_type),
            token_address=token_address,
            token_symbol=token_symbol,
            amount=amount,
            price=price,
            gas_used=gas_used if gas_used is not None else int(self.rng.integers(21000, 121000)),
            gas_price=gas_price if gas_price is not None else float(self.rng.integers(20, 70)),
            timestamp=self.clock(),
            profit=profit,
        )
        self._transactions.insert(0, transaction)
        self._index[transaction.id] = transaction
        self.logger.info(
            f"Recorded {transaction.type.value} of {amount} at {price:.8f} "
            f"for {token_address} ({transaction.hash[:10]})"
        )
        return transaction

    def confirm(self, transaction_id: str, tx_hash: Optional[str] = None):
        """Mark an executed trade successful after a block confirmation wait."""
        delay = float(self.rng.uniform(
            self.config.min_confirmation_delay,
            self.config.max_confirmation_delay
        ))
        if delay <= 0:
            self.resolve(transaction_id, True, tx_hash=tx_hash)
            return

        task = asyncio.create_task(self._confirm_later(transaction_id, tx_hash, delay))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _confirm_later(self, transaction_id: str, tx_hash: Optional[str], delay: float):
        await asyncio.sleep(delay)
        self.resolve(transaction_id, True, tx_hash=tx_hash)

    def resolve(
        self,
        transaction_id: str,
        success: bool,
        tx_hash: Optional[str] = None,
        error: Optional[str] = None,
        retries: int = 0
    ) -> Optional[Transaction]:
        """Settle a pending record; settled records are left untouched."""
        transaction = self._index.get(transaction_id)
        if transaction is None or transaction.status != TransactionStatus.PENDING:
            return None

        if tx_hash:
            transaction.hash = tx_hash
        transaction.retries = retries
        if success:
            transaction.status = TransactionStatus.SUCCESS
            self.logger.info(f"Transaction {transaction.hash[:10]} confirmed")
        else:
            transaction.status = TransactionStatus.FAILED
            transaction.error = error
            self.logger.warning(
                f"Transaction {transaction.hash[:10]} failed after {retries} retries: {error}"
            )

        for callback in self._listeners:
            try:
                callback(transaction)
            except Exception as e:
                self.logger.error(f"Error in ledger listener: {str(e)}")
        return transaction

    def get(self, transaction_id: str) -> Optional[Transaction]:
        return self._index.get(transaction_id)

    def transactions(self) -> List[Transaction]:
        return list(self._transactions)

    def stats(self) -> Dict[str, float]:
        settled = [tx for tx in self._transactions if tx.status != TransactionStatus.PENDING]
        successful = [tx for tx in settled if tx.status == TransactionStatus.SUCCESS]
        total_profit = sum(tx.profit for tx in successful if tx.profit)
        return {
            "total_transactions": len(settled),
            "successful_transactions": len(successful),
            "total_profit": total_profit,
            "success_rate": (len(successful) / len(settled) * 100) if settled else 0.0,
        }

    def add_demo_data(self):
        """Seed two settled historical buys."""
        now = self.clock()
        demo = [
            Transaction(
                id=uuid.uuid4().hex,
                hash="0x1234567890abcdef1234567890abcdef12345678",
                type=TradeType.BUY,
                token_address="0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984",
                token_symbol="UNI",
                amount=0.5,
                price=0.00234,
                gas_used=180000,
                gas_price=25,
                timestamp=now - 300,
                status=TransactionStatus.SUCCESS,
                profit=0.0123,
            ),
            Transaction(
                id=uuid.uuid4().hex,
                hash="0xabcdef1234567890abcdef1234567890abcdef12",
                type=TradeType.BUY,
                token_address="0xa0b86a33e6776d6e94c13c6e2c2c72b6b5b7e6d3",
                token_symbol="PEPE",
                amount=0.2,
                price=0.00001234,
                gas_used=165000,
                gas_price=22,
                timestamp=now - 600,
                status=TransactionStatus.SUCCESS,
                profit=-0.0045,
            ),
        ]
        for transaction in demo:
            self._transactions.append(transaction)
            self._index[transaction.id] = transaction

    async def stop(self):
        """Cancel outstanding confirmation timers."""
        tasks = list(self._pending_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._pending_tasks.clear()
