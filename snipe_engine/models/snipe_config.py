from typing import List, Optional
from enum import Enum
import uuid

from eth_utils import is_hex_address
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class GasMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class SlippageMode(str, Enum):
    FIXED = "fixed"
    ADAPTIVE = "adaptive"


class NonceManagement(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


def is_token_address(address: str) -> bool:
    """Return True for a 0x-prefixed, 42 character hex address."""
    return (
        isinstance(address, str)
        and address.startswith("0x")
        and len(address) == 42
        and is_hex_address(address)
    )


class GasSettings(BaseModel):
    mode: GasMode = GasMode.AUTO
    max_gas_price: float = Field(100.0, ge=0)  # gwei
    priority_fee: float = Field(2.0, ge=0)  # gwei
    execution_timeout: int = Field(120, ge=0)  # seconds per send attempt; 0 waits indefinitely
    retry_count: int = Field(3, ge=0, le=5)


class SlippageSettings(BaseModel):
    mode: SlippageMode = SlippageMode.FIXED
    base_slippage: float = Field(10.0, gt=0, le=100)
    max_slippage: float = Field(25.0, gt=0, le=100)
    liquidity_threshold: float = Field(50000.0, ge=0)  # USD
    volatility_multiplier: float = Field(1.0, ge=0.1, le=5)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.max_slippage < self.base_slippage:
            raise ValueError("max_slippage must be >= base_slippage")
        return self


class TrailingStopSettings(BaseModel):
    enabled: bool = False
    percentage: float = Field(5.0, gt=0, lt=100)  # trail below peak
    activation_price: float = 20.0  # profit % that arms the stop


class PartialSellingSettings(BaseModel):
    enabled: bool = False
    percentages: List[float] = [25.0, 50.0]
    price_targets: List[float] = [20.0, 50.0]

    def pairs(self) -> List[tuple]:
        """(price_target, percentage) pairs in configured order.

        A target without a matching percentage sells 25%.
        """
        return [
            (target, self.percentages[i] if i < len(self.percentages) else 25.0)
            for i, target in enumerate(self.price_targets)
        ]


class AutoSellSettings(BaseModel):
    enabled: bool = False
    profit_target: float = 50.0
    stop_loss: float = Field(-20.0, le=0)
    trailing_stop: TrailingStopSettings = Field(default_factory=TrailingStopSettings)
    partial_selling: PartialSellingSettings = Field(default_factory=PartialSellingSettings)


class BatchSettings(BaseModel):
    # Only ``priority`` is applied per item. Batch size, pacing and nonces are
    # engine-wide (QueueConfig); the other fields are stored for clients.
    enabled: bool = False
    max_batch_size: int = Field(3, ge=1, le=10)
    batch_delay: int = Field(200, ge=0)  # ms between transactions
    nonce_management: NonceManagement = NonceManagement.AUTO
    priority: int = Field(5, ge=1, le=10)


class SnipeConfig(BaseModel):
    """A user-defined trading rule for one token."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    token_address: str
    target_price: float = 0.0
    max_price: float = 0.0
    amount: float = 0.1  # native currency
    slippage: float = 10.0  # percent
    gas_price: float = 20.0  # gwei, stored for clients; fees come from GasModel
    max_gas: int = Field(500000, gt=0)  # caps the estimated gas limit
    enabled: bool = False
    gas_settings: GasSettings = Field(default_factory=GasSettings)
    slippage_settings: SlippageSettings = Field(default_factory=SlippageSettings)
    auto_sell: Optional[AutoSellSettings] = Field(default_factory=AutoSellSettings)
    batch_settings: BatchSettings = Field(default_factory=BatchSettings)

    model_config = ConfigDict(use_enum_values=True)

    @field_validator("token_address")
    @classmethod
    def _check_address(cls, value: str) -> str:
        if not is_token_address(value):
            raise ValueError("token address must be a 0x-prefixed 42 character hex string")
        return value

    @property
    def auto_sell_enabled(self) -> bool:
        return bool(self.auto_sell and self.auto_sell.enabled)
