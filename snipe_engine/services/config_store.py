from typing import Callable, Dict, List, Optional, Union
import logging
import uuid

from pydantic import ValidationError

from ..config.settings import ValidationConfig
from ..exceptions import ConfigNotFoundError, ConfigValidationError
from ..models.snipe_config import (
    AutoSellSettings,
    BatchSettings,
    GasSettings,
    PartialSellingSettings,
    SlippageSettings,
    SnipeConfig,
    TrailingStopSettings,
)

DEMO_TOKEN = "0x1f9840a85d5aF5bf1D1762F925BDADdC4201F984"


def _format_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "config"
    return f"{location}: {first['msg']}"


def default_config(token_address: str, **overrides) -> SnipeConfig:
    """A new rule with the defaults the add form starts from."""
    data = {
        "token_address": token_address,
        "target_price": 0.001,
        "max_price": 0.0012,
        "amount": 0.1,
        "slippage": 10.0,
        "gas_settings": GasSettings(),
        "slippage_settings": SlippageSettings(),
        "auto_sell": AutoSellSettings(),
        "batch_settings": BatchSettings(),
    }
    data.update(overrides)
    return SnipeConfig(**data)


class SnipeConfigStore:
    """CRUD over snipe configurations.

    ``enabled`` can only be switched on through ``enable``, which runs the
    trading checks and requires the user's risk acknowledgement.
    """

    def __init__(self, limits: Optional[ValidationConfig] = None):
        self.limits = limits or ValidationConfig()
        self.logger = logging.getLogger(__name__)
        self._configs: Dict[str, SnipeConfig] = {}
        self.update_callbacks: List[Callable] = []

    # Rules checked in order; the first failure is reported
    def _rules(self):
        max_amount = self.limits.max_amount
        max_slippage = self.limits.max_slippage
        return [
            ("target_price", lambda c: c.target_price > 0, "Please set a target price"),
            ("max_price", lambda c: c.max_price > 0, "Please set a maximum price"),
            ("amount", lambda c: c.amount > 0, "Please set an amount to trade"),
            ("amount_limit", lambda c: c.amount <= max_amount,
             f"Amount seems too high (>{max_amount:g} ETH)"),
            ("slippage", lambda c: c.slippage > 0, "Please set slippage tolerance"),
            ("slippage_limit", lambda c: c.slippage <= max_slippage,
             f"Slippage seems too high (>{max_slippage:g}%)"),
            ("price_range", lambda c: c.max_price >= c.target_price,
             "Max price must be >= target price"),
        ]

    def validation_message(self, config: SnipeConfig, acknowledged: bool) -> Optional[str]:
        """Return the first failing rule's message, or None if the config may trade."""
        failure = self._first_failure(config, acknowledged)
        return failure[1] if failure else None

    def _first_failure(self, config: SnipeConfig, acknowledged: bool):
        for rule, check, message in self._rules():
            if not check(config):
                return rule, message
        if not acknowledged:
            return "acknowledgement", "Please confirm your settings and that you understand the risks"
        return None

    def check_tradable(self, config: SnipeConfig, acknowledged: bool):
        """Raise ConfigValidationError naming the first failing rule."""
        failure = self._first_failure(config, acknowledged)
        if failure:
            rule, message = failure
            raise ConfigValidationError(message, rule=rule)

    def add(self, config: Union[SnipeConfig, Dict]) -> str:
        """Store a new config under a fresh id, initially disabled."""
        data = config.model_dump() if isinstance(config, SnipeConfig) else dict(config)
        data["id"] = uuid.uuid4().hex
        data["enabled"] = False
        try:
            new_config = SnipeConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigValidationError(_format_validation_error(e), rule="schema") from e

        self._configs[new_config.id] = new_config
        self.logger.info(f"Added snipe config {new_config.id} for {new_config.token_address}")
        self._notify_updates(new_config)
        return new_config.id

    def update(self, config_id: str, updates: Dict) -> Optional[SnipeConfig]:
        """Shallow-merge ``updates`` into a config; unknown ids are ignored."""
        current = self._configs.get(config_id)
        if current is None:
            return None

        updates = {k: v for k, v in updates.items() if k != "id"}
        if updates.get("enabled") and not current.enabled:
            raise ConfigValidationError(
                "Configs are enabled through enable() with a risk acknowledgement",
                rule="acknowledgement"
            )

        merged = {**current.model_dump(), **updates}
        try:
            updated = SnipeConfig.model_validate(merged)
        except ValidationError as e:
            raise ConfigValidationError(_format_validation_error(e), rule="schema") from e

        if updated.enabled:
            # The user acknowledged when enabling; re-check the trading limits
            message = self.validation_message(updated, acknowledged=True)
            if message:
                updated.enabled = False
                self.logger.warning(f"Disabled snipe config {config_id} after update: {message}")

        self._configs[config_id] = updated
        self._notify_updates(updated)
        return updated

    def remove(self, config_id: str) -> bool:
        removed = self._configs.pop(config_id, None)
        if removed is not None:
            self.logger.info(f"Removed snipe config {config_id}")
            self._notify_updates(removed)
        return removed is not None

    def enable(self, config_id: str, acknowledged: bool) -> SnipeConfig:
        config = self.get(config_id)
        self.check_tradable(config, acknowledged)
        config.enabled = True
        self.logger.info(f"Enabled snipe config {config_id}")
        self._notify_updates(config)
        return config

    def disable(self, config_id: str) -> SnipeConfig:
        config = self.get(config_id)
        config.enabled = False
        self.logger.info(f"Disabled snipe config {config_id}")
        self._notify_updates(config)
        return config

    def get(self, config_id: str) -> SnipeConfig:
        try:
            return self._configs[config_id]
        except KeyError:
            raise ConfigNotFoundError(config_id) from None

    def find(self, config_id: str) -> Optional[SnipeConfig]:
        return self._configs.get(config_id)

    def list_configs(self) -> List[SnipeConfig]:
        """Snapshot copies, in insertion order."""
        return [config.model_copy(deep=True) for config in self._configs.values()]

    def live_configs(self) -> List[SnipeConfig]:
        """The stored config objects themselves, for engine use."""
        return list(self._configs.values())

    def enabled_configs(self) -> List[SnipeConfig]:
        return [config for config in self._configs.values() if config.enabled]

    def __len__(self) -> int:
        return len(self._configs)

    def register_callback(self, callback: Callable):
        """Register a callback for config changes."""
        if callback not in self.update_callbacks:
            self.update_callbacks.append(callback)

    def unregister_callback(self, callback: Callable):
        if callback in self.update_callbacks:
            self.update_callbacks.remove(callback)

    def _notify_updates(self, config: SnipeConfig):
        for callback in self.update_callbacks:
            try:
                callback(config)
            except Exception as e:
                self.logger.error(f"Error in config callback: {str(e)}")

    def add_demo_data(self) -> str:
        """Seed one fully configured, enabled sample rule."""
        config_id = self.add(default_config(
            DEMO_TOKEN,
            target_price=0.00234,
            max_price=0.00250,
            amount=0.5,
            slippage=12.0,
            gas_price=25.0,
            gas_settings=GasSettings(max_gas_price=100, priority_fee=2, execution_timeout=120, retry_count=3),
            slippage_settings=SlippageSettings(
                mode="adaptive",
                base_slippage=12,
                max_slippage=25,
                liquidity_threshold=100000,
                volatility_multiplier=1.5,
            ),
            auto_sell=AutoSellSettings(
                enabled=True,
                profit_target=50,
                stop_loss=-15,
                trailing_stop=TrailingStopSettings(enabled=True, percentage=5, activation_price=25),
                partial_selling=PartialSellingSettings(
                    enabled=True,
                    percentages=[25, 50],
                    price_targets=[30, 60],
                ),
            ),
            batch_settings=BatchSettings(enabled=True, max_batch_size=3, batch_delay=200, priority=7),
        ))
        return self.enable(config_id, acknowledged=True).id
