from typing import Dict, Optional
from pydantic import BaseModel, Field, model_validator
from dotenv import load_dotenv
import logging
import os
import yaml

from ..models.trading import CongestionLevel


class QueueConfig(BaseModel):
    """Transaction queue configuration."""
    batch_size: int = Field(3, ge=1, le=10, description="Items drained per processing run")
    max_retries: int = Field(3, ge=0, le=5, description="Default automatic retries per item")
    retry_delay: float = Field(5.0, ge=0, description="Cool-down before a failed item is requeued (s)")
    batch_delay: float = Field(0.2, ge=0, description="Pacing gap between items in a batch (s)")
    retention: float = Field(300.0, gt=0, description="Age after which items are purged (s)")
    process_interval: float = Field(2.0, gt=0, description="Queue drain cadence (s)")
    cleanup_interval: float = Field(30.0, gt=0, description="Retention sweep cadence (s)")
    min_latency: float = Field(1.0, ge=0, description="Simulated execution latency lower bound (s)")
    max_latency: float = Field(3.0, ge=0, description="Simulated execution latency upper bound (s)")
    success_rate: float = Field(0.9, ge=0, le=1, description="Simulated execution success probability")

    @model_validator(mode="after")
    def _check_latency(self):
        if self.max_latency < self.min_latency:
            raise ValueError("max_latency must be >= min_latency")
        return self


class NetworkConfig(BaseModel):
    """Simulated network conditions."""
    base_fee: float = Field(15.0, ge=0, description="Initial base fee (gwei)")
    fast_gas_price: float = Field(25.0, ge=0, description="Initial fast gas price (gwei)")
    congestion: CongestionLevel = Field(CongestionLevel.MEDIUM, description="Initial congestion")
    avg_block_time: float = Field(12.0, gt=0, description="Nominal block time (s)")
    refresh_interval: float = Field(10.0, gt=0, description="Network stats refresh cadence (s)")
    base_fee_jitter: float = Field(5.0, ge=0, description="Peak-to-peak base fee jitter (gwei)")
    fast_gas_jitter: float = Field(8.0, ge=0, description="Peak-to-peak fast gas jitter (gwei)")
    block_time_jitter: float = Field(4.0, ge=0, description="Peak-to-peak block time jitter (s)")


class MarketConfig(BaseModel):
    """Simulated market feed."""
    tick_interval: float = Field(1.0, gt=0, description="Market tick cadence (s)")
    price_step: float = Field(0.1, ge=0, description="Peak-to-peak relative random-walk step")
    min_start_price: float = Field(0.0001, gt=0, description="Lower bound of a new token's first price")
    max_start_price: float = Field(0.0011, gt=0, description="Upper bound of a new token's first price")


class LedgerConfig(BaseModel):
    """Block confirmation wait applied to executed trades."""
    min_confirmation_delay: float = Field(2.0, ge=0, description="Confirmation delay lower bound (s)")
    max_confirmation_delay: float = Field(5.0, ge=0, description="Confirmation delay upper bound (s)")


class ValidationConfig(BaseModel):
    """Limits checked before a config may trade."""
    max_amount: float = Field(10.0, gt=0, description="Maximum trade amount (native units)")
    max_slippage: float = Field(50.0, gt=0, le=100, description="Maximum slippage tolerance (%)")


class MonitoringConfig(BaseModel):
    """Monitoring configuration."""
    log_level: str = Field("INFO", description="Logging level")
    metrics_enabled: bool = Field(False, description="Expose Prometheus metrics over HTTP")
    metrics_port: int = Field(8000, description="Prometheus exporter port")


class EngineSettings(BaseModel):
    """Main configuration."""
    queue: QueueConfig = Field(default_factory=QueueConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    market: MarketConfig = Field(default_factory=MarketConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    seed: Optional[int] = Field(None, description="RNG seed for reproducible simulations")


DEFAULT_SETTINGS = EngineSettings()


class ConfigManager:
    """Loads engine settings from YAML with environment overrides."""

    ENV_VARS = {
        "SNIPE_LOG_LEVEL": ("monitoring", "log_level"),
        "SNIPE_METRICS_ENABLED": ("monitoring", "metrics_enabled"),
        "SNIPE_METRICS_PORT": ("monitoring", "metrics_port"),
        "SNIPE_SEED": ("seed",),
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.getenv(
            "SNIPE_CONFIG_PATH",
            "config/engine.yaml"
        )
        self.logger = logging.getLogger(__name__)
        self.settings: EngineSettings = DEFAULT_SETTINGS
        self.load_config()

    def load_config(self) -> EngineSettings:
        """Load configuration from file."""
        load_dotenv()

        config_data: Dict = {}
        if os.path.exists(self.config_path):
            with open(self.config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
            self.logger.info(f"Loaded settings from {self.config_path}")
        else:
            self.logger.info(f"No settings file at {self.config_path}, using defaults")

        self._load_env_vars(config_data)

        try:
            self.settings = EngineSettings.model_validate(config_data)
        except ValueError as e:
            raise ValueError(f"Error loading config: {str(e)}") from e
        return self.settings

    def _load_env_vars(self, config: Dict):
        """Load environment variables into config."""
        for env_var, config_path in self.ENV_VARS.items():
            value = os.getenv(env_var)
            if value:
                current = config
                for key in config_path[:-1]:
                    current = current.setdefault(key, {})
                current[config_path[-1]] = value

    def save_config(self):
        """Save configuration to file."""
        directory = os.path.dirname(self.config_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.config_path, "w") as f:
            yaml.safe_dump(
                self.settings.model_dump(mode="json"),
                f,
                default_flow_style=False
            )
