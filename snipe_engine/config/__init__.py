from .settings import (
    ConfigManager,
    DEFAULT_SETTINGS,
    EngineSettings,
    LedgerConfig,
    MarketConfig,
    MonitoringConfig,
    NetworkConfig,
    QueueConfig,
    ValidationConfig,
)
