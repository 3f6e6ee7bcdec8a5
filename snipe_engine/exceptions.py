"""Error types raised by the snipe engine."""

from typing import Optional


class SnipeEngineError(Exception):
    """Base class for engine errors."""


class ConfigValidationError(SnipeEngineError, ValueError):
    """Raised when a snipe configuration fails validation.

    ``rule`` names the first failing check so callers can map it to a field.
    """

    def __init__(self, message: str, rule: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.rule = rule


class ConfigNotFoundError(SnipeEngineError, KeyError):
    """Raised when a snipe configuration id is unknown."""

    def __init__(self, config_id: str):
        super().__init__(config_id)
        self.config_id = config_id

    def __str__(self) -> str:
        return f"Snipe config not found: {self.config_id}"


class ExecutionError(SnipeEngineError):
    """Raised by a broadcaster when a transaction could not be executed."""


class ProviderUnavailableError(SnipeEngineError):
    """Raised when no wallet or execution backend is available."""
