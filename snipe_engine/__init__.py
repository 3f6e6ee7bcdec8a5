"""Simulated token sniping engine: transaction queue, gas and slippage models, exit rules."""

__version__ = "0.1.0"
