"""Risk-gated decision and execution engine for perpetual-futures trading."""

__version__ = "0.1.0"
