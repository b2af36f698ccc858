"""In-memory state owned by the trading engine."""
