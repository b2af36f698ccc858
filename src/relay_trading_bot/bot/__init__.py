"""Relay trading bot runtime: positions, strategies, engine and scheduler."""
