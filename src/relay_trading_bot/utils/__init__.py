"""Shared utilities (logging, file persistence) for the relay trading bot."""
