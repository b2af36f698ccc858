"""Risk gating and invariant checks."""

from .invariants import InvariantViolation, check_capital_conservation
from .risk_guard import RiskGate, RiskState

__all__ = ["InvariantViolation", "RiskGate", "RiskState", "check_capital_conservation"]
