"""Post-trade analytics over the trade ledger."""
