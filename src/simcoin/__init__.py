"""
SimCoin - toy cryptocurrency ledger and market simulation

Main Components:
- Chain: hash-linked proof-of-work blocks of signed transactions
- Replay: wallet balances and positions derived from chain contents
- Market: price-impact model and a background trade scheduler

Use ``simcoin.core.engine.SimulationEngine`` as the entry point.
"""

__version__ = "0.1.0"
__author__ = "SimCoin Development Team"

__all__ = []
