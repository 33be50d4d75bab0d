"""
SimCoin Core Module

Ledger primitives (transactions, blocks, chain), the wallet registry, the
replay engine, and the market simulation built on top of them.
"""

__all__ = []
