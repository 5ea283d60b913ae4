"""
Backend AlgoSwarm: DeFi protocol transaction lifecycle and fund recovery.

Builds unsigned protocol transactions, submits wallet-signed ones to an
Algorand node, tracks confirmation, and keeps a durable investment ledger
with time-locked withdrawals and an emergency recovery path.
"""

__version__ = "0.1.0"
