"""
Structured logging for Backend AlgoSwarm.

JSON logs with timestamp, event_type, tx_id, wallet_id and investment_id.
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_algoswarm.swarm_logging.logger import bind_transaction, get_logger

__all__ = ["bind_transaction", "get_logger"]
