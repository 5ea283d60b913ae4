"""
Configuration management for the Backend AlgoSwarm service.

Loads settings from environment variables and an optional .env file.
Exposes a single source of truth for node, database and timeout configuration.
"""

from backend_algoswarm.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Settings", "get_settings"]
