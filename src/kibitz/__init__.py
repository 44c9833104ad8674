"""Kibitz: UCI engine client, branching move tree and game review."""

__version__ = "0.1.0"
