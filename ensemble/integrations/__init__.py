"""Clients for systems Ensemble reads from."""

from .itsm_client import ItsmClient, ItsmSource

__all__ = ["ItsmClient", "ItsmSource"]
