"""Ensemble: team scorecards, link manager and shift turnover."""

__version__ = "1.0.0"
