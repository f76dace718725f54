"""Lighthouse - Norlys price and Eloverblik meter data collector."""

__version__ = "1.0.0"
