"""Seek: tobacco catalog scraping, reconciliation and alerting pipeline."""

__version__ = "0.1.0"
