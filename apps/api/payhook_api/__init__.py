"""Payhook API - payment webhook ingestion and reconciliation."""

__version__ = "0.3.1"
