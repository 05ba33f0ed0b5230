"""MTGO tournament ingestion and archetype back-fill."""

__version__ = "0.1.0"
