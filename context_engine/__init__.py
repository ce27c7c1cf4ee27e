"""Context-aware personalization and multi-source data retrieval engine."""

__version__ = "0.1.0"
