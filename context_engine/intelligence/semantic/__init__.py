"""Semantic context analysis pipeline.

Stages: language detection, embedding, business intent, entities,
attention weighting and knowledge-graph enhancement.
"""

from context_engine.intelligence.semantic.analyzer import SemanticContextAnalyzer

__all__ = ["SemanticContextAnalyzer"]
