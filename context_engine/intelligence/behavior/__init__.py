"""Per-user behavior model and predictor."""

from context_engine.intelligence.behavior.predictor import UserBehaviorPredictor

__all__ = ["UserBehaviorPredictor"]
