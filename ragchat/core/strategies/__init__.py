"""Reranking strategies."""
from .reranking import (
    AdaptiveStrategy,
    LLMJudgedStrategy,
    NoFilterStrategy,
    RerankingStrategy,
    ThresholdStrategy,
)

__all__ = [
    "AdaptiveStrategy",
    "LLMJudgedStrategy",
    "NoFilterStrategy",
    "RerankingStrategy",
    "ThresholdStrategy",
]
