"""Heuristic and OpenAI-backed classification backends."""

from .ai import OpenAICategorizer, OpenAIColumnOracle
from .base import Categorizer, ColumnOracle
from .heuristic import HeuristicCategorizer, HeuristicColumnOracle

__all__ = [
    "Categorizer",
    "ColumnOracle",
    "HeuristicCategorizer",
    "HeuristicColumnOracle",
    "OpenAICategorizer",
    "OpenAIColumnOracle",
]
