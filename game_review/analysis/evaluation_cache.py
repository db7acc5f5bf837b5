"""
Evaluation caching for engine analysis.
Memoizes position evaluations so a (position, search parameters) pair is only
ever searched once per process.
"""

import logging
from typing import Dict, Optional

from .evaluation import Evaluation, SearchParams


logger = logging.getLogger(__name__)


def normalize_fen(fen: str) -> str:
    """
    Normalize FEN for caching by removing halfmove and fullmove counters.
    This allows the same position to be cached regardless of when it occurred.

    Args:
        fen: Full FEN string

    Returns:
        Normalized FEN (first 4 parts only)
    """
    parts = fen.split()
    # Keep: piece placement, active color, castling, en passant
    # Remove: halfmove clock, fullmove number
    return " ".join(parts[:4])


class EvaluationCache:
    """
    In-memory store of engine evaluations.

    Cache key format: normalized FEN + search parameter signature.
    Entries are written once and never overwritten.
    """

    def __init__(self):
        self._cache: Dict[str, Evaluation] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(fen: str, params: SearchParams) -> str:
        """Create cache key from FEN and search parameters."""
        return f"{normalize_fen(fen)}|{params.key()}"

    def get(self, fen: str, params: SearchParams) -> Optional[Evaluation]:
        """
        Get cached evaluation for a position.

        Args:
            fen: Position FEN
            params: Search parameters the evaluation was produced with

        Returns:
            Evaluation if found, None otherwise
        """
        evaluation = self._cache.get(self.make_key(fen, params))
        if evaluation is None:
            self.misses += 1
        else:
            self.hits += 1
        return evaluation

    def put(self, fen: str, params: SearchParams, evaluation: Evaluation) -> bool:
        """
        Store evaluation in cache unless the key is already present.

        Args:
            fen: Position FEN
            params: Search parameters
            evaluation: Evaluation to cache

        Returns:
            True if the entry was written
        """
        key = self.make_key(fen, params)
        if key in self._cache:
            logger.debug("Cache entry already present for %s", key)
            return False
        self._cache[key] = evaluation
        return True

    def has(self, fen: str, params: SearchParams) -> bool:
        """Check if position is cached for the given parameters."""
        return self.make_key(fen, params) in self._cache

    @property
    def size(self) -> int:
        """Number of cached evaluations."""
        return len(self._cache)

    def clear(self) -> None:
        """Clear the cache."""
        self._cache = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return self.size

    def __repr__(self) -> str:
        return f"EvaluationCache(size={self.size}, hits={self.hits}, misses={self.misses})"
