"""Per-run memo of engine evaluations keyed by FEN.

One PositionCache lives for exactly one analysis run. Each distinct
position is sent to the engine at most once; the first result stored for
a FEN is kept for the rest of the run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from game_review.models import EvaluationResult

logger = logging.getLogger(__name__)


class Evaluator(Protocol):
    async def evaluate(self, fen: str, depth: int) -> EvaluationResult: ...


class PositionCache:
    """Append-only FEN -> EvaluationResult map in front of an evaluator."""

    def __init__(self, oracle: Evaluator) -> None:
        self._oracle = oracle
        self._results: dict[str, EvaluationResult] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, fen: str) -> bool:
        return fen in self._results

    async def resolve(self, fen: str, depth: int) -> EvaluationResult:
        """Return the evaluation of a position, asking the engine on a miss.

        The key is the FEN alone; depth is only used when the engine has
        to be called. Callers resolving a FEN already in flight wait for
        that same request.

        Args:
            fen: Position key.
            depth: Search depth for a cache miss.

        Returns:
            The stored EvaluationResult.
        """
        cached = self._results.get(fen)
        if cached is not None:
            self.hits += 1
            logger.debug("Cache hit for %s", fen)
            return cached

        pending = self._pending.get(fen)
        if pending is not None:
            self.hits += 1
            return await asyncio.shield(pending)

        self.misses += 1
        future = asyncio.get_running_loop().create_future()
        self._pending[fen] = future
        try:
            result = await self._oracle.evaluate(fen, depth)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Waiters re-raise it; mark retrieved so the loop stays quiet
            future.exception()
            raise
        finally:
            del self._pending[fen]

        self._results.setdefault(fen, result)
        future.set_result(self._results[fen])
        return self._results[fen]

    def get(self, fen: str) -> EvaluationResult | None:
        return self._results.get(fen)

    def snapshot(self) -> dict[str, EvaluationResult]:
        """Copy of the stored results."""
        return dict(self._results)
