"""
Evaluation requests over an engine session.

UCI replies carry no request id, so at most one search is in flight. Each
search is one python-chess analysis; its streamed info lines are folded into
an Evaluation here.
"""

import asyncio
import logging
from typing import Dict, Mapping, Optional

import chess
import chess.engine

from ..analysis.evaluation import (
    Evaluation,
    Score,
    SearchParams,
    Variation,
    terminal_evaluation,
)
from ..errors import EngineRuntimeError, EngineStartupError
from .session import EngineSession


logger = logging.getLogger(__name__)

OptionValue = chess.engine.ConfigValue


class SearchLines:
    """
    Folds one search's info lines into ranked variations.

    Only exact scores count: a line flagged lowerbound or upperbound is an
    aspiration-window bound the engine will still refine.
    """

    def __init__(self):
        self.interim_score: Optional[Score] = None
        self.variations: Dict[int, Variation] = {}

    def add(self, info: chess.engine.InfoDict) -> None:
        pov_score = info.get("score")
        if pov_score is None or info.get("lowerbound") or info.get("upperbound"):
            return
        score = pov_score.relative
        rank = info.get("multipv", 1)
        if rank == 1:
            self.interim_score = score
        pv = info.get("pv")
        if pv:
            self.variations[rank] = Variation(rank=rank, score=score, move=pv[0].uci())

    def result(self, best: chess.engine.BestMove) -> Optional[Evaluation]:
        """Final evaluation, or None if the engine never reported an exact score."""
        primary = self.variations.get(1)
        score = primary.score if primary is not None else self.interim_score
        if score is None:
            return None
        ordered = tuple(self.variations[rank] for rank in sorted(self.variations))
        best_move = best.move.uci() if best.move else None
        return Evaluation(score=score, best_move=best_move, variations=ordered)


class EvaluationChannel:
    """
    Turns (position, search parameters) requests into engine searches.

    Usage:
        channel = EvaluationChannel(session)
        evaluation = await channel.evaluate(fen, SearchParams(depth=14, multipv=5))
    """

    def __init__(self, session: EngineSession):
        self.session = session
        self.search_count = 0  # Searches actually sent to the engine
        self._lock = asyncio.Lock()
        # A new key makes python-chess open the next search with `ucinewgame`
        self._game = object()

    async def evaluate(self, fen: str, params: SearchParams) -> Optional[Evaluation]:
        """
        Evaluate one position.

        Args:
            fen: Position to search
            params: Search limits

        Returns:
            Evaluation relative to the side to move, or None if the engine
            finished without reporting a score

        Raises:
            EngineStartupError: If the session could not become ready
            EngineRuntimeError: If the engine broke during the search
        """
        board = chess.Board(fen)
        terminal = terminal_evaluation(board)
        if terminal is not None:
            return terminal

        async with self._lock:
            protocol = await self._ensure_ready()
            self.search_count += 1
            try:
                return await self._search(protocol, board, params)
            except chess.engine.EngineError as exc:
                raise self._failed(protocol, "search", exc) from exc

    async def reset(self, options: Optional[Mapping[str, OptionValue]] = None) -> None:
        """
        Start a new game on the engine and apply a fixed option set.

        Args:
            options: Option name -> value; None presses a button option
        """
        async with self._lock:
            protocol = await self._ensure_ready()
            supported = {}
            for name, value in (options or {}).items():
                option = protocol.options.get(name)
                if option is None or option.is_managed():
                    logger.debug("Skipping engine option %s", name)
                    continue
                supported[name] = value

            self._game = object()
            try:
                await protocol.configure(supported)
                await protocol.ping()
            except chess.engine.EngineError as exc:
                raise self._failed(protocol, "reset", exc) from exc
        logger.debug("Engine reset with %d options", len(supported))

    async def _search(
        self,
        protocol: chess.engine.UciProtocol,
        board: chess.Board,
        params: SearchParams
    ) -> Optional[Evaluation]:
        lines = SearchLines()
        analysis = await protocol.analysis(
            board, params.limit(), multipv=params.multipv, game=self._game
        )
        with analysis:
            async for info in analysis:
                lines.add(info)
            best = await analysis.wait()
        return lines.result(best)

    async def _ensure_ready(self) -> chess.engine.UciProtocol:
        if not await self.session.await_ready():
            raise EngineStartupError(
                f"Engine unavailable: {self.session.last_error or self.session.state.value}"
            )
        return self.session.engine()

    def _failed(
        self,
        protocol: chess.engine.UciProtocol,
        request: str,
        error: chess.engine.EngineError
    ) -> EngineRuntimeError:
        failure = EngineRuntimeError(f"Engine {request} failed: {error}")
        self.session.report_failure(protocol, failure)
        return failure
