"""
Engine integration for full game review.
Decodes a game, runs the multi-pass engine analysis, then classifies every
move and aggregates per-player accuracy.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Sequence

from ..engine.channel import EvaluationChannel
from ..engine.launcher import EngineCandidate, EngineLauncher, popen_engine
from ..engine.session import EngineSession
from ..parsers.pgn_parser import DecodedGame, parse_game_text
from ..utils.config import get_config
from .accuracy_analysis import PlayerStats, calculate_move_accuracies, calculate_player_stats
from .evaluation import Evaluation, SearchParams, evaluation_series, format_score
from .evaluation_cache import EvaluationCache
from .move_classifier import Annotation, classify_game
from .scheduler import (
    AnalysisMode,
    AnalysisReport,
    AnalysisScheduler,
    ProgressCallback,
    SchedulerSettings,
)


logger = logging.getLogger(__name__)


@dataclass
class GameReview:
    """Complete review of one game."""
    game: DecodedGame
    evaluations: Dict[int, Evaluation]  # Position index -> evaluation
    annotations: Dict[int, Annotation]  # Move index (1-based) -> annotation
    accuracies: Dict[int, float]  # Move index (1-based) -> accuracy
    player_stats: Dict[str, PlayerStats]
    report: AnalysisReport
    cache_hits: int = 0
    searches: int = 0  # Searches sent to the engine

    @property
    def white(self) -> PlayerStats:
        return self.player_stats["white"]

    @property
    def black(self) -> PlayerStats:
        return self.player_stats["black"]

    @property
    def white_pov_series(self) -> List[Optional[float]]:
        """White-POV pawn values per position, for evaluation charts."""
        return evaluation_series(self.game.positions, self.evaluations)


@asynccontextmanager
async def create_session(
    candidates: Optional[Sequence[EngineCandidate]] = None,
    watchdog_seconds: Optional[float] = None,
    launcher: EngineLauncher = popen_engine
) -> AsyncIterator[EngineSession]:
    """
    Start an engine session and close it on exit.

    Args:
        candidates: Engine builds to try in order (config by default)
        watchdog_seconds: Handshake timeout (config by default)
        launcher: Spawns a candidate and completes the `uci` handshake

    Yields:
        EngineSession in the READY state

    Raises:
        EngineStartupError: If no candidate completed the handshake
    """
    config = get_config()
    if candidates is None:
        candidates = config.engine_candidates
    if watchdog_seconds is None:
        watchdog_seconds = config.watchdog_seconds

    session = EngineSession(candidates, launcher, watchdog_seconds)
    try:
        await session.start()
        yield session
    finally:
        await session.close()


def build_review(
    game: DecodedGame,
    evaluations: Dict[int, Evaluation],
    report: AnalysisReport
) -> GameReview:
    """Classify moves and aggregate accuracy from a finished evaluation map."""
    annotations = classify_game(game.moves, evaluations)
    return GameReview(
        game=game,
        evaluations=evaluations,
        annotations=annotations,
        accuracies=calculate_move_accuracies(game.moves, evaluations),
        player_stats=calculate_player_stats(game.moves, evaluations, annotations, game.metadata),
        report=report,
    )


async def analyze_game(
    game: DecodedGame,
    session: EngineSession,
    mode: Optional[AnalysisMode] = None,
    settings: Optional[SchedulerSettings] = None,
    cache: Optional[EvaluationCache] = None,
    progress_callback: Optional[ProgressCallback] = None
) -> GameReview:
    """
    Analyze a decoded game on an open session.

    Args:
        game: Decoded game
        session: Engine session
        mode: Passes to run (config by default)
        settings: Search limits per pass (config by default)
        cache: Optional evaluation cache shared across games
        progress_callback: Optional callback(fraction) per position

    Returns:
        GameReview; check `report.is_complete` for partial results
    """
    config = get_config()
    mode = AnalysisMode(mode or config.analysis_mode)
    settings = settings or config.scheduler_settings()
    cache = cache if cache is not None else EvaluationCache()

    channel = EvaluationChannel(session)
    scheduler = AnalysisScheduler(channel, cache, settings)
    hits_before = cache.hits

    evaluations, report = await scheduler.run(
        game.positions, game.moves, mode, progress_callback
    )
    review = build_review(game, evaluations.snapshot(), report)
    review.cache_hits = cache.hits - hits_before
    review.searches = channel.search_count
    logger.info("Reviewed %d moves with %d engine searches", game.move_count, channel.search_count)
    return review


async def review_game(
    text: str,
    candidates: Optional[Sequence[EngineCandidate]] = None,
    mode: Optional[AnalysisMode] = None,
    settings: Optional[SchedulerSettings] = None,
    cache: Optional[EvaluationCache] = None,
    progress_callback: Optional[ProgressCallback] = None,
    launcher: EngineLauncher = popen_engine,
    watchdog_seconds: Optional[float] = None
) -> GameReview:
    """
    Decode game text and review it with a fresh engine session.

    The text is decoded before any engine is started.

    Raises:
        InputDecodeError: If the text holds no legal move
        EngineStartupError: If no engine candidate could be started
    """
    game = parse_game_text(text)
    async with create_session(candidates, watchdog_seconds, launcher) as session:
        return await analyze_game(game, session, mode, settings, cache, progress_callback)


def run_review(text: str, **kwargs) -> GameReview:
    """Synchronous wrapper around review_game."""
    return asyncio.run(review_game(text, **kwargs))


async def evaluate_position(
    session: EngineSession,
    fen: str,
    depth: int = 18,
    multipv: int = 5,
    cache: Optional[EvaluationCache] = None
) -> Optional[Evaluation]:
    """
    Evaluate a single position, e.g. the one currently on display.

    Args:
        session: Engine session
        fen: Position in FEN format
        depth: Search depth
        multipv: Number of ranked lines
        cache: Optional evaluation cache

    Returns:
        Evaluation relative to the side to move, or None
    """
    params = SearchParams(depth=depth, multipv=multipv)
    scheduler = AnalysisScheduler(EvaluationChannel(session), cache)
    return await scheduler.evaluate(fen, params)


def print_move_report(review: GameReview) -> None:
    """
    Print one line per move with its evaluation, tag and accuracy.

    Args:
        review: Completed game review
    """
    print("\n" + "=" * 80)
    print(f"{review.game.metadata.white} vs {review.game.metadata.black}")
    print("=" * 80)

    print(f"\n{'Move':<12} {'Eval':>8} {'Tag':<12} {'Accuracy':>9} {'Best':<8}")
    print("-" * 56)

    for move in review.game.moves:
        prefix = f"{move.move_number}." if move.is_white else f"{move.move_number}..."
        label = f"{prefix} {move.san}"
        after = review.evaluations.get(move.ply)
        before = review.evaluations.get(move.ply - 1)
        annotation = review.annotations.get(move.ply)
        accuracy = review.accuracies.get(move.ply)

        score = format_score(after, move.fen_after)
        tag = f"{annotation.tag.value}{annotation.tag.symbol}" if annotation else "-"
        acc = f"{accuracy:.1f}%" if accuracy is not None else "-"
        best = before.top_move if before is not None and before.top_move else ""
        print(f"{label:<12} {score:>8} {tag:<12} {acc:>9} {best:<8}")

    if not review.report.is_complete:
        print(f"\nAnalysis incomplete: {review.report.failed_pass} pass stopped after "
              f"{review.report.completed}/{review.report.total} positions "
              f"({review.report.error})")
