"""
Engine evaluation data model.

Scores are chess.engine scores (Cp, Mate, MateGiven) relative to the side to
move in the position they were produced for. Conversion to White's point of
view only happens in the presentation helpers at the bottom of this module.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import chess
import chess.engine
from chess.engine import Cp, Mate, MateGiven


# Mate scores map to a large sentinel that preserves mate distance:
# mate in 1 -> 99000, mate in 3 -> 97000, mated in 2 -> -98000.
MATE_BASE = 100000
MATE_STEP = 1000
MAX_MATE_DISTANCE = 99

Score = chess.engine.Score


def mate_to_cp(moves: int) -> int:
    """
    Map a mate distance to a centipawn-like sentinel.

    Closer mates get a strictly larger magnitude than farther mates of the
    same sign.
    """
    distance = min(MAX_MATE_DISTANCE, abs(moves))
    sign = (moves > 0) - (moves < 0)
    return sign * (MATE_BASE - distance * MATE_STEP)


@dataclass(frozen=True)
class Variation:
    """One ranked engine line (rank 1 is the principal variation)."""
    rank: int
    score: Score
    move: str  # First move of the line, UCI


@dataclass(frozen=True)
class Evaluation:
    """Engine verdict for one position under one set of search parameters."""
    score: Score
    best_move: Optional[str] = None  # UCI
    variations: Tuple[Variation, ...] = field(default_factory=tuple)

    @property
    def top_move(self) -> Optional[str]:
        """Engine's preferred move: the bestmove line, else the rank-1 variation."""
        if self.best_move:
            return self.best_move
        primary = self.variation(1)
        return primary.move if primary else None

    def variation(self, rank: int) -> Optional[Variation]:
        for line in self.variations:
            if line.rank == rank:
                return line
        return None

    @property
    def is_mate(self) -> bool:
        return self.score.is_mate()


@dataclass(frozen=True)
class SearchParams:
    """Search limits for one engine search. Part of the cache key."""
    depth: Optional[int] = None
    movetime_ms: Optional[int] = None
    multipv: int = 1

    def __post_init__(self):
        if self.depth is None and self.movetime_ms is None:
            raise ValueError("SearchParams needs a depth or a movetime")
        if self.multipv < 1:
            raise ValueError(f"multipv must be >= 1, got {self.multipv}")

    def key(self) -> str:
        """Normalized signature used in cache keys."""
        depth = "" if self.depth is None else self.depth
        movetime = "" if self.movetime_ms is None else self.movetime_ms
        return f"dp:{depth}|mv:{movetime}|mpv:{self.multipv}"

    def limit(self) -> chess.engine.Limit:
        movetime = None if self.movetime_ms is None else self.movetime_ms / 1000.0
        return chess.engine.Limit(depth=self.depth, time=movetime)


def terminal_evaluation(board: chess.Board) -> Optional[Evaluation]:
    """
    Evaluation for a position that needs no search.

    Checkmate gives Mate(0); stalemate gives a draw score.

    Args:
        board: Position to inspect

    Returns:
        Evaluation, or None if the side to move still has a game to play
    """
    if board.is_checkmate():
        return Evaluation(score=Mate(0))
    if board.is_stalemate():
        return Evaluation(score=Cp(0))
    return None


def score_to_cp(score: Score) -> int:
    """Score as centipawns for the side to move, with mates as sentinels."""
    if score == MateGiven:
        return MATE_BASE
    mate = score.mate()
    if mate is None:
        return score.score()
    if mate == 0:
        # Side to move is checkmated
        return -MATE_BASE
    return mate_to_cp(mate)


def is_checkmated(score: Score) -> bool:
    """True for Mate(0): the side to move has been checkmated."""
    return score == Mate(0)


def played_score_for_mover(after: Score) -> int:
    """
    Score of the position after a move, seen from the player who moved.

    `after` is relative to the opponent, who is now to move. A move that
    delivers checkmate counts as the mate in one it completed, so it never
    scores above the best line that found it.
    """
    if is_checkmated(after):
        return mate_to_cp(1)
    return -score_to_cp(after)


def mate_for_side_to_move(score: Score) -> Optional[int]:
    """Distance of a forced mate the side to move delivers, else None."""
    mate = score.mate()
    if mate is not None and mate > 0:
        return mate
    return None


def mate_against_side_to_move(score: Score) -> Optional[int]:
    """Distance until the side to move gets mated (0 = already mated), else None."""
    if score == MateGiven:
        return None
    mate = score.mate()
    if mate is not None and mate <= 0:
        return abs(mate)
    return None


# ---------------------------------------------------------------------------
# Presentation helpers (White's point of view)
# ---------------------------------------------------------------------------

def white_pov_pawns(evaluation: Optional[Evaluation], fen: str, cap: float = 10.0) -> Optional[float]:
    """
    Evaluation in pawns from White's perspective, clamped to +-cap.

    Args:
        evaluation: Evaluation for the position (side-to-move relative)
        fen: FEN of the position the evaluation belongs to
        cap: Magnitude used for mates and as clamp

    Returns:
        Pawns (positive = good for White), or None when there is no evaluation
    """
    if evaluation is None:
        return None
    white_to_move = fen.split()[1] == "w"
    score = evaluation.score
    if score.is_mate():
        winning = mate_against_side_to_move(score) is None
        return cap if winning == white_to_move else -cap
    pawns = score.score() / 100.0
    if not white_to_move:
        pawns = -pawns
    return max(-cap, min(cap, pawns))


def evaluation_series(
    positions: List[str],
    evaluations: Dict[int, Evaluation]
) -> List[Optional[float]]:
    """White-POV pawn values per position index, for chart collaborators."""
    return [white_pov_pawns(evaluations.get(i), fen) for i, fen in enumerate(positions)]


def format_score(evaluation: Optional[Evaluation], fen: str) -> str:
    """
    Short label for an evaluation, e.g. "+0.35", "M3", "M-2" or "1-0".

    Mate labels stay side-to-move relative; a finished game shows the result.
    """
    if evaluation is None:
        return ""
    score = evaluation.score
    if is_checkmated(score):
        return "0-1" if fen.split()[1] == "w" else "1-0"
    mate = score.mate()
    if mate is not None:
        return f"M{mate}" if mate > 0 else f"M-{abs(mate)}"
    pawns = score.score() / 100.0
    sign = "+" if pawns > 0 else ""
    return f"{sign}{pawns:.2f}"


def win_probability(pawns: float, steepness: float = 0.85) -> float:
    """Logistic map from White-POV pawns to a 1..99 bar percentage."""
    x = max(-10.0, min(10.0, pawns))
    pct = 100 / (1 + math.exp(-steepness * x))
    return max(1.0, min(99.0, pct))
