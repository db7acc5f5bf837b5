"""
Move quality classification.
Compares the evaluation before and after each move from the mover's point of
view and assigns a quality tag.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Sequence

from ..parsers.pgn_parser import MoveData
from .evaluation import (
    Evaluation,
    mate_against_side_to_move,
    mate_for_side_to_move,
    played_score_for_mover,
    score_to_cp,
)
from .material import is_piece_sacrifice


# Loss thresholds in centipawns (upper bounds, inclusive)
BEST_THRESHOLD = 10
EXCELLENT_THRESHOLD = 20
GOOD_THRESHOLD = 50
INACCURACY_THRESHOLD = 150
MISTAKE_THRESHOLD = 300

WINNING_THRESHOLD = 300  # Clearly winning before the move
NEAR_EQUAL_THRESHOLD = 50  # |played| at or below this counts as squandered
ONLY_MOVE_MARGIN = 150  # Every alternative must lose at least this much


class MoveTag(str, Enum):
    BRILLIANT = "brilliant"
    GREAT = "great"
    BEST = "best"
    EXCELLENT = "excellent"
    GOOD = "good"
    INACCURACY = "inaccuracy"
    MISS = "miss"
    MISTAKE = "mistake"
    BLUNDER = "blunder"

    @property
    def symbol(self) -> str:
        return TAG_SYMBOLS[self]


TAG_SYMBOLS = {
    MoveTag.BRILLIANT: "!!",
    MoveTag.GREAT: "!",
    MoveTag.BEST: "*",
    MoveTag.EXCELLENT: "",
    MoveTag.GOOD: "",
    MoveTag.INACCURACY: "?!",
    MoveTag.MISS: "?",
    MoveTag.MISTAKE: "?",
    MoveTag.BLUNDER: "??",
}


@dataclass(frozen=True)
class Annotation:
    """Quality tag for one played move."""
    move_index: int  # 1-based; the move from position move_index-1 to move_index
    mover: str  # "white" or "black"
    tag: MoveTag
    centipawn_delta: int  # Best score minus played score, mover's perspective


def tag_for_loss(loss: int) -> MoveTag:
    """Quality tag from centipawn loss alone."""
    if loss <= BEST_THRESHOLD:
        return MoveTag.BEST
    if loss <= EXCELLENT_THRESHOLD:
        return MoveTag.EXCELLENT
    if loss <= GOOD_THRESHOLD:
        return MoveTag.GOOD
    if loss <= INACCURACY_THRESHOLD:
        return MoveTag.INACCURACY
    if loss <= MISTAKE_THRESHOLD:
        return MoveTag.MISTAKE
    return MoveTag.BLUNDER


def tag_for_mate_slowdown(slowdown: int) -> MoveTag:
    """
    Quality tag while a forced mate is kept.

    `slowdown` counts how many moves later the mate now lands compared with
    the engine's line; never a blunder since the win is still forced.
    """
    if slowdown <= 0:
        return MoveTag.BEST
    if slowdown == 1:
        return MoveTag.EXCELLENT
    if slowdown <= 3:
        return MoveTag.GOOD
    if slowdown <= 6:
        return MoveTag.INACCURACY
    return MoveTag.MISTAKE


def is_only_move(before: Evaluation) -> bool:
    """True if every ranked alternative loses at least ONLY_MOVE_MARGIN to the top line."""
    primary = before.variation(1)
    alternatives = [line for line in before.variations if line.rank != 1]
    if primary is None or not alternatives:
        return False
    top = score_to_cp(primary.score)
    return all(top - score_to_cp(line.score) >= ONLY_MOVE_MARGIN for line in alternatives)


def classify_move(
    before: Optional[Evaluation],
    after: Optional[Evaluation],
    move: MoveData
) -> Optional[Annotation]:
    """
    Classify one move.

    Args:
        before: Evaluation of the position before the move (mover to move)
        after: Evaluation of the position after the move (opponent to move)
        move: The played move

    Returns:
        Annotation, or None when either evaluation is missing
    """
    if before is None or after is None:
        return None

    best = score_to_cp(before.score)
    played = played_score_for_mover(after.score)
    loss = best - played

    best_mate = mate_for_side_to_move(before.score)
    # Mate the mover still forces, 0 once delivered
    played_mate = mate_against_side_to_move(after.score)
    mate_kept = best_mate is not None and played_mate is not None

    if mate_kept:
        slowdown = played_mate - (best_mate - 1)
        tag = tag_for_mate_slowdown(slowdown)
    elif loss > MISTAKE_THRESHOLD or (best >= WINNING_THRESHOLD and played <= 0):
        tag = MoveTag.BLUNDER
    elif (best >= WINNING_THRESHOLD or best_mate is not None) and abs(played) <= NEAR_EQUAL_THRESHOLD:
        tag = MoveTag.MISS
    else:
        tag = tag_for_loss(loss)

    if before.top_move is not None and before.top_move == move.uci:
        if is_piece_sacrifice(move.fen_before, move.uci):
            tag = MoveTag.BRILLIANT
        elif not mate_kept and played_mate != 0 and is_only_move(before):
            tag = MoveTag.GREAT
        else:
            tag = MoveTag.BEST

    return Annotation(
        move_index=move.ply,
        mover="white" if move.is_white else "black",
        tag=tag,
        centipawn_delta=loss,
    )


def classify_game(
    moves: Sequence[MoveData],
    evaluations: Mapping[int, Evaluation]
) -> Dict[int, Annotation]:
    """
    Classify every move that has evaluations on both sides.

    Args:
        moves: Played moves in order
        evaluations: Position index -> evaluation

    Returns:
        Dict mapping move index (1-based) to Annotation
    """
    annotations: Dict[int, Annotation] = {}
    for move in moves:
        annotation = classify_move(
            evaluations.get(move.ply - 1),
            evaluations.get(move.ply),
            move,
        )
        if annotation is not None:
            annotations[move.ply] = annotation
    return annotations
