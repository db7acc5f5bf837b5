"""
Accuracy analysis functions for chess games.
Per-move accuracy from engine evaluations, per-player aggregates and an
estimated playing strength.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from chess.engine import Mate

from ..parsers.pgn_parser import GameMetadata, MoveData
from .evaluation import (
    Evaluation,
    mate_against_side_to_move,
    mate_for_side_to_move,
    played_score_for_mover,
    score_to_cp,
)
from .material import is_trivial_recapture
from .move_classifier import Annotation, MoveTag


PERFECT_LOSS_TOLERANCE = 10  # Loss at or below this scores 100
ALTERNATIVE_TOLERANCE = 10  # Non-top line this close to rank 1 scores 100
MISSED_MATE_ACCURACY = 30.0
MATE_SLOWDOWN_PENALTY = 8.0  # Per move a kept mate lands later than the best line
RECAPTURE_FLOOR = 95.0
RECAPTURE_MAX_LOSS = 30
HIGH_ACCURACY = 92.0

MIN_RATING = 100
MAX_RATING = 3000


@dataclass
class PlayerStats:
    """Aggregate accuracy statistics for one side of a game."""
    player_name: str
    color: str  # "white" or "black"
    elo: Optional[int] = None
    move_accuracies: List[float] = field(default_factory=list)
    tag_counts: Dict[str, int] = field(default_factory=dict)
    high_accuracy_moves: int = 0  # Moves at or above HIGH_ACCURACY
    mate_in_one_allowed: int = 0  # Moves after which the opponent had mate in 1

    @property
    def total_moves(self) -> int:
        return len(self.move_accuracies)

    @property
    def accuracy_pct(self) -> float:
        """Mean per-move accuracy, 0 when nothing was evaluated."""
        if not self.move_accuracies:
            return 0.0
        return sum(self.move_accuracies) / len(self.move_accuracies)

    @property
    def high_accuracy_fraction(self) -> float:
        return self.high_accuracy_moves / self.total_moves if self.total_moves > 0 else 0.0

    @property
    def rating(self) -> Optional[int]:
        """Estimated rating, None when no move was evaluated."""
        if not self.move_accuracies:
            return None
        return estimate_rating(self.accuracy_pct, self.high_accuracy_fraction, self.mate_in_one_allowed)

    @property
    def blunders(self) -> int:
        return self.tag_counts.get(MoveTag.BLUNDER.value, 0)

    @property
    def mistakes(self) -> int:
        return self.tag_counts.get(MoveTag.MISTAKE.value, 0)

    @property
    def inaccuracies(self) -> int:
        return self.tag_counts.get(MoveTag.INACCURACY.value, 0)


def estimate_rating(
    accuracy: float,
    high_accuracy_fraction: float = 0.0,
    mate_in_one_allowed: int = 0
) -> int:
    """
    Map mean accuracy to a rating estimate.

    Linear through 50% -> 600 and 90% -> 2200, plus up to 400 for a high share
    of near-perfect moves, minus 100 per allowed mate in one.

    Args:
        accuracy: Mean accuracy percentage
        high_accuracy_fraction: Share of moves at or above HIGH_ACCURACY
        mate_in_one_allowed: Moves that allowed an immediate mate

    Returns:
        Rating clamped to [MIN_RATING, MAX_RATING]
    """
    rating = 600 + (accuracy - 50) * 40
    rating += 400 * high_accuracy_fraction
    rating -= 100 * mate_in_one_allowed
    return int(round(max(MIN_RATING, min(MAX_RATING, rating))))


def _speeds_up_mate_against(primary: Evaluation, alternative_score) -> bool:
    alternative = mate_against_side_to_move(alternative_score)
    if alternative is None:
        return False
    current = mate_against_side_to_move(primary.score)
    return current is None or alternative < current


def mate_slowdown_accuracy(slowdown: int) -> float:
    """
    Accuracy of a move that keeps a forced mate.

    Full marks when the mate lands on schedule, then MATE_SLOWDOWN_PENALTY
    less per extra move, never below the score for dropping the mate.
    """
    if slowdown <= 0:
        return 100.0
    return max(MISSED_MATE_ACCURACY, 100.0 - MATE_SLOWDOWN_PENALTY * slowdown)


def move_accuracy(
    before: Optional[Evaluation],
    after: Optional[Evaluation],
    move: MoveData,
    previous_move: Optional[MoveData] = None
) -> Optional[float]:
    """
    Accuracy of one move on a 0-100 scale.

    Args:
        before: Evaluation before the move (mover to move)
        after: Evaluation after the move (opponent to move)
        move: The played move
        previous_move: The opponent's move just before, for recapture detection

    Returns:
        Accuracy, or None if either evaluation is missing
    """
    if before is None or after is None:
        return None

    if before.top_move is not None and before.top_move == move.uci:
        return 100.0

    best = score_to_cp(before.score)
    played = played_score_for_mover(after.score)
    loss = best - played

    primary = before.variation(1)
    for line in before.variations:
        if line.rank == 1 or line.move != move.uci or primary is None:
            continue
        if score_to_cp(primary.score) - score_to_cp(line.score) <= ALTERNATIVE_TOLERANCE:
            if not _speeds_up_mate_against(before, line.score):
                return 100.0

    best_mate = mate_for_side_to_move(before.score)
    if best_mate is not None:
        kept = mate_against_side_to_move(after.score)
        if kept is None:
            return MISSED_MATE_ACCURACY
        return mate_slowdown_accuracy(kept - (best_mate - 1))

    if loss <= PERFECT_LOSS_TOLERANCE:
        return 100.0

    base = max(0.0, 100 - 0.45 * loss ** 0.88)
    equality = 0.7 + 0.3 * math.exp(-(min(abs(best), 200) / 120) ** 2)
    accuracy = base * equality

    if loss <= RECAPTURE_MAX_LOSS and previous_move is not None:
        if is_trivial_recapture(move.fen_before, move.uci, previous_move.fen_before, previous_move.uci):
            accuracy = max(accuracy, RECAPTURE_FLOOR)

    return max(0.0, min(100.0, accuracy))


def calculate_move_accuracies(
    moves: Sequence[MoveData],
    evaluations: Mapping[int, Evaluation]
) -> Dict[int, float]:
    """
    Accuracy for every move with evaluations on both sides.

    Returns:
        Dict mapping move index (1-based) to accuracy
    """
    accuracies: Dict[int, float] = {}
    previous = None
    for move in moves:
        accuracy = move_accuracy(
            evaluations.get(move.ply - 1),
            evaluations.get(move.ply),
            move,
            previous,
        )
        if accuracy is not None:
            accuracies[move.ply] = accuracy
        previous = move
    return accuracies


def calculate_player_stats(
    moves: Sequence[MoveData],
    evaluations: Mapping[int, Evaluation],
    annotations: Optional[Mapping[int, Annotation]] = None,
    metadata: Optional[GameMetadata] = None
) -> Dict[str, PlayerStats]:
    """
    Calculate accuracy statistics for both players.

    Args:
        moves: Played moves in order
        evaluations: Position index -> evaluation
        annotations: Move index -> annotation, for tag counts
        metadata: Game header data, for names and ratings

    Returns:
        Dict with "white" and "black" PlayerStats
    """
    metadata = metadata or GameMetadata()
    stats = {
        "white": PlayerStats(player_name=metadata.white, color="white", elo=metadata.white_elo),
        "black": PlayerStats(player_name=metadata.black, color="black", elo=metadata.black_elo),
    }

    accuracies = calculate_move_accuracies(moves, evaluations)
    for move in moves:
        player_stats = stats["white" if move.is_white else "black"]

        accuracy = accuracies.get(move.ply)
        if accuracy is not None:
            player_stats.move_accuracies.append(accuracy)
            if accuracy >= HIGH_ACCURACY:
                player_stats.high_accuracy_moves += 1

        after = evaluations.get(move.ply)
        if after is not None and after.score == Mate(1):
            player_stats.mate_in_one_allowed += 1

        annotation = (annotations or {}).get(move.ply)
        if annotation is not None:
            tag = annotation.tag.value
            player_stats.tag_counts[tag] = player_stats.tag_counts.get(tag, 0) + 1

    return stats


def print_accuracy_report(stats: Dict[str, PlayerStats]) -> None:
    """
    Print formatted accuracy report.

    Args:
        stats: Player statistics keyed by color
    """
    print("\n" + "=" * 80)
    print("PLAYER ACCURACY REPORT")
    print("=" * 80)

    print(f"\n{'Player':<25} {'Accuracy':<10} {'Rating':<8} "
          f"{'Blunders':<10} {'Mistakes':<10} {'Moves':<8}")
    print("-" * 80)

    for color in ("white", "black"):
        s = stats[color]
        rating = str(s.rating) if s.rating is not None else "-"
        print(f"{s.player_name:<25} {s.accuracy_pct:>7.1f}%  {rating:>6}  "
              f"{s.blunders:>8}  {s.mistakes:>8}  {s.total_moves:>6}")

    print("\n" + "=" * 80)
    print("MOVE QUALITY")
    print("=" * 80)

    print(f"\n{'Tag':<12} {'White':>6} {'Black':>6}")
    print("-" * 26)
    for tag in MoveTag:
        white = stats["white"].tag_counts.get(tag.value, 0)
        black = stats["black"].tag_counts.get(tag.value, 0)
        if white or black:
            print(f"{tag.value:<12} {white:>6} {black:>6}")
