"""
Review a single game with the engine.

This script runs the full pipeline:
1. Decode the game text (PGN or loose movetext)
2. Analyze every position in up to three engine passes
3. Classify each move and compute per-player accuracy

Usage:
    python scripts/review_game.py GAME.pgn [--mode quick|deep|full] [--config PATH] [--verbose]

Make sure Stockfish is installed and listed under engine.candidates in config.yaml
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from game_review.analysis.accuracy_analysis import print_accuracy_report
from game_review.analysis.engine_analysis import analyze_game, create_session, print_move_report
from game_review.errors import GameReviewError
from game_review.parsers.pgn_parser import read_game_file
from game_review.utils.config import get_config


def _print_progress(fraction: float) -> None:
    print(f"\r  {fraction * 100:5.1f}%", end="", flush=True)
    if fraction >= 1.0:
        print()


async def _review(game, mode):
    async with create_session() as session:
        return await analyze_game(game, session, mode, progress_callback=_print_progress)


def main():
    parser = argparse.ArgumentParser(description="Engine review of one chess game")
    parser.add_argument("game", type=Path, help="PGN or movetext file")
    parser.add_argument("--mode", choices=["quick", "deep", "full"], default=None,
                        help="Analysis passes to run (default from config)")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--verbose", action="store_true", help="Log engine traffic")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    # Load configuration
    config = get_config(args.config)
    print(f"Configuration loaded: {config}")

    # Decode before starting the engine
    try:
        game = read_game_file(args.game)
    except OSError as exc:
        print(f"Cannot read {args.game}: {exc}")
        sys.exit(1)
    except GameReviewError as exc:
        print(f"Cannot decode {args.game}: {exc}")
        sys.exit(1)

    print(f"\nReviewing {game.move_count} moves ({args.mode or config.analysis_mode} mode)")
    try:
        review = asyncio.run(_review(game, args.mode))
    except GameReviewError as exc:
        print(f"\nReview failed: {exc}")
        sys.exit(1)

    print_move_report(review)
    print_accuracy_report(review.player_stats)

    # Summary
    print("\n" + "=" * 60)
    print("SUMMARY")
    print("=" * 60)
    print(f"Moves reviewed: {review.game.move_count}")
    print(f"Engine searches: {review.searches} ({review.cache_hits} cache hits)")
    print(f"Passes completed: {', '.join(review.report.passes_completed) or 'none'}")
    if review.report.verified:
        print(f"Sacrifices confirmed by verification: {len(review.report.verified)}")


if __name__ == "__main__":
    main()
