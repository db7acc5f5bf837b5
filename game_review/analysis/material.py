"""
Material counting and sacrifice detection.
"""

from typing import Optional

import chess


PIECE_VALUES = {
    chess.PAWN: 1,
    chess.KNIGHT: 3,
    chess.BISHOP: 3,
    chess.ROOK: 5,
    chess.QUEEN: 9,
    chess.KING: 0,
}

# Net material the mover must give up for a move to count as a sacrifice
SACRIFICE_THRESHOLDS = {
    chess.QUEEN: -5,
    chess.ROOK: -3,
    chess.BISHOP: -2,
    chess.KNIGHT: -2,
}


def material_balance(board: chess.Board, color: chess.Color) -> int:
    """Material of `color` minus material of the opponent, in pawns."""
    balance = 0
    for piece_type, value in PIECE_VALUES.items():
        balance += value * len(board.pieces(piece_type, color))
        balance -= value * len(board.pieces(piece_type, not color))
    return balance


def _legal_move(board: chess.Board, uci: str) -> Optional[chess.Move]:
    try:
        move = chess.Move.from_uci(uci)
    except ValueError:
        return None
    return move if move in board.legal_moves else None


def moved_piece_type(fen: str, uci: str) -> Optional[int]:
    """Piece type making the move, or None if the move is not legal in `fen`."""
    board = chess.Board(fen)
    move = _legal_move(board, uci)
    if move is None:
        return None
    return board.piece_type_at(move.from_square)


def offered_sacrifice_loss(fen: str, uci: str) -> Optional[int]:
    """
    Net material change for the mover after a short exchange on the target square.

    The opponent picks the reply that is worst for the mover among declining
    and every capture on the target square; the mover then picks the best
    recapture on that square, if any.

    Args:
        fen: Position before the move
        uci: Move in UCI format

    Returns:
        Change in material balance in pawns (negative = mover lost material),
        or None if the move is not legal
    """
    board = chess.Board(fen)
    move = _legal_move(board, uci)
    if move is None:
        return None

    mover = board.turn
    start = material_balance(board, mover)
    board.push(move)
    target = move.to_square

    worst = material_balance(board, mover)
    for reply in [m for m in board.legal_moves if m.to_square == target]:
        board.push(reply)
        outcome = material_balance(board, mover)
        for recapture in [m for m in board.legal_moves if m.to_square == target]:
            board.push(recapture)
            outcome = max(outcome, material_balance(board, mover))
            board.pop()
        board.pop()
        worst = min(worst, outcome)

    return worst - start


def is_piece_sacrifice(fen: str, uci: str) -> bool:
    """
    True if the move gives up enough material for its piece type.

    Queens must lose at least 5, rooks 3, bishops and knights 2. Pawn and
    king moves never qualify.
    """
    piece_type = moved_piece_type(fen, uci)
    threshold = SACRIFICE_THRESHOLDS.get(piece_type)
    if threshold is None:
        return False
    loss = offered_sacrifice_loss(fen, uci)
    return loss is not None and loss <= threshold


def is_trivial_recapture(
    fen: str,
    uci: str,
    previous_fen: Optional[str],
    previous_uci: Optional[str]
) -> bool:
    """
    True if the move captures on the square where the opponent just captured.

    Args:
        fen: Position before the move
        uci: Move in UCI format
        previous_fen: Position before the opponent's last move
        previous_uci: Opponent's last move
    """
    if previous_fen is None or previous_uci is None:
        return False
    board = chess.Board(fen)
    move = _legal_move(board, uci)
    if move is None or not board.is_capture(move):
        return False

    previous_board = chess.Board(previous_fen)
    previous = _legal_move(previous_board, previous_uci)
    if previous is None or not previous_board.is_capture(previous):
        return False
    return previous.to_square == move.to_square
