"""
PGN decoding utilities.
Turns pasted game text into an ordered list of positions and moves, tolerating
comments, clock markup, odd line endings and other noise.
"""

import io
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import chess
import chess.pgn

from ..errors import InputDecodeError


PIECE_TYPES = ("p", "n", "b", "r", "q")

_TAG_LINE = re.compile(r'^\s*\[(\w+)\s+"(.*)"\]\s*$')
_ANY_TAG_LINE = re.compile(r"^\s*\[.*\]\s*$")
_FIRST_MOVE_NUMBER = re.compile(r"\d+\s*\.")


@dataclass
class GameMetadata:
    """Header data for a game, filled opportunistically."""
    white: str = "White Player"
    black: str = "Black Player"
    white_elo: Optional[int] = None
    black_elo: Optional[int] = None
    event: Optional[str] = None
    date: Optional[str] = None
    result: Optional[str] = None


@dataclass
class MoveData:
    """Data for a single move in a game."""
    ply: int  # 1-based index of the move; the move leads from position ply-1 to ply
    move_number: int  # Full move number (1, 2, 3...)
    is_white: bool
    san: str  # Move in Standard Algebraic Notation
    uci: str  # Move in UCI format
    fen_before: str  # Position before move
    fen_after: str  # Position after move


@dataclass
class DecodedGame:
    """Decoded game: positions[0..N], moves[0..N-1] and header data."""
    metadata: GameMetadata
    positions: List[str]
    moves: List[MoveData]
    # captures[i]: pieces each side has captured by position i
    captures: List[Dict[str, Dict[str, int]]] = field(default_factory=list)
    stage: str = "strict"  # Decoding stage that succeeded

    @property
    def move_count(self) -> int:
        return len(self.moves)


# ---------------------------------------------------------------------------
# Normalization stages
# ---------------------------------------------------------------------------

def normalize_characters(text: str) -> str:
    """Unify line endings and spaces, and spell castling with letters."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[\u00a0\u2000-\u200b]", " ", text)
    text = re.sub(r"\b0-0-0\b", "O-O-O", text)
    text = re.sub(r"\b0-0\b", "O-O", text)
    return text.strip()


def strip_annotations(text: str) -> str:
    """Remove comments, NAGs, inline markup and variations."""
    text = re.sub(r"\{[^}]*\}", " ", text)
    text = re.sub(r";[^\n]*", " ", text)
    text = re.sub(r"\$\d+", " ", text)
    text = re.sub(r"\[%[^\]]*\]", " ", text)
    # Two passes so one level of nested variations is removed too
    text = re.sub(r"\([^()]*\)", " ", text)
    text = re.sub(r"\([^()]*\)", " ", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def separate_headers(text: str) -> str:
    """Make sure a blank line separates the tag block from the movetext."""
    lines = text.split("\n")
    last_tag = -1
    for i, line in enumerate(lines):
        if _ANY_TAG_LINE.match(line):
            last_tag = i
        else:
            break
    if last_tag >= 0 and last_tag + 1 < len(lines) and lines[last_tag + 1].strip():
        lines.insert(last_tag + 1, "")
    return "\n".join(lines)


def movetext_only(text: str) -> str:
    """Drop tag lines and keep everything from the first move number on."""
    body = " ".join(line for line in text.split("\n") if not _ANY_TAG_LINE.match(line))
    match = _FIRST_MOVE_NUMBER.search(body)
    if match:
        body = body[match.start():]
    return re.sub(r"\s+", " ", body).strip()


# Ordered stages; the strict parse is retried after each one
NORMALIZATION_STAGES: List[Tuple[str, Callable[[str], str]]] = [
    ("normalize_characters", normalize_characters),
    ("strip_annotations", strip_annotations),
    ("separate_headers", separate_headers),
    ("movetext_only", movetext_only),
]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_headers(text: str) -> GameMetadata:
    """
    Extract player names and ratings from tag lines.

    Args:
        text: Raw game text

    Returns:
        GameMetadata with defaults for anything missing
    """
    tags: Dict[str, str] = {}
    for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        match = _TAG_LINE.match(line)
        if match:
            tags[match.group(1)] = match.group(2)

    def parse_elo(*keys: str) -> Optional[int]:
        for key in keys:
            if key in tags:
                try:
                    return int(tags[key])
                except ValueError:
                    return None
        return None

    return GameMetadata(
        white=tags.get("White") or "White Player",
        black=tags.get("Black") or "Black Player",
        white_elo=parse_elo("WhiteElo", "WhiteELO"),
        black_elo=parse_elo("BlackElo", "BlackELO"),
        event=tags.get("Event"),
        date=tags.get("Date"),
        result=tags.get("Result"),
    )


def strict_parse(text: str) -> Optional[Tuple[chess.Board, List[chess.Move]]]:
    """
    Parse text as a single PGN game.

    Returns:
        (starting board, mainline moves), or None if python-chess reported
        errors or found no moves
    """
    game = chess.pgn.read_game(io.StringIO(text))
    if game is None or game.errors:
        return None
    moves = list(game.mainline_moves())
    if not moves:
        return None
    return game.board(), moves


def replay_tokens(text: str) -> Optional[Tuple[chess.Board, List[chess.Move]]]:
    """
    Last-resort decoding: replay every token that is a legal SAN move.

    Tags, comments, results and move numbers are stripped first; anything
    else that is not a legal move from the current position is skipped.
    """
    text = "\n".join(line for line in text.split("\n") if not _ANY_TAG_LINE.match(line))
    text = strip_annotations(text)
    text = re.sub(r"(1-0|0-1|1/2-1/2|\*)", " ", text)
    text = re.sub(r"\d+\s*\.\.\.|\d+\s*\.", " ", text)
    tokens = text.split()

    board = chess.Board()
    start = board.copy()
    moves = []
    for token in tokens:
        try:
            move = board.parse_san(token)
        except ValueError:
            continue
        board.push(move)
        moves.append(move)

    if not moves:
        return None
    return start, moves


def build_game(
    start: chess.Board,
    moves: List[chess.Move],
    metadata: GameMetadata,
    stage: str
) -> DecodedGame:
    """Walk the moves and collect positions, move data and capture tallies."""
    board = start.copy()
    positions = [board.fen()]
    move_data = []
    captured = {
        "white": {piece: 0 for piece in PIECE_TYPES},
        "black": {piece: 0 for piece in PIECE_TYPES},
    }
    captures = [{side: dict(counts) for side, counts in captured.items()}]

    for ply, move in enumerate(moves, start=1):
        fen_before = board.fen()
        is_white = board.turn == chess.WHITE
        move_number = board.fullmove_number
        san = board.san(move)

        captured_piece = board.piece_at(move.to_square)
        if board.is_en_passant(move):
            captured_piece = chess.Piece(chess.PAWN, not board.turn)
        if captured_piece is not None:
            side = "white" if is_white else "black"
            captured[side][captured_piece.symbol().lower()] += 1

        board.push(move)
        positions.append(board.fen())
        captures.append({side: dict(counts) for side, counts in captured.items()})
        move_data.append(MoveData(
            ply=ply,
            move_number=move_number,
            is_white=is_white,
            san=san,
            uci=move.uci(),
            fen_before=fen_before,
            fen_after=board.fen(),
        ))

    return DecodedGame(
        metadata=metadata,
        positions=positions,
        moves=move_data,
        captures=captures,
        stage=stage,
    )


def parse_game_text(text: str) -> DecodedGame:
    """
    Decode pasted game text into positions and moves.

    Tries a strict parse first, then applies each normalization stage in
    order and retries; the final stage replays tokens one by one.

    Args:
        text: Raw PGN or loose movetext

    Returns:
        DecodedGame with N+1 positions for N moves

    Raises:
        InputDecodeError: If the text is empty or contains no legal move
    """
    raw = (text or "").strip()
    if not raw:
        raise InputDecodeError("Game text is empty")

    metadata = parse_headers(raw)

    parsed = strict_parse(raw)
    if parsed is not None:
        return build_game(parsed[0], parsed[1], metadata, "strict")

    current = raw
    for name, stage in NORMALIZATION_STAGES:
        current = stage(current)
        parsed = strict_parse(current)
        if parsed is not None:
            return build_game(parsed[0], parsed[1], metadata, name)

    parsed = replay_tokens(normalize_characters(raw))
    if parsed is not None:
        return build_game(parsed[0], parsed[1], metadata, "replay_tokens")

    raise InputDecodeError("Game text contains no legal moves")


def read_game_file(path) -> DecodedGame:
    """
    Decode the first game found in a file.

    Args:
        path: Path to a .pgn or text file

    Returns:
        DecodedGame
    """
    with open(path, encoding="utf-8", errors="replace") as f:
        return parse_game_text(f.read())
