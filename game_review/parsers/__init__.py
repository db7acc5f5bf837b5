"""Game text decoding."""

from .pgn_parser import (
    GameMetadata,
    MoveData,
    DecodedGame,
    parse_game_text,
    read_game_file,
)
