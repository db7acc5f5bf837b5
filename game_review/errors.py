"""
Exception types raised by the game review pipeline.
"""


class GameReviewError(Exception):
    """Base class for all game review errors."""


class InputDecodeError(GameReviewError, ValueError):
    """Game text could not be decoded into at least one legal move."""


class EngineError(GameReviewError, RuntimeError):
    """Base class for analysis engine problems."""


class EngineStartupError(EngineError):
    """Every engine candidate failed its handshake or timed out."""


class EngineRuntimeError(EngineError):
    """The engine broke while the session was in use."""
