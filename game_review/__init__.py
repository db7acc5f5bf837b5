"""Engine-driven chess game review: move quality tags and player accuracy."""

__version__ = "0.1.0"

from .errors import (
    GameReviewError,
    InputDecodeError,
    EngineError,
    EngineStartupError,
    EngineRuntimeError,
)

# analysis must be imported before engine: the engine channel imports the
# evaluation model from the analysis package
from .analysis import (
    AnalysisMode,
    GameReview,
    MoveTag,
    review_game,
    run_review,
)

from .parsers import parse_game_text
