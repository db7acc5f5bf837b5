"""Analysis modules for chess game review."""

from .evaluation import (
    Score,
    Variation,
    Evaluation,
    SearchParams,
    terminal_evaluation,
    score_to_cp,
    white_pov_pawns,
    evaluation_series,
    format_score,
    win_probability,
)

from .evaluation_cache import (
    EvaluationCache,
    normalize_fen,
)

from .material import (
    material_balance,
    offered_sacrifice_loss,
    is_piece_sacrifice,
    is_trivial_recapture,
)

from .move_classifier import (
    MoveTag,
    Annotation,
    classify_move,
    classify_game,
)

from .accuracy_analysis import (
    PlayerStats,
    move_accuracy,
    estimate_rating,
    calculate_move_accuracies,
    calculate_player_stats,
    print_accuracy_report,
)

from .scheduler import (
    AnalysisMode,
    AnalysisReport,
    AnalysisScheduler,
    EvaluationMap,
    PassKind,
    SchedulerSettings,
)

from .engine_analysis import (
    GameReview,
    create_session,
    analyze_game,
    review_game,
    run_review,
    evaluate_position,
    print_move_report,
)
