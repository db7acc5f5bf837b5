"""
Multi-pass analysis scheduling.

Runs the engine over every position of a game in up to three passes:
a fast low-latency pass, a reproducible stable pass after an engine reset,
and a deeper verification pass for sacrifices the engine did not yet prefer.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import EngineError
from ..parsers.pgn_parser import MoveData
from .evaluation import Evaluation, SearchParams
from .evaluation_cache import EvaluationCache
from .material import is_piece_sacrifice

if TYPE_CHECKING:
    from ..engine.channel import EvaluationChannel, OptionValue


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# Applied before the stable pass. Ponder and MultiPV are set by python-chess
# on every search, and options the engine does not advertise are skipped.
DEFAULT_RESET_OPTIONS: Dict[str, "OptionValue"] = {
    "Clear Hash": None,
    "Threads": 1,
    "Hash": 32,
    "UCI_AnalyseMode": True,
    "UCI_LimitStrength": False,
    "Skill Level": 20,
    "Contempt": 0,
}


class PassKind(IntEnum):
    """Analysis passes; the value is the pass rank (later passes win)."""
    FAST = 0
    STABLE = 1
    VERIFICATION = 2

    @property
    def label(self) -> str:
        return self.name.lower()


class AnalysisMode(str, Enum):
    QUICK = "quick"  # Fast pass only
    DEEP = "deep"  # Stable + verification
    FULL = "full"  # Fast + stable + verification

    @property
    def passes(self) -> Tuple[PassKind, ...]:
        if self is AnalysisMode.QUICK:
            return (PassKind.FAST,)
        if self is AnalysisMode.DEEP:
            return (PassKind.STABLE, PassKind.VERIFICATION)
        return (PassKind.FAST, PassKind.STABLE, PassKind.VERIFICATION)


@dataclass
class SchedulerSettings:
    """Search limits for each pass."""
    depth: int = 15  # Requested analysis depth; the fast pass caps it
    fast_depth_cap: int = 12
    fast_movetime_ms: int = 80
    fast_multipv: int = 3
    stable_depth: int = 14
    stable_multipv: int = 5
    verification_enabled: bool = True
    verification_depth_bonus: int = 4
    verification_min_depth: int = 18
    verification_min_multipv: int = 5
    reset_options: Dict[str, "OptionValue"] = field(
        default_factory=lambda: dict(DEFAULT_RESET_OPTIONS)
    )

    def fast_params(self) -> SearchParams:
        return SearchParams(
            depth=min(self.depth, self.fast_depth_cap),
            movetime_ms=self.fast_movetime_ms,
            multipv=self.fast_multipv,
        )

    def stable_params(self) -> SearchParams:
        return SearchParams(depth=self.stable_depth, multipv=self.stable_multipv)

    def verification_params(self, after_stable: bool = True) -> SearchParams:
        base = self.stable_depth if after_stable else self.depth
        return SearchParams(
            depth=max(base + self.verification_depth_bonus, self.verification_min_depth),
            multipv=max(self.stable_multipv, self.verification_min_multipv),
        )


class EvaluationMap:
    """
    Current evaluation per position index, tagged with the pass that produced it.

    Updates are published as a whole pass at a time and swapped in atomically.
    An entry is only replaced by a result from the same or a later pass.
    """

    def __init__(self):
        self._entries: Dict[int, Tuple[int, Evaluation]] = {}

    def publish(self, results: Dict[int, Evaluation], rank: int) -> int:
        """
        Merge one pass's results.

        Args:
            results: Position index -> evaluation
            rank: Pass rank of the results

        Returns:
            Number of entries written
        """
        merged = dict(self._entries)
        written = 0
        for index, evaluation in results.items():
            current = merged.get(index)
            if current is None or rank >= current[0]:
                merged[index] = (rank, evaluation)
                written += 1
        self._entries = merged
        return written

    def get(self, index: int) -> Optional[Evaluation]:
        entry = self._entries.get(index)
        return entry[1] if entry else None

    def rank_of(self, index: int) -> Optional[int]:
        entry = self._entries.get(index)
        return entry[0] if entry else None

    def snapshot(self) -> Dict[int, Evaluation]:
        """Ordered copy of the current evaluations."""
        entries = self._entries
        return {index: entries[index][1] for index in sorted(entries)}

    def __contains__(self, index: int) -> bool:
        return index in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class AnalysisReport:
    """Outcome of one scheduler run."""
    mode: AnalysisMode
    total: int  # Positions in the last pass attempted
    completed: int  # Positions of that pass that finished
    passes_completed: List[str] = field(default_factory=list)
    failed_pass: Optional[str] = None
    error: Optional[Exception] = None
    verified: List[int] = field(default_factory=list)  # Indices replaced by verification

    @property
    def is_complete(self) -> bool:
        return self.failed_pass is None


class AnalysisScheduler:
    """
    Drives cache and channel across a game's positions.

    Positions are searched strictly one after another; a pass's results are
    collected locally and published to the evaluation map when the pass ends,
    including when it ends early because the engine failed.
    """

    def __init__(
        self,
        channel: "EvaluationChannel",
        cache: Optional[EvaluationCache] = None,
        settings: Optional[SchedulerSettings] = None
    ):
        self.channel = channel
        self.cache = cache if cache is not None else EvaluationCache()
        self.settings = settings or SchedulerSettings()

    async def evaluate(self, fen: str, params: SearchParams) -> Optional[Evaluation]:
        """Evaluate one position through the cache."""
        cached = self.cache.get(fen, params)
        if cached is not None:
            return cached
        evaluation = await self.channel.evaluate(fen, params)
        if evaluation is not None:
            self.cache.put(fen, params, evaluation)
        return evaluation

    async def run(
        self,
        positions: Sequence[str],
        moves: Optional[Sequence[MoveData]] = None,
        mode: AnalysisMode = AnalysisMode.FULL,
        progress_callback: Optional[ProgressCallback] = None,
        evaluations: Optional[EvaluationMap] = None
    ) -> Tuple[EvaluationMap, AnalysisReport]:
        """
        Analyze every position of a game.

        Args:
            positions: FENs, index 0 is the starting position
            moves: Played moves; needed for the verification pass
            mode: Which passes to run
            progress_callback: Called with the fraction of the current pass done
            evaluations: Map to publish into (a new one by default)

        Returns:
            (evaluation map, report)
        """
        mode = AnalysisMode(mode)
        evaluations = evaluations if evaluations is not None else EvaluationMap()
        report = AnalysisReport(mode=mode, total=len(positions), completed=0)
        ran_stable = False

        for kind in mode.passes:
            if kind is PassKind.VERIFICATION:
                if not self.settings.verification_enabled or not moves:
                    continue
                indices = self.verification_candidates(positions, moves, evaluations)
                params = self.settings.verification_params(after_stable=ran_stable)
            elif kind is PassKind.STABLE:
                indices = list(range(len(positions)))
                params = self.settings.stable_params()
            else:
                indices = list(range(len(positions)))
                params = self.settings.fast_params()

            logger.info("Starting %s pass over %d positions (%s)",
                        kind.label, len(indices), params.key())
            report.total = len(indices)
            completed, error = await self._run_pass(
                kind, params, indices, positions, moves, evaluations, report, progress_callback
            )
            report.completed = completed

            if error is not None:
                logger.error("%s pass stopped after %d/%d positions: %s",
                             kind.label, completed, len(indices), error)
                report.failed_pass = kind.label
                report.error = error
                break

            report.passes_completed.append(kind.label)
            ran_stable = ran_stable or kind is PassKind.STABLE
            logger.info("Finished %s pass", kind.label)

        return evaluations, report

    def verification_candidates(
        self,
        positions: Sequence[str],
        moves: Sequence[MoveData],
        evaluations: EvaluationMap
    ) -> List[int]:
        """Indices whose played move is a piece sacrifice the engine does not prefer."""
        candidates = []
        for index, move in enumerate(moves):
            if index >= len(positions):
                break
            current = evaluations.get(index)
            if current is None or current.top_move == move.uci:
                continue
            if is_piece_sacrifice(positions[index], move.uci):
                candidates.append(index)
        return candidates

    async def _run_pass(
        self,
        kind: PassKind,
        params: SearchParams,
        indices: List[int],
        positions: Sequence[str],
        moves: Optional[Sequence[MoveData]],
        evaluations: EvaluationMap,
        report: AnalysisReport,
        progress_callback: Optional[ProgressCallback]
    ) -> Tuple[int, Optional[EngineError]]:
        results: Dict[int, Evaluation] = {}
        completed = 0
        error: Optional[EngineError] = None

        try:
            if kind is PassKind.STABLE:
                await self.channel.reset(self.settings.reset_options)

            for index in indices:
                evaluation = await self.evaluate(positions[index], params)
                if evaluation is not None:
                    if kind is PassKind.VERIFICATION:
                        if evaluation.top_move == moves[index].uci:
                            results[index] = evaluation
                            report.verified.append(index)
                    else:
                        results[index] = evaluation
                completed += 1
                if progress_callback is not None:
                    progress_callback(completed / len(indices))
        except EngineError as exc:
            error = exc
        finally:
            evaluations.publish(results, int(kind))

        return completed, error
