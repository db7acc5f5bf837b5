"""Tests for multi-pass analysis scheduling."""

import asyncio

import pytest
from chess.engine import Cp

from conftest import FakeFactory, candidates, make_move
from game_review.analysis.evaluation import Evaluation, SearchParams
from game_review.analysis.evaluation_cache import EvaluationCache, normalize_fen
from game_review.analysis.scheduler import (
    AnalysisMode,
    AnalysisScheduler,
    EvaluationMap,
    PassKind,
    SchedulerSettings,
)
from game_review.engine.channel import EvaluationChannel
from game_review.engine.session import EngineSession
from game_review.errors import EngineRuntimeError
from game_review.parsers.pgn_parser import parse_game_text


QUEEN_SAC_FEN = "4k3/8/4p3/8/8/8/8/3QK3 w - - 0 1"


class ScriptedChannel:
    """
    Stand-in for EvaluationChannel.

    Answers are looked up by (fen, depth) first, then by fen alone.
    """

    def __init__(self, answers=None, fail_after=None):
        self.answers = answers or {}
        self.fail_after = fail_after
        self.requests = []
        self.resets = []

    async def evaluate(self, fen, params):
        self.requests.append((fen, params))
        if self.fail_after is not None and len(self.requests) > self.fail_after:
            raise EngineRuntimeError("engine exited")
        answer = self.answers.get((fen, params.depth))
        if answer is None:
            answer = self.answers.get(fen, Evaluation(Cp(len(self.requests))))
        return answer

    async def reset(self, options=None):
        self.resets.append(dict(options or {}))

    def depths(self):
        return [params.depth for _, params in self.requests]


def run(scheduler, positions, moves=None, mode=AnalysisMode.FULL, **kwargs):
    return asyncio.run(scheduler.run(positions, moves, mode, **kwargs))


class TestSettings:

    def test_fast_pass_caps_depth(self):
        settings = SchedulerSettings(depth=20)
        assert settings.fast_params() == SearchParams(depth=12, movetime_ms=80, multipv=3)
        assert SchedulerSettings(depth=8).fast_params().depth == 8

    def test_verification_is_deeper(self):
        settings = SchedulerSettings()
        assert settings.verification_params() == SearchParams(depth=18, multipv=5)
        assert SchedulerSettings(stable_depth=20).verification_params().depth == 24
        assert SchedulerSettings(depth=10).verification_params(after_stable=False).depth == 18

    def test_reset_options_leave_protocol_options_alone(self):
        options = SchedulerSettings().reset_options
        assert options["Clear Hash"] is None
        assert options["Threads"] == 1
        # python-chess sets these per search
        assert "MultiPV" not in options
        assert "Ponder" not in options

    def test_mode_passes(self):
        assert AnalysisMode("quick").passes == (PassKind.FAST,)
        assert AnalysisMode.DEEP.passes == (PassKind.STABLE, PassKind.VERIFICATION)
        assert len(AnalysisMode.FULL.passes) == 3


class TestEvaluationMap:

    def test_later_pass_replaces_earlier(self):
        evaluations = EvaluationMap()
        evaluations.publish({0: Evaluation(Cp(10))}, rank=0)
        evaluations.publish({0: Evaluation(Cp(20))}, rank=1)
        assert evaluations.get(0).score == Cp(20)
        assert evaluations.rank_of(0) == 1

    def test_out_of_order_publish_keeps_later_pass(self):
        evaluations = EvaluationMap()
        evaluations.publish({0: Evaluation(Cp(99))}, rank=2)
        written = evaluations.publish(
            {0: Evaluation(Cp(10)), 1: Evaluation(Cp(5))}, rank=0
        )
        assert written == 1
        assert evaluations.get(0).score == Cp(99)
        assert evaluations.get(1).score == Cp(5)

    def test_same_rank_replaces(self):
        evaluations = EvaluationMap()
        evaluations.publish({0: Evaluation(Cp(1))}, rank=1)
        evaluations.publish({0: Evaluation(Cp(2))}, rank=1)
        assert evaluations.get(0).score == Cp(2)

    def test_snapshot_is_ordered_copy(self):
        evaluations = EvaluationMap()
        evaluations.publish({3: Evaluation(Cp(3)), 1: Evaluation(Cp(1))}, rank=0)
        snapshot = evaluations.snapshot()
        assert list(snapshot) == [1, 3]
        evaluations.publish({2: Evaluation(Cp(2))}, rank=0)
        assert 2 not in snapshot
        assert 2 in evaluations
        assert len(evaluations) == 3


class TestPasses:

    def test_quick_runs_fast_pass_only(self, fools_mate_fens):
        channel = ScriptedChannel()
        evaluations, report = run(AnalysisScheduler(channel), fools_mate_fens, mode="quick")

        assert channel.depths() == [12] * 5
        assert channel.resets == []
        assert report.passes_completed == ["fast"]
        assert report.is_complete
        assert len(evaluations) == 5
        assert all(evaluations.rank_of(i) == PassKind.FAST for i in range(5))

    def test_deep_resets_before_stable_pass(self, fools_mate_fens):
        channel = ScriptedChannel()
        _, report = run(AnalysisScheduler(channel), fools_mate_fens, mode=AnalysisMode.DEEP)

        assert channel.depths() == [14] * 5
        assert len(channel.resets) == 1
        assert "Clear Hash" in channel.resets[0]
        assert channel.requests[0][1].multipv == 5
        # No moves given, nothing to verify
        assert report.passes_completed == ["stable"]

    def test_full_replaces_fast_results(self, fools_mate_fens):
        channel = ScriptedChannel()
        evaluations, report = run(AnalysisScheduler(channel), fools_mate_fens)

        assert channel.depths() == [12] * 5 + [14] * 5
        assert report.passes_completed == ["fast", "stable"]
        assert all(evaluations.rank_of(i) == PassKind.STABLE for i in range(5))

    def test_progress_is_per_pass(self, fools_mate_fens):
        seen = []
        run(AnalysisScheduler(ScriptedChannel()), fools_mate_fens[:3], mode="quick",
            progress_callback=seen.append)
        assert seen == pytest.approx([1 / 3, 2 / 3, 1.0])

    def test_none_results_are_not_published(self, fools_mate_fens):
        fen = fools_mate_fens[1]

        class Silent(ScriptedChannel):
            async def evaluate(self, fen_, params):
                await super().evaluate(fen_, params)
                return None if fen_ == fen else Evaluation(Cp(0))

        evaluations, report = run(AnalysisScheduler(Silent()), fools_mate_fens[:3], mode="quick")
        assert 1 not in evaluations
        assert report.completed == 3


class TestCaching:

    def test_cache_prevents_repeat_searches(self, fools_mate_fens):
        cache = EvaluationCache()
        channel = ScriptedChannel()
        scheduler = AnalysisScheduler(channel, cache)

        run(scheduler, fools_mate_fens, mode="quick")
        first = len(channel.requests)
        evaluations, _ = run(scheduler, fools_mate_fens, mode="quick")

        assert len(channel.requests) == first
        assert cache.hits == 5
        assert len(evaluations) == 5

    def test_repeated_position_is_searched_once(self):
        start = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"
        repeated = start.replace(" 0 1", " 4 3")
        channel = ScriptedChannel()
        run(AnalysisScheduler(channel), [start, repeated], mode="quick")
        assert len(channel.requests) == 1

    def test_passes_use_separate_entries(self, fools_mate_fens):
        cache = EvaluationCache()
        run(AnalysisScheduler(ScriptedChannel(), cache), fools_mate_fens)
        assert cache.size == 10


class TestFailures:

    def test_failure_keeps_finished_positions(self, fools_mate_fens):
        channel = ScriptedChannel(fail_after=2)
        evaluations, report = run(AnalysisScheduler(channel), fools_mate_fens, mode="quick")

        assert report.failed_pass == "fast"
        assert not report.is_complete
        assert isinstance(report.error, EngineRuntimeError)
        assert (report.completed, report.total) == (2, 5)
        assert sorted(evaluations.snapshot()) == [0, 1]

    def test_failure_in_stable_pass_keeps_fast_results(self, fools_mate_fens):
        channel = ScriptedChannel(fail_after=6)
        evaluations, report = run(AnalysisScheduler(channel), fools_mate_fens)

        assert report.passes_completed == ["fast"]
        assert report.failed_pass == "stable"
        assert evaluations.rank_of(0) == PassKind.STABLE
        assert [evaluations.rank_of(i) for i in range(1, 5)] == [PassKind.FAST] * 4

    def test_engine_dying_mid_pass(self, fools_mate_replies, fools_mate_fens):
        factory = FakeFactory(fools_mate_replies, sf={"break_after_searches": 2})

        async def scenario():
            async with EngineSession(candidates("sf"), factory, watchdog_seconds=1.0) as session:
                scheduler = AnalysisScheduler(EvaluationChannel(session))
                return await scheduler.run(fools_mate_fens, mode=AnalysisMode.QUICK)

        evaluations, report = asyncio.run(scenario())
        assert report.failed_pass == "fast"
        assert (report.completed, report.total) == (2, 5)
        assert evaluations.get(0).score == Cp(30)
        assert evaluations.get(1).score == Cp(250)
        assert 2 not in evaluations


class TestVerification:

    def setup_method(self):
        self.move = make_move(QUEEN_SAC_FEN, "d1d5")
        self.positions = [QUEEN_SAC_FEN, self.move.fen_after]

    def test_sacrifice_found_by_deeper_search_replaces_result(self):
        channel = ScriptedChannel({
            QUEEN_SAC_FEN: Evaluation(Cp(500), best_move="d1d2"),
            (QUEEN_SAC_FEN, 18): Evaluation(Cp(520), best_move="d1d5"),
            self.move.fen_after: Evaluation(Cp(-520)),
        })
        evaluations, report = run(AnalysisScheduler(channel), self.positions, [self.move])

        assert report.passes_completed == ["fast", "stable", "verification"]
        assert report.verified == [0]
        assert evaluations.get(0).top_move == "d1d5"
        assert evaluations.rank_of(0) == PassKind.VERIFICATION
        assert channel.depths()[-1] == 18
        assert channel.requests[-1][1].multipv == 5

    def test_unconfirmed_sacrifice_keeps_stable_result(self):
        channel = ScriptedChannel({
            QUEEN_SAC_FEN: Evaluation(Cp(500), best_move="d1d2"),
            self.move.fen_after: Evaluation(Cp(-520)),
        })
        evaluations, report = run(AnalysisScheduler(channel), self.positions, [self.move])

        assert report.verified == []
        assert evaluations.get(0).top_move == "d1d2"
        assert evaluations.rank_of(0) == PassKind.STABLE

    def test_quiet_moves_are_not_verified(self, fools_mate_text):
        game = parse_game_text(fools_mate_text)
        channel = ScriptedChannel()
        _, report = run(AnalysisScheduler(channel), game.positions, game.moves)

        assert report.passes_completed == ["fast", "stable", "verification"]
        assert 18 not in channel.depths()

    def test_disabled_verification_is_skipped(self):
        channel = ScriptedChannel({QUEEN_SAC_FEN: Evaluation(Cp(500), best_move="d1d2")})
        scheduler = AnalysisScheduler(channel, settings=SchedulerSettings(verification_enabled=False))
        _, report = run(scheduler, self.positions, [self.move])
        assert report.passes_completed == ["fast", "stable"]

    def test_candidates_need_an_evaluation(self):
        scheduler = AnalysisScheduler(ScriptedChannel())
        assert scheduler.verification_candidates(self.positions, [self.move], EvaluationMap()) == []


def test_evaluate_goes_through_cache():
    cache = EvaluationCache()
    channel = ScriptedChannel()
    scheduler = AnalysisScheduler(channel, cache)
    params = SearchParams(depth=10)

    first = asyncio.run(scheduler.evaluate(QUEEN_SAC_FEN, params))
    second = asyncio.run(scheduler.evaluate(QUEEN_SAC_FEN, params))
    assert first is second
    assert len(channel.requests) == 1
    assert cache.has(QUEEN_SAC_FEN, params)
    assert normalize_fen(channel.requests[0][0]) == normalize_fen(QUEEN_SAC_FEN)
