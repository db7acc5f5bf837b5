"""Shared test fixtures: a scripted in-memory UCI engine.

The fake is an asyncio subprocess transport feeding a real
chess.engine.UciProtocol, so the library's own protocol code is exercised.

Fixtures:
    fools_mate_text     - PGN text of 1. f3 e5 2. g4 Qh4#.
    fools_mate_replies  - Scripted engine output for every position of that game.
    fake_factory        - Launches FakeEngineTransport engines and keeps them
                          for inspection.
"""

import asyncio
from typing import Dict, List, Optional

import chess
import chess.engine
import pytest

from game_review.analysis.evaluation_cache import normalize_fen
from game_review.engine.launcher import EngineCandidate
from game_review.parsers.pgn_parser import MoveData


ENGINE_OPTIONS = [
    "option name Threads type spin default 1 min 1 max 1024",
    "option name Hash type spin default 16 min 1 max 33554432",
    "option name Clear Hash type button",
    "option name Ponder type check default false",
    "option name MultiPV type spin default 1 min 1 max 500",
    "option name Skill Level type spin default 20 min 0 max 20",
    "option name UCI_AnalyseMode type check default false",
    "option name UCI_LimitStrength type check default false",
]


class FakeEngineTransport(asyncio.SubprocessTransport, asyncio.WriteTransport):
    """
    In-memory UCI engine behind a real UciProtocol.

    Answers `uci` and `isready`, records every command and replies to `go`
    with the lines scripted for the current position.

    Behaviours:
        "ok"          normal engine
        "hang"        starts, then never answers anything
        "fail_open"   exits as soon as it receives `uci`
    """

    def __init__(
        self,
        protocol: chess.engine.UciProtocol,
        candidate: EngineCandidate,
        replies: Optional[Dict[str, List[str]]] = None,
        behaviour: str = "ok",
        break_after_searches: Optional[int] = None
    ):
        super().__init__()
        self.protocol = protocol
        self.candidate = candidate
        self.replies = {normalize_fen(fen): lines for fen, lines in (replies or {}).items()}
        self.behaviour = behaviour
        self.break_after_searches = break_after_searches
        self.commands: List[str] = []
        self.searches = 0
        self.closed = False
        self.returncode: Optional[int] = None
        self._board = chess.Board()
        protocol.connection_made(self)

    # asyncio.SubprocessTransport
    def get_pid(self) -> int:
        return 4242

    def get_returncode(self) -> Optional[int]:
        return self.returncode

    def get_pipe_transport(self, fd):
        return self

    def is_closing(self) -> bool:
        return self.returncode is not None

    def close(self) -> None:
        self.closed = True
        self.exit(0)

    def kill(self) -> None:
        self.close()

    # Engine stdin
    def write(self, data: bytes) -> None:
        for line in data.decode("utf-8").splitlines():
            self._command(line)

    def exit(self, code: int) -> None:
        """Simulate the engine process ending."""
        if self.returncode is None:
            self.returncode = code
            self.protocol.loop.call_soon(self.protocol.connection_lost, None)

    def searched_positions(self) -> List[str]:
        return [c[len("position "):] for c in self.commands if c.startswith("position ")]

    def _command(self, line: str) -> None:
        if self.returncode is not None:
            return
        self.commands.append(line)
        if self.behaviour == "hang":
            return

        if line == "uci":
            if self.behaviour == "fail_open":
                self.exit(1)
                return
            self._emit("id name Fake Engine", *ENGINE_OPTIONS, "uciok")
        elif line == "isready":
            self._emit("readyok")
        elif line == "quit":
            self.exit(0)
        elif line.startswith("position "):
            self._board = _board_from_position(line)
        elif line.startswith("go"):
            self.searches += 1
            if self.break_after_searches is not None and self.searches > self.break_after_searches:
                self.exit(1)
                return
            lines = self.replies.get(normalize_fen(self._board.fen()))
            if lines is None:
                move = next(iter(self._board.legal_moves)).uci()
                lines = [f"info depth 1 multipv 1 score cp 0 pv {move}", f"bestmove {move}"]
            self._emit(*lines)

    def _emit(self, *lines: str) -> None:
        for line in lines:
            data = (line + "\n").encode("utf-8")
            self.protocol.loop.call_soon(self.protocol.pipe_data_received, 1, data)


def _board_from_position(line: str) -> chess.Board:
    tokens = line.split()
    if tokens[1] == "startpos":
        board, rest = chess.Board(), tokens[2:]
    else:
        board, rest = chess.Board(" ".join(tokens[2:8])), tokens[8:]
    if rest and rest[0] == "moves":
        for uci in rest[1:]:
            board.push_uci(uci)
    return board


class FakeFactory:
    """Engine launcher that configures fakes per candidate name."""

    def __init__(self, replies=None, **per_candidate):
        self.replies = replies or {}
        self.per_candidate = per_candidate  # name -> kwargs
        self.created: List[FakeEngineTransport] = []
        self.launched: List[str] = []
        self.cancelled: List[str] = []  # Launches abandoned by the session

    async def __call__(self, candidate: EngineCandidate):
        kwargs = dict(self.per_candidate.get(candidate.name, {}))
        kwargs.setdefault("replies", self.replies)
        delay = kwargs.pop("launch_delay", 0)
        self.launched.append(candidate.name)
        if delay:
            await asyncio.sleep(delay)
        if kwargs.get("behaviour") == "hang_open":
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled.append(candidate.name)
                raise

        protocol = chess.engine.UciProtocol()
        transport = FakeEngineTransport(protocol, candidate, **kwargs)
        self.created.append(transport)
        try:
            await protocol.initialize()
        except asyncio.CancelledError:
            self.cancelled.append(candidate.name)
            transport.close()
            raise
        except chess.engine.EngineError:
            transport.close()
            raise
        return transport, protocol

    def by_name(self, name: str) -> List[FakeEngineTransport]:
        return [t for t in self.created if t.candidate.name == name]


def candidates(*names: str) -> List[EngineCandidate]:
    return [EngineCandidate(name=name, command=[name]) for name in names]


def make_move(fen: str, uci: str, ply: int = 1) -> MoveData:
    """MoveData for one move played from `fen`."""
    board = chess.Board(fen)
    move = chess.Move.from_uci(uci)
    san = board.san(move)
    is_white = board.turn == chess.WHITE
    number = board.fullmove_number
    board.push(move)
    return MoveData(
        ply=ply, move_number=number, is_white=is_white, san=san, uci=uci,
        fen_before=fen, fen_after=board.fen(),
    )


def fens_after(*sans: str) -> List[str]:
    """FENs of the start position and after each SAN move."""
    board = chess.Board()
    fens = [board.fen()]
    for san in sans:
        board.push_san(san)
        fens.append(board.fen())
    return fens


FOOLS_MATE_TEXT = """[Event "Casual Game"]
[White "Fool"]
[Black "Scholar"]
[Result "0-1"]

1. f3 e5 2. g4 Qh4# 0-1
"""


@pytest.fixture
def fools_mate_text() -> str:
    return FOOLS_MATE_TEXT


@pytest.fixture
def fools_mate_fens() -> List[str]:
    return fens_after("f3", "e5", "g4", "Qh4#")


@pytest.fixture
def fools_mate_replies(fools_mate_fens) -> Dict[str, List[str]]:
    fens = fools_mate_fens
    return {
        fens[0]: [
            "info depth 12 multipv 1 score cp 30 nodes 1000 pv e2e4 e7e5",
            "info depth 12 multipv 2 score cp 25 nodes 1000 pv d2d4 d7d5",
            "bestmove e2e4 ponder e7e5",
        ],
        fens[1]: [
            "info depth 12 multipv 1 score cp 250 pv e7e5 g2g4",
            "bestmove e7e5",
        ],
        fens[2]: [
            "info depth 12 multipv 1 score cp -250 pv d2d4",
            "bestmove d2d4",
        ],
        fens[3]: [
            "info string NNUE evaluation using nn-error-free.nnue",
            "info depth 12 multipv 1 score mate 1 pv d8h4",
            "info depth 12 multipv 2 score cp 420 pv d7d5 d2d3",
            "bestmove d8h4",
        ],
    }


@pytest.fixture
def fake_factory(fools_mate_replies) -> FakeFactory:
    return FakeFactory(replies=fools_mate_replies)
