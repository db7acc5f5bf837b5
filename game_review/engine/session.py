"""
Engine session lifecycle.

An EngineSession owns exactly one python-chess UCI protocol, picked from an
ordered list of candidate builds. Each start attempt runs under a watchdog,
and when the engine breaks while in use the session falls back to the next
candidate in a background restart.
"""

import asyncio
import contextlib
import functools
import logging
from enum import Enum
from typing import List, Optional, Sequence

import chess.engine

from ..errors import EngineError, EngineRuntimeError, EngineStartupError
from .launcher import EngineCandidate, EngineHandle, EngineLauncher, popen_engine


logger = logging.getLogger(__name__)

DEFAULT_WATCHDOG_SECONDS = 30.0
QUIT_TIMEOUT_SECONDS = 2.0


class SessionState(Enum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class EngineSession:
    """
    State machine around one engine process.

    UNSTARTED -> STARTING(candidate_index) -> READY | FAILED

    Usage:
        async with EngineSession(candidates) as session:
            protocol = session.engine()
    """

    def __init__(
        self,
        candidates: Sequence[EngineCandidate],
        launcher: EngineLauncher = popen_engine,
        watchdog_seconds: float = DEFAULT_WATCHDOG_SECONDS
    ):
        if not candidates:
            raise ValueError("At least one engine candidate is required")
        self.candidates: List[EngineCandidate] = list(candidates)
        self.watchdog_seconds = watchdog_seconds
        self.state = SessionState.UNSTARTED
        self.candidate_index = -1
        self.last_error: Optional[Exception] = None

        self._launcher = launcher
        self._transport: Optional[asyncio.SubprocessTransport] = None
        self._protocol: Optional[chess.engine.UciProtocol] = None
        self._settled = asyncio.Event()
        self._restart: Optional[asyncio.Task] = None
        # Bumped per start attempt and on close; a launch that finishes
        # under a stale token is discarded
        self._attempt_token = 0

    @property
    def active_candidate(self) -> Optional[EngineCandidate]:
        if 0 <= self.candidate_index < len(self.candidates):
            return self.candidates[self.candidate_index]
        return None

    def is_ready(self) -> bool:
        return self.state is SessionState.READY

    def engine(self) -> chess.engine.UciProtocol:
        """
        Protocol of the running engine.

        Raises:
            EngineRuntimeError: If the session is not READY
        """
        protocol = self._protocol
        if self.state is not SessionState.READY or protocol is None:
            raise EngineRuntimeError(f"Engine session is {self.state.value}")
        return protocol

    async def start(self) -> None:
        """
        Bring the session to READY.

        Raises:
            EngineStartupError: If every candidate failed or timed out
        """
        if self.state is SessionState.READY:
            return
        if self.state in (SessionState.FAILED, SessionState.CLOSED):
            raise EngineStartupError(f"Engine session is {self.state.value}; create a new session")
        if self.state is SessionState.STARTING:
            if not await self.await_ready():
                raise EngineStartupError("Engine session failed to start")
            return
        await self._start_from(0)

    async def await_ready(self) -> bool:
        """Suspend until the session is READY or has failed. Returns True when READY."""
        if self.state is SessionState.UNSTARTED:
            try:
                await self.start()
            except EngineStartupError:
                return False
        await self._settled.wait()
        return self.state is SessionState.READY

    def report_failure(self, protocol: chess.engine.UciProtocol, error: Exception) -> None:
        """
        A request on `protocol` failed; drop that engine and restart on the next candidate.

        Reports about an engine that was already replaced are ignored.
        """
        if protocol is not self._protocol or self.state is not SessionState.READY:
            return
        self.last_error = error
        logger.warning("Engine %s broke while in use: %s", self._candidate_name(), error)
        self._fall_back()

    async def close(self) -> None:
        self.state = SessionState.CLOSED
        self._attempt_token += 1
        await self._teardown()
        self._settled.set()

    async def __aenter__(self) -> "EngineSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def _start_from(self, first_index: int) -> None:
        self._settled.clear()
        self.state = SessionState.STARTING

        for index in range(first_index, len(self.candidates)):
            if self.state is SessionState.CLOSED:
                raise EngineStartupError("Engine session was closed during startup")
            self.candidate_index = index
            candidate = self.candidates[index]
            logger.info("Starting engine candidate %d/%d: %s",
                        index + 1, len(self.candidates), candidate.name)

            self._attempt_token += 1
            token = self._attempt_token
            try:
                transport, protocol = await asyncio.wait_for(
                    self._launch(candidate), self.watchdog_seconds
                )
            except asyncio.TimeoutError:
                logger.warning("Engine %s not ready after %.1fs", candidate.name, self.watchdog_seconds)
                self.last_error = EngineStartupError(
                    f"Engine {candidate.name!r} did not become ready within {self.watchdog_seconds}s"
                )
                continue
            except (EngineError, chess.engine.EngineError, OSError) as exc:
                logger.warning("Engine candidate %s failed: %s", candidate.name, exc)
                self.last_error = exc
                continue

            if token != self._attempt_token:
                transport.close()
                raise EngineStartupError("Engine session was closed during startup")

            self._transport = transport
            self._protocol = protocol
            protocol.returncode.add_done_callback(functools.partial(self._on_exit, protocol))
            self.state = SessionState.READY
            self._settled.set()
            logger.info("Engine %s is ready", candidate.name)
            return

        if self.state is not SessionState.CLOSED:
            self.state = SessionState.FAILED
        self._settled.set()
        raise EngineStartupError(
            f"All {len(self.candidates)} engine candidates failed; last error: {self.last_error}"
        )

    async def _launch(self, candidate: EngineCandidate) -> EngineHandle:
        """Spawn one candidate and wait for `readyok`."""
        transport, protocol = await self._launcher(candidate)
        try:
            await protocol.ping()
        except (asyncio.CancelledError, Exception):
            transport.close()
            raise
        return transport, protocol

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    def _on_exit(self, protocol: chess.engine.UciProtocol, returncode: asyncio.Future) -> None:
        if protocol is not self._protocol or self.state is not SessionState.READY:
            return
        code = None if returncode.cancelled() else returncode.result()
        self.last_error = EngineRuntimeError(f"Engine {self._candidate_name()!r} exited (code {code})")
        logger.warning("Engine %s exited while in use (code %s)", self._candidate_name(), code)
        self._fall_back()

    def _fall_back(self) -> None:
        self._settled.clear()
        self.state = SessionState.STARTING
        self._restart = asyncio.ensure_future(self._restart_from(self.candidate_index + 1))

    async def _restart_from(self, index: int) -> None:
        await self._teardown()
        try:
            await self._start_from(index)
        except EngineStartupError as exc:
            logger.error("No engine candidates left: %s", exc)

    def _candidate_name(self) -> str:
        candidate = self.active_candidate
        return candidate.name if candidate else "?"

    async def _teardown(self) -> None:
        restart = self._restart
        if restart is not None and restart is not asyncio.current_task():
            self._restart = None
            restart.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await restart

        protocol, self._protocol = self._protocol, None
        transport, self._transport = self._transport, None
        if protocol is not None and not protocol.returncode.done():
            try:
                await asyncio.wait_for(protocol.quit(), QUIT_TIMEOUT_SECONDS)
            except (asyncio.TimeoutError, chess.engine.EngineError) as exc:
                logger.debug("Engine did not quit cleanly: %s", exc)
        if transport is not None:
            transport.close()
