"""
Starting external UCI engines.

The UCI wire protocol itself is python-chess's `chess.engine.UciProtocol`;
this module only knows which builds to try and how to spawn one.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Tuple

import chess.engine

from ..errors import EngineStartupError


logger = logging.getLogger(__name__)

EngineHandle = Tuple[asyncio.SubprocessTransport, chess.engine.UciProtocol]
EngineLauncher = Callable[["EngineCandidate"], Awaitable[EngineHandle]]


@dataclass(frozen=True)
class EngineCandidate:
    """One engine build that may be tried at session start."""
    name: str
    command: List[str]

    def resolved_command(self) -> List[str]:
        """Command with the executable looked up on PATH when possible."""
        if not self.command:
            return []
        executable = shutil.which(self.command[0]) or self.command[0]
        return [executable] + list(self.command[1:])


async def popen_engine(candidate: EngineCandidate) -> EngineHandle:
    """
    Spawn a candidate and complete the `uci` handshake.

    Raises:
        EngineStartupError: If the candidate has no command
        OSError: If the executable cannot be started
        chess.engine.EngineError: If the engine misbehaves during `uci`
    """
    command = candidate.resolved_command()
    if not command:
        raise EngineStartupError(f"Engine candidate {candidate.name!r} has no command")
    transport, protocol = await chess.engine.popen_uci(command)
    logger.debug("Started %s (pid %s): %s", candidate.name, transport.get_pid(),
                 protocol.id.get("name", "unknown engine"))
    return transport, protocol
