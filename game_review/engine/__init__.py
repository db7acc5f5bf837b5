"""UCI engine session, launcher and evaluation requests."""

from .launcher import (
    EngineCandidate,
    EngineLauncher,
    popen_engine,
)

from .session import (
    EngineSession,
    SessionState,
)

from .channel import (
    EvaluationChannel,
    SearchLines,
)
