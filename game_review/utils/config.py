"""
Configuration management for the game review project.
Loads settings from config.yaml and provides easy access.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..analysis.scheduler import DEFAULT_RESET_OPTIONS, SchedulerSettings
from ..engine.launcher import EngineCandidate


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config.yaml"


class Config:
    """
    Manages project configuration loaded from YAML file.
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config.yaml. If None, looks in project root
                and falls back to built-in defaults when there is none.
        """
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH
            if not config_path.exists():
                self._config: Dict[str, Any] = {}
                return

        with open(config_path, 'r') as f:
            self._config = yaml.safe_load(f) or {}

    def get(self, *keys: str, default=None) -> Any:
        """
        Get a config value using dot notation.

        Args:
            *keys: Keys to traverse (e.g., "analysis", "stable_pass", "depth")
            default: Default value if key not found

        Returns:
            Config value or default

        Example:
            config.get("engine", "watchdog_seconds")
        """
        value = self._config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    # Engine settings
    @property
    def engine_candidates(self) -> List[EngineCandidate]:
        """Engine builds to try, in order."""
        entries = self.get("engine", "candidates", default=None) or [
            {"name": "stockfish", "command": ["stockfish"]}
        ]
        candidates = []
        for entry in entries:
            command = entry.get("command") or [entry.get("path", "stockfish")]
            if isinstance(command, str):
                command = command.split()
            candidates.append(EngineCandidate(name=entry.get("name", command[0]), command=list(command)))
        return candidates

    @property
    def watchdog_seconds(self) -> float:
        """Seconds a candidate gets to finish the handshake."""
        return float(self.get("engine", "watchdog_seconds", default=30))

    @property
    def engine_options(self) -> Dict[str, Any]:
        """Options applied when the engine is reset before the stable pass."""
        options = dict(DEFAULT_RESET_OPTIONS)
        options.update(self.get("engine", "options", default={}) or {})
        return options

    # Analysis settings
    @property
    def analysis_mode(self) -> str:
        """Default analysis mode: quick, deep or full."""
        return self.get("analysis", "mode", default="full")

    @property
    def analysis_depth(self) -> int:
        """Requested analysis depth."""
        return self.get("analysis", "depth", default=15)

    def scheduler_settings(self) -> SchedulerSettings:
        """Build per-pass search limits from the analysis section."""
        defaults = SchedulerSettings()
        fast = self.get("analysis", "fast_pass", default={}) or {}
        stable = self.get("analysis", "stable_pass", default={}) or {}
        verification = self.get("analysis", "verification", default={}) or {}
        return SchedulerSettings(
            depth=self.analysis_depth,
            fast_depth_cap=fast.get("max_depth", defaults.fast_depth_cap),
            fast_movetime_ms=fast.get("movetime_ms", defaults.fast_movetime_ms),
            fast_multipv=fast.get("multipv", defaults.fast_multipv),
            stable_depth=stable.get("depth", defaults.stable_depth),
            stable_multipv=stable.get("multipv", defaults.stable_multipv),
            verification_enabled=verification.get("enabled", defaults.verification_enabled),
            verification_depth_bonus=verification.get("depth_bonus", defaults.verification_depth_bonus),
            verification_min_depth=verification.get("min_depth", defaults.verification_min_depth),
            verification_min_multipv=verification.get("min_multipv", defaults.verification_min_multipv),
            reset_options=self.engine_options,
        )

    def __repr__(self) -> str:
        names = [c.name for c in self.engine_candidates]
        return f"Config(engines={names}, mode='{self.analysis_mode}')"


# Global config instance (lazy loaded)
_global_config: Optional[Config] = None


def get_config(config_path: Optional[Path] = None) -> Config:
    """
    Get the global config instance.

    Args:
        config_path: Optional path to config file (only used on first call)

    Returns:
        Config instance
    """
    global _global_config
    if _global_config is None:
        _global_config = Config(config_path)
    return _global_config
