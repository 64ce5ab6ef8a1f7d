"""
Engine configuration.

Settings are read from the environment so drivers (CLI, embedding hosts,
test runs) can tune limits without code changes.

    CARDCORE_LOG_LEVEL            logging level (INFO)
    CARDCORE_LOG_FORMAT           simple | detailed | json
    CARDCORE_MAX_CASCADE          dispatched events per driver call (1000)
    CARDCORE_MAX_LOOP_ITERATIONS  FOR_EACH / round-robin bound (10000)
    CARDCORE_STRICT_INVARIANTS    full zone scan after every effect (1)
    CARDCORE_ROLLBACK             transactional rollback available (1)
    CARDCORE_INPUT_TIMEOUT        default pending-input timeout, seconds
"""

from __future__ import annotations
from dataclasses import dataclass
import os

# rank_value ordinals: index in rank_hierarchy plus this base.
RANK_ORDINAL_BASE = 1


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


@dataclass
class EngineConfig:
    """Runtime limits and switches for one session."""
    log_level: str = "INFO"
    log_format: str = "simple"
    max_cascade_events: int = 1000
    max_loop_iterations: int = 10000
    strict_invariants: bool = True
    rollback_supported: bool = True
    input_timeout: float | None = None

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build a config from CARDCORE_* environment variables."""
        return cls(
            log_level=os.getenv("CARDCORE_LOG_LEVEL", "INFO"),
            log_format=os.getenv("CARDCORE_LOG_FORMAT", "simple"),
            max_cascade_events=_env_int("CARDCORE_MAX_CASCADE", 1000),
            max_loop_iterations=_env_int("CARDCORE_MAX_LOOP_ITERATIONS", 10000),
            strict_invariants=_env_flag("CARDCORE_STRICT_INVARIANTS", True),
            rollback_supported=_env_flag("CARDCORE_ROLLBACK", True),
            input_timeout=_env_float("CARDCORE_INPUT_TIMEOUT"),
        )
