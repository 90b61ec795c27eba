# synchro/config.py
"""
Synchro Session Configuration

Runtime parameters for driving a matching session against a relay.

Usage:
    from synchro.config import SessionConfig, DEFAULT_CONFIG

    config = SessionConfig(poll_interval=0.5)
    config = SessionConfig.from_dict(json.load(f))
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Mapping, Optional

from .cryptography.notes import DEFAULT_NOTE_SUITE_ID, get_note_suite


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_POLL_INTERVAL = 2.0       # seconds between relay polls
DEFAULT_REQUEST_TIMEOUT = 10.0    # seconds per relay HTTP request


# =============================================================================
# Session Config
# =============================================================================

@dataclass(frozen=True)
class SessionConfig:
    """Matching session parameters."""
    poll_interval: float = DEFAULT_POLL_INTERVAL
    offload_crypto: bool = True               # run batch handling in an executor
    note_suite_id: int = DEFAULT_NOTE_SUITE_ID
    relay_endpoint: Optional[str] = None      # e.g. "https://host/api/signal"
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ValueError: On a non-positive interval/timeout or unknown suite
        """
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {self.poll_interval}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")
        get_note_suite(self.note_suite_id)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SessionConfig:
        """Build from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


DEFAULT_CONFIG = SessionConfig()
