"""
Rendezvous signaling relay package.

The relay hands WebRTC offers from a viewer to a media peer that can only
long-poll, returns the answer to the viewer, and shuttles ICE candidates in
both directions.  Configuration lives here so every layer can import it
without pulling in FastAPI.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

__all__ = [
    "ConfigError",
    "RelayConfig",
    "RelayError",
]

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"


class RelayError(RuntimeError):
    """Base class for relay related errors."""


class ConfigError(RelayError):
    """Raised when a profile cannot be resolved or contains unknown keys."""


@dataclass
class RelayConfig:
    """Top level relay configuration."""

    profile: str = "default"
    host: str = "127.0.0.1"
    port: int = 3001
    answer_timeout: float = 25.0
    offer_timeout: float = 25.0
    publisher_ids: List[str] = field(default_factory=lambda: ["cam3"])
    max_sessions: int = 1024
    max_ice_queue: int = 256
    session_ttl: float = 300.0
    prune_interval: float = 30.0
    duplicate_wait_policy: str = "replace"
    peer_url: Optional[str] = None
    peer_timeout: float = 10.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.port = int(self.port)
        self.answer_timeout = max(0.0, float(self.answer_timeout))
        self.offer_timeout = max(0.0, float(self.offer_timeout))
        self.publisher_ids = [str(item) for item in (self.publisher_ids or [])]
        self.max_sessions = max(1, int(self.max_sessions))
        self.max_ice_queue = max(1, int(self.max_ice_queue))
        self.session_ttl = max(0.0, float(self.session_ttl))
        self.prune_interval = max(0.0, float(self.prune_interval))
        longest_wait = max(self.answer_timeout, self.offer_timeout)
        if 0 < self.session_ttl < longest_wait:
            # pruning must never evict a session a live long-poll still depends on
            raise ConfigError(
                f"session_ttl ({self.session_ttl}s) must be 0 or at least the longest wait ({longest_wait}s)"
            )
        self.duplicate_wait_policy = str(self.duplicate_wait_policy or "replace").strip().lower()
        if self.duplicate_wait_policy not in {"replace", "reject"}:
            raise ConfigError(
                f"duplicate_wait_policy must be 'replace' or 'reject', got '{self.duplicate_wait_policy}'"
            )
        if self.peer_url:
            self.peer_url = str(self.peer_url).rstrip("/")
        else:
            self.peer_url = None
        self.peer_timeout = max(0.1, float(self.peer_timeout))
        self.cors_origins = [str(item) for item in (self.cors_origins or [])]
        self.log_level = str(self.log_level or "INFO").upper()

    @classmethod
    def load(cls, profile: str = "default", path: Optional[Path] = None) -> "RelayConfig":
        """
        Build a config from the named profile of a YAML profiles file.

        Profile values overlay the dataclass defaults.  A missing file is only
        tolerated for the ``default`` profile.
        """

        profiles_path = Path(path) if path is not None else PROFILES_PATH
        try:
            with profiles_path.open("r", encoding="utf-8") as handle:
                profiles = yaml.safe_load(handle) or {}
        except FileNotFoundError:
            if profile != "default":
                raise ConfigError(f"Profiles file not found: {profiles_path}") from None
            profiles = {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid profiles file {profiles_path}: {exc}") from exc

        if not isinstance(profiles, dict):
            raise ConfigError(f"Profiles file {profiles_path} must contain a mapping")

        if profile not in profiles:
            if profile != "default":
                raise ConfigError(f"Unknown profile '{profile}'")
            values: Dict[str, Any] = {}
        else:
            values = dict(profiles.get(profile) or {})

        known = {item.name for item in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys in profile '{profile}': {', '.join(unknown)}")
        values["profile"] = profile
        return cls(**values)

    def is_publisher(self, session_id: str) -> bool:
        return session_id in self.publisher_ids

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)
