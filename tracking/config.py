# tracking/config.py
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from tracking.errors import ConfigError
from utils.time import parse_duration

DEFAULT_POLL_INTERVAL_MS = 30_000
DEFAULT_MAX_POLL_DURATION_MS = 30 * 60_000

@dataclass
class TrackerSettings:
    """Tracker runtime configuration."""
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    max_poll_duration_ms: int = DEFAULT_MAX_POLL_DURATION_MS

    auto_notify: bool = True            # False: state changes still apply, sink is never called
    notify_on_start: bool = False       # info toast when a session starts
    user_id: Optional[str] = None       # enables auto-discovery refresh after terminal outcomes

    def validate(self) -> "TrackerSettings":
        validate_timing(self.poll_interval_ms, self.max_poll_duration_ms)
        return self


def validate_timing(interval_ms: int, max_duration_ms: int) -> None:
    if interval_ms <= 0:
        raise ConfigError("poll interval must be > 0", interval_ms=interval_ms)
    if max_duration_ms < interval_ms:
        raise ConfigError(
            "max poll duration must be >= poll interval",
            interval_ms=interval_ms, max_duration_ms=max_duration_ms,
        )


def settings_from_cfg(cfg: Mapping[str, Any]) -> TrackerSettings:
    t = cfg.get("tracker") or {}
    try:
        settings = TrackerSettings(
            poll_interval_ms=parse_duration(t.get("poll_interval", DEFAULT_POLL_INTERVAL_MS)),
            max_poll_duration_ms=parse_duration(t.get("max_poll_duration", DEFAULT_MAX_POLL_DURATION_MS)),
            auto_notify=bool(t.get("auto_notify", True)),
            notify_on_start=bool(t.get("notify_on_start", False)),
            user_id=str(t["user_id"]) if t.get("user_id") else None,
        )
    except ValueError as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(f"invalid tracker config: {e}") from e
    return settings.validate()
