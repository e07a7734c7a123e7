from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, List, Mapping, Optional

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "MOSYNC_CONFIG"
MIN_PLAYBACK_RATE = 0.25
MAX_PLAYBACK_RATE = 4.0

# Option names used by the browser emulator this package reimplements.
_ALIASES = {
    "single_fragment": "single_fragment_mode",
    "ignore_taps_on_a_elements": "ignore_taps_on_anchors",
}


class ConfigError(ValueError):
    pass


def clamp_playback_rate(value: object) -> float:
    try:
        rate = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ConfigError(f"Playback rate must be a number: {value!r}") from None
    if math.isnan(rate) or rate <= 0:
        raise ConfigError(f"Playback rate must be positive: {value!r}")
    return round(max(MIN_PLAYBACK_RATE, min(MAX_PLAYBACK_RATE, rate)), 3)


@dataclass(frozen=True)
class OverlayConfig:
    single_fragment_mode: bool = False
    outside_taps_threshold: int = 1
    outside_taps_can_resume: bool = True
    outside_taps_clear: bool = False
    ignore_taps_on_anchors: bool = True
    playback_rate: float = 1.0
    autostart_audio: bool = False
    active_fragment_class_name: str = "rbActiveFragment"
    paused_fragment_class_name: str = "rbPausedFragment"
    associated_events: List[str] = field(default_factory=lambda: ["click", "touchend"])

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "OverlayConfig":
        return cls().merged(data)

    def merged(self, overrides: Mapping[str, Any]) -> "OverlayConfig":
        known = {f.name for f in fields(self)}
        values: dict[str, Any] = {}
        for raw_key, value in overrides.items():
            key = _ALIASES.get(raw_key, raw_key)
            if key not in known:
                logger.debug("Ignoring unknown config option %r", raw_key)
                continue
            values[key] = _coerce_option(key, value)
        return replace(self, **values)

    def to_dict(self) -> dict:
        return asdict(self)


def _coerce_option(key: str, value: Any) -> Any:
    if key in {
        "single_fragment_mode",
        "outside_taps_can_resume",
        "outside_taps_clear",
        "ignore_taps_on_anchors",
        "autostart_audio",
    }:
        if not isinstance(value, bool):
            raise ConfigError(f"{key} must be true or false, got {value!r}")
        return value
    if key == "outside_taps_threshold":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{key} must be an integer, got {value!r}")
        if value < 0:
            raise ConfigError(f"{key} must be >= 0, got {value}")
        return value
    if key == "playback_rate":
        return clamp_playback_rate(value)
    if key in {"active_fragment_class_name", "paused_fragment_class_name"}:
        text = str(value or "").strip()
        if not text:
            raise ConfigError(f"{key} must be a non-empty string")
        return text
    if key == "associated_events":
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            raise ConfigError(f"{key} must be a list of event names")
        return [str(item) for item in value if str(item).strip()]
    return value


def _load_json(path: Path) -> dict:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a JSON object: {path}")
    return data


def load_config(path: Optional[os.PathLike] = None) -> OverlayConfig:
    """Load defaults, then ``path``, then the file named by ``MOSYNC_CONFIG``."""
    config = OverlayConfig()
    if path:
        config = config.merged(_load_json(Path(path)))
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        override = Path(env_path)
        if override.is_file():
            config = config.merged(_load_json(override))
        else:
            logger.warning("%s points to a missing file: %s", CONFIG_ENV_VAR, override)
    return config
