from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .timers import TimerHandle

logger = logging.getLogger(__name__)


class PlaybackState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"


@dataclass
class PlaybackSession:
    current_index: int = -1
    state: PlaybackState = PlaybackState.IDLE
    paused_offset_sec: float = -1.0
    playback_rate: float = 1.0
    outside_tap_count: int = 0
    pending_timer: Optional[TimerHandle] = None
    loaded_audio_ref: Optional[str] = None
    started: bool = False
    generation: int = 0


EVENT_NAMES = ("state_change", "fragment_change", "completed")


@dataclass
class SessionEvents:
    """Listener registry for the events a host integration can observe."""

    listeners: Dict[str, List[Callable[..., None]]] = field(
        default_factory=lambda: {name: [] for name in EVENT_NAMES}
    )

    def subscribe(self, name: str, listener: Callable[..., None]) -> Callable[[], None]:
        if name not in self.listeners:
            raise ValueError(f"Unknown session event: {name}")
        self.listeners[name].append(listener)

        def _unsubscribe() -> None:
            if listener in self.listeners[name]:
                self.listeners[name].remove(listener)

        return _unsubscribe

    def emit(self, name: str, *args: object) -> None:
        for listener in list(self.listeners.get(name, [])):
            try:
                listener(*args)
            except Exception as exc:
                logger.warning("Listener for %s failed: %s", name, exc)

    def on_state_change(self, listener: Callable[[PlaybackState, PlaybackState], None]) -> Callable[[], None]:
        return self.subscribe("state_change", listener)

    def on_fragment_change(self, listener: Callable[[int, int], None]) -> Callable[[], None]:
        return self.subscribe("fragment_change", listener)

    def on_completed(self, listener: Callable[[], None]) -> Callable[[], None]:
        return self.subscribe("completed", listener)
