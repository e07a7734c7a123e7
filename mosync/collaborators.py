from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

Bookmark = Tuple[str, float]


class AudioSink(Protocol):
    def play(self) -> None: ...

    def pause(self) -> None: ...

    def set_source(self, ref: str) -> None: ...

    def seek(self, sec: float) -> None: ...

    def current_time(self) -> float: ...

    def set_rate(self, rate: float) -> None: ...

    def rate(self) -> float: ...

    def is_paused(self) -> bool: ...


class HighlightAdapter(Protocol):
    def mark_active(self, fragment_id: str) -> None: ...

    def mark_paused(self, fragment_id: str) -> None: ...

    def clear_marks(self, fragment_id: str) -> None: ...


class PersistenceSink(Protocol):
    def save(self, fragment_id: str, offset_sec: float) -> None: ...

    def load(self) -> Optional[Bookmark]: ...


class ElementHandle(Protocol):
    def id(self) -> Optional[str]: ...

    def parent(self) -> Optional["ElementHandle"]: ...

    def is_anchor_tag(self) -> bool: ...


@dataclass(frozen=True)
class CallResult:
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


def guarded_call(label: str, func: Callable[..., Any], *args: Any) -> CallResult:
    """Run a collaborator call, logging failures instead of raising them."""
    try:
        return CallResult(ok=True, value=func(*args))
    except Exception as exc:
        logger.warning("%s failed: %s", label, exc)
        return CallResult(ok=False, error=exc)


class VirtualAudioSink:
    """Audio sink that only tracks position against a clock.

    ``clock`` returns seconds; the HTTP host passes the event loop clock and
    tests pass ``ManualTimerService.now``. Optional ``durations`` stop the
    position at the end of each file.
    """

    def __init__(
        self,
        clock: Callable[[], float],
        durations: Optional[Mapping[str, float]] = None,
    ) -> None:
        self._clock = clock
        self._durations = dict(durations or {})
        self._source: Optional[str] = None
        self._position = 0.0
        self._anchor = clock()
        self._paused = True
        self._rate = 1.0
        self.calls: List[tuple] = []

    @property
    def source(self) -> Optional[str]:
        return self._source

    def _settle(self) -> None:
        now = self._clock()
        if not self._paused:
            self._position += (now - self._anchor) * self._rate
            limit = self._durations.get(self._source or "")
            if limit is not None and self._position >= limit:
                self._position = float(limit)
                self._paused = True
        self._anchor = now

    def play(self) -> None:
        self._settle()
        self._paused = False
        self.calls.append(("play",))

    def pause(self) -> None:
        self._settle()
        self._paused = True
        self.calls.append(("pause",))

    def set_source(self, ref: str) -> None:
        self._settle()
        self._source = ref
        self._position = 0.0
        self._paused = True
        self.calls.append(("set_source", ref))

    def seek(self, sec: float) -> None:
        self._settle()
        self._position = max(0.0, float(sec))
        self.calls.append(("seek", self._position))

    def current_time(self) -> float:
        self._settle()
        return self._position

    def set_rate(self, rate: float) -> None:
        self._settle()
        self._rate = float(rate)
        self.calls.append(("set_rate", self._rate))

    def rate(self) -> float:
        return self._rate

    def is_paused(self) -> bool:
        self._settle()
        return self._paused


class RecordingHighlighter:
    def __init__(self) -> None:
        self.marks: Dict[str, str] = {}
        self.calls: List[tuple[str, str]] = []

    def mark_active(self, fragment_id: str) -> None:
        self.marks[fragment_id] = "active"
        self.calls.append(("active", fragment_id))

    def mark_paused(self, fragment_id: str) -> None:
        self.marks[fragment_id] = "paused"
        self.calls.append(("paused", fragment_id))

    def clear_marks(self, fragment_id: str) -> None:
        self.marks.pop(fragment_id, None)
        self.calls.append(("clear", fragment_id))


class MemoryBookmarkStore:
    def __init__(self, initial: Optional[Bookmark] = None) -> None:
        self._bookmark = initial
        self.history: List[Bookmark] = []

    def save(self, fragment_id: str, offset_sec: float) -> None:
        self._bookmark = (fragment_id, float(offset_sec))
        self.history.append(self._bookmark)

    def load(self) -> Optional[Bookmark]:
        return self._bookmark


def _sanitize_bookmark(data: dict) -> Optional[Bookmark]:
    fragment_id = data.get("fragment_id")
    if not isinstance(fragment_id, str) or not fragment_id:
        return None
    try:
        offset = float(data.get("offset", 0.0))
    except (TypeError, ValueError):
        offset = 0.0
    if offset < 0:
        offset = 0.0
    return fragment_id, offset


def _atomic_write_json(path: Path, payload: dict) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


class JsonBookmarkStore:
    """Single "last position" bookmark kept in a JSON file, keyed by book."""

    def __init__(self, path: Path, book_id: str = "default") -> None:
        self.path = Path(path)
        self.book_id = book_id

    def _read_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable bookmark file %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, fragment_id: str, offset_sec: float) -> None:
        data = self._read_all()
        data[self.book_id] = {
            "fragment_id": fragment_id,
            "offset": round(float(offset_sec), 3),
            "updated_unix": int(time.time()),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write_json(self.path, data)

    def load(self) -> Optional[Bookmark]:
        entry = self._read_all().get(self.book_id)
        if not isinstance(entry, dict):
            return None
        return _sanitize_bookmark(entry)
