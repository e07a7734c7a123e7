from __future__ import annotations

import logging
from typing import Any, Optional

from .collaborators import (
    AudioSink,
    CallResult,
    HighlightAdapter,
    PersistenceSink,
    guarded_call,
)
from .config import OverlayConfig, clamp_playback_rate
from .session import PlaybackSession, PlaybackState, SessionEvents
from .timeline import Fragment, FragmentTimeline
from .timers import TimerService

logger = logging.getLogger(__name__)


class PlaybackController:
    """Drives one playback session over a fragment timeline.

    Every transition that changes the index or the state cancels the
    pending timer first, so at most one advance is ever scheduled. Audio,
    highlight and bookmark calls are best effort: failures are logged and
    the session bookkeeping goes on.
    """

    def __init__(
        self,
        timeline: FragmentTimeline,
        audio: AudioSink,
        timers: TimerService,
        *,
        highlighter: Optional[HighlightAdapter] = None,
        persistence: Optional[PersistenceSink] = None,
        config: Optional[OverlayConfig] = None,
        session: Optional[PlaybackSession] = None,
        events: Optional[SessionEvents] = None,
    ) -> None:
        self.timeline = timeline
        self.audio = audio
        self.timers = timers
        self.highlighter = highlighter
        self.persistence = persistence
        self.config = config or OverlayConfig()
        self.session = session or PlaybackSession()
        self.session.playback_rate = clamp_playback_rate(self.config.playback_rate)
        self.events = events or SessionEvents()

    @property
    def state(self) -> PlaybackState:
        return self.session.state

    @property
    def current_index(self) -> int:
        return self.session.current_index

    def current_fragment(self) -> Optional[Fragment]:
        if self.timeline.contains_index(self.session.current_index):
            return self.timeline.get(self.session.current_index)
        return None

    # collaborator calls

    def _audio(self, method: str, *args: Any) -> CallResult:
        return guarded_call(f"audio.{method}", getattr(self.audio, method), *args)

    def _highlight(self, method: str, fragment_id: str) -> None:
        if self.highlighter is None:
            return
        guarded_call(f"highlight.{method}", getattr(self.highlighter, method), fragment_id)

    def _persist(self, fragment_id: str, offset_sec: float) -> None:
        if self.persistence is None:
            return
        guarded_call("persistence.save", self.persistence.save, fragment_id, offset_sec)

    def audio_is_paused(self) -> bool:
        result = self._audio("is_paused")
        if not result.ok:
            return self.session.state != PlaybackState.PLAYING
        return bool(result.value)

    # bookkeeping

    def _set_state(self, new_state: PlaybackState) -> None:
        old_state = self.session.state
        if old_state == new_state:
            return
        self.session.state = new_state
        logger.debug("State %s -> %s", old_state.value, new_state.value)
        self.events.emit("state_change", old_state, new_state)

    def _set_index(self, new_index: int) -> None:
        old_index = self.session.current_index
        if old_index == new_index:
            return
        self.session.current_index = new_index
        self.events.emit("fragment_change", old_index, new_index)

    def _cancel_pending(self) -> None:
        handle = self.session.pending_timer
        if handle is not None:
            self.timers.cancel(handle)
        self.session.pending_timer = None
        self.session.generation += 1

    def _schedule_advance(self, delay_sec: float) -> None:
        generation = self.session.generation

        def _fire() -> None:
            if generation != self.session.generation:
                logger.debug("Dropping superseded advance timer")
                return
            self.session.pending_timer = None
            self._advance()

        self.session.pending_timer = self.timers.schedule(max(0.0, delay_sec), _fire)

    def _load_source(self, audio_ref: str) -> None:
        self._audio("set_source", audio_ref)
        self.session.loaded_audio_ref = audio_ref

    # outside tap counter, kept on the session

    def register_outside_tap(self) -> int:
        self.session.outside_tap_count += 1
        return self.session.outside_tap_count

    def reset_outside_taps(self) -> None:
        self.session.outside_tap_count = 0

    # public transitions

    def play(self, index: int, reset_begin: bool = True, begin_at_sec: float = -1.0) -> None:
        if not self.timeline.contains_index(index):
            logger.debug("Ignoring play for out-of-range index %s", index)
            return
        self._cancel_pending()

        previous = self.current_fragment()
        if previous is not None and self.session.current_index != index:
            self._highlight("clear_marks", previous.id)

        fragment = self.timeline.get(index)
        begin = begin_at_sec if begin_at_sec >= 0 else fragment.begin_sec
        end = fragment.end_sec

        if fragment.audio_ref != self.session.loaded_audio_ref:
            self._load_source(fragment.audio_ref)
            # A fresh source starts at 0 and paused.
            reset_begin = True

        rate = self.session.playback_rate
        current_rate = self._audio("rate")
        if not current_rate.ok or current_rate.value != rate:
            self._audio("set_rate", rate)

        if reset_begin:
            self._audio("seek", begin)
            self._audio("play")

        self.session.paused_offset_sec = -1.0
        self.session.started = True
        self._set_index(index)
        self._highlight("mark_active", fragment.id)
        self._persist(fragment.id, begin)
        self._set_state(PlaybackState.PLAYING)

        delay = max(end - begin, 0.0) / rate
        logger.debug("Playing %s from %.3f, next advance in %.3fs", fragment.id, begin, delay)
        self._schedule_advance(delay)

    def pause(self) -> None:
        if self.session.state != PlaybackState.PLAYING:
            return
        self._cancel_pending()
        self._audio("pause")
        fragment = self.current_fragment()
        position = self._audio("current_time")
        if position.ok:
            offset = float(position.value)
        else:
            offset = fragment.begin_sec if fragment is not None else 0.0
        self.session.paused_offset_sec = offset
        if fragment is not None:
            self._highlight("mark_paused", fragment.id)
            self._persist(fragment.id, offset)
        self._set_state(PlaybackState.PAUSED)

    def resume(self) -> None:
        if self.session.state != PlaybackState.PAUSED or self.session.current_index < 0:
            return
        self.play(self.session.current_index, True, self.session.paused_offset_sec)

    def stop(self) -> None:
        self._cancel_pending()
        fragment = self.current_fragment()
        if fragment is not None:
            self._highlight("clear_marks", fragment.id)
        self.session.paused_offset_sec = -1.0
        self._set_index(-1)
        self._set_state(PlaybackState.STOPPED)

    def _advance(self) -> None:
        index = self.session.current_index
        if not self.timeline.contains_index(index):
            return
        current = self.timeline.get(index)

        if self.config.single_fragment_mode:
            self._audio("pause")
            # Re-tapping the same fragment then restarts it from its begin.
            self.session.paused_offset_sec = -1.0
            self._highlight("mark_paused", current.id)
            self._set_state(PlaybackState.PAUSED)
            return

        next_index = index + 1
        if next_index < len(self.timeline):
            nxt = self.timeline.get(next_index)
            self._persist(nxt.id, nxt.begin_sec)
            if current.audio_ref == nxt.audio_ref:
                self.play(next_index, False, -1.0)
            else:
                self._load_source(nxt.audio_ref)
                self.play(next_index, True, -1.0)
            return

        # Playback has run off the end of the last file.
        self._audio("pause")
        self._highlight("clear_marks", current.id)
        self._set_index(-1)
        self._set_state(PlaybackState.COMPLETED)
        logger.info("Reached the end of the timeline")
        self.events.emit("completed")

    def set_playback_rate(self, rate: float) -> float:
        rate = clamp_playback_rate(rate)
        self.session.playback_rate = rate
        self._audio("set_rate", rate)
        fragment = self.current_fragment()
        if self.session.state == PlaybackState.PLAYING and fragment is not None:
            position = self._audio("current_time")
            if position.ok:
                remaining = max(fragment.end_sec - float(position.value), 0.0)
            else:
                remaining = fragment.duration
            self._cancel_pending()
            self._schedule_advance(remaining / rate)
        return rate

    def resume_from_bookmark(self) -> None:
        bookmark = None
        if self.persistence is not None:
            result = guarded_call("persistence.load", self.persistence.load)
            if result.ok:
                bookmark = result.value
        if bookmark:
            fragment_id, offset = bookmark
            index = self.timeline.index_of_id(fragment_id)
            if index >= 0:
                self.play(index, True, float(offset))
                return
            logger.debug("Bookmarked fragment %r is not in the timeline", fragment_id)
        self.play(0, True, -1.0)

    def start_if_autostart(self) -> bool:
        if not self.config.autostart_audio or len(self.timeline) == 0:
            return False
        self.play(0, True, -1.0)
        return True

    def snapshot(self) -> dict:
        fragment = self.current_fragment()
        return {
            "state": self.session.state.value,
            "current_index": self.session.current_index,
            "fragment_id": fragment.id if fragment is not None else None,
            "paused_offset": self.session.paused_offset_sec,
            "playback_rate": self.session.playback_rate,
            "outside_tap_count": self.session.outside_tap_count,
            "audio_ref": self.session.loaded_audio_ref,
            "timer_pending": self.session.pending_timer is not None,
            "started": self.session.started,
        }
