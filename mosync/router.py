from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import unquote

from .collaborators import ElementHandle
from .config import OverlayConfig
from .controller import PlaybackController

logger = logging.getLogger(__name__)


class OutsideTapAction(Protocol):
    def execute(self, controller: PlaybackController) -> None:
        ...


@dataclass(frozen=True)
class PauseAction:
    def execute(self, controller: PlaybackController) -> None:
        controller.pause()


@dataclass(frozen=True)
class StopAction:
    """Pause the audio and clear the last fragment's highlight."""

    def execute(self, controller: PlaybackController) -> None:
        controller.pause()
        controller.stop()


@dataclass(frozen=True)
class ResumeOrPauseAction:
    """Play/pause button behaviour.

    With the audio paused and resuming allowed, playback resumes from the
    paused offset, or from the stored bookmark when nothing has been played
    yet. Otherwise playback is paused.
    """

    def execute(self, controller: PlaybackController) -> None:
        can_resume = controller.config.outside_taps_can_resume
        if can_resume and controller.audio_is_paused():
            if controller.current_index < 0:
                controller.resume_from_bookmark()
            else:
                controller.play(
                    controller.current_index,
                    True,
                    controller.session.paused_offset_sec,
                )
            return
        controller.pause()


@dataclass(frozen=True)
class JumpToFragmentAction:
    fragment_id: str

    def execute(self, controller: PlaybackController) -> None:
        index = controller.timeline.index_of_id(self.fragment_id)
        controller.pause()
        if index < 0:
            logger.debug("Link target %r is not a fragment", self.fragment_id)
            return
        controller.play(index, True, -1.0)


def href_fragment(href: Optional[str]) -> Optional[str]:
    if not href or "#" not in href:
        return None
    fragment = unquote(href.split("#", 1)[1]).strip()
    return fragment or None


class TouchRouter:
    def __init__(self, controller: PlaybackController) -> None:
        self.controller = controller

    @property
    def config(self) -> OverlayConfig:
        return self.controller.config

    def default_outside_action(self) -> OutsideTapAction:
        if self.config.outside_taps_clear:
            return StopAction()
        return PauseAction()

    def resolve_fragment(
        self, element: Optional[ElementHandle], ignore_anchors: Optional[bool] = None
    ) -> int:
        """Index of the fragment enclosing ``element`` (inclusive), or -1."""
        if element is None:
            return -1
        if ignore_anchors is None:
            ignore_anchors = self.config.ignore_taps_on_anchors
        if ignore_anchors and element.is_anchor_tag():
            return -1
        timeline = self.controller.timeline
        node: Optional[ElementHandle] = element
        while node is not None:
            index = timeline.index_of_id(node.id())
            if index >= 0:
                return index
            node = node.parent()
        return -1

    def on_interaction(
        self,
        element: Optional[ElementHandle],
        action: Optional[OutsideTapAction] = None,
    ) -> int:
        """Route one tap; returns the touched fragment index or -1."""
        controller = self.controller
        touched = self.resolve_fragment(element)
        if touched >= 0:
            controller.reset_outside_taps()
            if touched == controller.current_index:
                if controller.audio_is_paused():
                    controller.play(touched, True, controller.session.paused_offset_sec)
                else:
                    controller.pause()
            else:
                controller.play(touched, True, -1.0)
            return touched

        threshold = self.config.outside_taps_threshold
        if threshold <= 0:
            return -1
        count = controller.register_outside_tap()
        if count >= threshold:
            chosen = action or self.default_outside_action()
            logger.debug("Outside tap threshold reached, running %s", type(chosen).__name__)
            chosen.execute(controller)
            controller.reset_outside_taps()
        return -1
