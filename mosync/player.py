from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel

from .collaborators import (
    AudioSink,
    JsonBookmarkStore,
    PersistenceSink,
    VirtualAudioSink,
    guarded_call,
)
from .config import ConfigError, OverlayConfig
from .controller import PlaybackController
from .dom import SoupHighlighter, element_by_id, parse_document
from .router import (
    JumpToFragmentAction,
    OutsideTapAction,
    ResumeOrPauseAction,
    TouchRouter,
    href_fragment,
)
from .session import PlaybackState
from .timeline import FragmentTimeline
from .timers import AsyncioTimerService, TimerService

logger = logging.getLogger(__name__)

PLAY_BUTTON_ID = "play_button"


class TapPayload(BaseModel):
    target_id: Optional[str] = None
    tag: Optional[str] = None
    href: Optional[str] = None
    event: Optional[str] = None


class PlayPayload(BaseModel):
    index: Optional[int] = None
    fragment_id: Optional[str] = None
    begin_at: float = -1.0


class RatePayload(BaseModel):
    rate: float


@dataclass
class OverlayHost:
    timeline: FragmentTimeline
    controller: PlaybackController
    router: TouchRouter
    highlighter: SoupHighlighter
    persistence: Optional[PersistenceSink]


def _no_store(data: dict) -> JSONResponse:
    return JSONResponse(data, headers={"Cache-Control": "no-store"})


def outside_action_for(tag: str, target_id: str, href: Optional[str]) -> Optional[OutsideTapAction]:
    """Pick the outside-tap action from the tapped element's kind."""
    tag = (tag or "").lower()
    if tag == "button" and (target_id or "").lower() == PLAY_BUTTON_ID:
        return ResumeOrPauseAction()
    if tag == "a":
        fragment_id = href_fragment(href)
        if fragment_id:
            return JumpToFragmentAction(fragment_id)
    return None


def file_durations(timeline: FragmentTimeline) -> dict[str, float]:
    """End of the last fragment of each audio file, used as its length."""
    durations: dict[str, float] = {}
    for ref in timeline.audio_refs():
        last = timeline.last_fragment_for(ref)
        if last is not None:
            durations[ref] = last.end_sec
    return durations


def build_host(
    document_markup: bytes | str,
    timeline: FragmentTimeline,
    config: Optional[OverlayConfig] = None,
    persistence: Optional[PersistenceSink] = None,
    timers: Optional[TimerService] = None,
    audio: Optional[AudioSink] = None,
) -> OverlayHost:
    config = config or OverlayConfig()
    soup = parse_document(document_markup)
    highlighter = SoupHighlighter(
        soup,
        active_class=config.active_fragment_class_name,
        paused_class=config.paused_fragment_class_name,
    )
    controller = PlaybackController(
        timeline,
        audio or VirtualAudioSink(time.monotonic, durations=file_durations(timeline)),
        timers or AsyncioTimerService(),
        highlighter=highlighter,
        persistence=persistence,
        config=config,
    )
    missing = [fid for fid in timeline.ids if element_by_id(soup, fid) is None]
    if missing:
        logger.warning("%d fragment ids have no element in the document", len(missing))
    return OverlayHost(
        timeline=timeline,
        controller=controller,
        router=TouchRouter(controller),
        highlighter=highlighter,
        persistence=persistence,
    )


def create_app(
    document_path: Path,
    timeline: FragmentTimeline,
    config: Optional[OverlayConfig] = None,
    bookmark_path: Optional[Path] = None,
    *,
    timers: Optional[TimerService] = None,
    audio: Optional[AudioSink] = None,
) -> FastAPI:
    document_path = Path(document_path)
    persistence = (
        JsonBookmarkStore(bookmark_path, book_id=document_path.stem)
        if bookmark_path is not None
        else None
    )
    host = build_host(
        document_path.read_bytes(),
        timeline,
        config=config,
        persistence=persistence,
        timers=timers,
        audio=audio,
    )
    controller = host.controller

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if controller.start_if_autostart():
            logger.info("Autostarted playback at the first fragment")
        yield
        controller.stop()

    app = FastAPI(lifespan=lifespan)
    app.state.host = host

    def _state(extra: Optional[dict] = None) -> JSONResponse:
        payload = controller.snapshot()
        if extra:
            payload.update(extra)
        return _no_store(payload)

    @app.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        return HTMLResponse(host.highlighter.render())

    @app.get("/api/state")
    async def get_state() -> JSONResponse:
        return _state()

    @app.get("/api/timeline")
    async def get_timeline() -> JSONResponse:
        return _no_store({"fragments": host.timeline.to_records()})

    @app.get("/api/config")
    async def get_config() -> JSONResponse:
        return _no_store(controller.config.to_dict())

    @app.post("/api/tap")
    async def tap(payload: TapPayload) -> JSONResponse:
        if payload.event and payload.event not in controller.config.associated_events:
            logger.debug("Ignoring %s tap, not an associated event", payload.event)
            return _state({"touched_index": -1, "ignored": True})
        target_id = (payload.target_id or "").strip()
        element = element_by_id(host.highlighter.soup, target_id) if target_id else None
        tag = payload.tag or (element.name if element is not None else "")
        href = payload.href or (element.href if element is not None else None)
        action = outside_action_for(tag, target_id, href)
        touched = host.router.on_interaction(element, action)
        return _state({"touched_index": touched, "ignored": False})

    @app.post("/api/play")
    async def play(payload: PlayPayload) -> JSONResponse:
        if payload.fragment_id is not None:
            index = host.timeline.index_of_id(payload.fragment_id)
            if index < 0:
                raise HTTPException(status_code=404, detail="Fragment not found.")
        elif payload.index is not None:
            index = payload.index
            if not host.timeline.contains_index(index):
                raise HTTPException(status_code=404, detail="Fragment index out of range.")
        else:
            raise HTTPException(status_code=400, detail="Missing index or fragment_id.")
        controller.play(index, True, payload.begin_at)
        return _state()

    @app.post("/api/pause")
    async def pause() -> JSONResponse:
        controller.pause()
        return _state()

    @app.post("/api/resume")
    async def resume() -> JSONResponse:
        if controller.state == PlaybackState.PAUSED:
            controller.resume()
        elif controller.state != PlaybackState.PLAYING:
            controller.resume_from_bookmark()
        return _state()

    @app.post("/api/stop")
    async def stop() -> JSONResponse:
        controller.pause()
        controller.stop()
        return _state()

    @app.post("/api/rate")
    async def set_rate(payload: RatePayload) -> JSONResponse:
        try:
            controller.set_playback_rate(payload.rate)
        except ConfigError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _state()

    @app.get("/api/bookmark")
    async def get_bookmark() -> JSONResponse:
        bookmark = None
        if persistence is not None:
            result = guarded_call("persistence.load", persistence.load)
            bookmark = result.value if result.ok else None
        if bookmark is None:
            return _no_store({"exists": False, "fragment_id": None, "offset": None})
        fragment_id, offset = bookmark
        return _no_store({"exists": True, "fragment_id": fragment_id, "offset": offset})

    return app


def run(
    document_path: Path,
    timeline: FragmentTimeline,
    host: str,
    port: int,
    config: Optional[OverlayConfig] = None,
    bookmark_path: Optional[Path] = None,
    verbose: bool = False,
) -> None:
    import uvicorn

    from .logging_utils import build_uvicorn_log_config

    app = create_app(document_path, timeline, config=config, bookmark_path=bookmark_path)
    uvicorn.run(app, host=host, port=port, log_config=build_uvicorn_log_config(verbose))

