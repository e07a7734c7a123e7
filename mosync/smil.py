from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from posixpath import dirname as posix_dirname
from posixpath import join as posix_join
from posixpath import normpath as posix_normpath
from typing import Dict, Iterable, List, Optional
from urllib.parse import unquote

from bs4 import BeautifulSoup
from ebooklib import epub

logger = logging.getLogger(__name__)

SMIL_MEDIA_TYPE = "application/smil+xml"

_FULL_CLOCK_RE = re.compile(r"^(\d+):([0-5]?\d):([0-5]?\d(?:\.\d+)?)$")
_PARTIAL_CLOCK_RE = re.compile(r"^([0-5]?\d):([0-5]?\d(?:\.\d+)?)$")
_TIMECOUNT_RE = re.compile(r"^(\d+(?:\.\d+)?)(h|min|s|ms)?$")
_METRIC_SECONDS = {"h": 3600.0, "min": 60.0, "s": 1.0, "ms": 0.001, None: 1.0}


def parse_clock_value(text: str) -> float:
    value = str(text or "").strip()
    if not value:
        raise ValueError("Empty clock value")
    match = _FULL_CLOCK_RE.match(value)
    if match:
        hours, minutes, seconds = match.groups()
        return int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    match = _PARTIAL_CLOCK_RE.match(value)
    if match:
        minutes, seconds = match.groups()
        return int(minutes) * 60 + float(seconds)
    match = _TIMECOUNT_RE.match(value)
    if match:
        number, metric = match.groups()
        return float(number) * _METRIC_SECONDS[metric]
    raise ValueError(f"Invalid clock value: {text!r}")


def _resolve_href(base_href: str, href: str) -> str:
    href = unquote(href)
    if not base_href:
        return posix_normpath(href)
    return posix_normpath(posix_join(posix_dirname(base_href), href))


def _split_src(src: str) -> tuple[str, str]:
    if "#" in src:
        path, fragment = src.split("#", 1)
        return path, unquote(fragment)
    return src, ""


def _parse_soup(content: bytes | str) -> BeautifulSoup:
    return BeautifulSoup(content, "lxml-xml")


def _smil_pars(content: bytes | str, base_href: str = "") -> List[tuple[str, dict]]:
    soup = _parse_soup(content)
    entries: List[tuple[str, dict]] = []
    open_ends: List[dict] = []
    for par in soup.find_all("par"):
        text = par.find("text")
        audio = par.find("audio")
        if text is None or audio is None:
            logger.debug("Skipping par without text or audio: %s", par.get("id"))
            continue
        doc_path, fragment_id = _split_src(str(text.get("src") or ""))
        audio_src = str(audio.get("src") or "").strip()
        if not fragment_id or not audio_src:
            continue
        try:
            begin = parse_clock_value(audio.get("clipBegin") or "0")
        except ValueError as exc:
            logger.warning("Skipping fragment %s: %s", fragment_id, exc)
            continue
        record = {
            "id": fragment_id,
            "begin": round(begin, 3),
            "end": None,
            "file": _resolve_href(base_href, audio_src),
        }
        raw_end = audio.get("clipEnd")
        if raw_end:
            try:
                record["end"] = round(parse_clock_value(raw_end), 3)
            except ValueError as exc:
                logger.warning("Fragment %s has a bad clipEnd: %s", fragment_id, exc)
        document = _resolve_href(base_href, doc_path) if doc_path else base_href
        entries.append((document, record))

    # A missing clipEnd runs until the next clip of the same file starts.
    for idx, (_document, record) in enumerate(entries):
        if record["end"] is not None:
            continue
        record["end"] = record["begin"]
        for _next_doc, following in entries[idx + 1 :]:
            if following["file"] == record["file"]:
                record["end"] = following["begin"]
                break
        open_ends.append(record)
    if open_ends:
        logger.debug("Filled %d open clip ends", len(open_ends))
    return entries


def parse_smil(content: bytes | str, base_href: str = "") -> List[dict]:
    return [record for _document, record in _smil_pars(content, base_href)]


def read_epub_overlays(path: Path) -> Dict[str, List[dict]]:
    """Map each content document of an EPUB to its media overlay records."""
    book = epub.read_epub(str(path))
    overlays: Dict[str, List[dict]] = {}
    for item in book.get_items():
        if getattr(item, "media_type", "") != SMIL_MEDIA_TYPE:
            continue
        name = item.get_name()
        for document, record in _smil_pars(item.get_content(), base_href=name):
            overlays.setdefault(document, []).append(record)
    return overlays


def _records_from_payload(data: object, source: Path) -> List[dict]:
    if isinstance(data, dict):
        data = data.get("fragments")
    if not isinstance(data, list):
        raise ValueError(f"Timeline must be a list of fragments: {source}")
    return [entry for entry in data if isinstance(entry, dict)]


def load_records(path: Path) -> List[dict]:
    path = Path(path)
    if path.suffix.lower() == ".smil":
        return parse_smil(path.read_bytes(), base_href=path.name)
    data = json.loads(path.read_text(encoding="utf-8"))
    return _records_from_payload(data, path)


def dump_records(records: Iterable[dict], path: Path, source: Optional[str] = None) -> Path:
    path = Path(path)
    payload: dict = {"fragments": [dict(record) for record in records]}
    if source:
        payload["source"] = source
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    return path
