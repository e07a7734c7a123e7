import json
from pathlib import Path

import pytest
from ebooklib import epub

from mosync import smil as smil_util
from mosync.timeline import FragmentTimeline

SMIL = b"""<?xml version="1.0" encoding="UTF-8"?>
<smil xmlns="http://www.w3.org/ns/SMIL" xmlns:epub="http://www.idpf.org/2007/ops" version="3.0">
  <body>
    <seq id="seq1" epub:textref="chapter-1.xhtml">
      <par id="p1">
        <text src="chapter-1.xhtml#f001"/>
        <audio src="../audio/chapter-1.mp3" clipBegin="0:00:00.000" clipEnd="0:00:02.500"/>
      </par>
      <par id="p2">
        <text src="chapter-1.xhtml#f002"/>
        <audio src="../audio/chapter-1.mp3" clipBegin="2.5s" clipEnd="00:04.000"/>
      </par>
      <par id="p3">
        <text src="chapter-1.xhtml#f003"/>
        <audio src="../audio/chapter-1.mp3" clipBegin="4000ms"/>
      </par>
      <par id="p4">
        <text src="chapter-1.xhtml#f004"/>
        <audio src="../audio/chapter-1.mp3" clipBegin="5.25" clipEnd="6"/>
      </par>
      <par id="orphan">
        <text src="chapter-1.xhtml#f005"/>
      </par>
    </seq>
  </body>
</smil>
"""


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("0:00:02.500", 2.5),
        ("1:02:03", 3723.0),
        ("02:03.5", 123.5),
        ("12.5s", 12.5),
        ("1500ms", 1.5),
        ("2min", 120.0),
        ("1h", 3600.0),
        ("7", 7.0),
        (" 3.25 ", 3.25),
    ],
)
def test_parse_clock_value(text: str, expected: float) -> None:
    assert smil_util.parse_clock_value(text) == pytest.approx(expected)


@pytest.mark.parametrize("text", ["", "abc", "1:2:3:4", "-1s", "10 parsecs"])
def test_parse_clock_value_rejects_garbage(text: str) -> None:
    with pytest.raises(ValueError):
        smil_util.parse_clock_value(text)


def test_parse_smil_builds_contiguous_records() -> None:
    records = smil_util.parse_smil(SMIL, base_href="smil/chapter-1.smil")
    assert [record["id"] for record in records] == ["f001", "f002", "f003", "f004"]
    assert records[0] == {"id": "f001", "begin": 0.0, "end": 2.5, "file": "audio/chapter-1.mp3"}
    assert records[1]["begin"] == 2.5
    assert records[1]["end"] == 4.0
    # Missing clipEnd runs to the next clip of the same file.
    assert records[2]["begin"] == 4.0
    assert records[2]["end"] == 5.25

    timeline = FragmentTimeline.from_records(records)
    assert len(timeline) == 4


def test_load_and_dump_records(tmp_path: Path) -> None:
    smil_path = tmp_path / "chapter.smil"
    smil_path.write_bytes(SMIL)
    records = smil_util.load_records(smil_path)
    assert records[0]["file"] == "../audio/chapter-1.mp3"

    out_path = smil_util.dump_records(records, tmp_path / "out" / "chapter.json", source="chapter.smil")
    payload = json.loads(out_path.read_text(encoding="utf-8"))
    assert payload["source"] == "chapter.smil"
    assert smil_util.load_records(out_path) == records


def test_load_records_accepts_plain_list(tmp_path: Path) -> None:
    path = tmp_path / "timeline.json"
    path.write_text(
        json.dumps([{"id": "a", "begin": 0, "end": 1, "file": "a.mp3"}, "junk"]),
        encoding="utf-8",
    )
    assert smil_util.load_records(path) == [{"id": "a", "begin": 0, "end": 1, "file": "a.mp3"}]


def test_load_records_rejects_other_shapes(tmp_path: Path) -> None:
    path = tmp_path / "timeline.json"
    path.write_text(json.dumps({"items": []}), encoding="utf-8")
    with pytest.raises(ValueError):
        smil_util.load_records(path)


def _write_overlay_epub(epub_path: Path) -> None:
    book = epub.EpubBook()
    book.set_identifier("overlay-book")
    book.set_title("Overlay Book")
    book.set_language("en")

    chapters = []
    for idx in (1, 2):
        chapter = epub.EpubHtml(title=f"Chapter {idx}", file_name=f"chapter-{idx}.xhtml", lang="en")
        chapter.content = (
            f'<h1>Chapter {idx}</h1><p><span id="c{idx}-f1">One.</span>'
            f'<span id="c{idx}-f2">Two.</span></p>'
        )
        book.add_item(chapter)
        chapters.append(chapter)

        smil = f"""<?xml version="1.0" encoding="UTF-8"?>
<smil xmlns="http://www.w3.org/ns/SMIL" version="3.0"><body><seq>
<par><text src="chapter-{idx}.xhtml#c{idx}-f1"/><audio src="audio/ch{idx}.mp3" clipBegin="0s" clipEnd="1.5s"/></par>
<par><text src="chapter-{idx}.xhtml#c{idx}-f2"/><audio src="audio/ch{idx}.mp3" clipBegin="1.5s" clipEnd="3s"/></par>
</seq></body></smil>"""
        book.add_item(
            epub.EpubItem(
                uid=f"mo-{idx}",
                file_name=f"chapter-{idx}.smil",
                media_type="application/smil+xml",
                content=smil.encode("utf-8"),
            )
        )

    book.toc = tuple(chapters)
    book.spine = ["nav", *chapters]
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    epub.write_epub(str(epub_path), book)


def test_read_epub_overlays_groups_by_document(tmp_path: Path) -> None:
    epub_path = tmp_path / "overlay.epub"
    _write_overlay_epub(epub_path)

    overlays = smil_util.read_epub_overlays(epub_path)
    assert sorted(overlays) == ["chapter-1.xhtml", "chapter-2.xhtml"]
    records = overlays["chapter-2.xhtml"]
    assert [record["id"] for record in records] == ["c2-f1", "c2-f2"]
    assert records[1] == {"id": "c2-f2", "begin": 1.5, "end": 3.0, "file": "audio/ch2.mp3"}
    assert len(FragmentTimeline.from_records(records)) == 2
