from mosync.dom import SoupElement, SoupHighlighter, element_by_id, parse_document

XHTML = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <body id="body">
    <p id="para">
      <span id="f001" class="sentence">First <em>word</em>.</span>
      <a id="jump" href="#f002">Next</a>
      <span id="f002">Second.</span>
    </p>
  </body>
</html>
"""


def test_parse_document_keeps_ids_for_xhtml_and_html() -> None:
    soup = parse_document(XHTML.encode("utf-8"))
    assert element_by_id(soup, "f001") is not None

    soup = parse_document("<p><span id='x'>plain html</span></p>")
    assert element_by_id(soup, "x").name == "span"
    assert element_by_id(soup, "missing") is None
    assert element_by_id(soup, "") is None


def test_soup_element_walks_parents_to_root() -> None:
    soup = parse_document(XHTML)
    word = SoupElement(soup.find("em"))
    assert word.id() is None

    chain = []
    node = word.parent()
    while node is not None:
        chain.append(node.id())
        node = node.parent()
    assert chain == ["f001", "para", "body", None]


def test_soup_element_anchor_and_href() -> None:
    soup = parse_document(XHTML)
    link = element_by_id(soup, "jump")
    assert link.is_anchor_tag() is True
    assert link.href == "#f002"
    assert element_by_id(soup, "f002").is_anchor_tag() is False
    assert element_by_id(soup, "f002").href is None


def test_highlighter_swaps_classes() -> None:
    soup = parse_document(XHTML)
    highlighter = SoupHighlighter(soup)

    highlighter.mark_active("f001")
    assert highlighter.state_of("f001") == "active"
    assert soup.find(id="f001")["class"] == ["sentence", "rbActiveFragment"]

    highlighter.mark_paused("f001")
    assert highlighter.state_of("f001") == "paused"
    assert "rbActiveFragment" not in soup.find(id="f001")["class"]

    highlighter.clear_marks("f001")
    assert highlighter.state_of("f001") is None
    assert soup.find(id="f001")["class"] == ["sentence"]

    highlighter.mark_active("f002")
    highlighter.clear_marks("f002")
    assert "class" not in soup.find(id="f002").attrs


def test_highlighter_custom_classes_and_unknown_ids() -> None:
    soup = parse_document(XHTML)
    highlighter = SoupHighlighter(soup, active_class="now", paused_class="held")
    highlighter.mark_active("nope")
    assert highlighter.state_of("nope") is None

    highlighter.mark_active("f002")
    assert 'class="now"' in highlighter.render()
