from __future__ import annotations

from typing import List, Optional

from bs4 import BeautifulSoup, Tag


def parse_document(markup: bytes | str) -> BeautifulSoup:
    if isinstance(markup, bytes):
        head = markup.lstrip()[:512].lower()
        parser = (
            "lxml-xml"
            if (head.startswith(b"<?xml") or b"xmlns=" in head)
            else "lxml"
        )
    else:
        head = str(markup).lstrip()[:512].lower()
        parser = "lxml-xml" if (head.startswith("<?xml") or "xmlns=" in head) else "lxml"
    return BeautifulSoup(markup, parser)


class SoupElement:
    """Element handle over a bs4 tag, as used by ``TouchRouter``."""

    def __init__(self, tag: Tag) -> None:
        self.tag = tag

    def __repr__(self) -> str:
        return f"SoupElement(<{self.tag.name} id={self.id()!r}>)"

    def id(self) -> Optional[str]:
        value = self.tag.get("id")
        return str(value) if value else None

    def parent(self) -> Optional["SoupElement"]:
        parent = self.tag.parent
        if parent is None or isinstance(parent, BeautifulSoup):
            return None
        return SoupElement(parent)

    def is_anchor_tag(self) -> bool:
        return (self.tag.name or "").lower() == "a"

    @property
    def name(self) -> str:
        return (self.tag.name or "").lower()

    @property
    def href(self) -> Optional[str]:
        value = self.tag.get("href")
        return str(value) if value else None


def element_by_id(soup: BeautifulSoup, element_id: str) -> Optional[SoupElement]:
    if not element_id:
        return None
    tag = soup.find(attrs={"id": element_id})
    if not isinstance(tag, Tag):
        return None
    return SoupElement(tag)


def _classes(tag: Tag) -> List[str]:
    classes = tag.get("class", [])
    if isinstance(classes, str):
        classes = classes.split()
    return list(classes)


def _set_classes(tag: Tag, classes: List[str]) -> None:
    if classes:
        tag["class"] = classes
    elif "class" in tag.attrs:
        del tag["class"]


class SoupHighlighter:
    """Applies the active/paused CSS classes to fragment elements."""

    def __init__(
        self,
        soup: BeautifulSoup,
        active_class: str = "rbActiveFragment",
        paused_class: str = "rbPausedFragment",
    ) -> None:
        self.soup = soup
        self.active_class = active_class
        self.paused_class = paused_class

    def _tag(self, fragment_id: str) -> Optional[Tag]:
        element = element_by_id(self.soup, fragment_id)
        return element.tag if element is not None else None

    def _swap(self, fragment_id: str, remove: List[str], add: Optional[str]) -> None:
        tag = self._tag(fragment_id)
        if tag is None:
            return
        classes = [name for name in _classes(tag) if name not in remove]
        if add and add not in classes:
            classes.append(add)
        _set_classes(tag, classes)

    def mark_active(self, fragment_id: str) -> None:
        self._swap(fragment_id, [self.paused_class], self.active_class)

    def mark_paused(self, fragment_id: str) -> None:
        self._swap(fragment_id, [self.active_class], self.paused_class)

    def clear_marks(self, fragment_id: str) -> None:
        self._swap(fragment_id, [self.active_class, self.paused_class], None)

    def state_of(self, fragment_id: str) -> Optional[str]:
        tag = self._tag(fragment_id)
        if tag is None:
            return None
        classes = _classes(tag)
        if self.active_class in classes:
            return "active"
        if self.paused_class in classes:
            return "paused"
        return None

    def render(self) -> str:
        return str(self.soup)
