from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import List, Optional, Tuple

FLOW_ATTRIBUTE = "data-flow"
FLOW_LABEL_ATTRIBUTE = "data-flow-label"
DESCRIPTOR_MAX_LENGTH = 80
VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "source",
        "track",
        "wbr",
    }
)

RAW_TEXT_ELEMENTS = frozenset({"script"})

_WHITESPACE = re.compile(r"\s+")


@dataclass
class TagOccurrence:
    tag: str
    attrs: List[Tuple[str, Optional[str]]]
    start: int
    end: int
    raw: str
    self_closing: bool = False
    text_parts: List[str] = field(default_factory=list)
    # Offset just past the matching end tag; only set for raw-text elements.
    element_end: Optional[int] = None

    def attr(self, name: str) -> Optional[str]:
        for key, value in self.attrs:
            if key == name:
                return value
        return None

    def has_attr(self, name: str) -> bool:
        return any(key == name for key, _ in self.attrs)

    @property
    def text(self) -> str:
        return _WHITESPACE.sub(" ", "".join(self.text_parts)).strip()


@dataclass(frozen=True)
class FlowElement:
    index: int
    tag: str
    target: str
    descriptor: Optional[str]


class _TagScanner(HTMLParser):
    def __init__(self, source: str, track_text_for: str | None = None) -> None:
        super().__init__(convert_charrefs=True)
        self._source = source
        self._line_offsets = _line_offsets(source)
        self._track_attr = track_text_for
        self._open: List[Tuple[TagOccurrence, int]] = []
        self.open_raw_text: List[TagOccurrence] = []
        self.tags: List[TagOccurrence] = []

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        self._record(tag, attrs, self_closing=False)

    def handle_startendtag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        self._record(tag, attrs, self_closing=True)

    def handle_endtag(self, tag: str) -> None:
        if tag in RAW_TEXT_ELEMENTS:
            for idx in range(len(self.open_raw_text) - 1, -1, -1):
                if self.open_raw_text[idx].tag == tag:
                    occurrence = self.open_raw_text.pop(idx)
                    start = self._offset()
                    close = self._source.find(">", start)
                    occurrence.element_end = len(self._source) if close < 0 else close + 1
                    break
        # Depth counts open same-name descendants; zero means this end tag closes it.
        still_open: List[Tuple[TagOccurrence, int]] = []
        for occurrence, depth in self._open:
            if occurrence.tag != tag:
                still_open.append((occurrence, depth))
            elif depth > 0:
                still_open.append((occurrence, depth - 1))
        self._open = still_open

    def handle_data(self, data: str) -> None:
        for occurrence, _ in self._open:
            occurrence.text_parts.append(data)

    def _record(
        self, tag: str, attrs: List[Tuple[str, Optional[str]]], self_closing: bool
    ) -> None:
        raw = self.get_starttag_text() or ""
        start = self._offset()
        occurrence = TagOccurrence(
            tag=tag,
            attrs=list(attrs),
            start=start,
            end=start + len(raw),
            raw=raw,
            self_closing=self_closing,
        )
        self.tags.append(occurrence)
        if tag in RAW_TEXT_ELEMENTS and not self_closing:
            self.open_raw_text.append(occurrence)

        # Nested same-name tags inside a tracked element deepen its close count.
        for idx, (tracked, depth) in enumerate(self._open):
            if tracked.tag == tag and not self_closing and tag not in VOID_ELEMENTS:
                self._open[idx] = (tracked, depth + 1)
        if (
            self._track_attr
            and occurrence.has_attr(self._track_attr)
            and not self_closing
            and tag not in VOID_ELEMENTS
        ):
            self._open.append((occurrence, 0))

    def _offset(self) -> int:
        line, column = self.getpos()
        return self._line_offsets[line - 1] + column


def _line_offsets(source: str) -> List[int]:
    offsets = [0]
    for idx, char in enumerate(source):
        if char == "\n":
            offsets.append(idx + 1)
    return offsets


def scan_tags(markup: str, track_text_for: str | None = None) -> List[TagOccurrence]:
    scanner = _TagScanner(markup, track_text_for=track_text_for)
    scanner.feed(markup)
    scanner.close()
    for occurrence in scanner.open_raw_text:
        occurrence.element_end = len(markup)
    return scanner.tags


def flow_elements(markup: str) -> List[FlowElement]:
    elements: List[FlowElement] = []
    flow_tags = [
        tag
        for tag in scan_tags(markup, track_text_for=FLOW_ATTRIBUTE)
        if tag.has_attr(FLOW_ATTRIBUTE)
    ]
    for index, tag in enumerate(flow_tags):
        elements.append(
            FlowElement(
                index=index,
                tag=tag.tag,
                target=(tag.attr(FLOW_ATTRIBUTE) or "").strip(),
                descriptor=describe_element(tag),
            )
        )
    return elements


def describe_element(tag: TagOccurrence) -> Optional[str]:
    for name in (FLOW_LABEL_ATTRIBUTE, "aria-label", "title", "alt"):
        value = (tag.attr(name) or "").strip()
        if value:
            return _truncate(value)
    text = tag.text
    if text:
        return _truncate(text)
    element_id = (tag.attr("id") or "").strip()
    if element_id:
        return f"{tag.tag}#{element_id}"
    return None


def build_start_tag(tag: str, attrs: List[Tuple[str, Optional[str]]], self_closing: bool) -> str:
    parts = [tag]
    for name, value in attrs:
        if value is None:
            parts.append(name)
        else:
            parts.append(f'{name}="{html.escape(value, quote=True)}"')
    closer = " />" if self_closing else ">"
    return "<" + " ".join(parts) + closer


def _truncate(value: str) -> str:
    value = _WHITESPACE.sub(" ", value).strip()
    if len(value) <= DESCRIPTOR_MAX_LENGTH:
        return value
    return value[: DESCRIPTOR_MAX_LENGTH - 1].rstrip() + "…"
