from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set, Tuple

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from domain.models import (
    Notice,
    ScreenRecord,
    normalize_platform,
    resolve_screen_reference,
    viewport_for,
)
from domain.services.markup_scan import FLOW_ATTRIBUTE, build_start_tag, scan_tags

TEMPLATES_DIR = Path(__file__).parent / "templates"
PROTOTYPE_TEMPLATE = "prototype.html.j2"
BROKEN_LINK_ATTRIBUTE = "data-broken-link"
INDEX_SECTION_ID = "prototype-index"
DEFAULT_TITLE = "Prototype"
URL_ATTRIBUTES = frozenset({"href", "src", "action", "formaction", "xlink:href", "data", "poster"})
UNSAFE_URL_SCHEMES = ("javascript:", "vbscript:")

_URL_NOISE = re.compile(r"[\x00-\x20]+")

logger = logging.getLogger(__name__)

_environment = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=True,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    undefined=StrictUndefined,
)


@dataclass(frozen=True)
class ComposeOptions:
    stylesheet_href: Optional[str] = None
    highlight_hotspots: bool = False


@dataclass(frozen=True)
class CompositionResult:
    html: str
    root_screen_id: Optional[str]
    notices: List[Notice] = field(default_factory=list)


@dataclass(frozen=True)
class _RenderedScreen:
    id: str
    name: str
    body: str
    is_default: bool


class PrototypeComposer:
    """Builds a single static prototype document out of a project's screens.

    Screens are stacked as sibling sections; the default one is emitted last so
    that `:target ~ .screen-default` can hide it whenever another screen is
    addressed by the URL fragment. The document carries no scripts.
    """

    def __init__(self, options: ComposeOptions | None = None) -> None:
        self.options = options or ComposeOptions()

    def compose(
        self, records: Sequence[ScreenRecord], platform: str, project_name: str | None
    ) -> str:
        return self.compose_with_report(records, platform, project_name).html

    def compose_with_report(
        self, records: Sequence[ScreenRecord], platform: str, project_name: str | None
    ) -> CompositionResult:
        platform = normalize_platform(platform)
        ordered = sorted(records, key=lambda record: (record.sort_order, record.id))
        known_ids = {record.id for record in ordered}
        notices: List[Notice] = []

        roots = [record for record in ordered if record.is_root]
        root = roots[0] if roots else None
        for extra in roots[1:]:
            notices.append(
                Notice(
                    kind="duplicate_root",
                    message=(
                        f"Screen '{extra.name}' is also marked as root; "
                        f"'{roots[0].name}' stays the entry point"
                    ),
                    screen_id=extra.id,
                )
            )
        if ordered and root is None:
            notices.append(
                Notice(
                    kind="missing_entry_point",
                    message="No root screen; the prototype opens on a screen index",
                )
            )

        rendered: List[_RenderedScreen] = []
        for record in ordered:
            body, unsafe_notices = strip_executable_markup(record.id, record.body)
            body, link_notices = rewrite_links(record.id, body, known_ids)
            notices.extend(unsafe_notices)
            notices.extend(link_notices)
            rendered.append(
                _RenderedScreen(
                    id=record.id,
                    name=record.name,
                    body=body,
                    is_default=root is not None and record.id == root.id,
                )
            )
        rendered.sort(key=lambda screen: screen.is_default)

        template = _environment.get_template(PROTOTYPE_TEMPLATE)
        html = template.render(
            title=(project_name or "").strip() or DEFAULT_TITLE,
            platform=platform,
            viewport=viewport_for(platform),
            stylesheet_href=self.options.stylesheet_href,
            highlight_hotspots=self.options.highlight_hotspots,
            screens=rendered,
            show_index=bool(ordered) and root is None,
            index=rendered,
            index_id=INDEX_SECTION_ID,
        )
        for notice in notices:
            logger.debug("Composition notice %s: %s", notice.kind, notice.message)
        return CompositionResult(
            html=html,
            root_screen_id=root.id if root else None,
            notices=notices,
        )


def compose(
    records: Sequence[ScreenRecord],
    platform: str,
    project_name: str | None,
    options: ComposeOptions | None = None,
) -> str:
    return PrototypeComposer(options).compose(records, platform, project_name)


def rewrite_links(
    screen_id: str, body: str, known_ids: Set[str]
) -> Tuple[str, List[Notice]]:
    """Point every navigation link in `body` at a known screen or make it inert.

    `data-flow` takes precedence over an in-document `href` fragment. Only
    anchors get an `href`; other flow-marked elements are validated and, when
    their target is unknown, flagged with `data-broken-link`.
    """
    notices: List[Notice] = []
    replacements: List[Tuple[int, int, str]] = []
    for tag in scan_tags(body):
        href = tag.attr("href") if tag.tag == "a" else None
        internal_href = href if href and href.startswith("#") and len(href) > 1 else None
        candidates = [
            value
            for value in ((tag.attr(FLOW_ATTRIBUTE) or "").strip(), internal_href)
            if value
        ]
        if not candidates:
            continue

        resolved = [resolve_screen_reference(value, known_ids) for value in candidates]
        target = next((value for value in resolved if value in known_ids), None)
        attrs = list(tag.attrs)
        if target is not None:
            if tag.tag != "a" or href == f"#{target}":
                continue
            attrs = _set_attr(attrs, "href", f"#{target}")
        else:
            notices.append(
                Notice(
                    kind="broken_link",
                    message=f"Link in '{screen_id}' points at unknown screen '{resolved[0]}'",
                    screen_id=screen_id,
                    detail={"target": resolved[0], "tag": tag.tag},
                )
            )
            if internal_href is not None:
                attrs = [(name, value) for name, value in attrs if name != "href"]
            if tag.has_attr(BROKEN_LINK_ATTRIBUTE):
                if internal_href is None:
                    continue
            else:
                attrs.append((BROKEN_LINK_ATTRIBUTE, resolved[0]))
        replacements.append((tag.start, tag.end, build_start_tag(tag.tag, attrs, tag.self_closing)))

    return _splice(body, replacements), notices


def _set_attr(
    attrs: List[Tuple[str, Optional[str]]], name: str, value: str
) -> List[Tuple[str, Optional[str]]]:
    updated: List[Tuple[str, Optional[str]]] = []
    replaced = False
    for key, current in attrs:
        if key == name:
            if not replaced:
                updated.append((key, value))
                replaced = True
            continue
        updated.append((key, current))
    if not replaced:
        updated.append((name, value))
    return updated


def strip_executable_markup(screen_id: str, body: str) -> Tuple[str, List[Notice]]:
    """Remove everything in `body` a browser would execute.

    Script elements are dropped with their content. Event handler attributes,
    `srcdoc` and script-scheme URLs are removed from every other tag.
    """
    notices: List[Notice] = []
    replacements: List[Tuple[int, int, str]] = []
    for tag in scan_tags(body):
        if tag.tag == "script":
            replacements.append((tag.start, tag.element_end or tag.end, ""))
            notices.append(_executable_notice(screen_id, tag.tag, ["script"]))
            continue
        removed = [name for name, value in tag.attrs if _is_executable_attr(name, value)]
        if not removed:
            continue
        attrs = [(name, value) for name, value in tag.attrs if name not in removed]
        replacements.append((tag.start, tag.end, build_start_tag(tag.tag, attrs, tag.self_closing)))
        notices.append(_executable_notice(screen_id, tag.tag, removed))
    return _splice(body, replacements), notices


def _is_executable_attr(name: str, value: Optional[str]) -> bool:
    if name.startswith("on") or name == "srcdoc":
        return True
    if name in URL_ATTRIBUTES and value:
        return _URL_NOISE.sub("", value).lower().startswith(UNSAFE_URL_SCHEMES)
    return False


def _executable_notice(screen_id: str, tag: str, removed: List[str]) -> Notice:
    return Notice(
        kind="executable_markup_removed",
        message=f"Removed executable markup from <{tag}> in '{screen_id}'",
        screen_id=screen_id,
        detail={"tag": tag, "removed": removed},
    )


def _splice(body: str, replacements: List[Tuple[int, int, str]]) -> str:
    if not replacements:
        return body
    parts: List[str] = []
    cursor = 0
    for start, end, text in replacements:
        parts.append(body[cursor:start])
        parts.append(text)
        cursor = end
    parts.append(body[cursor:])
    return "".join(parts)
