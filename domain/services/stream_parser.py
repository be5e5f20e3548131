from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from domain.models import (
    DEFAULT_SCREEN_NAME,
    Notice,
    NoticeKind,
    ScreenMode,
    ScreenRecord,
    screen_id_for,
)

logger = logging.getLogger(__name__)

MARKER_OPEN = "<!--"
MARKER_CLOSE = "-->"
ROOT_TOKEN = "ROOT"
HEADER_FIELDS = {"PROJECT_NAME": "name", "PROJECT_ICON": "icon"}
SCREEN_OPEN_MODES: Dict[str, ScreenMode] = {"SCREEN_START": "create", "SCREEN_EDIT": "replace"}

_DIRECTIVE = re.compile(
    r"(PROJECT_NAME|PROJECT_ICON|MESSAGE|SCREEN_START|SCREEN_EDIT|SCREEN_END)\b\s*:?\s*(.*)",
    re.DOTALL,
)
_POSITION = re.compile(r"\s*([+-]?\d+)\s*,\s*([+-]?\d+)\s*")


class ParserStateError(RuntimeError):
    pass


# -- events ----------------------------------------------------------------


@dataclass(frozen=True)
class HeaderUpdated:
    field: str
    value: str


@dataclass(frozen=True)
class MessageEmitted:
    text: str


@dataclass(frozen=True)
class ScreenOpened:
    screen_id: str
    name: str
    mode: ScreenMode
    grid_column: Optional[int]
    grid_row: Optional[int]
    is_root: bool
    position_defaulted: bool = False


@dataclass(frozen=True)
class ScreenBodyAppended:
    screen_id: str
    text: str


@dataclass(frozen=True)
class ScreenClosed:
    record: ScreenRecord
    mode: ScreenMode
    position_explicit: bool = True


@dataclass(frozen=True)
class NoticeRaised:
    notice: Notice


ParseEvent = Union[
    HeaderUpdated, MessageEmitted, ScreenOpened, ScreenBodyAppended, ScreenClosed, NoticeRaised
]


# -- parser states ----------------------------------------------------------


@dataclass(frozen=True)
class OpenScreen:
    screen_id: str
    name: str
    mode: ScreenMode
    grid_column: Optional[int]
    grid_row: Optional[int]
    is_root: bool
    position_explicit: bool


@dataclass(frozen=True)
class Scanning:
    label = "SCANNING"


@dataclass
class InScreen:
    screen: OpenScreen
    body: List[str] = field(default_factory=list)
    label = "IN_SCREEN"


@dataclass(frozen=True)
class AwaitingMarker:
    resume: Union[Scanning, InScreen]
    label = "AWAITING_MARKER"


ParserState = Union[Scanning, InScreen, AwaitingMarker]


@dataclass(frozen=True)
class ParseResult:
    header: Dict[str, str]
    records: List[ScreenRecord]
    closed: List[ScreenClosed]
    messages: List[str]
    notices: List[Notice]
    events: List[ParseEvent]


def parse_screen_header(payload: str) -> Tuple[str, Optional[Tuple[int, int]], bool]:
    """Split `Name [col,row] [ROOT]` into its parts.

    Bracket tokens are peeled off the right end; an unrecognised bracket group
    stops peeling and stays part of the name.
    """
    remaining = payload.strip()
    position: Optional[Tuple[int, int]] = None
    is_root = False
    while remaining.endswith("]"):
        start = remaining.rfind("[")
        if start < 0:
            break
        token = remaining[start + 1 : -1]
        match = _POSITION.fullmatch(token)
        if match and position is None:
            position = (int(match.group(1)), int(match.group(2)))
        elif token.strip().upper() == ROOT_TOKEN and not is_root:
            is_root = True
        else:
            break
        remaining = remaining[:start].rstrip()
    return remaining, position, is_root


def _partial_open_suffix(text: str) -> int:
    for size in range(len(MARKER_OPEN) - 1, 0, -1):
        if text.endswith(MARKER_OPEN[:size]):
            return size
    return 0


class IncrementalScreenParser:
    """Resumable parser over a chunked generation stream.

    Each `feed` appends to the buffer and extracts every complete
    marker-delimited unit, left to right. A marker split across chunks stays
    buffered until its closing `-->` arrives. `close` is the explicit
    end-of-stream signal.
    """

    def __init__(
        self,
        *,
        occupied_positions: Iterable[Tuple[int, int]] = (),
        known_screen_ids: Iterable[str] = (),
        first_sort_order: int = 0,
        expect_root: bool = True,
    ) -> None:
        self._buffer = ""
        self._state: ParserState = Scanning()
        self._occupied: Set[Tuple[int, int]] = set(occupied_positions)
        self._known_ids: Set[str] = set(known_screen_ids)
        self._stream_ids: Set[str] = set()
        self._next_sort_order = first_sort_order
        self._expect_root = expect_root
        self._root_id: Optional[str] = None
        self._header: Dict[str, str] = {}
        self._records: List[ScreenRecord] = []
        self._closed_events: List[ScreenClosed] = []
        self._messages: List[str] = []
        self._notices: List[Notice] = []
        self._busy = False
        self._finished = False

    @property
    def state(self) -> ParserState:
        return self._state

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def root_screen_id(self) -> Optional[str]:
        return self._root_id

    @property
    def header(self) -> Dict[str, str]:
        return dict(self._header)

    @property
    def records(self) -> List[ScreenRecord]:
        return list(self._records)

    @property
    def messages(self) -> List[str]:
        return list(self._messages)

    @property
    def notices(self) -> List[Notice]:
        return list(self._notices)

    def feed(self, chunk: str) -> List[ParseEvent]:
        self._enter()
        try:
            self._buffer += chunk
            return self._drain()
        finally:
            self._busy = False

    def close(self) -> List[ParseEvent]:
        self._enter()
        try:
            events = self._flush()
            self._finished = True
            return events
        finally:
            self._busy = False

    def result(self, events: List[ParseEvent] | None = None) -> ParseResult:
        return ParseResult(
            header=self.header,
            records=self.records,
            closed=list(self._closed_events),
            messages=self.messages,
            notices=self.notices,
            events=list(events or []),
        )

    def _enter(self) -> None:
        if self._finished:
            raise ParserStateError("Parser already received end of stream")
        if self._busy:
            raise ParserStateError("Parser is not re-entrant: a chunk is still being processed")
        self._busy = True

    def _drain(self) -> List[ParseEvent]:
        events: List[ParseEvent] = []
        while True:
            state = self._state
            if isinstance(state, AwaitingMarker):
                end = self._buffer.find(MARKER_CLOSE, len(MARKER_OPEN))
                if end < 0:
                    return events
                raw = self._buffer[: end + len(MARKER_CLOSE)]
                inner = self._buffer[len(MARKER_OPEN) : end]
                self._buffer = self._buffer[end + len(MARKER_CLOSE) :]
                self._state = state.resume
                events.extend(self._handle_comment(raw, inner))
                continue

            start = self._buffer.find(MARKER_OPEN)
            if start < 0:
                keep = _partial_open_suffix(self._buffer)
                cut = len(self._buffer) - keep
                text, self._buffer = self._buffer[:cut], self._buffer[cut:]
                events.extend(self._handle_text(text))
                return events

            events.extend(self._handle_text(self._buffer[:start]))
            self._buffer = self._buffer[start:]
            self._state = AwaitingMarker(resume=state)

    def _flush(self) -> List[ParseEvent]:
        events: List[ParseEvent] = []
        state = self._state
        if isinstance(state, AwaitingMarker):
            fragment, self._buffer = self._buffer, ""
            events.append(
                self._notice(
                    "truncated_generation",
                    "Stream ended inside an unterminated marker",
                    screen_id=state.resume.screen.screen_id
                    if isinstance(state.resume, InScreen)
                    else None,
                    fragment=fragment[:120],
                )
            )
            state = state.resume
            self._state = state
        elif self._buffer:
            text, self._buffer = self._buffer, ""
            events.extend(self._handle_text(text))

        if isinstance(state, InScreen):
            events.append(
                self._notice(
                    "truncated_generation",
                    f"Screen '{state.screen.name}' was not closed before the stream ended",
                    screen_id=state.screen.screen_id,
                )
            )
        self._state = Scanning()

        if self._root_id is None and self._expect_root:
            events.append(
                self._notice(
                    "missing_entry_point",
                    "Generation finished without a [ROOT] screen",
                )
            )
        return events

    def _handle_text(self, text: str) -> List[ParseEvent]:
        if not text:
            return []
        state = self._state
        if isinstance(state, InScreen):
            state.body.append(text)
            return [ScreenBodyAppended(screen_id=state.screen.screen_id, text=text)]
        if text.strip():
            logger.debug("Ignoring %d characters outside of any screen", len(text))
        return []

    def _handle_comment(self, raw: str, inner: str) -> List[ParseEvent]:
        match = _DIRECTIVE.fullmatch(inner.strip())
        if not match:
            return self._handle_text(raw)
        keyword, payload = match.group(1), match.group(2).strip()
        if keyword in HEADER_FIELDS:
            if not payload:
                return []
            self._header[HEADER_FIELDS[keyword]] = payload
            return [HeaderUpdated(field=HEADER_FIELDS[keyword], value=payload)]
        if keyword == "MESSAGE":
            if not payload:
                return []
            self._messages.append(payload)
            return [MessageEmitted(text=payload)]
        if keyword == "SCREEN_END":
            return self._close_screen()
        return self._open_screen(SCREEN_OPEN_MODES[keyword], payload)

    def _open_screen(self, mode: ScreenMode, payload: str) -> List[ParseEvent]:
        events: List[ParseEvent] = []
        state = self._state
        if isinstance(state, InScreen):
            events.extend(self._finalize(state, implicit=True))

        name, position, root_marker = parse_screen_header(payload)
        if not name:
            events.append(
                self._notice("empty_screen_name", "Screen marker without a name", payload=payload)
            )
            name = DEFAULT_SCREEN_NAME
        screen_id = screen_id_for(name)

        if mode == "create" and screen_id in self._stream_ids:
            events.append(
                self._notice(
                    "duplicate_screen_name",
                    f"Screen '{name}' was already created in this stream; treating it as an edit",
                    screen_id=screen_id,
                )
            )
            mode = "replace"
        elif mode == "replace" and screen_id not in self._known_ids | self._stream_ids:
            events.append(
                self._notice(
                    "edit_unknown_screen",
                    f"Edit targets unknown screen '{name}'; it will be created",
                    screen_id=screen_id,
                )
            )

        grid_column: Optional[int]
        grid_row: Optional[int]
        defaulted = False
        if position is not None:
            grid_column, grid_row = position
        elif mode == "replace":
            grid_column = grid_row = None
            events.append(
                self._notice(
                    "missing_grid_position",
                    f"Edit of '{name}' has no grid position; the existing position is kept",
                    screen_id=screen_id,
                )
            )
        else:
            grid_column, grid_row = self._next_free_column(), 0
            defaulted = True
            events.append(
                self._notice(
                    "missing_grid_position",
                    f"Screen '{name}' has no grid position; placed at [{grid_column},0]",
                    screen_id=screen_id,
                    grid_column=grid_column,
                    grid_row=0,
                )
            )
        if grid_column is not None and grid_row is not None:
            self._occupied.add((grid_column, grid_row))

        is_root = False
        if root_marker:
            if self._root_id in (None, screen_id):
                self._root_id = screen_id
                is_root = True
            else:
                events.append(
                    self._notice(
                        "duplicate_root",
                        f"Screen '{name}' is marked [ROOT] but '{self._root_id}' already is",
                        screen_id=screen_id,
                        root_screen_id=self._root_id,
                    )
                )

        screen = OpenScreen(
            screen_id=screen_id,
            name=name,
            mode=mode,
            grid_column=grid_column,
            grid_row=grid_row,
            is_root=is_root,
            position_explicit=position is not None,
        )
        self._state = InScreen(screen=screen)
        events.append(
            ScreenOpened(
                screen_id=screen_id,
                name=name,
                mode=mode,
                grid_column=grid_column,
                grid_row=grid_row,
                is_root=is_root,
                position_defaulted=defaulted,
            )
        )
        return events

    def _close_screen(self) -> List[ParseEvent]:
        state = self._state
        if not isinstance(state, InScreen):
            return [self._notice("stray_screen_end", "SCREEN_END without an open screen")]
        return self._finalize(state, implicit=False)

    def _finalize(self, state: InScreen, implicit: bool) -> List[ParseEvent]:
        screen = state.screen
        events: List[ParseEvent] = []
        if implicit:
            events.append(
                self._notice(
                    "implicit_screen_end",
                    f"Screen '{screen.name}' was closed by the next screen marker",
                    screen_id=screen.screen_id,
                )
            )
        record = ScreenRecord(
            name=screen.name,
            grid_column=screen.grid_column if screen.grid_column is not None else 0,
            grid_row=screen.grid_row if screen.grid_row is not None else 0,
            is_root=screen.is_root,
            body="".join(state.body).strip(),
            sort_order=self._next_sort_order,
        )
        self._next_sort_order += 1
        self._stream_ids.add(record.id)
        self._records.append(record)
        self._state = Scanning()
        closed = ScreenClosed(
            record=record, mode=screen.mode, position_explicit=screen.position_explicit
        )
        self._closed_events.append(closed)
        events.append(closed)
        return events

    def _next_free_column(self) -> int:
        column = 0
        while (column, 0) in self._occupied:
            column += 1
        return column

    def _notice(
        self, kind: NoticeKind, message: str, screen_id: str | None = None, **detail: Any
    ) -> NoticeRaised:
        notice = Notice(kind=kind, message=message, screen_id=screen_id, detail=detail)
        self._notices.append(notice)
        logger.debug("Parser notice %s: %s", kind, message)
        return NoticeRaised(notice=notice)


def parse_stream(chunks: Iterable[str], **options: Any) -> ParseResult:
    parser = IncrementalScreenParser(**options)
    events: List[ParseEvent] = []
    for chunk in chunks:
        events.extend(parser.feed(chunk))
    events.extend(parser.close())
    return parser.result(events)
