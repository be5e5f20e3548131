from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCREEN_ID_PREFIX = "screen"
SCREEN_ID_SEPARATOR = "-"
DEFAULT_SCREEN_NAME = "Untitled"

Platform = Literal["mobile", "desktop"]
PLATFORMS: tuple[str, ...] = ("mobile", "desktop")

ScreenMode = Literal["create", "replace"]

NoticeKind = Literal[
    "truncated_generation",
    "duplicate_root",
    "missing_entry_point",
    "missing_grid_position",
    "dangling_flow_target",
    "broken_link",
    "stray_screen_end",
    "implicit_screen_end",
    "duplicate_screen_name",
    "empty_screen_name",
    "edit_unknown_screen",
    "generation_error",
    "executable_markup_removed",
]

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_SCREEN_ID = re.compile(rf"{SCREEN_ID_PREFIX}-[a-z0-9]+(?:-[a-z0-9]+)*")


def screen_id_for(name: str) -> str:
    slug = _NON_ALNUM.sub(SCREEN_ID_SEPARATOR, name.lower()).strip(SCREEN_ID_SEPARATOR)
    return f"{SCREEN_ID_PREFIX}{SCREEN_ID_SEPARATOR}{slug or 'untitled'}"


def resolve_screen_reference(reference: str, known_ids: Set[str] | None = None) -> str:
    """Map a link target (`#screen-x`, `screen-x` or a screen name) to a screen id."""
    value = reference.strip().lstrip("#").strip()
    if known_ids is not None and value in known_ids:
        return value
    if _SCREEN_ID.fullmatch(value):
        return value
    return screen_id_for(value)


def normalize_platform(value: object) -> str:
    normalized = str(value or "").strip().lower()
    if normalized not in PLATFORMS:
        msg = f"Unknown platform: {value!r} (expected one of {', '.join(PLATFORMS)})"
        raise ValueError(msg)
    return normalized


class ScreenRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    grid_column: int = 0
    grid_row: int = 0
    is_root: bool = False
    body: str = ""
    sort_order: int = 0

    @property
    def id(self) -> str:
        return screen_id_for(self.name)

    @property
    def grid_position(self) -> tuple[int, int]:
        return self.grid_column, self.grid_row

    def to_dict(self) -> dict[str, Any]:
        payload = self.model_dump()
        payload["id"] = self.id
        return payload


class FlowEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_screen_id: str = Field(..., min_length=1)
    to_screen_id: str = Field(..., min_length=1)
    element_descriptor: Optional[str] = None
    element_index: int = Field(default=0, ge=0)


class ProjectHeader(BaseModel):
    name: Optional[str] = None
    icon: Optional[str] = None
    platform: Platform = "mobile"

    @field_validator("platform", mode="before")
    @classmethod
    def ensure_known_platform(cls, value: object) -> str:
        return normalize_platform(value)


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"] = "assistant"
    content: str


class Notice(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: NoticeKind
    message: str
    screen_id: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)


class Project(BaseModel):
    project_id: str = Field(..., min_length=1)
    header: ProjectHeader = Field(default_factory=ProjectHeader)
    screens: List[ScreenRecord] = Field(default_factory=list)
    flows: List[FlowEdge] = Field(default_factory=list)
    messages: List[ConversationMessage] = Field(default_factory=list)

    @field_validator("screens", mode="after")
    @classmethod
    def ensure_unique_screen_names(cls, screens: List[ScreenRecord]) -> List[ScreenRecord]:
        seen: Set[str] = set()
        for screen in screens:
            if screen.id in seen:
                msg = f"Duplicate screen found: {screen.name} ({screen.id})"
                raise ValueError(msg)
            seen.add(screen.id)
        return screens

    def screen_ids(self) -> Set[str]:
        return {screen.id for screen in self.screens}

    def screen_by_id(self, screen_id: str) -> ScreenRecord | None:
        for screen in self.screens:
            if screen.id == screen_id:
                return screen
        return None

    def root_screens(self) -> List[ScreenRecord]:
        return [screen for screen in self.screens if screen.is_root]

    def ordered_screens(self) -> List[ScreenRecord]:
        return sorted(self.screens, key=lambda screen: (screen.sort_order, screen.id))

    def next_sort_order(self) -> int:
        return max((screen.sort_order for screen in self.screens), default=-1) + 1


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class Size:
    width: float
    height: float


# Fixed logical viewport each platform's screens are authored for.
VIEWPORT_SIZES: Dict[str, Size] = {
    "mobile": Size(390, 844),
    "desktop": Size(1440, 900),
}


def viewport_for(platform: str) -> Size:
    return VIEWPORT_SIZES[normalize_platform(platform)]


@dataclass(frozen=True)
class LayoutRect:
    x: float
    y: float
    width: float
    height: float

    @property
    def origin(self) -> Point:
        return Point(self.x, self.y)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Point:
        return Point(self.x + self.width / 2, self.y + self.height / 2)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class BoundingBox:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def to_dict(self) -> dict[str, float]:
        return {
            "min_x": self.min_x,
            "min_y": self.min_y,
            "max_x": self.max_x,
            "max_y": self.max_y,
        }


@dataclass(frozen=True)
class ScreenPlacement:
    screen_id: str
    grid_column: int
    grid_row: int
    rect: LayoutRect
    overlap_index: int = 0


@dataclass(frozen=True)
class LayoutPlan:
    platform: str
    placements: List[ScreenPlacement]
    bounds: BoundingBox

    def rects(self) -> Dict[str, LayoutRect]:
        return {placement.screen_id: placement.rect for placement in self.placements}
