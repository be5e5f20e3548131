from __future__ import annotations

import hashlib
import logging
import math
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from domain.models import FlowEdge, LayoutRect, Point, ScreenRecord
from domain.services.canvas_transform import CanvasView, embed_rect

logger = logging.getLogger(__name__)

Side = str  # "left" | "right" | "top" | "bottom"

_OUTWARD: Dict[str, Tuple[float, float]] = {
    "left": (-1.0, 0.0),
    "right": (1.0, 0.0),
    "top": (0.0, -1.0),
    "bottom": (0.0, 1.0),
}


@dataclass(frozen=True)
class ElementKey:
    screen_id: str
    element_index: int


def document_token(record: ScreenRecord) -> str:
    return hashlib.sha1(record.body.encode("utf-8")).hexdigest()[:16]


class ElementRectCache:
    """Source-local rectangles of flow elements, per embedded sub-document.

    Entries are keyed by screen id and tagged with the document token they were
    measured against. Storing under a new token replaces the screen's entry
    wholesale; nothing is patched in place.

    Every method takes `lock`; hold it across a sync, store and render sequence
    to keep one paint pass from seeing another's entries.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Tuple[str, Dict[int, LayoutRect]]] = {}
        self.lock = threading.RLock()

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def __contains__(self, screen_id: object) -> bool:
        with self.lock:
            return screen_id in self._entries

    def store(self, screen_id: str, token: str, rects: Mapping[int, LayoutRect]) -> None:
        with self.lock:
            self._entries[screen_id] = (token, dict(rects))

    def token(self, screen_id: str) -> Optional[str]:
        with self.lock:
            entry = self._entries.get(screen_id)
        return entry[0] if entry else None

    def invalidate(self, screen_id: str) -> None:
        with self.lock:
            self._entries.pop(screen_id, None)

    def sync(self, tokens: Mapping[str, str]) -> List[str]:
        with self.lock:
            stale = [
                screen_id
                for screen_id, (token, _) in self._entries.items()
                if tokens.get(screen_id) != token
            ]
            for screen_id in stale:
                del self._entries[screen_id]
        return stale

    def lookup(self, screen_id: str, element_index: int) -> Optional[LayoutRect]:
        with self.lock:
            entry = self._entries.get(screen_id)
        if entry is None:
            return None
        return entry[1].get(element_index)


ElementRects = Union[ElementRectCache, Mapping[ElementKey, LayoutRect]]


@dataclass(frozen=True)
class ArrowConfig:
    clearance: float = 6.0
    end_gap: float = 2.0
    fan_angle_degrees: float = 14.0
    # Outermost edge of a fan never turns further than this from the side normal.
    max_fan_angle_degrees: float = 60.0
    fan_spacing: float = 14.0
    edge_inset: float = 0.1
    curvature: float = 0.4
    min_handle: float = 40.0
    head_size: float = 10.0


@dataclass(frozen=True)
class ArrowPath:
    edge: FlowEdge
    start: Point
    end: Point
    control_1: Point
    control_2: Point
    start_side: Side
    end_side: Side
    fan_index: int = 0
    fan_count: int = 1

    @property
    def svg_path(self) -> str:
        return (
            f"M {_fmt(self.start.x)} {_fmt(self.start.y)} "
            f"C {_fmt(self.control_1.x)} {_fmt(self.control_1.y)}, "
            f"{_fmt(self.control_2.x)} {_fmt(self.control_2.y)}, "
            f"{_fmt(self.end.x)} {_fmt(self.end.y)}"
        )

    def head(self, size: float) -> List[Point]:
        nx, ny = _OUTWARD[self.end_side]
        # Arrowhead points into the target, against the side's outward normal.
        base_x = self.end.x + nx * size
        base_y = self.end.y + ny * size
        half = size / 2
        return [
            self.end,
            Point(base_x - ny * half, base_y + nx * half),
            Point(base_x + ny * half, base_y - nx * half),
        ]

    def to_dict(self, head_size: float = 10.0) -> dict[str, Any]:
        return {
            "from_screen_id": self.edge.from_screen_id,
            "to_screen_id": self.edge.to_screen_id,
            "element_index": self.edge.element_index,
            "element_descriptor": self.edge.element_descriptor,
            "start": [self.start.x, self.start.y],
            "end": [self.end.x, self.end.y],
            "control_1": [self.control_1.x, self.control_1.y],
            "control_2": [self.control_2.x, self.control_2.y],
            "start_side": self.start_side,
            "end_side": self.end_side,
            "path": self.svg_path,
            "head": [[point.x, point.y] for point in self.head(head_size)],
        }


@dataclass(frozen=True)
class ArrowRenderResult:
    arrows: List[ArrowPath]
    omitted: List[FlowEdge]


class ArrowRenderer:
    def __init__(self, config: ArrowConfig | None = None) -> None:
        self.config = config or ArrowConfig()

    def render(
        self,
        view: CanvasView,
        screen_rects: Mapping[str, LayoutRect],
        edges: Sequence[FlowEdge],
        element_rects: ElementRects,
        content_scale: float = 1.0,
    ) -> ArrowRenderResult:
        resolved: List[Tuple[FlowEdge, LayoutRect, LayoutRect, LayoutRect]] = []
        omitted: List[FlowEdge] = []
        for edge in edges:
            source_screen = screen_rects.get(edge.from_screen_id)
            target_screen = screen_rects.get(edge.to_screen_id)
            local = _lookup(element_rects, edge)
            if source_screen is None or target_screen is None or local is None:
                omitted.append(edge)
                continue
            source_view = view.rect_to_view(embed_rect(source_screen, local, content_scale))
            resolved.append((edge, local, source_view, view.rect_to_view(target_screen)))
        if omitted:
            logger.debug("Omitted %d flow arrows without geometry this pass", len(omitted))

        # Edges leaving the same element fan out around it.
        groups: Dict[Tuple[Any, ...], List[int]] = {}
        for idx, (edge, local, _, _) in enumerate(resolved):
            key = (edge.from_screen_id, local.x, local.y, local.width, local.height)
            groups.setdefault(key, []).append(idx)
        fan: Dict[int, Tuple[int, int]] = {}
        for members in groups.values():
            members.sort(
                key=lambda i: (
                    resolved[i][0].to_screen_id,
                    resolved[i][0].element_index,
                    resolved[i][0].element_descriptor or "",
                    i,
                )
            )
            for position, idx in enumerate(members):
                fan[idx] = (position, len(members))

        arrows = [
            self._route(edge, source_view, target_view, *fan[idx])
            for idx, (edge, _, source_view, target_view) in enumerate(resolved)
        ]
        return ArrowRenderResult(arrows=arrows, omitted=omitted)

    def _route(
        self,
        edge: FlowEdge,
        source: LayoutRect,
        target: LayoutRect,
        fan_index: int,
        fan_count: int,
    ) -> ArrowPath:
        config = self.config
        half_span = (fan_count - 1) / 2
        spread = fan_index - half_span
        step = config.fan_angle_degrees
        if half_span * step > config.max_fan_angle_degrees:
            step = config.max_fan_angle_degrees / half_span
        angle = math.radians(spread * step)

        source_center = source.center
        target_center = target.center
        dx = target_center.x - source_center.x
        dy = target_center.y - source_center.y
        if abs(dx) >= abs(dy):
            start_side = "right" if dx >= 0 else "left"
        else:
            start_side = "bottom" if dy > 0 else "top"
        direction = _rotate(_OUTWARD[start_side], angle)
        anchor = _side_midpoint(source, start_side)
        start = Point(
            anchor.x + direction[0] * config.clearance,
            anchor.y + direction[1] * config.clearance,
        )

        end_side, edge_point = _nearest_side(target, start, config.edge_inset)
        tangent = _tangent(end_side)
        shift = spread * config.fan_spacing
        end_normal = _OUTWARD[end_side]
        end = _clamp_to_side(
            target,
            end_side,
            Point(edge_point.x + tangent[0] * shift, edge_point.y + tangent[1] * shift),
            config.edge_inset,
        )
        end = Point(end.x + end_normal[0] * config.end_gap, end.y + end_normal[1] * config.end_gap)

        distance = math.hypot(end.x - start.x, end.y - start.y)
        handle = max(config.min_handle, distance * config.curvature)
        control_1 = Point(start.x + direction[0] * handle, start.y + direction[1] * handle)
        control_2 = Point(end.x + end_normal[0] * handle, end.y + end_normal[1] * handle)
        return ArrowPath(
            edge=edge,
            start=start,
            end=end,
            control_1=control_1,
            control_2=control_2,
            start_side=start_side,
            end_side=end_side,
            fan_index=fan_index,
            fan_count=fan_count,
        )


def _lookup(element_rects: ElementRects, edge: FlowEdge) -> Optional[LayoutRect]:
    if isinstance(element_rects, ElementRectCache):
        return element_rects.lookup(edge.from_screen_id, edge.element_index)
    return element_rects.get(ElementKey(edge.from_screen_id, edge.element_index))


def _rotate(vector: Tuple[float, float], angle: float) -> Tuple[float, float]:
    cos_a = math.cos(angle)
    sin_a = math.sin(angle)
    return (vector[0] * cos_a - vector[1] * sin_a, vector[0] * sin_a + vector[1] * cos_a)


def _tangent(side: Side) -> Tuple[float, float]:
    return (0.0, 1.0) if side in {"left", "right"} else (1.0, 0.0)


def _side_midpoint(rect: LayoutRect, side: Side) -> Point:
    if side == "left":
        return Point(rect.x, rect.y + rect.height / 2)
    if side == "right":
        return Point(rect.right, rect.y + rect.height / 2)
    if side == "top":
        return Point(rect.x + rect.width / 2, rect.y)
    return Point(rect.x + rect.width / 2, rect.bottom)


def _clamp_to_side(rect: LayoutRect, side: Side, point: Point, inset: float) -> Point:
    if side in {"left", "right"}:
        margin = rect.height * inset
        y = min(max(point.y, rect.y + margin), rect.bottom - margin)
        return Point(rect.x if side == "left" else rect.right, y)
    margin = rect.width * inset
    x = min(max(point.x, rect.x + margin), rect.right - margin)
    return Point(x, rect.y if side == "top" else rect.bottom)


def _nearest_side(rect: LayoutRect, point: Point, inset: float) -> Tuple[Side, Point]:
    best_side: Side = "left"
    best_point = _clamp_to_side(rect, best_side, point, inset)
    best_distance = math.hypot(best_point.x - point.x, best_point.y - point.y)
    for side in ("right", "top", "bottom"):
        candidate = _clamp_to_side(rect, side, point, inset)
        distance = math.hypot(candidate.x - point.x, candidate.y - point.y)
        if distance < best_distance:
            best_side, best_point, best_distance = side, candidate, distance
    return best_side, best_point


def _fmt(value: float) -> str:
    return f"{value:.2f}"
