from __future__ import annotations

from dataclasses import dataclass

from domain.models import BoundingBox, LayoutRect, Point, Size


@dataclass(frozen=True)
class CanvasView:
    """Current camera of the canvas: `view = world * zoom + pan`."""

    pan_x: float = 0.0
    pan_y: float = 0.0
    zoom: float = 1.0

    def __post_init__(self) -> None:
        if self.zoom <= 0:
            msg = f"zoom must be positive, got {self.zoom}"
            raise ValueError(msg)

    def to_view(self, point: Point) -> Point:
        return Point(point.x * self.zoom + self.pan_x, point.y * self.zoom + self.pan_y)

    def to_world(self, point: Point) -> Point:
        return Point((point.x - self.pan_x) / self.zoom, (point.y - self.pan_y) / self.zoom)

    def rect_to_view(self, rect: LayoutRect) -> LayoutRect:
        origin = self.to_view(rect.origin)
        return LayoutRect(origin.x, origin.y, rect.width * self.zoom, rect.height * self.zoom)

    def to_dict(self) -> dict[str, float]:
        return {"pan_x": self.pan_x, "pan_y": self.pan_y, "zoom": self.zoom}


def embed_point(screen_rect: LayoutRect, local: Point, content_scale: float = 1.0) -> Point:
    """Map a point from a screen's sub-document into canvas world space."""
    return Point(
        screen_rect.x + local.x * content_scale,
        screen_rect.y + local.y * content_scale,
    )


def embed_rect(
    screen_rect: LayoutRect, local: LayoutRect, content_scale: float = 1.0
) -> LayoutRect:
    origin = embed_point(screen_rect, local.origin, content_scale)
    return LayoutRect(origin.x, origin.y, local.width * content_scale, local.height * content_scale)


def fit_camera(
    bounds: BoundingBox,
    viewport: Size,
    padding: float = 80.0,
    min_zoom: float = 0.05,
    max_zoom: float = 1.0,
) -> CanvasView:
    available_width = max(viewport.width - padding * 2, 1.0)
    available_height = max(viewport.height - padding * 2, 1.0)
    content_width = max(bounds.width, 1.0)
    content_height = max(bounds.height, 1.0)
    zoom = min(available_width / content_width, available_height / content_height)
    zoom = max(min_zoom, min(max_zoom, zoom))
    center_x = bounds.min_x + bounds.width / 2
    center_y = bounds.min_y + bounds.height / 2
    return CanvasView(
        pan_x=viewport.width / 2 - center_x * zoom,
        pan_y=viewport.height / 2 - center_y * zoom,
        zoom=zoom,
    )
