from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Tuple

from domain.models import (
    VIEWPORT_SIZES,
    BoundingBox,
    LayoutPlan,
    LayoutRect,
    ScreenPlacement,
    ScreenRecord,
    Size,
    normalize_platform,
)
from domain.ports.layout import LayoutEngine


@dataclass(frozen=True)
class PlatformProfile:
    cell_size: Size
    gap_x: float
    gap_y: float

    @property
    def pitch_x(self) -> float:
        return self.cell_size.width + self.gap_x

    @property
    def pitch_y(self) -> float:
        return self.cell_size.height + self.gap_y


MOBILE_PROFILE = PlatformProfile(cell_size=VIEWPORT_SIZES["mobile"], gap_x=120.0, gap_y=160.0)
DESKTOP_PROFILE = PlatformProfile(cell_size=VIEWPORT_SIZES["desktop"], gap_x=240.0, gap_y=240.0)


def _default_profiles() -> Dict[str, PlatformProfile]:
    return {"mobile": MOBILE_PROFILE, "desktop": DESKTOP_PROFILE}


@dataclass(frozen=True)
class LayoutConfig:
    profiles: Mapping[str, PlatformProfile] = field(default_factory=_default_profiles)
    overlap_offset: float = 32.0

    def profile(self, platform: str) -> PlatformProfile:
        return self.profiles[normalize_platform(platform)]


class GridLayoutEngine(LayoutEngine):
    def __init__(self, config: LayoutConfig | None = None) -> None:
        self.config = config or LayoutConfig()

    def layout(self, grid_column: int, grid_row: int, platform: str) -> LayoutRect:
        profile = self.config.profile(platform)
        return _cell_rect(grid_column, grid_row, profile)

    def build_plan(self, records: Sequence[ScreenRecord], platform: str) -> LayoutPlan:
        profile = self.config.profile(platform)
        placements: List[ScreenPlacement] = []
        claimed: Dict[Tuple[int, int], int] = {}

        # Later screens on an occupied cell are nudged so none render exactly on top.
        for record in sorted(records, key=lambda item: (item.sort_order, item.id)):
            key = record.grid_position
            overlap_index = claimed.get(key, 0)
            claimed[key] = overlap_index + 1
            rect = _cell_rect(record.grid_column, record.grid_row, profile)
            if overlap_index:
                shift = overlap_index * self.config.overlap_offset
                rect = LayoutRect(rect.x + shift, rect.y + shift, rect.width, rect.height)
            placements.append(
                ScreenPlacement(
                    screen_id=record.id,
                    grid_column=record.grid_column,
                    grid_row=record.grid_row,
                    rect=rect,
                    overlap_index=overlap_index,
                )
            )
        return LayoutPlan(
            platform=normalize_platform(platform),
            placements=placements,
            bounds=self._bounds([placement.rect for placement in placements], profile),
        )

    def bounding_box(self, records: Sequence[ScreenRecord], platform: str) -> BoundingBox:
        return self.build_plan(records, platform).bounds

    def _bounds(self, rects: Sequence[LayoutRect], profile: PlatformProfile) -> BoundingBox:
        if not rects:
            return BoundingBox(0.0, 0.0, profile.cell_size.width, profile.cell_size.height)
        return BoundingBox(
            min_x=min(rect.x for rect in rects),
            min_y=min(rect.y for rect in rects),
            max_x=max(rect.right for rect in rects),
            max_y=max(rect.bottom for rect in rects),
        )


@lru_cache(maxsize=1024)
def _cell_rect(grid_column: int, grid_row: int, profile: PlatformProfile) -> LayoutRect:
    return LayoutRect(
        x=float(grid_column * profile.pitch_x),
        y=float(grid_row * profile.pitch_y),
        width=float(profile.cell_size.width),
        height=float(profile.cell_size.height),
    )
