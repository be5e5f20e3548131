from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from domain.models import BoundingBox, LayoutPlan, LayoutRect, ScreenRecord


class LayoutEngine(Protocol):
    def layout(self, grid_column: int, grid_row: int, platform: str) -> LayoutRect:
        ...

    def bounding_box(self, records: Sequence[ScreenRecord], platform: str) -> BoundingBox:
        ...

    def build_plan(self, records: Sequence[ScreenRecord], platform: str) -> LayoutPlan:
        ...
