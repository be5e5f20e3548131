from __future__ import annotations

import pytest

from adapters.layout.grid import (
    DESKTOP_PROFILE,
    MOBILE_PROFILE,
    GridLayoutEngine,
    LayoutConfig,
)
from domain.models import BoundingBox, LayoutRect
from tests.helpers.stream_fixtures import screen


def test_layout_uses_cell_and_gap_pitch() -> None:
    engine = GridLayoutEngine()

    origin = engine.layout(0, 0, "mobile")
    right = engine.layout(1, 0, "mobile")
    below = engine.layout(0, 1, "mobile")

    assert origin == LayoutRect(0.0, 0.0, 390.0, 844.0)
    assert right.x == origin.x + MOBILE_PROFILE.cell_size.width + MOBILE_PROFILE.gap_x
    assert below.y == origin.y + MOBILE_PROFILE.cell_size.height + MOBILE_PROFILE.gap_y


def test_layout_is_pure() -> None:
    engine = GridLayoutEngine()

    assert engine.layout(3, -2, "desktop") == engine.layout(3, -2, "desktop")
    assert GridLayoutEngine().layout(3, -2, "desktop") == engine.layout(3, -2, "desktop")


def test_negative_coordinates_are_valid() -> None:
    rect = GridLayoutEngine().layout(-1, -1, "desktop")

    assert rect.x == -DESKTOP_PROFILE.pitch_x
    assert rect.y == -DESKTOP_PROFILE.pitch_y


def test_unknown_platform_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown platform"):
        GridLayoutEngine().layout(0, 0, "watch")


def test_shared_cell_is_offset_visually_only() -> None:
    engine = GridLayoutEngine(LayoutConfig(overlap_offset=20.0))
    records = [
        screen("First", 0, 0, order=0),
        screen("Second", 0, 0, order=1),
        screen("Third", 0, 0, order=2),
    ]

    plan = engine.build_plan(records, "mobile")

    rects = plan.rects()
    assert rects["screen-first"].origin == engine.layout(0, 0, "mobile").origin
    assert (rects["screen-second"].x, rects["screen-second"].y) == (20.0, 20.0)
    assert (rects["screen-third"].x, rects["screen-third"].y) == (40.0, 40.0)
    assert [placement.overlap_index for placement in plan.placements] == [0, 1, 2]
    assert {(p.grid_column, p.grid_row) for p in plan.placements} == {(0, 0)}


def test_bounding_box_spans_all_screens() -> None:
    records = [screen("A", -1, 0), screen("B", 2, 1, order=1)]

    bounds = GridLayoutEngine().bounding_box(records, "mobile")

    assert bounds.min_x == -MOBILE_PROFILE.pitch_x
    assert bounds.min_y == 0.0
    assert bounds.max_x == 2 * MOBILE_PROFILE.pitch_x + 390.0
    assert bounds.max_y == MOBILE_PROFILE.pitch_y + 844.0


def test_empty_set_bounding_box_is_one_default_cell() -> None:
    assert GridLayoutEngine().bounding_box([], "desktop") == BoundingBox(0.0, 0.0, 1440.0, 900.0)
