from __future__ import annotations

import pytest
from pydantic import ValidationError

from domain.models import (
    Project,
    ProjectHeader,
    normalize_platform,
    resolve_screen_reference,
    screen_id_for,
    viewport_for,
)
from tests.helpers.stream_fixtures import screen


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("Home", "screen-home"),
        ("Order History", "screen-order-history"),
        ("  Sign-up / Step 2 ", "screen-sign-up-step-2"),
        ("Screen Home", "screen-screen-home"),
        ("!!!", "screen-untitled"),
    ],
)
def test_screen_id_for(name: str, expected: str) -> None:
    assert screen_id_for(name) == expected


@pytest.mark.parametrize(
    ("reference", "expected"),
    [
        ("#screen-settings", "screen-settings"),
        ("screen-settings", "screen-settings"),
        ("Settings", "screen-settings"),
        (" #Order History ", "screen-order-history"),
    ],
)
def test_resolve_screen_reference(reference: str, expected: str) -> None:
    assert resolve_screen_reference(reference) == expected


def test_resolve_prefers_known_ids() -> None:
    assert resolve_screen_reference("#legacy_id", {"legacy_id"}) == "legacy_id"


def test_platform_is_normalized() -> None:
    assert normalize_platform(" Desktop ") == "desktop"
    assert ProjectHeader(platform="MOBILE").platform == "mobile"
    assert viewport_for("mobile").width == 390
    with pytest.raises(ValueError):
        normalize_platform("tablet")


def test_project_rejects_duplicate_screen_ids() -> None:
    with pytest.raises(ValidationError, match="Duplicate screen found"):
        Project(project_id="p", screens=[screen("Home"), screen("home")])


def test_project_ordering_helpers() -> None:
    project = Project(
        project_id="p",
        screens=[screen("B", order=2), screen("A", root=True, order=2), screen("C", order=0)],
    )

    assert [record.id for record in project.ordered_screens()] == [
        "screen-c",
        "screen-a",
        "screen-b",
    ]
    assert [record.id for record in project.root_screens()] == ["screen-a"]
    assert project.next_sort_order() == 3
    assert Project(project_id="empty").next_sort_order() == 0


def test_screen_record_serializes_id() -> None:
    payload = screen("Home", 1, 2, root=True, body="<p/>").to_dict()

    assert payload["id"] == "screen-home"
    assert payload["grid_column"] == 1
    assert payload["is_root"] is True
