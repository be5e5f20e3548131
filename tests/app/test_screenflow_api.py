from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from app.config import AppSettings
from app.web_main import create_app
from tests.helpers.stream_fixtures import chunked, load_stream_fixture


@pytest.fixture
def client(app_settings: AppSettings) -> TestClient:
    return TestClient(create_app(app_settings))


def _ingest(client: TestClient, project_id: str = "budget") -> dict[str, Any]:
    text = load_stream_fixture("home_settings.txt")
    response = client.post(
        f"/api/projects/{project_id}/generations",
        json={"chunks": chunked(text, 40, 41, 200), "platform": "mobile"},
    )
    assert response.status_code == 200
    return response.json()


def test_generation_and_snapshot(client: TestClient) -> None:
    report = _ingest(client)

    assert report["created"] == ["screen-home", "screen-settings"]
    assert report["truncated"] is False

    snapshot = client.get("/api/projects/budget").json()
    assert snapshot["header"]["name"] == "Pocket Budget"
    assert [item["id"] for item in snapshot["screens"]] == ["screen-home", "screen-settings"]
    assert len(snapshot["flows"]) == 2
    assert client.get("/api/projects").json() == {"projects": ["budget"]}


def test_unknown_project_is_404(client: TestClient) -> None:
    assert client.get("/api/projects/missing").status_code == 404
    assert client.get("/api/projects/missing/layout").status_code == 404
    assert client.get("/p/missing").status_code == 404


def test_generation_rejects_unknown_platform(client: TestClient) -> None:
    response = client.post("/api/projects/p/generations", json={"chunks": [], "platform": "tv"})

    assert response.status_code == 422


def test_generation_error_keeps_closed_screens(client: TestClient) -> None:
    response = client.post(
        "/api/projects/p/generations",
        json={
            "chunks": ["<!-- SCREEN_START: Home [0,0] [ROOT] -->hi<!-- SCREEN_END -->"],
            "error": "upstream closed",
        },
    )

    kinds = [notice["kind"] for notice in response.json()["notices"]]
    assert kinds == ["generation_error"]
    assert response.json()["created"] == ["screen-home"]


def test_layout_returns_placements_and_camera(client: TestClient) -> None:
    _ingest(client)

    payload = client.get(
        "/api/projects/budget/layout",
        params={"viewport_width": 1280, "viewport_height": 800},
    ).json()

    rects = {item["screen_id"]: item["rect"] for item in payload["placements"]}
    assert rects["screen-settings"]["x"] == rects["screen-home"]["x"] + 390 + 120
    assert payload["bounds"] == {"min_x": 0.0, "min_y": 0.0, "max_x": 900.0, "max_y": 844.0}
    assert 0 < payload["camera"]["zoom"] <= 1.0
    assert all(item["token"] for item in payload["placements"])


def test_arrows_use_cached_element_rects(client: TestClient) -> None:
    _ingest(client)
    layout = client.get("/api/projects/budget/layout").json()
    tokens = {item["screen_id"]: item["token"] for item in layout["placements"]}

    first = client.post(
        "/api/projects/budget/arrows",
        json={
            "view": {"pan_x": 0, "pan_y": 0, "zoom": 1},
            "screens": [
                {
                    "screen_id": "screen-home",
                    "token": tokens["screen-home"],
                    "elements": [{"element_index": 0, "x": 300, "y": 100, "width": 60, "height": 20}],
                },
                {"screen_id": "screen-settings", "token": "stale", "elements": []},
            ],
        },
    ).json()

    assert [arrow["to_screen_id"] for arrow in first["arrows"]] == ["screen-settings"]
    assert [edge["from_screen_id"] for edge in first["omitted"]] == ["screen-settings"]
    assert first["ignored_screens"] == ["screen-settings"]

    zoomed = client.post(
        "/api/projects/budget/arrows",
        json={"view": {"pan_x": 10, "pan_y": 10, "zoom": 0.5}},
    ).json()

    assert len(zoomed["arrows"]) == 1
    assert zoomed["arrows"][0]["start"][0] == pytest.approx(10 + 360 * 0.5 + 6)


def test_arrows_reject_non_positive_zoom(client: TestClient) -> None:
    _ingest(client)

    response = client.post("/api/projects/budget/arrows", json={"view": {"zoom": 0}})

    assert response.status_code == 422


def test_publish_and_serve_prototype(client: TestClient) -> None:
    _ingest(client)

    published = client.post("/api/projects/budget/publish")
    assert published.status_code == 200
    assert published.json()["root_screen_id"] == "screen-home"
    assert published.json()["url"] == "/p/budget"

    page = client.get("/p/budget")
    assert page.status_code == 200
    assert page.headers["content-type"].startswith("text/html")
    assert '<section id="screen-home" class="screen screen-default"' in page.text

    preview = client.get("/api/projects/budget/prototype")
    assert preview.text == page.text


def test_resync_reports_flows(client: TestClient) -> None:
    _ingest(client)

    payload = client.post("/api/projects/budget/flows/resync").json()

    assert len(payload["flows"]) == 2
    assert payload["notices"] == []
