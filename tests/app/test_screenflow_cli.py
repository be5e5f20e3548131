from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest
import yaml
from typer.testing import CliRunner

from adapters.filesystem.project_repository import FileSystemProjectRepository
from app.cli import app
from tests.helpers.stream_fixtures import repo_root

runner = CliRunner()
STREAMS = repo_root() / "tests" / "fixtures" / "streams"


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "app.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "title": "CLI Test",
                "storage": {
                    "projects_dir": str(tmp_path / "projects"),
                    "prototypes_dir": str(tmp_path / "prototypes"),
                },
                "prototype": {"highlight_hotspots": True},
            }
        ),
        encoding="utf-8",
    )
    return path


def _invoke(config_path: Path, *args: str) -> Any:
    return runner.invoke(app, ["--config", str(config_path), *args])


def test_ingest_raw_stream_in_chunks(config_path: Path, tmp_path: Path) -> None:
    result = _invoke(
        config_path, "ingest", "budget", str(STREAMS / "home_settings.txt"), "--chunk-size", "7"
    )

    assert result.exit_code == 0, result.output
    assert "screen-home" in result.output
    assert (tmp_path / "projects" / "budget.json").exists()


def test_ingest_sse_stream(config_path: Path) -> None:
    result = _invoke(config_path, "ingest", "budget", str(STREAMS / "home_settings.sse"))

    assert result.exit_code == 0, result.output
    assert "Root: screen-home" in result.output


def test_compose_writes_document(config_path: Path, tmp_path: Path) -> None:
    _invoke(config_path, "ingest", "budget", str(STREAMS / "home_settings.txt"))
    output = tmp_path / "out" / "budget.html"

    result = _invoke(config_path, "compose", "budget", "--output", str(output))

    assert result.exit_code == 0, result.output
    html = output.read_text(encoding="utf-8")
    assert "[data-flow] { outline:" in html
    assert "<title>Pocket Budget</title>" in html


def test_publish_overwrites_artifact(config_path: Path, tmp_path: Path) -> None:
    _invoke(config_path, "ingest", "budget", str(STREAMS / "home_settings.txt"))

    first = _invoke(config_path, "publish", "budget")
    second = _invoke(config_path, "publish", "budget")

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert (tmp_path / "prototypes" / "budget.html").exists()


def test_layout_prints_table(config_path: Path) -> None:
    _invoke(config_path, "ingest", "budget", str(STREAMS / "home_settings.txt"))

    result = _invoke(config_path, "layout", "budget", "--platform", "desktop")

    assert result.exit_code == 0, result.output
    assert "screen-settings" in result.output
    assert "1680" in result.output


def test_validate_passes_for_consistent_project(config_path: Path) -> None:
    _invoke(config_path, "ingest", "roots", str(STREAMS / "two_roots.txt"))

    result = _invoke(config_path, "validate", "roots")

    assert result.exit_code == 0, result.output
    assert "Project is consistent" in result.output


def test_validate_fails_on_dangling_flow(config_path: Path) -> None:
    _invoke(config_path, "ingest", "trunc", str(STREAMS / "truncated.txt"))

    result = _invoke(config_path, "validate", "trunc")

    assert result.exit_code == 1
    assert "dangling_flow_target" in result.output


def test_validate_fails_without_root(config_path: Path, tmp_path: Path) -> None:
    stream = tmp_path / "no_root.txt"
    stream.write_text("<!-- SCREEN_START: Lonely [0,0] -->x<!-- SCREEN_END -->", encoding="utf-8")
    _invoke(config_path, "ingest", "lonely", str(stream))

    result = _invoke(config_path, "validate", "lonely")

    assert result.exit_code == 1
    assert "missing_entry_point" in result.output


class _TimingOutSource:
    def stream(self, prompt: str, screens: object, history: object) -> Iterator[str]:
        yield "<!-- SCREEN_EDIT: Home [0,0] --><p>no links now</p><!-- SCREEN_END -->"
        yield "<!-- SCREEN_START: Later [2,0] -->half"
        raise httpx.ReadTimeout("read timed out")


def test_generate_reports_transport_failure_and_keeps_flows_consistent(
    config_path: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _invoke(config_path, "ingest", "budget", str(STREAMS / "home_settings.txt"))
    monkeypatch.setattr("app.cli.build_generation_source", lambda settings: _TimingOutSource())

    result = _invoke(config_path, "generate", "budget", "Drop the settings link")

    assert result.exit_code == 1
    assert "generation_error" in result.output
    assert "truncated_generation" in result.output
    project = FileSystemProjectRepository(tmp_path / "projects").load("budget")
    home = project.screen_by_id("screen-home")
    assert home is not None
    assert home.body == "<p>no links now</p>"
    assert [(edge.from_screen_id, edge.to_screen_id) for edge in project.flows] == [
        ("screen-settings", "screen-home")
    ]


def test_unknown_project_exits_with_error(config_path: Path) -> None:
    result = _invoke(config_path, "compose", "missing")

    assert result.exit_code == 1
    assert "Project not found" in result.output


def test_missing_config_file_exits(tmp_path: Path) -> None:
    result = runner.invoke(app, ["--config", str(tmp_path / "nope.yaml"), "layout", "x"])

    assert result.exit_code == 1
    assert "Config file not found" in result.output
