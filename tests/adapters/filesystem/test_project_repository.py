from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from adapters.filesystem.project_repository import FileSystemProjectRepository
from adapters.filesystem.prototype_repository import FileSystemPrototypeRepository
from domain.models import ConversationMessage, FlowEdge, ProjectHeader
from tests.helpers.stream_fixtures import screen


def test_load_missing_project_raises(project_repo: FileSystemProjectRepository) -> None:
    assert project_repo.exists("nope") is False
    with pytest.raises(FileNotFoundError):
        project_repo.load("nope")


def test_invalid_project_id_is_rejected(project_repo: FileSystemProjectRepository) -> None:
    with pytest.raises(ValueError, match="Invalid project id"):
        project_repo.load("../etc")


def test_load_or_create_writes_document(project_repo: FileSystemProjectRepository) -> None:
    created = project_repo.load_or_create("p1", header=ProjectHeader(platform="desktop"))

    path = project_repo.path_for("p1")
    payload = orjson.loads(path.read_bytes())
    assert created.header.platform == "desktop"
    assert payload["project_id"] == "p1"
    assert project_repo.load_or_create("p1").header.platform == "desktop"
    assert project_repo.list_ids() == ["p1"]


def test_upsert_replaces_by_id_in_place(project_repo: FileSystemProjectRepository) -> None:
    project_repo.load_or_create("p")
    project_repo.upsert_screen("p", screen("Home", root=True, body="v1", order=0))
    project_repo.upsert_screen("p", screen("Settings", 1, body="s", order=1))
    project_repo.upsert_screen("p", screen("Home", root=True, body="v2", order=0))

    project = project_repo.load("p")
    assert [record.id for record in project.screens] == ["screen-home", "screen-settings"]
    assert project.screens[0].body == "v2"


def test_replace_flows_only_touches_one_source(
    project_repo: FileSystemProjectRepository,
) -> None:
    project_repo.load_or_create("p")
    project_repo.replace_flows(
        "p", "screen-a", [FlowEdge(from_screen_id="screen-a", to_screen_id="screen-b")]
    )
    project_repo.replace_flows(
        "p", "screen-b", [FlowEdge(from_screen_id="screen-b", to_screen_id="screen-a")]
    )
    project_repo.replace_flows("p", "screen-a", [])

    flows = project_repo.load("p").flows
    assert [(edge.from_screen_id, edge.to_screen_id) for edge in flows] == [
        ("screen-b", "screen-a")
    ]


def test_header_and_messages_are_updated(project_repo: FileSystemProjectRepository) -> None:
    project_repo.load_or_create("p")
    project_repo.update_header("p", ProjectHeader(name="Trips", icon="✈️", platform="mobile"))
    project_repo.append_messages("p", [ConversationMessage(role="user", content="Make it blue")])
    project_repo.append_messages("p", [ConversationMessage(content="Done")])

    project = project_repo.load("p")
    assert project.header.name == "Trips"
    assert [(message.role, message.content) for message in project.messages] == [
        ("user", "Make it blue"),
        ("assistant", "Done"),
    ]


def test_modifying_missing_project_raises(project_repo: FileSystemProjectRepository) -> None:
    with pytest.raises(FileNotFoundError):
        project_repo.upsert_screen("ghost", screen("Home"))


def test_publish_overwrites_prototype(tmp_path: Path) -> None:
    repo = FileSystemPrototypeRepository(tmp_path / "prototypes")

    first = repo.publish("p", "<html>v1</html>")
    second = repo.publish("p", "<html>v2</html>")

    assert first == second
    assert repo.load("p") == "<html>v2</html>"
    assert sorted(path.name for path in first.parent.iterdir() if path.suffix == ".html") == [
        "p.html"
    ]
    with pytest.raises(FileNotFoundError):
        repo.load("other")
