from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from pathlib import Path

from adapters.filesystem.json_utils import load_json, lock_for, write_json_atomic
from domain.models import ConversationMessage, FlowEdge, Project, ProjectHeader, ScreenRecord
from domain.ports.repositories import ProjectRepository

PROJECT_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]{0,127}")


def validate_project_id(project_id: str) -> str:
    if not PROJECT_ID_PATTERN.fullmatch(project_id) or ".." in project_id:
        msg = f"Invalid project id: {project_id!r}"
        raise ValueError(msg)
    return project_id


class FileSystemProjectRepository(ProjectRepository):
    """One JSON document per project, rewritten atomically under a file lock."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, project_id: str) -> Path:
        return self.directory / f"{validate_project_id(project_id)}.json"

    def exists(self, project_id: str) -> bool:
        return self.path_for(project_id).exists()

    def load(self, project_id: str) -> Project:
        path = self.path_for(project_id)
        if not path.exists():
            raise FileNotFoundError(f"Project not found: {project_id}")
        return Project.model_validate(load_json(path))

    def list_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        return sorted(path.stem for path in self.directory.glob("*.json"))

    def load_or_create(self, project_id: str, header: ProjectHeader | None = None) -> Project:
        path = self.path_for(project_id)
        with lock_for(path):
            if path.exists():
                return Project.model_validate(load_json(path))
            project = Project(project_id=project_id, header=header or ProjectHeader())
            write_json_atomic(path, project.model_dump(mode="json"))
            return project

    def update_header(self, project_id: str, header: ProjectHeader) -> None:
        def apply(project: Project) -> Project:
            return project.model_copy(update={"header": header})

        self._modify(project_id, apply)

    def upsert_screen(self, project_id: str, record: ScreenRecord) -> None:
        def apply(project: Project) -> Project:
            if project.screen_by_id(record.id) is None:
                screens = [*project.screens, record]
            else:
                screens = [
                    record if screen.id == record.id else screen for screen in project.screens
                ]
            return project.model_copy(update={"screens": screens})

        self._modify(project_id, apply)

    def replace_flows(
        self, project_id: str, from_screen_id: str, edges: Sequence[FlowEdge]
    ) -> None:
        def apply(project: Project) -> Project:
            flows = [edge for edge in project.flows if edge.from_screen_id != from_screen_id]
            flows.extend(edges)
            return project.model_copy(update={"flows": flows})

        self._modify(project_id, apply)

    def append_messages(
        self, project_id: str, messages: Sequence[ConversationMessage]
    ) -> None:
        def apply(project: Project) -> Project:
            return project.model_copy(update={"messages": [*project.messages, *messages]})

        self._modify(project_id, apply)

    def _modify(self, project_id: str, apply: Callable[[Project], Project]) -> None:
        path = self.path_for(project_id)
        with lock_for(path):
            if not path.exists():
                raise FileNotFoundError(f"Project not found: {project_id}")
            project = Project.model_validate(load_json(path))
            updated = apply(project)
            # Re-validate so duplicate screen ids never reach disk.
            updated = Project.model_validate(updated.model_dump())
            write_json_atomic(path, updated.model_dump(mode="json"))
