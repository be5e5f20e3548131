from __future__ import annotations

from pathlib import Path

from adapters.filesystem.json_utils import lock_for, write_bytes_atomic
from adapters.filesystem.project_repository import validate_project_id
from domain.ports.repositories import PrototypeRepository


class FileSystemPrototypeRepository(PrototypeRepository):
    """Published prototypes, one HTML file per project; publishing overwrites."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, project_id: str) -> Path:
        return self.directory / f"{validate_project_id(project_id)}.html"

    def publish(self, project_id: str, document: str) -> Path:
        path = self.path_for(project_id)
        with lock_for(path):
            write_bytes_atomic(path, document.encode("utf-8"))
        return path

    def load(self, project_id: str) -> str:
        path = self.path_for(project_id)
        if not path.exists():
            raise FileNotFoundError(f"Prototype not published: {project_id}")
        return path.read_text(encoding="utf-8")
