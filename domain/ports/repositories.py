from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from domain.models import ConversationMessage, FlowEdge, Project, ProjectHeader, ScreenRecord


class ProjectRepository(Protocol):
    def exists(self, project_id: str) -> bool: ...

    def load(self, project_id: str) -> Project: ...

    def load_or_create(self, project_id: str, header: ProjectHeader | None = None) -> Project: ...

    def update_header(self, project_id: str, header: ProjectHeader) -> None: ...

    def upsert_screen(self, project_id: str, record: ScreenRecord) -> None: ...

    def replace_flows(
        self, project_id: str, from_screen_id: str, edges: Sequence[FlowEdge]
    ) -> None: ...

    def append_messages(
        self, project_id: str, messages: Sequence[ConversationMessage]
    ) -> None: ...


class PrototypeRepository(Protocol):
    def publish(self, project_id: str, document: str) -> Path: ...

    def load(self, project_id: str) -> str: ...
