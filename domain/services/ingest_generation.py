from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from domain.models import (
    ConversationMessage,
    FlowEdge,
    Notice,
    Project,
    ProjectHeader,
    ScreenRecord,
)
from domain.ports.repositories import ProjectRepository
from domain.services.extract_flows import extract_flows, validate_flows
from domain.services.stream_parser import (
    HeaderUpdated,
    IncrementalScreenParser,
    MessageEmitted,
    NoticeRaised,
    ParseEvent,
    ScreenClosed,
)

logger = logging.getLogger(__name__)

_WARNING_KINDS = frozenset(
    {"truncated_generation", "duplicate_root", "dangling_flow_target", "generation_error"}
)


@dataclass
class GenerationReport:
    project_id: str
    created: List[str] = field(default_factory=list)
    replaced: List[str] = field(default_factory=list)
    flows: List[FlowEdge] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    header: Dict[str, str] = field(default_factory=dict)
    notices: List[Notice] = field(default_factory=list)
    root_screen_id: Optional[str] = None

    @property
    def truncated(self) -> bool:
        return any(notice.kind == "truncated_generation" for notice in self.notices)

    @property
    def screen_ids(self) -> List[str]:
        return [*self.created, *self.replaced]

    def to_dict(self) -> dict[str, object]:
        return {
            "project_id": self.project_id,
            "created": list(self.created),
            "replaced": list(self.replaced),
            "flows": [edge.model_dump() for edge in self.flows],
            "messages": list(self.messages),
            "header": dict(self.header),
            "notices": [notice.model_dump() for notice in self.notices],
            "root_screen_id": self.root_screen_id,
            "truncated": self.truncated,
        }


class GenerationSession:
    """Applies one generation stream to a stored project.

    Screens are persisted as soon as their closing marker arrives so that a
    truncated stream keeps everything finalized before the cut. A closed screen's
    edges replace its stored ones right away, checked against the ids known at
    that point, and are validated again once the stream ends and the full set
    of screen ids is known.
    """

    def __init__(
        self,
        repository: ProjectRepository,
        project_id: str,
        platform: str | None = None,
    ) -> None:
        self.repository = repository
        self.project_id = project_id
        header = ProjectHeader(platform=platform) if platform else None
        project = repository.load_or_create(project_id, header=header)
        existing_root = project.root_screens()
        self._existing_root_id = existing_root[0].id if existing_root else None
        self.parser = IncrementalScreenParser(
            occupied_positions=[screen.grid_position for screen in project.screens],
            known_screen_ids=project.screen_ids(),
            first_sort_order=project.next_sort_order(),
            expect_root=self._existing_root_id is None,
        )
        self.report = GenerationReport(project_id=project_id)
        self._pending_flows: Dict[str, List[FlowEdge]] = {}
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def feed(self, chunk: str) -> List[ParseEvent]:
        events = self.parser.feed(chunk)
        self._apply(events)
        return events

    def fail(self, message: str) -> GenerationReport:
        self.report.notices.append(
            Notice(kind="generation_error", message=f"Generation failed: {message}")
        )
        return self.finish()

    def finish(self) -> GenerationReport:
        self._apply(self.parser.close())
        self._finished = True

        project = self.repository.load(self.project_id)
        known_ids = project.screen_ids()
        for screen_id, edges in self._pending_flows.items():
            kept, notices = validate_flows(edges, known_ids)
            self.repository.replace_flows(self.project_id, screen_id, kept)
            self.report.flows.extend(kept)
            self.report.notices.extend(notices)

        if self.report.messages:
            self.repository.append_messages(
                self.project_id,
                [
                    ConversationMessage(role="assistant", content=text)
                    for text in self.report.messages
                ],
            )
        roots = self.repository.load(self.project_id).root_screens()
        self.report.root_screen_id = roots[0].id if roots else None

        for notice in self.report.notices:
            level = logging.WARNING if notice.kind in _WARNING_KINDS else logging.INFO
            logger.log(level, "Project %s: %s", self.project_id, notice.message)
        logger.info(
            "Project %s: %d screens created, %d replaced, %d flows",
            self.project_id,
            len(self.report.created),
            len(self.report.replaced),
            len(self.report.flows),
        )
        return self.report

    def _apply(self, events: Iterable[ParseEvent]) -> None:
        for event in events:
            if isinstance(event, HeaderUpdated):
                self._update_header(event)
            elif isinstance(event, MessageEmitted):
                self.report.messages.append(event.text)
            elif isinstance(event, NoticeRaised):
                self.report.notices.append(event.notice)
            elif isinstance(event, ScreenClosed):
                self._store_screen(event)

    def _update_header(self, event: HeaderUpdated) -> None:
        project = self.repository.load(self.project_id)
        header = project.header.model_copy(update={event.field: event.value})
        self.repository.update_header(self.project_id, header)
        self.report.header[event.field] = event.value

    def _store_screen(self, event: ScreenClosed) -> None:
        project = self.repository.load(self.project_id)
        record = self._merge_with_stored(project, event)
        self.repository.upsert_screen(self.project_id, record)
        if project.screen_by_id(record.id) is None:
            self.report.created.append(record.id)
        elif record.id not in self.report.created and record.id not in self.report.replaced:
            self.report.replaced.append(record.id)
        edges = extract_flows(record.id, record.body)
        self._pending_flows[record.id] = edges
        # Stored edges always match the stored body; forward targets return in finish().
        kept, _ = validate_flows(edges, project.screen_ids() | {record.id})
        self.repository.replace_flows(self.project_id, record.id, kept)

    def _merge_with_stored(self, project: Project, event: ScreenClosed) -> ScreenRecord:
        record = event.record
        prior = project.screen_by_id(record.id)
        updates: Dict[str, object] = {}
        if prior is not None:
            updates["sort_order"] = prior.sort_order
            if not event.position_explicit:
                updates["grid_column"] = prior.grid_column
                updates["grid_row"] = prior.grid_row
            if prior.is_root:
                updates["is_root"] = True

        if record.is_root and self._existing_root_id not in (None, record.id):
            self.report.notices.append(
                Notice(
                    kind="duplicate_root",
                    message=(
                        f"Screen '{record.name}' is marked [ROOT] but the project "
                        f"already starts at '{self._existing_root_id}'"
                    ),
                    screen_id=record.id,
                    detail={"root_screen_id": self._existing_root_id},
                )
            )
            updates["is_root"] = False
        return record.model_copy(update=updates) if updates else record


def ingest_chunks(
    repository: ProjectRepository,
    project_id: str,
    chunks: Iterable[str],
    platform: str | None = None,
) -> GenerationReport:
    session = GenerationSession(repository, project_id, platform=platform)
    for chunk in chunks:
        session.feed(chunk)
    return session.finish()


def resync_flows(repository: ProjectRepository, project_id: str) -> GenerationReport:
    """Recompute every screen's flow edges from its stored body."""
    project = repository.load(project_id)
    known_ids = project.screen_ids()
    report = GenerationReport(project_id=project_id)
    for screen in project.ordered_screens():
        kept, notices = validate_flows(extract_flows(screen.id, screen.body), known_ids)
        repository.replace_flows(project_id, screen.id, kept)
        report.flows.extend(kept)
        report.notices.extend(notices)
    roots = project.root_screens()
    report.root_screen_id = roots[0].id if roots else None
    if project.screens and not roots:
        report.notices.append(
            Notice(kind="missing_entry_point", message="Project has no [ROOT] screen")
        )
    return report
