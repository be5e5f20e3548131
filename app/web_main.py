from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, cast

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, ORJSONResponse
from pydantic import BaseModel, Field

from adapters.filesystem.project_repository import FileSystemProjectRepository
from adapters.filesystem.prototype_repository import FileSystemPrototypeRepository
from adapters.layout.grid import GridLayoutEngine
from app.config import AppSettings, load_settings
from app.wiring import (
    build_arrow_renderer,
    build_composer,
    build_layout_engine,
    build_project_repository,
    build_prototype_repository,
)
from domain.models import LayoutRect, Project, Size, normalize_platform
from domain.services.arrow_routing import ArrowRenderer, ElementRectCache, document_token
from domain.services.canvas_transform import CanvasView, fit_camera
from domain.services.compose_prototype import PrototypeComposer
from domain.services.ingest_generation import GenerationSession, resync_flows

logger = logging.getLogger(__name__)


class GenerationPayload(BaseModel):
    chunks: list[str] = Field(default_factory=list)
    platform: str | None = None
    error: str | None = None


class ViewPayload(BaseModel):
    pan_x: float = 0.0
    pan_y: float = 0.0
    zoom: float = Field(default=1.0, gt=0)


class ElementRectPayload(BaseModel):
    element_index: int = Field(..., ge=0)
    x: float
    y: float
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)


class ScreenElementsPayload(BaseModel):
    screen_id: str
    token: str
    elements: list[ElementRectPayload] = Field(default_factory=list)


class ArrowsPayload(BaseModel):
    view: ViewPayload = ViewPayload()
    content_scale: float = Field(default=1.0, gt=0)
    platform: str | None = None
    screens: list[ScreenElementsPayload] = Field(default_factory=list)


@dataclass
class ScreenflowContext:
    settings: AppSettings
    projects: FileSystemProjectRepository
    prototypes: FileSystemPrototypeRepository
    layout: GridLayoutEngine
    composer: PrototypeComposer
    renderer: ArrowRenderer
    element_caches: dict[str, ElementRectCache] = field(default_factory=dict)
    project_locks: dict[str, threading.Lock] = field(default_factory=dict)
    guard: threading.Lock = field(default_factory=threading.Lock)

    def element_cache(self, project_id: str) -> ElementRectCache:
        with self.guard:
            return self.element_caches.setdefault(project_id, ElementRectCache())

    @contextmanager
    def project_lock(self, project_id: str) -> Iterator[None]:
        with self.guard:
            lock = self.project_locks.setdefault(project_id, threading.Lock())
        with lock:
            yield


def create_app(settings: AppSettings) -> FastAPI:
    app = FastAPI(title=settings.title)
    context = ScreenflowContext(
        settings=settings,
        projects=build_project_repository(settings),
        prototypes=build_prototype_repository(settings),
        layout=build_layout_engine(settings),
        composer=build_composer(settings),
        renderer=build_arrow_renderer(settings),
    )
    app.state.context = context

    @app.get("/api/projects")
    def api_projects(context: ScreenflowContext = Depends(get_context)) -> ORJSONResponse:
        return ORJSONResponse({"projects": context.projects.list_ids()})

    @app.get("/api/projects/{project_id}")
    def api_project(
        project_id: str,
        context: ScreenflowContext = Depends(get_context),
    ) -> ORJSONResponse:
        project = load_project(context, project_id)
        return ORJSONResponse(project_payload(project))

    @app.post("/api/projects/{project_id}/generations")
    def api_generation(
        project_id: str,
        payload: GenerationPayload,
        context: ScreenflowContext = Depends(get_context),
    ) -> ORJSONResponse:
        try:
            platform = normalize_platform(payload.platform or context.settings.default_platform)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        with context.project_lock(project_id):
            try:
                session = GenerationSession(context.projects, project_id, platform=platform)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            for chunk in payload.chunks:
                session.feed(chunk)
            report = session.fail(payload.error) if payload.error else session.finish()
        return ORJSONResponse(report.to_dict())

    @app.get("/api/projects/{project_id}/layout")
    def api_layout(
        project_id: str,
        platform: str | None = Query(default=None),
        viewport_width: float = Query(default=1280.0, gt=0),
        viewport_height: float = Query(default=800.0, gt=0),
        context: ScreenflowContext = Depends(get_context),
    ) -> ORJSONResponse:
        project = load_project(context, project_id)
        target_platform = resolve_platform(project, platform)
        plan = context.layout.build_plan(project.screens, target_platform)
        canvas = context.settings.canvas
        camera = fit_camera(
            plan.bounds,
            Size(viewport_width, viewport_height),
            padding=canvas.fit_padding,
            min_zoom=canvas.min_zoom,
            max_zoom=canvas.max_zoom,
        )
        tokens = {screen.id: document_token(screen) for screen in project.screens}
        return ORJSONResponse(
            {
                "platform": plan.platform,
                "placements": [
                    {
                        "screen_id": placement.screen_id,
                        "grid_column": placement.grid_column,
                        "grid_row": placement.grid_row,
                        "overlap_index": placement.overlap_index,
                        "rect": placement.rect.to_dict(),
                        "token": tokens[placement.screen_id],
                    }
                    for placement in plan.placements
                ],
                "bounds": plan.bounds.to_dict(),
                "camera": camera.to_dict(),
            }
        )

    @app.post("/api/projects/{project_id}/arrows")
    def api_arrows(
        project_id: str,
        payload: ArrowsPayload,
        context: ScreenflowContext = Depends(get_context),
    ) -> ORJSONResponse:
        project = load_project(context, project_id)
        target_platform = resolve_platform(project, payload.platform)
        plan = context.layout.build_plan(project.screens, target_platform)
        tokens = {screen.id: document_token(screen) for screen in project.screens}

        view = CanvasView(payload.view.pan_x, payload.view.pan_y, payload.view.zoom)
        cache = context.element_cache(project_id)
        ignored: list[str] = []
        with cache.lock:
            stale = cache.sync(tokens)
            for screen in payload.screens:
                if tokens.get(screen.screen_id) != screen.token:
                    ignored.append(screen.screen_id)
                    continue
                cache.store(
                    screen.screen_id,
                    screen.token,
                    {
                        element.element_index: LayoutRect(
                            element.x, element.y, element.width, element.height
                        )
                        for element in screen.elements
                    },
                )
            result = context.renderer.render(
                view, plan.rects(), project.flows, cache, payload.content_scale
            )
        head_size = context.renderer.config.head_size
        return ORJSONResponse(
            {
                "arrows": [arrow.to_dict(head_size) for arrow in result.arrows],
                "omitted": [edge.model_dump() for edge in result.omitted],
                "stale_screens": stale,
                "ignored_screens": ignored,
            }
        )

    @app.post("/api/projects/{project_id}/flows/resync")
    def api_resync_flows(
        project_id: str,
        context: ScreenflowContext = Depends(get_context),
    ) -> ORJSONResponse:
        load_project(context, project_id)
        with context.project_lock(project_id):
            report = resync_flows(context.projects, project_id)
        return ORJSONResponse(report.to_dict())

    @app.get("/api/projects/{project_id}/prototype", response_class=HTMLResponse)
    def api_prototype_preview(
        project_id: str,
        context: ScreenflowContext = Depends(get_context),
    ) -> HTMLResponse:
        project = load_project(context, project_id)
        html = context.composer.compose(
            project.screens, project.header.platform, project.header.name
        )
        return HTMLResponse(html)

    @app.post("/api/projects/{project_id}/publish")
    def api_publish(
        project_id: str,
        context: ScreenflowContext = Depends(get_context),
    ) -> ORJSONResponse:
        project = load_project(context, project_id)
        result = context.composer.compose_with_report(
            project.screens, project.header.platform, project.header.name
        )
        try:
            path = context.prototypes.publish(project_id, result.html)
        except OSError as exc:
            logger.exception("Publishing prototype %s failed.", project_id)
            raise HTTPException(status_code=500, detail="Publishing failed") from exc
        return ORJSONResponse(
            {
                "status": "ok",
                "project_id": project_id,
                "url": f"/p/{project_id}",
                "path": str(path),
                "root_screen_id": result.root_screen_id,
                "notices": [notice.model_dump() for notice in result.notices],
            }
        )

    @app.get("/p/{project_id}", response_class=HTMLResponse)
    def published_prototype(
        project_id: str,
        context: ScreenflowContext = Depends(get_context),
    ) -> HTMLResponse:
        try:
            html = context.prototypes.load(project_id)
        except (FileNotFoundError, ValueError) as exc:
            raise HTTPException(status_code=404, detail="Prototype not found") from exc
        return HTMLResponse(html)

    return app


def get_context(request: Request) -> ScreenflowContext:
    return cast(ScreenflowContext, request.app.state.context)


def load_project(context: ScreenflowContext, project_id: str) -> Project:
    try:
        return context.projects.load(project_id)
    except (FileNotFoundError, ValueError) as exc:
        raise HTTPException(status_code=404, detail="Project not found") from exc


def resolve_platform(project: Project, platform: str | None) -> str:
    try:
        return normalize_platform(platform or project.header.platform)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def project_payload(project: Project) -> dict[str, Any]:
    return {
        "project_id": project.project_id,
        "header": project.header.model_dump(),
        "screens": [screen.to_dict() for screen in project.ordered_screens()],
        "flows": [edge.model_dump() for edge in project.flows],
        "messages": [message.model_dump() for message in project.messages],
    }


app = create_app(load_settings())
