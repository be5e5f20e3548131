from __future__ import annotations

from dataclasses import replace

from adapters.filesystem.project_repository import FileSystemProjectRepository
from adapters.filesystem.prototype_repository import FileSystemPrototypeRepository
from adapters.layout.grid import GridLayoutEngine, LayoutConfig, PlatformProfile
from adapters.sse.generation_stream import HttpGenerationSource
from app.config import AppSettings, PlatformGridSettings
from domain.services.arrow_routing import ArrowConfig, ArrowRenderer
from domain.services.compose_prototype import ComposeOptions, PrototypeComposer


def build_project_repository(settings: AppSettings) -> FileSystemProjectRepository:
    return FileSystemProjectRepository(settings.storage.projects_dir)


def build_prototype_repository(settings: AppSettings) -> FileSystemPrototypeRepository:
    return FileSystemPrototypeRepository(settings.storage.prototypes_dir)


def build_layout_engine(settings: AppSettings) -> GridLayoutEngine:
    defaults = LayoutConfig()
    overrides = {"mobile": settings.canvas.mobile, "desktop": settings.canvas.desktop}
    profiles = {
        platform: _apply_gaps(profile, overrides[platform])
        for platform, profile in defaults.profiles.items()
    }
    return GridLayoutEngine(
        LayoutConfig(profiles=profiles, overlap_offset=settings.canvas.overlap_offset)
    )


def _apply_gaps(profile: PlatformProfile, grid: PlatformGridSettings) -> PlatformProfile:
    return replace(
        profile,
        gap_x=profile.gap_x if grid.gap_x is None else grid.gap_x,
        gap_y=profile.gap_y if grid.gap_y is None else grid.gap_y,
    )


def build_arrow_renderer(settings: AppSettings) -> ArrowRenderer:
    canvas = settings.canvas
    return ArrowRenderer(
        ArrowConfig(
            clearance=canvas.arrow_clearance,
            fan_angle_degrees=canvas.fan_angle_degrees,
            curvature=canvas.curvature,
        )
    )


def build_composer(settings: AppSettings) -> PrototypeComposer:
    return PrototypeComposer(
        ComposeOptions(
            stylesheet_href=settings.prototype.stylesheet_href or None,
            highlight_hotspots=settings.prototype.highlight_hotspots,
        )
    )


def build_generation_source(settings: AppSettings) -> HttpGenerationSource:
    generator = settings.generator
    if not generator.endpoint_url:
        msg = "generator.endpoint_url is required to request generations"
        raise ValueError(msg)
    headers = {"Authorization": f"Bearer {generator.api_key}"} if generator.api_key else None
    return HttpGenerationSource(
        generator.endpoint_url,
        timeout_seconds=generator.timeout_seconds,
        headers=headers,
    )
