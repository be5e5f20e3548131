from __future__ import annotations

import logging
import sys
from collections.abc import Iterable, Iterator
from pathlib import Path

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from adapters.sse.generation_stream import GenerationStreamError, iter_sse_chunks, split_chunks
from app.config import AppSettings, load_settings
from app.wiring import (
    build_composer,
    build_generation_source,
    build_layout_engine,
    build_project_repository,
    build_prototype_repository,
)
from domain.models import Notice, Project, normalize_platform
from domain.services.ingest_generation import GenerationReport, GenerationSession, resync_flows

app = typer.Typer(no_args_is_help=True)
console = Console()

_FAILING_KINDS = frozenset({"dangling_flow_target", "broken_link", "missing_entry_point"})


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="YAML settings file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    try:
        ctx.obj = load_settings(config)
    except FileNotFoundError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc


def _settings(ctx: typer.Context) -> AppSettings:
    settings = ctx.obj
    return settings if isinstance(settings, AppSettings) else load_settings()


def _load_project(settings: AppSettings, project_id: str) -> Project:
    try:
        return build_project_repository(settings).load(project_id)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc


def _print_notices(notices: Iterable[Notice]) -> None:
    for notice in notices:
        color = "red" if notice.kind in _FAILING_KINDS else "yellow"
        console.print(f"[{color}]{notice.kind}[/] {notice.message}")


def _print_report(report: GenerationReport) -> None:
    for screen_id in report.created:
        console.print(f"[green]Created[/] {screen_id}")
    for screen_id in report.replaced:
        console.print(f"[cyan]Replaced[/] {screen_id}")
    console.print(f"Flows: {len(report.flows)}  Root: {report.root_screen_id or '-'}")
    _print_notices(report.notices)


def _read_stream(path: Path, chunk_size: int) -> Iterator[str]:
    text = path.read_text(encoding="utf-8")
    if text.lstrip().startswith("data:"):
        return iter_sse_chunks(text.splitlines())
    return split_chunks(text, chunk_size)


def _run_session(session: GenerationSession, chunks: Iterable[str]) -> GenerationReport:
    try:
        for chunk in chunks:
            session.feed(chunk)
    except (GenerationStreamError, httpx.HTTPError) as exc:
        return session.fail(str(exc) or type(exc).__name__)
    return session.finish()


@app.command("ingest")
def ingest(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project to write screens into."),
    stream_path: Path = typer.Argument(..., help="Raw model output or SSE-framed stream file."),
    platform: str | None = typer.Option(None, help="Platform for a new project."),
    chunk_size: int = typer.Option(0, help="Replay raw text in chunks of this size."),
) -> None:
    settings = _settings(ctx)
    if not stream_path.exists():
        console.print(f"[red]File not found:[/] {stream_path}")
        raise typer.Exit(code=1)
    try:
        session = GenerationSession(
            build_project_repository(settings),
            project_id,
            platform=normalize_platform(platform or settings.default_platform),
        )
    except ValueError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc
    report = _run_session(session, _read_stream(stream_path, chunk_size))
    _print_report(report)


@app.command("generate")
def generate(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project to write screens into."),
    prompt: str = typer.Argument(..., help="Design request sent to the generation endpoint."),
    platform: str | None = typer.Option(None, help="Platform for a new project."),
) -> None:
    settings = _settings(ctx)
    try:
        source = build_generation_source(settings)
        repository = build_project_repository(settings)
        session = GenerationSession(
            repository,
            project_id,
            platform=normalize_platform(platform or settings.default_platform),
        )
    except ValueError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc
    project = repository.load(project_id)
    chunks = source.stream(prompt, project.ordered_screens(), project.messages)
    report = _run_session(session, chunks)
    _print_report(report)
    if any(notice.kind == "generation_error" for notice in report.notices):
        raise typer.Exit(code=1)


@app.command("compose")
def compose(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project to compose."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write HTML here."),
) -> None:
    settings = _settings(ctx)
    project = _load_project(settings, project_id)
    result = build_composer(settings).compose_with_report(
        project.screens, project.header.platform, project.header.name
    )
    if output is None:
        sys.stdout.write(result.html)
    else:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(result.html, encoding="utf-8")
        console.print(f"[green]Wrote[/] {output}")
    _print_notices(result.notices)


@app.command("publish")
def publish(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project to publish."),
) -> None:
    settings = _settings(ctx)
    project = _load_project(settings, project_id)
    result = build_composer(settings).compose_with_report(
        project.screens, project.header.platform, project.header.name
    )
    path = build_prototype_repository(settings).publish(project_id, result.html)
    console.print(f"[green]Published[/] {path}")
    _print_notices(result.notices)


@app.command("layout")
def layout(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project to lay out."),
    platform: str | None = typer.Option(None, help="Override the project's platform."),
) -> None:
    settings = _settings(ctx)
    project = _load_project(settings, project_id)
    try:
        target_platform = normalize_platform(platform or project.header.platform)
    except ValueError as exc:
        console.print(f"[red]{exc}[/]")
        raise typer.Exit(code=1) from exc
    plan = build_layout_engine(settings).build_plan(project.screens, target_platform)

    table = Table(title=f"{project.header.name or project_id} ({target_platform})")
    for column in ("screen", "cell", "x", "y", "width", "height"):
        table.add_column(column)
    for placement in plan.placements:
        rect = placement.rect
        cell = f"{placement.grid_column},{placement.grid_row}"
        if placement.overlap_index:
            cell += f" (+{placement.overlap_index})"
        table.add_row(
            placement.screen_id,
            cell,
            f"{rect.x:g}",
            f"{rect.y:g}",
            f"{rect.width:g}",
            f"{rect.height:g}",
        )
    console.print(table)
    bounds = plan.bounds
    console.print(
        f"Bounds: ({bounds.min_x:g}, {bounds.min_y:g}) - ({bounds.max_x:g}, {bounds.max_y:g})"
    )


@app.command("validate")
def validate(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project to check."),
) -> None:
    settings = _settings(ctx)
    project = _load_project(settings, project_id)
    report = resync_flows(build_project_repository(settings), project_id)
    composed = build_composer(settings).compose_with_report(
        project.screens, project.header.platform, project.header.name
    )
    notices = [
        *report.notices,
        *(notice for notice in composed.notices if notice.kind != "missing_entry_point"),
    ]
    console.print(f"Screens: {len(project.screens)}  Flows: {len(report.flows)}")
    _print_notices(notices)
    if any(notice.kind in _FAILING_KINDS for notice in notices):
        raise typer.Exit(code=1)
    console.print(f"[green]Project is consistent:[/] {project_id}")


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Bind port."),
) -> None:
    import uvicorn

    from app.web_main import create_app

    uvicorn.run(create_app(_settings(ctx)), host=host, port=port)


if __name__ == "__main__":
    app()
