"""CLI entry point for the imgflow image processing client.

Provides commands:
  - upload: Validate an image, upload it with operations, wait for the result
  - status: Show the processing status of a job
  - list: Page through the gallery with local status filter and search
  - url: Request a temporary access URL for one version of an image
  - download: Save one version of an image to disk
  - delete: Remove an image and all its versions
  - stats: Display the service's aggregate processing statistics
  - health: Probe the service liveness endpoint
  - config: Manage configuration (API token, settings)
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Any, Coroutine, TypeVar

import pydantic
import typer
from rich.console import Console
from rich.table import Table

from imgflow.config import ImgflowConfig, load_config, set_api_token
from imgflow.exceptions import ErrorEnvelope, ImgflowError
from imgflow.listing import ListingCache
from imgflow.models import Job, JobStatus, SelectedResource
from imgflow.operations import (
    DEFAULT_WATERMARK_OPACITY,
    Operation,
    OperationType,
    Resize,
    Thumbnail,
    Watermark,
    WatermarkPosition,
    parse_operation,
)
from imgflow.tracing import configure_file_logging
from imgflow.transport import ImageProcessorClient
from imgflow.workflow import SubmissionProgressTracker, SubmissionWorkflow

logger = logging.getLogger(__name__)

T = TypeVar("T")

app = typer.Typer(
    help="imgflow - Upload images for remote processing and browse the gallery",
    rich_markup_mode="rich",
)
console = Console()

config_app = typer.Typer(help="Manage configuration (API token, settings)")
app.add_typer(config_app, name="config")

_STATUS_STYLE = {
    JobStatus.QUEUED: "yellow",
    JobStatus.UPLOADING: "blue",
    JobStatus.PROCESSING: "blue",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}


@app.callback()
def app_callback(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to imgflow_config.json"),
    ] = None,
    base_url: Annotated[
        str | None,
        typer.Option("--base-url", help="Service API base URL (overrides config)"),
    ] = None,
    log_dir: Annotated[
        Path | None,
        typer.Option("--log-dir", help="Write JSON-lines debug logs to this directory"),
    ] = None,
) -> None:
    """Load configuration shared by every command."""
    config = load_config(config_path)
    if base_url:
        config.base_url = base_url
    if log_dir is not None:
        configure_file_logging(str(log_dir))
    ctx.obj = config


def _make_client(config: ImgflowConfig) -> ImageProcessorClient:
    return ImageProcessorClient.from_config(config)


def _print_error(envelope: ErrorEnvelope) -> None:
    console.print(f"[red]{envelope.kind.value}:[/red] {envelope.message}")


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro*, turning any enveloped failure into exit code 1."""
    try:
        return asyncio.run(coro)
    except ImgflowError as exc:
        _print_error(exc.envelope)
        raise typer.Exit(code=1)


def _status_text(status: JobStatus) -> str:
    style = _STATUS_STYLE.get(status, "")
    return f"[{style}]{status.value}[/{style}]" if style else status.value


def _format_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def _parse_box(value: str) -> tuple[int | None, int | None]:
    """Parse ``WxH``, ``Wx`` or ``xH`` into a (width, height) pair."""
    width_text, sep, height_text = value.lower().partition("x")
    if not sep:
        raise typer.BadParameter("expected WIDTHxHEIGHT, e.g. 800x600 or 800x")
    try:
        width = int(width_text) if width_text else None
        height = int(height_text) if height_text else None
    except ValueError:
        raise typer.BadParameter(f"not a size: {value!r}") from None
    return width, height


def _parse_descriptor(value: str) -> Operation:
    """Parse a JSON ``{"type", "parameters"}`` operation descriptor."""
    try:
        descriptor = json.loads(value)
    except json.JSONDecodeError:
        raise typer.BadParameter(f"not JSON: {value!r}") from None
    if not isinstance(descriptor, dict):
        raise typer.BadParameter("operation descriptor must be a JSON object")
    return parse_operation(descriptor)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@app.command()
def upload(
    ctx: typer.Context,
    file: Annotated[
        Path,
        typer.Argument(exists=True, dir_okay=False, readable=True, help="Image file to upload"),
    ],
    thumbnail: Annotated[
        int | None,
        typer.Option("--thumbnail", "-t", help="Create a thumbnail of this size (1-1000 px)"),
    ] = None,
    crop: Annotated[
        bool,
        typer.Option("--crop", help="Crop the thumbnail to fill the square"),
    ] = False,
    resize: Annotated[
        str | None,
        typer.Option("--resize", "-r", help="Resize to WIDTHxHEIGHT (either side may be omitted)"),
    ] = None,
    keep_aspect: Annotated[
        bool,
        typer.Option("--keep-aspect/--no-keep-aspect", help="Preserve aspect ratio when resizing"),
    ] = True,
    watermark: Annotated[
        str | None,
        typer.Option("--watermark", "-w", help="Add a text watermark"),
    ] = None,
    opacity: Annotated[
        float,
        typer.Option("--opacity", help="Watermark opacity (0.0-1.0)"),
    ] = DEFAULT_WATERMARK_OPACITY,
    position: Annotated[
        WatermarkPosition,
        typer.Option("--position", help="Watermark position"),
    ] = WatermarkPosition.BOTTOM_RIGHT,
    op: Annotated[
        list[str] | None,
        typer.Option("--op", help='Extra operation as JSON, e.g. {"type": "resize", "parameters": {"width": 640}}'),
    ] = None,
) -> None:
    """Upload an image with the requested operations and wait for processing."""
    config: ImgflowConfig = ctx.obj

    operations: list[Operation] = []
    try:
        if thumbnail is not None:
            operations.append(Thumbnail(size=thumbnail, crop_to_fit=crop))
        if resize is not None:
            width, height = _parse_box(resize)
            operations.append(Resize(width=width, height=height, keep_aspect=keep_aspect))
        if watermark is not None:
            operations.append(Watermark(text=watermark, opacity=opacity, position=position))
        for raw in op or []:
            operations.append(_parse_descriptor(raw))
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        console.print(f"[red]ValidationError:[/red] {first['msg']}")
        raise typer.Exit(code=1)

    async def _submit() -> tuple[Job, dict[str, str]]:
        async with _make_client(config) as client:
            workflow = SubmissionWorkflow(client, config)
            tracker = SubmissionProgressTracker(console)
            with tracker:
                subscription = workflow.subscribe(tracker.on_snapshot)
                try:
                    workflow.select(SelectedResource.from_path(file))
                    workflow.validate()
                    job = await workflow.submit(operations)
                finally:
                    subscription.dispose()
            names = [OperationType.ORIGINAL.value] + [op.type for op in operations]
            return job, {name: client.resource_url(job.id, name) for name in dict.fromkeys(names)}

    job, urls = _run(_submit())

    console.print(f"[green]Done:[/green] job [bold]{job.id}[/bold] {_status_text(job.status)}")
    table = Table(title="Versions")
    table.add_column("Operation", style="bold")
    table.add_column("URL")
    for name, url in urls.items():
        table.add_row(name, url)
    console.print(table)


@app.command()
def status(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job identifier")],
) -> None:
    """Show the processing status of a job."""
    config: ImgflowConfig = ctx.obj

    async def _fetch() -> Job:
        async with _make_client(config) as client:
            return await client.fetch_status(job_id)

    job = _run(_fetch())

    table = Table(title=f"Job {job.id}")
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Status", _status_text(job.status))
    table.add_row("Progress", f"{job.progress}%")
    table.add_row("Operations", f"{job.processed_operations}/{job.total_operations}")
    if job.error_message:
        table.add_row("Error", f"[red]{job.error_message}[/red]")
    console.print(table)


@app.command("list")
def list_images(
    ctx: typer.Context,
    page: Annotated[
        int,
        typer.Option("--page", "-p", help="Page number (1-based)"),
    ] = 1,
    status_filter: Annotated[
        JobStatus | None,
        typer.Option("--status", "-s", help="Only show records with this status"),
    ] = None,
    search: Annotated[
        str | None,
        typer.Option("--search", "-q", help="Filename substring (case-insensitive)"),
    ] = None,
) -> None:
    """Page through uploaded images, filtering the page locally."""
    config: ImgflowConfig = ctx.obj

    async def _load() -> ListingCache:
        async with _make_client(config) as client:
            cache = ListingCache(client.list_resources, page_size=config.page_size)
            await cache.load_page(page - 1, status_filter=status_filter)
            if search:
                cache.apply_search(search)
            return cache

    cache = _run(_load())
    records = cache.visible

    if not records:
        console.print("[yellow]No images found.[/yellow]")
    else:
        table = Table(title="Images")
        table.add_column("ID", style="dim")
        table.add_column("Filename", style="bold")
        table.add_column("Size", justify="right")
        table.add_column("Created")
        table.add_column("Status")
        for record in records:
            created = record.created_at.strftime("%Y-%m-%d %H:%M") if record.created_at else "-"
            table.add_row(
                record.id,
                record.filename,
                _format_size(record.size_bytes),
                created,
                _status_text(record.status),
            )
        console.print(table)

    console.print(
        f"[dim]Page {page} of {max(cache.total_pages, 1)} "
        f"({cache.window.total_count} images total)[/dim]"
    )


@app.command()
def url(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job identifier")],
    operation: Annotated[
        OperationType,
        typer.Option("--operation", "-o", help="Which version of the image"),
    ] = OperationType.ORIGINAL,
    expiry: Annotated[
        int,
        typer.Option("--expiry", "-e", help="URL lifetime in seconds"),
    ] = 3600,
) -> None:
    """Request a temporary access URL for one version of an image."""
    config: ImgflowConfig = ctx.obj

    async def _fetch():
        async with _make_client(config) as client:
            return await client.fetch_temporary_access_url(job_id, operation, expiry_seconds=expiry)

    access = _run(_fetch())
    console.print(access.url)
    console.print(f"[dim](expires in {access.expiry}s)[/dim]")


@app.command()
def download(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job identifier")],
    output: Annotated[Path, typer.Argument(help="Destination file")],
    operation: Annotated[
        OperationType,
        typer.Option("--operation", "-o", help="Which version of the image"),
    ] = OperationType.ORIGINAL,
) -> None:
    """Save one version of an image to disk."""
    config: ImgflowConfig = ctx.obj

    async def _fetch():
        async with _make_client(config) as client:
            return await client.fetch_resource_at(job_id, operation)

    content = _run(_fetch())
    output.write_bytes(content.data)
    console.print(
        f"[green]Saved[/green] {operation.value} of {job_id} to {output} "
        f"({_format_size(len(content.data))}, {content.content_type})"
    )


@app.command()
def delete(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job identifier")],
    confirm: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Delete an image and all its processed versions."""
    config: ImgflowConfig = ctx.obj

    if not confirm:
        typer.confirm(f"Delete image {job_id} and all its versions?", abort=True)

    async def _remove():
        async with _make_client(config) as client:
            return await client.remove(job_id)

    ack = _run(_remove())
    if not ack.success:
        console.print(f"[red]ServerError:[/red] {ack.message or 'delete was not acknowledged'}")
        raise typer.Exit(code=1)
    suffix = f" ({ack.message})" if ack.message else ""
    console.print(f"[green]Deleted[/green] {ack.id}{suffix}")


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@app.command()
def stats(ctx: typer.Context) -> None:
    """Display aggregate processing statistics."""
    config: ImgflowConfig = ctx.obj

    async def _fetch():
        async with _make_client(config) as client:
            return await client.fetch_aggregate_telemetry()

    snapshot = _run(_fetch())

    table = Table(title="Processing Statistics")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Images uploaded", str(snapshot.total_images_uploaded))
    table.add_row("Images processed", f"[green]{snapshot.total_images_processed}[/green]")
    table.add_row("Images failed", f"[red]{snapshot.total_images_failed}[/red]")
    table.add_row("Data processed", f"{snapshot.total_data_processed_mb:.2f} MB")
    table.add_row("Avg processing time", f"{snapshot.average_processing_time_ms:.0f} ms")
    console.print(table)

    if snapshot.operation_statistics:
        ops_table = Table(title="By Operation")
        ops_table.add_column("Operation", style="bold")
        ops_table.add_column("Total", justify="right")
        ops_table.add_column("Succeeded", justify="right")
        ops_table.add_column("Failed", justify="right")
        ops_table.add_column("Avg time", justify="right")
        for stat in snapshot.operation_statistics:
            ops_table.add_row(
                stat.operation_type,
                str(stat.total_count),
                f"[green]{stat.success_count}[/green]",
                f"[red]{stat.failure_count}[/red]",
                f"{stat.average_processing_time_ms:.0f} ms",
            )
        console.print(ops_table)


@app.command()
def health(ctx: typer.Context) -> None:
    """Check whether the service is reachable."""
    config: ImgflowConfig = ctx.obj

    async def _probe() -> bool:
        async with _make_client(config) as client:
            return await client.health_check()

    if asyncio.run(_probe()):
        console.print(f"[green]OK[/green] {config.base_url}")
        return
    console.print(f"[red]Unreachable:[/red] {config.base_url}")
    raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _mask(secret: str) -> str:
    if len(secret) > 8:
        return secret[:4] + "*" * (len(secret) - 4)
    return secret[:1] + "*" * max(1, len(secret) - 1)


@config_app.command("set-token")
def set_token(
    token: Annotated[
        str,
        typer.Argument(help="API token to store in the system keyring"),
    ],
) -> None:
    """Store the service API token in the system keyring (service: imgflow)."""
    if not token or token.strip() == "":
        console.print("[red]Error:[/red] API token cannot be empty")
        raise typer.Exit(code=1)

    try:
        set_api_token(token.strip())
    except Exception as e:
        console.print(f"[red]Error:[/red] Failed to store API token: {e}")
        raise typer.Exit(code=1)
    console.print("[green]OK[/green] API token stored in system keyring (service: imgflow)")


@config_app.command("show")
def show_config(ctx: typer.Context) -> None:
    """Display the effective configuration (token masked)."""
    config: ImgflowConfig = ctx.obj
    token = config.api_token

    table = Table(title="imgflow configuration")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("Base URL", config.base_url)
    table.add_row("Timeout", f"{config.timeout_seconds:g}s")
    table.add_row("Poll interval", f"{config.poll_interval_ms} ms")
    table.add_row("Poll attempts", str(config.poll_max_attempts))
    table.add_row("Max upload", _format_size(config.max_file_size))
    table.add_row("Allowed types", ", ".join(sorted(config.allowed_mime_types)))
    table.add_row("Page size", str(config.page_size))
    table.add_row("API token", _mask(token) if token else "[dim]not set[/dim]")
    console.print(table)
