"""Rich command-line interface powered by Typer."""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from pixel_morph.animation import GifRecorder, record_morph
from pixel_morph.config import Algorithm, GenerationSettings
from pixel_morph.events import Cancelled, Done, Failed
from pixel_morph.events import Progress as ProgressUpdate
from pixel_morph.heuristics import assignment_cost
from pixel_morph.image_io import (
    TargetImage,
    assignments_to_image,
    load_image,
    load_weights,
    prepare_images,
    save_upscaled,
)
from pixel_morph.jobs import JobWorker
from pixel_morph.morph_sim import init_image
from pixel_morph.presets import UnprocessedPreset, list_presets, load_preset, save_preset

app = typer.Typer(
    name="pixel-morph",
    help="Rearrange the pixels of an image into a target picture and animate the morph.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()

# Defaults come from GenerationSettings - single source of truth
_DEFAULTS = GenerationSettings()
_STORE = Path("presets")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=True)],
    )


# -- solve command -----------------------------------------------------

@app.command()
def solve(
    source: Path = typer.Argument(..., help="Image whose pixels get rearranged"),
    target: Path = typer.Option(..., "--target", "-t", help="Image to approximate"),
    weights: Path | None = typer.Option(
        None, "--weights", "-w", help="Importance map (red channel); uniform if omitted",
    ),
    sidelen: int = typer.Option(
        _DEFAULTS.sidelen, "--sidelen", "-s", help="Side of the square pixel grid",
    ),
    proximity: float = typer.Option(
        _DEFAULTS.proximity_importance, "--proximity", "-p",
        help="How strongly pixels prefer to stay near their origin",
    ),
    algorithm: Algorithm = typer.Option(
        _DEFAULTS.algorithm, "--algorithm", "-a", help="'optimal' or 'genetic'",
    ),
    name: str | None = typer.Option(None, "--name", "-n", help="Preset name"),
    store: Path = typer.Option(_STORE, "--store", help="Preset folder"),
    upscale: int = typer.Option(8, "--upscale", "-u", help="Preview upscale factor"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Solve SOURCE against TARGET and store the result as a preset."""
    _setup_logging(verbose)

    settings = GenerationSettings(
        name=name or source.stem,
        proximity_importance=proximity,
        algorithm=algorithm,
        sidelen=sidelen,
    )
    unprocessed = UnprocessedPreset(name=settings.name, image=load_image(source))
    target_image = TargetImage(
        image=load_image(target),
        weights=load_weights(weights) if weights else None,
    )

    console.print(Panel.fit(
        f"[bold]PIXEL MORPH[/bold]\n"
        f"Source: {source.name}  |  Target: {target.name}\n"
        f"Grid: {sidelen}x{sidelen}  |  Solver: {settings.algorithm.value}\n"
        f"Proximity: {proximity}",
        border_style="cyan",
    ))

    job_id = uuid.uuid4().hex
    t0 = time.perf_counter()
    result = None
    with JobWorker() as worker, Progress(
        TextColumn("[bold cyan]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>5.1f}%"),
        TimeElapsedColumn(),
        console=console,
    ) as bar:
        task = bar.add_task(settings.algorithm.value, total=1.0)
        worker.start(job_id, unprocessed, target_image, settings)
        try:
            for event in worker.events(job_id):
                update = event.update
                if isinstance(update, ProgressUpdate):
                    bar.update(task, completed=update.value)
                elif isinstance(update, Done):
                    bar.update(task, completed=1.0)
                    result = update.preset
                elif isinstance(update, Failed):
                    console.print(f"[red]✗ {update.message}[/red]")
                    raise typer.Exit(1)
                elif isinstance(update, Cancelled):
                    console.print("[yellow]Cancelled[/yellow]")
                    raise typer.Exit(1)
        except KeyboardInterrupt:
            worker.cancel(job_id)
            raise

    store.mkdir(parents=True, exist_ok=True)
    meta = save_preset(store, result)

    images = prepare_images(unprocessed.image, target_image, settings)
    preview = assignments_to_image(images.source_pixels, result.assignments, images.sidelen)
    preview_path = store / meta.id / "preview.png"
    save_upscaled(preview[..., :3], preview_path, upscale)

    cost = assignment_cost(
        result.assignments, images.source_pixels, images.target_pixels,
        images.weights, images.sidelen, proximity,
    )
    console.print(
        f"[green]✓[/green] Preset [bold]{meta.id}[/bold] saved to {store}/  "
        f"[dim]cost={cost:.3g}  time={time.perf_counter() - t0:.1f}s[/dim]"
    )


# -- animate command ---------------------------------------------------

@app.command()
def animate(
    preset_id: str = typer.Argument(..., help="Id of a stored preset"),
    store: Path = typer.Option(_STORE, "--store", help="Preset folder"),
    output: Path = typer.Option(Path("morph.gif"), "--output", "-o"),
    frames: int = typer.Option(140, "--frames", "-f", help="Frames to record"),
    ticks: int = typer.Option(4, "--ticks", help="Simulation ticks per frame"),
    resolution: int = typer.Option(400, "--resolution", "-r"),
    reverse: bool = typer.Option(False, "--reverse/--forward", help="Play target → source"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Render the morph of a stored preset to a GIF."""
    _setup_logging(verbose)

    preset = load_preset(store, preset_id)
    sidelen = float(preset.inner.width)
    seeds, colors, sim = init_image(sidelen, preset)

    recorder = GifRecorder(resolution=resolution, max_frames=frames, min_frames=min(frames, 100))
    with console.status(f"Simulating {len(sim):,} cells …"):
        status = record_morph(
            sim, seeds, colors, sidelen, output,
            ticks_per_frame=ticks, recorder=recorder, reverse=reverse,
        )

    if status.state != "complete":
        console.print(f"[red]✗ {status.message}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Saved to {output}  [dim]{recorder.frame_count} frames[/dim]")


# -- presets command ---------------------------------------------------

@app.command()
def presets(
    store: Path = typer.Option(_STORE, "--store", help="Preset folder"),
) -> None:
    """List stored presets, newest first."""
    found = list_presets(store)
    if not found:
        console.print(f"[yellow]No presets in {store}/[/yellow]")
        raise typer.Exit(0)

    table = Table(title=f"Presets in {store}/")
    table.add_column("Id", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Created", justify="right")
    for meta in found:
        table.add_row(meta.id, meta.name, time.strftime("%Y-%m-%d %H:%M", time.localtime(meta.created_at)))
    console.print(table)


if __name__ == "__main__":
    app()
