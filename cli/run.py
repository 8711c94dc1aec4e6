"""Run command - text file in, storyboard out"""

import asyncio
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich import box

from core.studio import StoryboardStudio
from workflows.automation import AutomationLoop
from .session import open_studio

console = Console()


@click.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--mock", is_flag=True, help="Use the mock backend (no API keys needed)")
@click.option("--auto/--manual", default=True, help="Pipeline units automatically or one after another")
@click.option("--videos", is_flag=True, help="Also generate scene videos")
@click.option("--narration", is_flag=True, help="Also generate narration audio")
@click.option("--export-dir", type=click.Path(file_okay=False, path_type=Path),
              help="Export every unit as a zip archive")
def run_cmd(file: Path, mock: bool, auto: bool, videos: bool, narration: bool, export_dir: Optional[Path]):
    """Turn a text file into a storyboard

    \b
    Examples:
      storyboard-studio run novel.txt --mock
      storyboard-studio run novel.txt --videos --export-dir out/
    """
    text = file.read_text(encoding="utf-8")
    ok = asyncio.run(_run(text, file.name, mock, auto, videos, narration, export_dir))
    if not ok:
        raise SystemExit(1)


async def _run(
    text: str,
    filename: str,
    mock: bool,
    auto: bool,
    videos: bool,
    narration: bool,
    export_dir: Optional[Path],
) -> bool:
    async with open_studio(mock=mock) as studio:
        units = studio.load_text(text, filename)
        if not units:
            console.print("[yellow]The file is empty, nothing to do.[/yellow]")
            return True
        console.print(f"[bold cyan]{filename}[/bold cyan]: {len(units)} units"
                      f"{' [dim](mock)[/dim]' if mock else ''}\n")

        ok = True
        if auto:
            loop = AutomationLoop(studio, make_films=videos, narrate=narration)
            await loop.run()
            if loop.error is not None:
                console.print(f"[red]Automation stopped: {loop.stop_reason}[/red]")
                ok = False
        else:
            ok = await _run_manual(studio, videos, narration)

        await studio.save()
        print_summary(studio)

        if export_dir is not None:
            for unit in studio.units:
                path = await studio.export_unit(unit.unit_id, export_dir / f"unit_{unit.index + 1:03d}.zip")
                console.print(f"[green]Exported[/green] {path}")
        return ok


async def _run_manual(studio: StoryboardStudio, videos: bool, narration: bool) -> bool:
    for unit in studio.units:
        label = f"Unit {unit.index + 1}"
        try:
            with console.status(f"{label}: extracting assets..."):
                await studio.extract(unit.unit_id)
            with console.status(f"{label}: drawing assets and writing the script..."):
                await asyncio.gather(
                    studio.generate_asset_images(unit.unit_id),
                    studio.script(unit.unit_id),
                )
            with console.status(f"{label}: shooting scenes..."):
                await studio.shoot(unit.unit_id)
            if videos:
                with console.status(f"{label}: generating videos..."):
                    await studio.make_film(unit.unit_id)
            if narration:
                with console.status(f"{label}: generating narration..."):
                    await studio.generate_narration(unit.unit_id)
        except Exception as e:
            console.print(f"[red]{label} failed:[/red] {e}")
            return False
        console.print(f"[green]✓[/green] {label}: {studio.get_unit(unit.unit_id).status.value}")
    return True


def print_summary(studio: StoryboardStudio) -> None:
    table = Table(title="Storyboard", box=box.ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Status")
    table.add_column("Assets", justify="right")
    table.add_column("Scenes", justify="right")
    table.add_column("Images", justify="right")
    table.add_column("Videos", justify="right")
    table.add_column("Audio", justify="right")

    for unit in studio.units:
        style = "green" if unit.status.value == "completed" else "yellow"
        table.add_row(
            str(unit.index + 1),
            f"[{style}]{unit.status.value}[/{style}]",
            str(len(unit.assets)),
            str(len(unit.scenes)),
            str(sum(1 for s in unit.scenes if s.has_image)),
            str(sum(1 for s in unit.scenes if s.has_video)),
            str(sum(1 for s in unit.scenes if s.has_narration_audio)),
        )
    console.print(table)
