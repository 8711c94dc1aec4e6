"""Archive commands: export, import and reset"""

import asyncio
from pathlib import Path

import click
from rich.console import Console

from core.export import ArchiveError
from .session import open_studio

console = Console()


async def _export(index: int, out: Path) -> Path:
    async with open_studio() as studio:
        if not await studio.restore():
            raise click.ClickException("No saved project")
        units = studio.units
        if not 1 <= index <= len(units):
            raise click.ClickException(f"Unit {index} does not exist (1-{len(units)})")
        return await studio.export_unit(units[index - 1].unit_id, out)


async def _import(path: Path):
    async with open_studio() as studio:
        await studio.restore()
        try:
            unit = await studio.import_unit(path)
        except ArchiveError as e:
            raise click.ClickException(str(e))
        await studio.save()
        return unit


async def _reset() -> None:
    async with open_studio() as studio:
        await studio.clear()


@click.command()
@click.argument("index", type=int)
@click.argument("out", type=click.Path(dir_okay=False, path_type=Path))
def export_cmd(index: int, out: Path):
    """Export unit INDEX (1-based) of the saved project to a zip archive"""

    path = asyncio.run(_export(index, out))
    console.print(f"[green]✓ Exported unit {index} to {path}[/green]")


@click.command()
@click.argument("archive", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def import_cmd(archive: Path):
    """Append an exported unit archive to the saved project"""

    unit = asyncio.run(_import(archive))
    console.print(
        f"[green]✓ Imported[/green] as part {unit.index + 1} "
        f"({len(unit.scenes)} scenes, status {unit.status.value})"
    )


@click.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def reset_cmd(yes: bool):
    """Delete the saved project and its media"""

    if not yes:
        click.confirm("Delete the saved project and all generated media?", abort=True)
    asyncio.run(_reset())
    console.print("[green]✓ Project cleared[/green]")
