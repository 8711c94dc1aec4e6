"""Project status command"""

import asyncio

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from .session import open_studio

console = Console()


async def get_status_dict() -> dict:
    """Summary of the saved session"""
    async with open_studio(mock=True) as studio:
        found = await studio.restore()
        return {
            "session": found,
            "filename": studio.filename,
            "active_unit_id": studio.active_unit_id,
            "assets": len(studio.assets),
            "units": [
                {
                    "index": unit.index + 1,
                    "unit_id": unit.unit_id,
                    "title": unit.title or f"Part {unit.index + 1}",
                    "status": unit.status.value,
                    "assets": len(unit.assets),
                    "scenes": len(unit.scenes),
                    "images": sum(1 for s in unit.scenes if s.has_image),
                    "videos": sum(1 for s in unit.scenes if s.has_video),
                }
                for unit in studio.units
            ],
        }


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def status_cmd(as_json: bool):
    """Show the saved project"""

    status = asyncio.run(get_status_dict())

    if as_json:
        import json
        click.echo(json.dumps(status, indent=2))
        return

    if not status["session"]:
        console.print("[yellow]No saved project.[/yellow] Start one with: storyboard-studio run FILE")
        return

    console.print(Panel.fit(
        f"[bold blue]{status['filename'] or 'Untitled'}[/bold blue]\n"
        f"{len(status['units'])} units, {status['assets']} assets",
        border_style="blue"
    ))

    table = Table(title="Units", box=box.ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Status")
    table.add_column("Assets", justify="right")
    table.add_column("Scenes", justify="right")
    table.add_column("Images", justify="right")
    table.add_column("Videos", justify="right")

    for unit in status["units"]:
        marker = " [bold]◀[/bold]" if unit["unit_id"] == status["active_unit_id"] else ""
        style = "green" if unit["status"] == "completed" else "yellow"
        table.add_row(
            str(unit["index"]),
            unit["title"] + marker,
            f"[{style}]{unit['status']}[/{style}]",
            str(unit["assets"]),
            str(unit["scenes"]),
            str(unit["images"]),
            str(unit["videos"]),
        )

    console.print(table)
