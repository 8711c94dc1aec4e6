"""Provider commands"""

import click
from rich.console import Console
from rich.table import Table
from rich import box

console = Console()


def _key_summary(key_names, key_status) -> str:
    if not key_names:
        return "[dim]not needed[/dim]"
    set_count = sum(1 for k in key_names if key_status.get(k) != "not_set")
    style = "green" if set_count == len(key_names) else ("yellow" if set_count else "red")
    return f"[{style}]{set_count}/{len(key_names)}[/{style}]"


@click.group()
def providers_cmd():
    """Generation backend information"""
    pass


@providers_cmd.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_providers(as_json: bool):
    """List backends, their capabilities and key status"""

    from core.providers import get_all_providers
    from core.secrets import list_api_keys

    key_status = list_api_keys()
    providers = [
        {k: v for k, v in p.items() if k != "class"}
        for p in get_all_providers()
    ]

    if as_json:
        import json
        for p in providers:
            p["keys"] = {k: key_status.get(k, "not_set") for k in p["api_key_env"]}
        click.echo(json.dumps(providers, indent=2))
        return

    table = Table(title="Providers", box=box.ROUNDED)
    table.add_column("Name", style="cyan")
    table.add_column("Capabilities")
    table.add_column("Video")
    table.add_column("API Keys")

    for p in providers:
        table.add_row(
            p["name"],
            ", ".join(p["capabilities"]),
            p["video_shapes"],
            _key_summary(p["api_key_env"], key_status),
        )

    console.print(table)


@providers_cmd.command()
@click.argument("name")
def check(name: str):
    """Show which keys a backend is missing"""

    from core.providers import get_provider_info
    from core.secrets import list_api_keys

    info = get_provider_info(name)

    if not info:
        console.print(f"[red]Provider '{name}' not found[/red]")
        raise SystemExit(1)

    key_status = list_api_keys()
    console.print(f"\n[bold cyan]{info['name']}[/bold cyan]")
    console.print(f"Capabilities: {', '.join(info['capabilities'])}")
    console.print(f"Video: {info['video_shapes']}")
    for key_name in info["api_key_env"]:
        source = key_status.get(key_name, "not_set")
        mark = "[red]✗[/red]" if source == "not_set" else "[green]✓[/green]"
        console.print(f"  {mark} {key_name} [dim]({source})[/dim]")
