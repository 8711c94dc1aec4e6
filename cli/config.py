"""Configuration commands"""

import asyncio

import click
from rich.console import Console
from rich.table import Table
from rich import box
from pathlib import Path

from core.model_router import ModelRole
from core.providers.base import ProviderType

console = Console()

SOURCE_LABELS = {
    "keychain": "[green]✓ keychain[/green]",
    "env": "[green]✓ environment[/green]",
    "not_set": "[dim]Not set[/dim]",
}


async def _load_roles(settings) -> dict:
    from .session import open_studio

    async with open_studio(settings=settings) as studio:
        return studio.router.describe()


async def _save_role(role: ModelRole, provider: ProviderType) -> dict:
    from .session import open_studio

    async with open_studio() as studio:
        await studio.router.set_provider(role, provider)
        return studio.router.describe()


@click.group()
def config_cmd():
    """Configuration management"""
    pass


@config_cmd.command()
def show():
    """Show role routing and API key status"""

    from core.config import get_settings
    from core.model_router import DEFAULT_MODELS
    from core.secrets import KNOWN_KEYS, list_api_keys

    settings = get_settings()
    roles = asyncio.run(_load_roles(settings))

    role_table = Table(title="Model Routing", box=box.ROUNDED)
    role_table.add_column("Role", style="cyan")
    role_table.add_column("Provider")
    role_table.add_column("Model")
    for role in ModelRole:
        provider = ProviderType(roles[role.value])
        model = DEFAULT_MODELS.get((provider, role), "[red]unsupported[/red]")
        role_table.add_row(role.value, provider.value, model)
    console.print(role_table)

    key_status = list_api_keys()
    key_table = Table(title="API Keys", box=box.ROUNDED)
    key_table.add_column("Key", style="cyan")
    key_table.add_column("Used for")
    key_table.add_column("Status")
    for key_name, description in KNOWN_KEYS.items():
        key_table.add_row(key_name, description, SOURCE_LABELS[key_status.get(key_name, "not_set")])
    console.print(key_table)

    console.print(f"\nState directory: [dim]{settings.state_dir}[/dim]")


@config_cmd.command("set")
@click.argument("role", type=click.Choice([r.value for r in ModelRole]))
@click.argument("provider", type=click.Choice([p.value for p in ProviderType]))
def set_role(role: str, provider: str):
    """Route a role (text, image, video, audio) to a provider"""

    asyncio.run(_save_role(ModelRole(role), ProviderType(provider)))
    console.print(f"[green]✓[/green] {role} requests now go to [cyan]{provider}[/cyan]")


@config_cmd.command("set-key")
@click.argument("name")
def set_key(name: str):
    """Store an API key in the system keychain"""

    from core.secrets import KNOWN_KEYS, set_api_key

    name = name.upper()
    if name not in KNOWN_KEYS:
        console.print(f"[red]Unknown key '{name}'.[/red] Known keys: {', '.join(KNOWN_KEYS)}")
        raise SystemExit(1)

    value = click.prompt(f"{name}", hide_input=True)
    if set_api_key(name, value):
        console.print(f"[green]✓ Stored {name} in the keychain[/green]")
    else:
        console.print("[red]Could not write to the keychain.[/red] Set the variable in .env instead.")
        raise SystemExit(1)


@config_cmd.command("delete-key")
@click.argument("name")
def delete_key(name: str):
    """Remove an API key from the system keychain"""

    from core.secrets import delete_api_key

    if delete_api_key(name.upper()):
        console.print(f"[green]✓ Removed {name.upper()}[/green]")
    else:
        console.print(f"[yellow]{name.upper()} was not in the keychain[/yellow]")


@config_cmd.command()
@click.option("--force", "-f", is_flag=True, help="Overwrite existing .env")
def init(force: bool):
    """Create .env template file"""

    env_file = Path(".env")

    if env_file.exists() and not force:
        console.print("[yellow].env file already exists. Use --force to overwrite.[/yellow]")
        return

    template = '''# Storyboard Studio Configuration
# Keys can also live in the system keychain: storyboard-studio config set-key NAME

# ===================
# POLO GATEWAY
# ===================
POLO_TEXT_API_KEY=
POLO_IMAGE_API_KEY=
POLO_VIDEO_API_KEY=

# ===================
# T8STAR
# ===================
T8_TEXT_API_KEY=
T8_IMAGE_API_KEY=
T8_VIDEO_API_KEY=
T8_AUDIO_API_KEY=

# ===================
# ROUTING (polo, t8star, mock)
# ===================
TEXT_PROVIDER=t8star
IMAGE_PROVIDER=t8star
VIDEO_PROVIDER=t8star
AUDIO_PROVIDER=t8star

# ===================
# PIPELINE
# ===================
LANGUAGE=English
ASPECT_RATIO=16:9
IMAGE_CONCURRENCY=10
VIDEO_CONCURRENCY=3
'''

    env_file.write_text(template)
    console.print(f"[green]Created {env_file}[/green]")
    console.print("Edit the file to add your API keys.")
