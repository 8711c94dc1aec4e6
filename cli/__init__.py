"""Storyboard Studio CLI"""

import logging

import click
from dotenv import load_dotenv
from rich.console import Console

from core.logging_setup import configure_logging
from .run import run_cmd
from .status import status_cmd
from .providers import providers_cmd
from .config import config_cmd
from .export import export_cmd, import_cmd, reset_cmd

# Load .env file at CLI startup
load_dotenv()


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", count=True, help="-v for progress logs, -vv for debug")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to a file")
def main(verbose: int, log_file: str):
    """Storyboard Studio - Text to Storyboard Pipeline

    \b
    Quick Start:
      storyboard-studio run story.txt --mock
      storyboard-studio -v run story.txt --videos --export-dir out/

    \b
    Commands:
      run        Turn a text file into a storyboard
      status     Show the saved project
      export     Export one unit as a zip archive
      import     Append an exported unit to the project
      reset      Delete the saved project
      providers  List generation backends
      config     Manage routing and API keys
    """
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)
    configure_logging(level, log_file=log_file, console=Console(stderr=True))


# Pipeline commands
main.add_command(run_cmd, name="run")
main.add_command(export_cmd, name="export")
main.add_command(import_cmd, name="import")
main.add_command(reset_cmd, name="reset")

# Status and info commands
main.add_command(status_cmd, name="status")
main.add_command(providers_cmd, name="providers")
main.add_command(config_cmd, name="config")


if __name__ == "__main__":
    main()
