"""
Command-line interface for envlens.

This module provides the CLI entry point and argument parsing.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from rich import print as rprint
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from . import __version__
from .config import EnvLensConfig
from .discovery import find_env_files
from .loader import EnvFileError, generate_example_file
from .masking import MASK_CONTEXTS, Masker
from .providers import ProviderRegistry
from .records import LoaderState, VariableRecord
from .resolver import resolve, select_env_file

# Import to register built-in providers
from .providers.built_in import register_built_in_providers  # noqa: F401

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    try:
        return asyncio.run(_main_async(argv))
    except KeyboardInterrupt:
        rprint("[yellow]Cancelled.[/yellow]")
        return 130
    except Exception as exc:
        rprint(f"[red]Error: {exc}[/red]")
        return 1


def _build_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="envlens",
        description="Resolve environment variables from .env files, the shell and secret managers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  envlens                             # Resolve variables for the current directory
  envlens ./services/api              # Resolve for another workspace root
  envlens --file .env.local           # Use a specific environment file
  envlens --shell --shell-override    # Let shell values win over the file
  envlens --reveal                    # Show values unmasked
  envlens --list-files                # List candidate environment files
  envlens --generate-example          # Write .env.example next to the selected file
        """,
    )

    parser.add_argument(
        "path",
        nargs="?",
        default=None,
        help="Workspace root to search for environment files (default: current directory)",
    )

    parser.add_argument(
        "-f",
        "--file",
        help="Environment file to load instead of the discovered one",
    )

    parser.add_argument(
        "--config",
        help="Configuration file path",
    )

    parser.add_argument(
        "--context",
        default="picker",
        choices=MASK_CONTEXTS,
        help="Masking context used for display (default: picker)",
    )

    parser.add_argument(
        "--reveal",
        action="store_true",
        help="Show values without masking",
    )

    parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore cached results and re-parse every line",
    )

    parser.add_argument(
        "--shell",
        dest="shell",
        action="store_true",
        default=None,
        help="Include shell environment variables",
    )

    parser.add_argument(
        "--no-shell",
        dest="shell",
        action="store_false",
        help="Exclude shell environment variables",
    )

    parser.add_argument(
        "--shell-override",
        action="store_true",
        help="Let shell values take precedence over file values (implies --shell)",
    )

    parser.add_argument(
        "--no-interpolation",
        action="store_true",
        help="Disable ${VAR} interpolation",
    )

    parser.add_argument(
        "--list-providers",
        action="store_true",
        help="List all available secret managers",
    )

    parser.add_argument(
        "--list-files",
        action="store_true",
        help="List candidate environment files",
    )

    parser.add_argument(
        "--generate-example",
        action="store_true",
        help="Write a .example template for the selected environment file",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"envlens {__version__}",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Increase verbosity (can be used multiple times)",
    )

    return parser


def _setup_logging(verbose: int) -> None:
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=verbose >= 2)],
        force=True,
    )


def _apply_overrides(config: EnvLensConfig, args) -> EnvLensConfig:
    if args.path is not None:
        config.path = Path(args.path)
    if args.shell is not None:
        config.shell.enabled = args.shell
    if args.shell_override:
        config.shell.enabled = True
        config.shell.override = True
    if args.no_interpolation:
        config.interpolation.enabled = False
    return config


async def _main_async(argv: list[str] | None = None) -> int:
    """Async main function."""
    args = _build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    if args.list_providers:
        _display_providers()
        return 0

    config = _apply_overrides(EnvLensConfig.load(args.config), args)
    logger.debug("Resolving with workspace root %s", config.path or Path.cwd())

    if args.list_files:
        return _display_files(config)

    state = LoaderState()
    if args.file:
        select_env_file(state, args.file)

    variables = await resolve(state, config, force_reload=args.force)

    if args.generate_example:
        return _write_example(state)

    if args.verbose > 0:
        rprint(f"[cyan]Environment file:[/cyan] {state.selected_file or '(none)'}")
        rprint(f"[green]Variables:[/green] {len(variables)}")

    _display_variables(variables, Masker(config.masking), args.context, args.reveal)
    return 0


def _display_providers() -> None:
    """Display all available secret managers."""
    providers = ProviderRegistry.list_providers()

    if not providers:
        rprint("[yellow]No secret managers registered.[/yellow]")
        return

    table = Table(title="Available Secret Managers")
    table.add_column("Name", style="cyan")
    table.add_column("Description", style="green")
    table.add_column("Version", style="yellow")

    for provider in providers:
        table.add_row(
            provider.name,
            provider.description,
            provider.version,
        )

    rprint(table)


def _display_files(config: EnvLensConfig) -> int:
    files = find_env_files(config.path, config.file_patterns, config.preferred_environment)
    if not files:
        rprint("[yellow]No environment files found.[/yellow]")
        return 1

    for index, path in enumerate(files):
        marker = "[green]*[/green]" if index == 0 else " "
        rprint(f"{marker} {path}")
    return 0


def _write_example(state: LoaderState) -> int:
    if state.selected_file is None:
        rprint("[red]Error: no environment file selected[/red]")
        return 1

    try:
        example = generate_example_file(state.selected_file)
    except EnvFileError as exc:
        rprint(f"[red]Error: {exc}[/red]")
        return 1

    rprint(f"[green]Wrote {example}[/green]")
    return 0


def _display_variables(
    variables: dict[str, VariableRecord], masker: Masker, context: str, reveal: bool
) -> None:
    if not variables:
        rprint("[yellow]No variables resolved.[/yellow]")
        return

    table = Table(title="Environment Variables")
    table.add_column("Name", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Type", style="yellow")
    table.add_column("Source", style="magenta")
    table.add_column("Comment", style="dim")

    for name in sorted(variables):
        record = variables[name]
        value = record.text if reveal else masker.mask_record(record, context)
        # Plain Text cells so bracketed values are not read as markup
        table.add_row(
            Text(name),
            Text(value),
            record.type,
            Text(record.source),
            Text(record.comment or ""),
        )

    rprint(table)
