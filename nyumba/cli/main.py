"""
Nyumba CLI - Main Entry Point

Command-line interface for inspecting the listing cache and trying the
search structures against a listings file. Built with Click.
"""

import sys
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click

from nyumba import __version__

# Configure logging for CLI
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("nyumba")


class NyumbaContext:
    """Context object for passing global options to subcommands."""

    def __init__(
        self,
        verbose: bool = False,
        quiet: bool = False,
        config_path: Optional[Path] = None,
    ):
        self.verbose = verbose
        self.quiet = quiet
        self.config_path = config_path
        self._config = None

        # Configure logging based on verbosity
        if quiet:
            logger.setLevel(logging.WARNING)
        elif verbose:
            logger.setLevel(logging.DEBUG)
        else:
            logger.setLevel(logging.INFO)

    @property
    def config(self) -> Dict[str, Any]:
        """Lazy load configuration from file."""
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file or defaults."""
        import yaml

        config: Dict[str, Any] = {
            "cache": {
                "l1_capacity": 100,
                "default_ttl_ms": 5 * 60 * 1000,
                "cleanup_interval_seconds": 600,
                "durable_path": str(Path.home() / ".nyumba" / "cache"),
            },
            "search": {
                "grid_size": 0.01,
                "suggestion_limit": 10,
            },
        }

        candidates = []
        if self.config_path:
            candidates.append(self.config_path)
        else:
            candidates.extend(
                [
                    Path.cwd() / ".nyumba.yaml",
                    Path.cwd() / "nyumba.yaml",
                    Path.home() / ".nyumba" / "config.yaml",
                ]
            )

        for path in candidates:
            if not path.exists():
                continue
            try:
                with open(path) as f:
                    user_config = yaml.safe_load(f)
                if user_config:
                    self._merge_config(config, user_config)
                logger.debug(f"Loaded config from {path}")
                break
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {path}: {e}")

        return config

    def _merge_config(self, base: dict, override: dict):
        """Deep merge override into base config."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value


class NyumbaGroup(click.Group):
    """Custom Click group with improved help formatting."""

    def format_help(self, ctx, formatter):
        """Format help with custom banner and examples."""
        formatter.write_paragraph()
        formatter.write_text("Nyumba - listing cache and search tools")
        formatter.write_paragraph()

        super().format_help(ctx, formatter)

        formatter.write_paragraph()
        formatter.write_text("Examples:")
        formatter.indent()

        examples = [
            "# Store a value in the durable cache for one minute",
            "nyumba cache set listings:mbeya '[\"p1\", \"p2\"]' --ttl-ms 60000",
            "",
            "# Remove expired entries and show counts",
            "nyumba cache cleanup && nyumba cache stats",
            "",
            "# Autocomplete against a listings file",
            "nyumba search suggest mod --listings listings.json",
            "",
            "# Listings within 2 km, filtered by true distance",
            "nyumba search nearby -6.7924 39.2083 --radius-km 2 --exact --listings listings.json",
        ]

        for line in examples:
            formatter.write_text(line)

        formatter.dedent()


pass_context = click.make_pass_decorator(NyumbaContext, ensure=True)


@click.group(cls=NyumbaGroup)
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    default=False,
    help="Enable verbose output (debug logging).",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    default=False,
    help="Quiet mode (only warnings and errors).",
)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file.",
)
@click.version_option(
    version=__version__,
    prog_name="nyumba",
    message="%(prog)s version %(version)s",
)
@click.pass_context
def app(ctx, verbose: bool, quiet: bool, config_path: Optional[Path]):
    """
    Nyumba CLI - listing cache and search structures.

    Inspect and maintain the durable listing cache, and exercise the
    trie and spatial index against a listings file.
    """
    if verbose and quiet:
        raise click.UsageError("Cannot use both --verbose and --quiet")

    # Only the "nyumba" logger follows -v/-q; library loggers need the root level too
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif quiet:
        logging.getLogger().setLevel(logging.WARNING)

    ctx.obj = NyumbaContext(
        verbose=verbose,
        quiet=quiet,
        config_path=config_path,
    )


def register_commands():
    """Register all subcommands."""
    from nyumba.cli.commands import cache, search

    app.add_command(cache.cache)
    app.add_command(search.search)


@app.command("info")
@pass_context
def info(ctx):
    """Display package versions and configuration."""
    import importlib.metadata
    import platform

    click.echo("\n=== Nyumba Info ===\n")

    click.echo(f"Python: {platform.python_version()}")
    click.echo(f"Platform: {platform.system()} {platform.release()}")

    click.echo("\n--- Package Versions ---")
    for pkg in ["nyumba-cache", "numpy", "click", "PyYAML"]:
        try:
            version = importlib.metadata.version(pkg)
            click.echo(f"  {pkg}: {version}")
        except importlib.metadata.PackageNotFoundError:
            click.echo(f"  {pkg}: not installed")

    click.echo("\n--- Cache Configuration ---")
    for key, value in ctx.config.get("cache", {}).items():
        click.echo(f"  {key}: {value}")

    click.echo("\n--- Search Configuration ---")
    for key, value in ctx.config.get("search", {}).items():
        click.echo(f"  {key}: {value}")

    click.echo()


register_commands()


def main():
    """Main entry point for the CLI."""
    try:
        app()
    except Exception as e:
        logger.error(f"Error: {e}")
        if "--verbose" in sys.argv or "-v" in sys.argv:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
