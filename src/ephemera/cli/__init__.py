"""ephemera CLI - Command line interface for ephemera."""

from ephemera.cli.commands import cli


def main() -> None:
    """Main entry point for the ephemera CLI."""
    cli()


__all__ = ["main", "cli"]
