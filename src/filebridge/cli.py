"""filebridge CLI entrypoint."""

from __future__ import annotations

import click

from filebridge import __version__


@click.group()
@click.version_option(version=__version__, prog_name="filebridge")
def main() -> None:
    """filebridge: JSON-RPC file and image tools for LLM clients."""


# Register subcommands
from filebridge.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
