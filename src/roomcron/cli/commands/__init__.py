"""CLI command modules."""

from roomcron.cli.commands import jobs

__all__ = ["jobs"]
