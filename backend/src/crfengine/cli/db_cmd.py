"""Database CLI commands."""

import click

from crfengine.cli.main import get_engine


@click.group()
def db():
    """Database commands."""
    pass


@db.command("init")
@click.pass_context
def init_cmd(ctx: click.Context):
    """Create the engine's tables."""
    engine = get_engine(ctx)
    click.echo(click.style(f"Database ready: {engine.settings.database.url}", fg="green"))
