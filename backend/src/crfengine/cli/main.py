"""crfengine CLI entry point."""

import logging

import click

from crfengine.config import CrfEngine, EngineSettings, build_engine
from crfengine.persistence.config import DatabaseConfig


@click.group()
@click.option(
    "--database",
    "database_url",
    default=None,
    envvar="CRFENGINE_DATABASE_URL",
    help="Database URL (defaults to DATABASE_URL / CRFENGINE_DB_PATH / sqlite:///crfengine.db).",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level (defaults to CRFENGINE_LOG_LEVEL or INFO).",
)
@click.pass_context
def cli(ctx: click.Context, database_url: str | None, log_level: str | None):
    """crfengine: form validation rules and CRF lifecycle CLI."""
    settings = EngineSettings.from_env()
    if database_url:
        settings.database = DatabaseConfig(url=database_url)
    if log_level:
        settings.log_level = log_level.upper()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"settings": settings, "engine": None}


def get_engine(ctx: click.Context) -> CrfEngine:
    """Build the engine on first use, so --help never touches the database."""
    obj = ctx.find_root().obj
    if obj["engine"] is None:
        obj["engine"] = build_engine(obj["settings"])
    return obj["engine"]


# Register subcommand groups
from crfengine.cli.db_cmd import db  # noqa: E402
from crfengine.cli.lifecycle_cmd import lifecycle  # noqa: E402
from crfengine.cli.rules_cmd import rules  # noqa: E402
from crfengine.cli.validate_cmd import validate  # noqa: E402

cli.add_command(db)
cli.add_command(rules)
cli.add_command(validate)
cli.add_command(lifecycle)
