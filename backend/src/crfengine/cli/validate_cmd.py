"""Form payload validation command."""

import json
from pathlib import Path

import click
import yaml

from crfengine.cli.main import get_engine


@click.command("validate")
@click.argument("form_id", type=int)
@click.argument("data_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--create-queries/--no-create-queries",
    default=None,
    help="Open a query for every violation (defaults to CRFENGINE_CREATE_QUERIES when --instance is given).",
)
@click.option("--instance", "form_instance_id", type=int, default=None, help="Form instance the queries belong to.")
@click.pass_context
def validate(
    ctx: click.Context,
    form_id: int,
    data_file: Path,
    create_queries: bool | None,
    form_instance_id: int | None,
):
    """Validate the payload in DATA_FILE (JSON or YAML) against FORM_ID's rules."""
    if create_queries and form_instance_id is None:
        click.echo(click.style("--create-queries needs --instance", fg="red"))
        raise SystemExit(2)

    with data_file.open() as fh:
        data = yaml.safe_load(fh)
    if not isinstance(data, dict):
        click.echo(click.style(f"{data_file}: expected a mapping of field values", fg="red"))
        raise SystemExit(2)

    engine = get_engine(ctx)
    if create_queries is None:
        create_queries = form_instance_id is not None and engine.settings.create_queries_on_submit
    outcome = engine.orchestrator.validate_form_data(
        form_id,
        data,
        create_queries=create_queries,
        form_instance_id=form_instance_id,
        known_item_ids=engine.rule_store.item_ids_for_form(form_id),
    )
    click.echo(json.dumps(outcome.to_dict(), indent=2))
    if not outcome.valid:
        raise SystemExit(1)
