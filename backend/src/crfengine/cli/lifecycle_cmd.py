"""Form instance lifecycle CLI commands."""

import json

import click

from crfengine.cli.main import get_engine
from crfengine.workflow.types import Phase, WorkflowConfig

_PHASES = click.Choice([phase.value for phase in Phase])


@click.group()
def lifecycle():
    """Form instance lifecycle commands."""
    pass


@lifecycle.command("status")
@click.argument("instance_id", type=int)
@click.pass_context
def status_cmd(ctx: click.Context, instance_id: int):
    """Show the lifecycle status of a form instance."""
    status = get_engine(ctx).lifecycle.get_crf_lifecycle_status(instance_id)
    if status is None:
        click.echo(click.style(f"Form instance {instance_id} not found", fg="red"))
        raise SystemExit(1)
    click.echo(json.dumps(status.to_dict(), indent=2))


@lifecycle.command("advance")
@click.argument("instance_id", type=int)
@click.argument("phase", type=_PHASES)
@click.option("--actor", "actor_id", type=int, default=None)
@click.pass_context
def advance_cmd(ctx: click.Context, instance_id: int, phase: str, actor_id: int | None):
    """Move a form instance to PHASE (one step at a time)."""
    result = get_engine(ctx).lifecycle.transition(instance_id, Phase(phase), actor_id)
    _report(result.success, result.message)


@lifecycle.command("lock")
@click.argument("instance_id", type=int)
@click.option("--actor", "actor_id", type=int, default=None)
@click.pass_context
def lock_cmd(ctx: click.Context, instance_id: int, actor_id: int | None):
    """Lock a form instance once its required phases are done."""
    result = get_engine(ctx).lock_guard.lock_record(instance_id, actor_id)
    _report(result.success, result.message)


@lifecycle.command("unlock")
@click.argument("instance_id", type=int)
@click.option("--actor", "actor_id", type=int, default=None)
@click.pass_context
def unlock_cmd(ctx: click.Context, instance_id: int, actor_id: int | None):
    """Unlock a locked form instance."""
    result = get_engine(ctx).lock_guard.unlock_record(instance_id, actor_id)
    _report(result.success, result.message)


@lifecycle.command("configure")
@click.argument("form_id", type=int)
@click.option("--sdv/--no-sdv", default=False, help="Require source data verification.")
@click.option("--signature/--no-signature", default=False, help="Require an electronic signature.")
@click.option("--dde/--no-dde", default=False, help="Require double data entry.")
@click.option("--study", "study_id", type=int, default=None, help="Apply to one study only.")
@click.pass_context
def configure_cmd(
    ctx: click.Context, form_id: int, sdv: bool, signature: bool, dde: bool, study_id: int | None
):
    """Set the workflow requirements of a form."""
    config = WorkflowConfig(requires_sdv=sdv, requires_signature=signature, requires_dde=dde)
    get_engine(ctx).workflow_store.set_workflow_config(form_id, config, study_id)
    scope = f"study {study_id}" if study_id is not None else "all studies"
    phases = ", ".join(phase.value for phase in config.mandatory_phases())
    click.echo(click.style(f"Form {form_id} ({scope}): {phases}", fg="green"))


def _report(success: bool, message: str) -> None:
    click.echo(click.style(message, fg="green" if success else "red"))
    if not success:
        raise SystemExit(1)
