"""Rule file and rule store CLI commands."""

import json
from pathlib import Path

import click

from crfengine.cli.main import get_engine
from crfengine.errors import RuleFileError
from crfengine.validation.expressions import FunctionRegistry
from crfengine.validation.rulefile import read_rule_file, validate_rule_file
from crfengine.validation.rules import test_rule_directly
from crfengine.validation.types import CheckOutcome

_OUTCOME_COLOURS = {
    CheckOutcome.PASSED: "green",
    CheckOutcome.FAILED: "red",
    CheckOutcome.FAIL_OPEN: "yellow",
}


@click.group()
def rules():
    """Validation rule commands."""
    pass


@rules.command("check")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
def check_cmd(files: tuple[Path, ...]):
    """Validate rule files against the rule schema."""
    failed = False
    for path in files:
        issues = validate_rule_file(path)
        if not issues:
            click.echo(click.style(f"  ✓ {path}", fg="green"))
            continue
        for issue in issues:
            colour = "red" if issue.severity == "error" else "yellow"
            click.echo(click.style(str(issue), fg=colour))
            if issue.severity == "error":
                failed = True
    if failed:
        raise SystemExit(1)


@rules.command("import")
@click.argument("file", type=click.Path(exists=True, path_type=Path))
@click.option("--form-id", type=int, default=None, help="Form id (overrides the file's formId).")
@click.option("--actor", "actor_id", type=int, default=None, help="User id recorded on the rules.")
@click.pass_context
def import_cmd(ctx: click.Context, file: Path, form_id: int | None, actor_id: int | None):
    """Create the rules of FILE as custom rules."""
    try:
        resolved_form_id, loaded = read_rule_file(file, form_id)
    except RuleFileError as e:
        for issue in e.issues:
            click.echo(click.style(str(issue), fg="red"))
        raise SystemExit(1)
    if resolved_form_id is None:
        click.echo(click.style("No form id: pass --form-id or set formId in the file", fg="red"))
        raise SystemExit(1)

    repository = get_engine(ctx).repository
    created = 0
    for rule in loaded:
        result = repository.create_rule(rule, actor_id)
        if result.success:
            created += 1
        else:
            click.echo(click.style(f"  ✗ {rule.name or rule.field_path}: {result.message}", fg="red"))

    click.echo(f"Created {created} of {len(loaded)} rule(s) for form {resolved_form_id}")
    if created != len(loaded):
        raise SystemExit(1)


@rules.command("list")
@click.argument("form_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Print the rules as JSON.")
@click.pass_context
def list_cmd(ctx: click.Context, form_id: int, as_json: bool):
    """List the merged rules that apply to FORM_ID."""
    merged = get_engine(ctx).repository.get_rules_for_form(form_id)
    if as_json:
        click.echo(json.dumps([rule.to_dict() for rule in merged], indent=2))
        return
    if not merged:
        click.echo(f"No rules for form {form_id}")
        return
    for rule in merged:
        state = "" if rule.active else click.style(" (inactive)", fg="yellow")
        click.echo(
            f"  {rule.id!s:>7}  {rule.rule_type:<15} {rule.severity.value:<8} "
            f"{rule.field_path}{state}"
        )


@rules.command("test")
@click.argument("file", type=click.Path(exists=True, path_type=Path))
@click.argument("value")
@click.option("--context", "context_json", default=None, help="Other field values, as a JSON object.")
def test_cmd(file: Path, value: str, context_json: str | None):
    """Evaluate every rule in FILE against VALUE, without touching the database."""
    try:
        _, loaded = read_rule_file(file)
    except RuleFileError as e:
        for issue in e.issues:
            click.echo(click.style(str(issue), fg="red"))
        raise SystemExit(1)

    context = json.loads(context_json) if context_json else {}
    any_failed = False
    for rule in loaded:
        check = test_rule_directly(rule, value, context)
        colour = _OUTCOME_COLOURS.get(check.outcome)
        line = f"  {check.outcome.value:<13} {rule.name or rule.field_path}"
        if check.detail:
            line += f": {check.detail}"
        click.echo(click.style(line, fg=colour))
        any_failed = any_failed or not check.valid
    if any_failed:
        raise SystemExit(1)


@rules.command("delete")
@click.argument("rule_id", type=int)
@click.option("--actor", "actor_id", type=int, default=None)
@click.pass_context
def delete_cmd(ctx: click.Context, rule_id: int, actor_id: int | None):
    """Delete a custom rule (deactivated instead if history references it)."""
    _report(get_engine(ctx).repository.delete_rule(rule_id, actor_id))


@rules.command("toggle")
@click.argument("rule_id", type=int)
@click.option("--active/--inactive", default=True)
@click.option("--actor", "actor_id", type=int, default=None)
@click.pass_context
def toggle_cmd(ctx: click.Context, rule_id: int, active: bool, actor_id: int | None):
    """Activate or deactivate a custom rule."""
    _report(get_engine(ctx).repository.toggle_rule(rule_id, active, actor_id))


@rules.command("functions")
@click.option("--json", "as_json", is_flag=True, help="Print the definitions as JSON.")
def functions_cmd(as_json: bool):
    """List the functions available to formula rules."""
    definitions = sorted(FunctionRegistry.list_all(), key=lambda f: f.name)
    if as_json:
        click.echo(json.dumps([f.to_dict() for f in definitions], indent=2))
        return
    for func in definitions:
        params = ", ".join(p.name + ("..." if p.variadic else "") for p in func.parameters)
        click.echo(f"  {func.name}({params}): {func.description}")


def _report(result) -> None:
    colour = "green" if result.success else "red"
    click.echo(click.style(result.message, fg=colour))
    if not result.success:
        raise SystemExit(1)
