"""reconcile CLI: plan, apply and destroy declaration documents."""

import functools
import json
import logging
import os
from typing import Dict, Tuple

import click
from rich.console import Console
from rich.table import Table

from reconciler import __version__
from reconciler.diff import Action, Plan
from reconciler.engine import ApplyResult, Engine
from reconciler.errors import ReconcileError
from reconciler.loader import Document, load_document, parse_var_override
from reconciler.providers import ProviderRegistry, simulated_aws
from reconciler.state import StateStore

console = Console()

DEFAULT_STATE = "reconcile.state.json"
DEFAULT_SIMULATE = os.path.join(".reconcile", "simulated-aws.json")

ACTION_STYLES = {
    Action.CREATE: "green",
    Action.UPDATE: "yellow",
    Action.REPLACE: "magenta",
    Action.DELETE: "red",
    Action.NOOP: "dim",
}


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _handle_errors(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ReconcileError as e:
            raise click.ClickException(str(e))
    return wrapper


def document_options(func):
    """Options shared by every command that reads a declaration document"""
    func = click.option("--var", "variables", multiple=True, metavar="KEY=VALUE",
                        help="Set a variable (repeatable)")(func)
    func = click.option("--var-file", "var_files", multiple=True, type=click.Path(exists=True, dir_okay=False),
                        help="Variable file, YAML or JSON (repeatable)")(func)
    func = click.argument("document", type=click.Path(exists=True, dir_okay=False))(func)
    return func


def engine_options(func):
    func = click.option("--simulate", default=DEFAULT_SIMULATE, show_default=True,
                        help="File backing the simulated AWS provider")(func)
    func = click.option("--parallelism", default=10, show_default=True, type=click.IntRange(min=1),
                        help="Maximum concurrent operations")(func)
    func = click.option("--refresh/--no-refresh", default=True, help="Read remote objects before planning")(func)
    func = click.option("--state", "state_path", default=DEFAULT_STATE, show_default=True,
                        help="State file")(func)
    return func


def _load(document: str, var_files: Tuple[str, ...], variables: Tuple[str, ...]) -> Document:
    overrides = dict(parse_var_override(item) for item in variables)
    return load_document(document, var_files=var_files, overrides=overrides)


def _engine(state_path: str, simulate: str, parallelism: int, rollback: bool = False) -> Engine:
    directory = os.path.dirname(simulate)
    if directory:
        os.makedirs(directory, exist_ok=True)
    registry = ProviderRegistry([simulated_aws(path=simulate)])

    def listener(address: str, operation: str, status: str) -> None:
        if status == "done":
            console.print(f"  [green]✓[/] {address}: {operation}")
        elif status in ("failed", "skipped"):
            console.print(f"  [red]✗[/] {address}: {operation} {status}")

    return Engine(registry, StateStore(state_path), parallelism=parallelism,
                  rollback_on_failure=rollback, listener=listener)


def render_plan(plan: Plan) -> None:
    changes = [change for change in plan.ordered() if change.action != Action.NOOP or change.deposed]
    if changes:
        table = Table(title="Planned changes")
        table.add_column("", width=3)
        table.add_column("Resource", style="cyan")
        table.add_column("Action")
        table.add_column("Changed attributes")
        for change in changes:
            style = ACTION_STYLES[change.action]
            detail = ", ".join(
                f"{path} (forces replacement)" if path in change.replace_paths else path
                for path in change.changed
            )
            if change.deposed:
                detail = ", ".join(filter(None, [detail, f"deposed {', '.join(change.deposed)}"]))
            table.add_row(f"[{style}]{change.action.symbol}[/]", change.address,
                          f"[{style}]{change.action.value}[/]", detail)
        console.print(table)
    console.print(f"[bold]{plan.summary()}[/]")


def render_result(result: ApplyResult) -> None:
    if result.failed:
        table = Table(title="Failures")
        table.add_column("Resource", style="cyan")
        table.add_column("Error", style="red")
        for address, error in sorted(result.failed.items()):
            table.add_row(address, error)
        console.print(table)
    if result.skipped:
        console.print(f"[yellow]Skipped because a dependency failed:[/] {', '.join(sorted(result.skipped))}")
    if result.rolled_back:
        console.print(f"[yellow]Rolled back:[/] {', '.join(result.rolled_back)}")
    status = "[green]complete[/]" if result.ok else "[red]failed[/]"
    console.print(f"\n[bold]Apply {status}![/] {len(result.applied)} applied, "
                  f"{len(result.failed)} failed, {len(result.skipped)} skipped.")
    if result.outputs:
        _print_outputs(result.outputs)


def _print_outputs(outputs: Dict) -> None:
    console.print("\n[bold]Outputs:[/]")
    for name, value in sorted(outputs.items()):
        rendered = value if isinstance(value, str) else json.dumps(value)
        console.print(f"  {name} = {rendered}")


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=lambda: os.environ.get("RECONCILE_LOG_LEVEL", "warning"),
              type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
              help="Log level (env: RECONCILE_LOG_LEVEL)")
def main(log_level: str):
    """reconcile: declarative desired-state reconciler.

    Reads a declaration document, diffs it against recorded state and
    applies the changes in dependency order.
    """
    _configure_logging(log_level)


@main.command()
@document_options
@_handle_errors
def validate(document: str, var_files: Tuple[str, ...], variables: Tuple[str, ...]):
    """Check references, cycles and attribute schemas."""
    doc = _load(document, var_files, variables)
    registry = ProviderRegistry([simulated_aws()])
    Engine(registry, StateStore(DEFAULT_STATE)).validate(doc)
    console.print(f"[green]✓[/] {len(doc.resources)} resource(s) valid")


@main.command()
@document_options
@engine_options
@click.option("--destroy", is_flag=True, help="Plan the deletion of every managed resource")
@_handle_errors
def plan(document: str, var_files, variables, state_path: str, refresh: bool, parallelism: int,
         simulate: str, destroy: bool):
    """Show what apply would change."""
    doc = _load(document, var_files, variables)
    engine = _engine(state_path, simulate, parallelism)
    render_plan(engine.plan(doc, refresh=refresh, destroy=destroy))


@main.command()
@document_options
@engine_options
@click.option("--auto-approve", is_flag=True, help="Skip the confirmation prompt")
@click.option("--rollback/--no-rollback", default=False, help="Delete resources created by a failed apply")
@_handle_errors
def apply(document: str, var_files, variables, state_path: str, refresh: bool, parallelism: int,
          simulate: str, auto_approve: bool, rollback: bool):
    """Reconcile remote objects with the declaration."""
    doc = _load(document, var_files, variables)
    engine = _engine(state_path, simulate, parallelism, rollback)
    planned = engine.plan(doc, refresh=refresh)
    render_plan(planned)
    if not planned.has_changes:
        return
    if not auto_approve and not click.confirm("\nApply these changes?"):
        console.print("[yellow]Apply cancelled.[/]")
        return
    result = engine.apply(doc, plan=planned)
    render_result(result)
    if not result.ok:
        raise click.exceptions.Exit(1)


@main.command()
@document_options
@engine_options
@click.option("--auto-approve", is_flag=True, help="Skip the confirmation prompt")
@_handle_errors
def destroy(document: str, var_files, variables, state_path: str, refresh: bool, parallelism: int,
            simulate: str, auto_approve: bool):
    """Delete every managed resource."""
    doc = _load(document, var_files, variables)
    engine = _engine(state_path, simulate, parallelism)
    planned = engine.plan(doc, refresh=refresh, destroy=True)
    render_plan(planned)
    if not planned.has_changes:
        return
    if not auto_approve and not click.confirm("\nDestroy all managed resources?"):
        console.print("[yellow]Destroy cancelled.[/]")
        return
    result = engine.apply(doc, plan=planned)
    render_result(result)
    if not result.ok:
        raise click.exceptions.Exit(1)


@main.command()
@click.argument("name", required=False)
@click.option("--state", "state_path", default=DEFAULT_STATE, show_default=True, help="State file")
@click.option("--json", "as_json", is_flag=True, help="Print outputs as JSON")
@_handle_errors
def output(name: str, state_path: str, as_json: bool):
    """Show outputs recorded by the last apply."""
    outputs = StateStore(state_path).load().outputs
    if name:
        if name not in outputs:
            raise click.ClickException(f"no output named {name}")
        outputs = {name: outputs[name]}
    if as_json:
        click.echo(json.dumps(outputs, indent=2, sort_keys=True))
    elif outputs:
        _print_outputs(outputs)
    else:
        console.print("[yellow]No outputs recorded.[/]")


# ── State ────────────────────────────────────────────────────────────


@main.group()
def state():
    """Inspect and repair recorded state."""


@state.command("list")
@click.option("--state", "state_path", default=DEFAULT_STATE, show_default=True, help="State file")
@_handle_errors
def state_list(state_path: str):
    """List recorded resources."""
    recorded = StateStore(state_path).load()
    if not recorded.resources:
        console.print("[yellow]State is empty.[/]")
        return
    table = Table(title=f"State serial {recorded.serial}")
    table.add_column("Resource", style="cyan")
    table.add_column("ID")
    table.add_column("Depends on", style="dim")
    for address, resource in sorted(recorded.resources.items()):
        table.add_row(address, resource.id, ", ".join(resource.dependencies))
    console.print(table)


@state.command("unlock")
@click.option("--state", "state_path", default=DEFAULT_STATE, show_default=True, help="State file")
@_handle_errors
def state_unlock(state_path: str):
    """Remove a stale state lock."""
    if StateStore(state_path).force_unlock():
        console.print("[green]✓[/] lock removed")
    else:
        console.print("[yellow]State is not locked.[/]")


if __name__ == "__main__":
    main()
