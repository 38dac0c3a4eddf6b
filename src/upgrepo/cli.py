"""Command line interface for upgrepo."""
from __future__ import annotations

import json
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .committer import ActivationCommitter
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .manager import UpgradeRepoError, UpgradeRepoManager, summarize
from .models import Repository, RepoStatus
from .providers import ZypperError, ZypperProvider
from .snapshots import RepositorySetup, SetupSnapshots, SnapshotError, capture_setup
from .state import StateRegistry, StateRegistryError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to upgrepo's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine readable JSON instead of a table.",
)

PRODUCT_OPTION = typer.Option(
    None,
    "--product",
    help="Product selected for the upgrade (repeatable).",
)

_STATUS_STYLE = {
    RepoStatus.REMOVED: "[red]removed[/red]",
    RepoStatus.ENABLED: "[green]enabled[/green]",
    RepoStatus.DISABLED: "[yellow]disabled[/yellow]",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Upgrade repository manager.

        Records the repositories and services of the system being upgraded,
        lets the operator decide which old repositories to keep, and applies
        those decisions to the package manager in a single pass.
        """
    ).strip(),
)
snapshot_app = typer.Typer(help="Record and inspect repository setup snapshots.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(snapshot_app, name="snapshot")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: StateRegistry
    snapshots: SetupSnapshots
    package_manager: ZypperProvider
    logger: StructuredLogger


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    registry = StateRegistry(config.registry_dir)
    try:
        registry.ensure_root()
    except StateRegistryError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc

    zypper_config = config.zypper
    package_manager = ZypperProvider(
        zypper_bin=zypper_config.bin,
        root=zypper_config.root,
        repos_dir=zypper_config.repos_dir,
        dry_run=zypper_config.dry_run,
    )
    runtime = RuntimeContext(
        config=config,
        registry=registry,
        snapshots=SetupSnapshots(registry),
        package_manager=package_manager,
        logger=StructuredLogger(config.logs_dir),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the upgrepo version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"upgrepo {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _provider_error(op: OperationScope, message: str) -> NoReturn:
    _command_error(op, message, rc=ExitCode.PROVIDER)


def _environment_error(op: OperationScope, message: str) -> NoReturn:
    _command_error(op, message, rc=ExitCode.ENVIRONMENT)


def _dry_run_complete(
    op: OperationScope,
    summary: str,
    *,
    context: Mapping[str, object] | None = None,
) -> None:
    """Standardise dry-run completion messaging."""
    console.print(f"[yellow]Dry run[/yellow]: {summary}")
    op.success("Dry run complete.", changed=0, context=dict(context or {}))


def _load_manager(runtime: RuntimeContext, op: OperationScope) -> UpgradeRepoManager:
    """Build the tracker from the stored snapshots and the current setup."""
    try:
        return UpgradeRepoManager.create_from_old_repositories(
            runtime.snapshots,
            runtime.package_manager,
            committer=ActivationCommitter(runtime.package_manager, operation=op),
        )
    except (SnapshotError, StateRegistryError) as exc:
        _environment_error(op, f"Cannot read setup snapshots: {exc}")
    except ZypperError as exc:
        _provider_error(op, f"Cannot list current repositories: {exc}")


def _render_setup(title: str, setup: RepositorySetup) -> None:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Alias", style="bold")
    table.add_column("Name")
    table.add_column("Enabled")
    table.add_column("URL")
    if not setup.repositories:
        table.add_row("", "(none)", "", "", "")
    for repo in setup.repositories:
        table.add_row(
            str(repo.repo_id),
            repo.repo_alias,
            repo.name,
            "yes" if repo.enabled else "no",
            repo.raw_url,
        )
    console.print(table)
    if setup.services:
        names = ", ".join(f"{service.name} ({service.alias})" for service in setup.services)
        console.print(f"Services: {names}")
    if setup.products:
        console.print(f"Products: {', '.join(setup.products)}")
    if setup.captured_at:
        console.print(f"Captured at: {setup.captured_at}")


def _capture(
    ctx: typer.Context,
    which: str,
    products: Sequence[str],
    json_output: bool,
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"snapshot {which}",
        args={"products": list(products), "json": json_output},
        target={"kind": "snapshot", "scope": which},
    ) as op:
        try:
            current = capture_setup(runtime.package_manager, products)
        except ZypperError as exc:
            _provider_error(op, f"Cannot read the current setup: {exc}")
        op.add_step("setup.capture", detail=f"{len(current.repositories)} repositories")

        try:
            if which == "original":
                setup = runtime.snapshots.record_original(current.repositories, current.services)
            else:
                setup = runtime.snapshots.record_new(
                    current.repositories, current.services, current.products
                )
        except StateRegistryError as exc:
            _environment_error(op, f"Cannot store the {which} setup: {exc}")
        op.add_step("registry.write", detail=which)

        if json_output:
            console.print_json(data=setup.to_dict())
        else:
            console.print(
                f"[green]Recorded {which} setup: {len(setup.repositories)} repositories, "
                f"{len(setup.services)} services.[/green]"
            )
        op.success(f"Recorded {which} setup.", changed=1)


@snapshot_app.command("original")
def snapshot_original(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Record the repositories and services configured before the upgrade."""
    _capture(ctx, "original", (), json_output)


@snapshot_app.command("new")
def snapshot_new(
    ctx: typer.Context,
    products: list[str] | None = PRODUCT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Record the setup configured for the upgraded system."""
    _capture(ctx, "new", products or [], json_output)


@snapshot_app.command("show")
def snapshot_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Display the recorded original and new setups."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "snapshot show",
        args={"json": json_output},
        target={"kind": "snapshot"},
    ) as op:
        try:
            original = runtime.snapshots.original
            new = runtime.snapshots.new
        except (SnapshotError, StateRegistryError) as exc:
            _environment_error(op, f"Cannot read setup snapshots: {exc}")

        if json_output:
            console.print_json(data={"original": original.to_dict(), "new": new.to_dict()})
            op.success("Rendered snapshots as JSON.", changed=0)
            return

        _render_setup("Original setup", original)
        _render_setup("New setup", new)
        op.success("Rendered snapshots.", changed=0)


@snapshot_app.command("clear")
def snapshot_clear(ctx: typer.Context) -> None:
    """Remove the recorded snapshots."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("snapshot clear", target={"kind": "snapshot"}) as op:
        try:
            removed = runtime.snapshots.clear()
        except StateRegistryError as exc:
            _environment_error(op, f"Cannot remove snapshots: {exc}")
        for name in removed:
            op.add_step("registry.remove", detail=name)
        console.print(f"Removed {len(removed)} snapshot file(s).")
        op.success("Cleared snapshots.", changed=len(removed))


@app.command()
def plan(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the old repositories and services and what activation would do."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "plan",
        args={"json": json_output},
        target={"kind": "repositories"},
    ) as op:
        manager = _load_manager(runtime, op)
        rows = summarize(manager)
        services = [service.alias for service in manager.services]

        if json_output:
            console.print_json(data={"repositories": rows, "services": services})
            op.success("Rendered plan as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("#", justify="right")
        table.add_column("Alias", style="bold")
        table.add_column("Name")
        table.add_column("Status")
        table.add_column("URL")
        if not rows:
            table.add_row("", "(none)", "", "", "")
        for repo in manager.repositories:
            status = manager.repo_status(repo)
            table.add_row(
                str(repo.repo_id),
                repo.repo_alias,
                repo.name,
                _STATUS_STYLE[status] if status is not None else "",
                manager.repo_url(repo) or "",
            )
        console.print(table)
        console.print(f"Services to remove: {', '.join(services) if services else '(none)'}")
        op.success("Rendered plan.", changed=0)


def _parse_url_overrides(op: OperationScope, raw: Sequence[str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for item in raw:
        alias, sep, url = item.partition("=")
        if not sep or not alias.strip() or not url.strip():
            _command_error(op, f"Invalid --url value '{item}'. Expected ALIAS=URL.")
        overrides[alias.strip()] = url.strip()
    return overrides


def _resolve(op: OperationScope, manager: UpgradeRepoManager, alias: str) -> Repository:
    repo = manager.find_repository(alias)
    if repo is None:
        _command_error(op, f"Repository '{alias}' is not an old repository tracked for upgrade.")
    return repo


def _set_status(manager: UpgradeRepoManager, repo: Repository, target: RepoStatus) -> None:
    while manager.repo_status(repo) is not target:
        manager.toggle_repo_status(repo)


@app.command()
def activate(
    ctx: typer.Context,
    enable: list[str] | None = typer.Option(
        None,
        "--enable",
        help="Keep the old repository ALIAS enabled (repeatable).",
    ),
    disable: list[str] | None = typer.Option(
        None,
        "--disable",
        help="Keep the old repository ALIAS but disable it (repeatable).",
    ),
    url: list[str] | None = typer.Option(
        None,
        "--url",
        help="Point an old repository at a new URL, as ALIAS=URL (repeatable).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Report the zypper commands that would run without changing anything.",
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Apply the repository decisions; old repositories not kept are removed."""
    runtime = _get_runtime(ctx)
    enable_aliases = list(enable or [])
    disable_aliases = list(disable or [])
    url_values = list(url or [])
    if dry_run:
        runtime.package_manager.dry_run = True

    with runtime.logger.operation(
        "activate",
        args={
            "enable": enable_aliases,
            "disable": disable_aliases,
            "url": url_values,
            "dry_run": dry_run,
            "json": json_output,
        },
        target={"kind": "repositories"},
    ) as op:
        conflicts = sorted(set(enable_aliases) & set(disable_aliases))
        if conflicts:
            _command_error(op, f"Cannot both enable and disable: {', '.join(conflicts)}.")
        overrides = _parse_url_overrides(op, url_values)

        manager = _load_manager(runtime, op)
        for alias in enable_aliases:
            _set_status(manager, _resolve(op, manager, alias), RepoStatus.ENABLED)
        for alias in disable_aliases:
            _set_status(manager, _resolve(op, manager, alias), RepoStatus.DISABLED)
        for alias, new_url in overrides.items():
            manager.change_url(_resolve(op, manager, alias), new_url)

        changes = manager.plan_changes()
        try:
            products = runtime.snapshots.new.products
        except (SnapshotError, StateRegistryError) as exc:
            _environment_error(op, f"Cannot read the new setup: {exc}")
        for product in products:
            runtime.package_manager.install_resolvable(product, "product")
            op.add_step("product.select", detail=product)

        try:
            result = manager.activate_changes()
        except ZypperError as exc:
            _provider_error(op, f"Activation failed: {exc}")
        except UpgradeRepoError as exc:
            _command_error(op, f"Activation failed: {exc}")

        payload: dict[str, object] = {
            "plan": changes.to_dict(),
            "result": result.to_dict(),
        }
        if dry_run:
            payload["planned_commands"] = [
                " ".join(command) for command in runtime.package_manager.planned_commands
            ]

        if json_output:
            console.print_json(data=payload)
        else:
            _render_result(payload, dry_run=dry_run)

        if dry_run:
            _dry_run_complete(op, "no repositories were changed.", context=payload)
            return
        if result.products_failed:
            failed = ", ".join(result.products_failed)
            console.print(f"[yellow]Could not reselect products: {failed}[/yellow]")
            op.warning(
                "Activated repository changes; some products could not be reselected.",
                warnings=[f"product:{name}" for name in result.products_failed],
                changed=result.changed,
                context=payload,
            )
            return
        op.success("Activated repository changes.", changed=result.changed, context=payload)


def _render_result(payload: Mapping[str, object], *, dry_run: bool) -> None:
    plan_data = payload["plan"]
    if isinstance(plan_data, Mapping):
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Alias", style="bold")
        table.add_column("Action")
        table.add_column("New URL")
        for change in plan_data.get("repositories", []):
            table.add_row(str(change["alias"]), str(change["action"]), change["url"] or "")
        console.print(table)
        services = plan_data.get("services") or []
        console.print(f"Services removed: {', '.join(services) if services else '(none)'}")
    if dry_run:
        for command in payload.get("planned_commands", []):  # type: ignore[union-attr]
            console.print(f"  would run: {command}")
        return
    result = payload["result"]
    if isinstance(result, Mapping):
        reselected = result.get("products_reselected") or []
        if reselected:
            console.print(f"Reselected products: {', '.join(reselected)}")
    console.print("[green]Repository changes activated.[/green]")


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
