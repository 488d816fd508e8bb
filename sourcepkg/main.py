"""
sourcepkg — CLI entrypoint.

Usage:
    python -m sourcepkg.main --help
    sourcepkg install
    sourcepkg run configure --config path/to/package.yml
    sourcepkg status
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from sourcepkg import __version__
from sourcepkg.core.models.package import PackageAction
from sourcepkg.core.observability.logging_config import (
    LOG_FILE_ENV,
    LOG_FILE_LEVEL_ENV,
    resolve_level,
    setup_logging,
)

ACTION_CHOICES = [a.value for a in PackageAction]


@click.group()
@click.version_option(version=__version__, prog_name="sourcepkg")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to package.yml (default: auto-detect).",
)
@click.option(
    "--cache-path",
    envvar="SOURCEPKG_CACHE_PATH",
    type=click.Path(file_okay=False),
    default=None,
    help="Cache root for state records and build directories (default: ~/.cache/sourcepkg).",
)
@click.option(
    "--files-dir",
    envvar="SOURCEPKG_FILES_DIR",
    type=click.Path(file_okay=False),
    default=None,
    help="Root for relative sources (default: the directory holding package.yml).",
)
@click.option(
    "--timeout",
    "command_timeout",
    envvar="SOURCEPKG_COMMAND_TIMEOUT",
    type=click.IntRange(min=1),
    default=None,
    help="Per-command timeout in seconds (default: none).",
)
@click.option("--mock", is_flag=True, help="Use mock adapters (no real execution).")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
    cache_path: str | None,
    files_dir: str | None,
    command_timeout: int | None,
    mock: bool,
) -> None:
    """sourcepkg — install software from source archives, only redoing what changed."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None
    ctx.obj["cache_path"] = Path(cache_path) if cache_path else None
    ctx.obj["files_dir"] = Path(files_dir) if files_dir else None
    ctx.obj["command_timeout"] = command_timeout
    ctx.obj["mock"] = mock

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get(LOG_FILE_ENV),
        log_file_level=os.environ.get(LOG_FILE_LEVEL_ENV),
    )


def _run_action(ctx: click.Context, action: str | None, as_json: bool) -> None:
    from sourcepkg.core.use_cases.run import run_package_action

    result = run_package_action(
        action=action,
        config_path=ctx.obj.get("config_path"),
        cache_path=ctx.obj.get("cache_path"),
        files_dir=ctx.obj.get("files_dir"),
        command_timeout=ctx.obj.get("command_timeout"),
        mock_mode=ctx.obj.get("mock", False),
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(2)
        if not result.ok:
            sys.exit(1)
        return

    if result.error and result.package is None:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(2)

    package = result.package
    assert package is not None
    mode_label = "[mock] " if ctx.obj.get("mock") else ""
    version_label = f" {package.version}" if package.version else ""
    click.secho(
        f"\n📦 {mode_label}{result.action} — {package.name}{version_label}",
        fg="cyan",
        bold=True,
    )
    click.echo()

    report = result.report
    for stage in report.results if report else []:
        receipt = stage.receipt
        timing = f" ({receipt.duration_ms}ms)" if receipt and receipt.duration_ms else ""
        if stage.status.value == "ran":
            click.secho(f"   ✓ {stage.stage.value}", fg="green", nl=False)
            click.echo(timing)
            if ctx.obj.get("verbose") and receipt and receipt.output:
                for line in receipt.output.split("\n")[-10:]:
                    click.echo(f"     │ {line}")
        elif stage.status.value == "failed":
            click.secho(f"   ✗ {stage.stage.value}", fg="red", nl=False)
            click.echo(timing)
            if stage.reason:
                for line in stage.reason.split("\n")[-5:]:
                    click.echo(f"     │ {line}")
        else:
            click.secho(f"   ⊘ {stage.stage.value}", fg="yellow")

    click.echo()
    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(2)

    if not result.ok:
        click.secho("   Result: failed", fg="red", bold=True)
        click.echo()
        sys.exit(1)

    summary = "updated" if report and report.updated else "up to date"
    click.secho(f"   Result: {summary}", fg="green", bold=True)
    click.echo()


@cli.command()
@click.argument("action", type=click.Choice(ACTION_CHOICES), required=False)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def run(ctx: click.Context, action: str | None, as_json: bool) -> None:
    """Run a package action (default: the action declared in package.yml).

    Examples:

        sourcepkg run

        sourcepkg run configure

        sourcepkg run force_install --json
    """
    _run_action(ctx, action, as_json)


def _shorthand(action: PackageAction, help_text: str) -> click.Command:
    @click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
    @click.pass_context
    def command(ctx: click.Context, as_json: bool) -> None:
        _run_action(ctx, action.value, as_json)

    command.__doc__ = help_text
    return click.command(name=action.value.replace("_", "-"))(command)


for _action, _help in (
    (PackageAction.DOWNLOAD, "Fetch the source archive if it is missing."),
    (PackageAction.UNPACK, "Download and unpack the source archive."),
    (PackageAction.CONFIGURE, "Unpack and configure the sources."),
    (PackageAction.BUILD, "Configure and build the sources."),
    (PackageAction.INSTALL, "Build and install the package."),
    (PackageAction.UPGRADE, "Install the package (same as install)."),
    (PackageAction.FORCE_INSTALL, "Forget stored state and install from scratch."),
):
    cli.add_command(_shorthand(_action, _help))


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show stored state and which stages would run."""
    from sourcepkg.core.use_cases.run import package_status

    result = package_status(
        config_path=ctx.obj.get("config_path"),
        cache_path=ctx.obj.get("cache_path"),
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    package, state = result.package, result.state
    assert package is not None and state is not None

    click.secho(f"\n📦 {package.name}", fg="cyan", bold=True)
    click.echo(f"   Desired: version {package.version or '-'}")
    click.echo(f"   Stored:  version {state.version or '-'}")
    click.echo()
    for flag, done in state.flags.items():
        marker = "✓" if done else "·"
        click.echo(f"     {marker} {flag}")

    stale = [stage for stage, would_run in (result.plan or {}).items() if would_run]
    click.echo()
    if stale:
        click.secho(f"   Would run: {', '.join(stale)}", fg="yellow")
    else:
        click.secho("   Up to date", fg="green")
    click.echo()


@cli.command()
@click.option("-n", "count", default=20, show_default=True, help="Number of entries.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent runs from the audit ledger."""
    from sourcepkg.core.persistence.audit import AuditWriter
    from sourcepkg.core.persistence.store import DEFAULT_CACHE_PATH

    cache_root = Path(ctx.obj.get("cache_path") or DEFAULT_CACHE_PATH).expanduser()
    entries = AuditWriter(cache_root=cache_root).read_recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo("No runs recorded.")
        return

    for entry in entries:
        color = {"ok": "green", "failed": "red", "error": "red"}.get(entry.status, "white")
        click.echo(f"{entry.timestamp}  {entry.package} {entry.action} ", nl=False)
        click.secho(entry.status, fg=color, nl=False)
        ran = f"  ran: {', '.join(entry.stages_ran)}" if entry.stages_ran else ""
        click.echo(ran)


if __name__ == "__main__":
    cli()
