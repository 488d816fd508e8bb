"""
Run use case — converge a package towards its definition.

This is the top-level orchestrator used by the CLI: it loads the
package definition, wires the state store and adapters into a
StageController, runs the requested action, and writes the audit
entry. The full vertical slice from user intent to audited execution.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from sourcepkg.adapters.fetch.remote_file import RemoteFileAdapter
from sourcepkg.adapters.registry import AdapterRegistry
from sourcepkg.adapters.shell.command import ShellCommandAdapter
from sourcepkg.core.config.loader import ConfigError, config_root, find_package_file, load_package
from sourcepkg.core.engine.controller import PipelineReport, StageController, StageResult
from sourcepkg.core.models.package import PackageAction, PackageDefinitionError, SourcePackage
from sourcepkg.core.models.state import PackageState
from sourcepkg.core.persistence.audit import AuditEntry, AuditWriter
from sourcepkg.core.persistence.store import DEFAULT_CACHE_PATH, FileCache, StateStore, StoreError

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Result of running a package action."""

    package: SourcePackage | None = None
    action: str = ""
    result: StageResult | None = None
    report: PipelineReport | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None and self.result.ok

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        data: dict = {
            "package": self.package.name if self.package else "",
            "version": self.package.version if self.package else None,
            "action": self.action,
            "ok": self.ok,
        }
        if self.report:
            data["report"] = self.report.to_dict()
        return data


@dataclass
class StatusResult:
    """Stored state and staleness of a package."""

    package: SourcePackage | None = None
    state: PackageState | None = None
    plan: dict[str, bool] | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "package": self.package.name if self.package else "",
            "version": self.package.version if self.package else None,
            "state": self.state.model_dump(mode="json") if self.state else None,
            "stale": self.plan or {},
        }


def default_registry(mock_mode: bool = False) -> AdapterRegistry:
    """Registry with the real command runner and fetcher."""
    registry = AdapterRegistry(mock_mode=mock_mode)
    registry.register(ShellCommandAdapter())
    registry.register(RemoteFileAdapter())
    return registry


def build_controller(
    package: SourcePackage,
    config_path: Path | None = None,
    cache_path: Path | None = None,
    files_dir: Path | None = None,
    command_timeout: int | None = None,
    mock_mode: bool = False,
    store: StateStore | None = None,
    registry: AdapterRegistry | None = None,
) -> StageController:
    """Wire a StageController with defaults for anything not supplied."""
    if files_dir is None and config_path is not None:
        files_dir = config_root(config_path)
    return StageController(
        package,
        store=store or FileCache(cache_path or DEFAULT_CACHE_PATH),
        registry=registry or default_registry(mock_mode),
        files_dir=files_dir,
        command_timeout=command_timeout,
    )


def _load(config_path: Path | None) -> tuple[SourcePackage, Path | None]:
    if config_path is None:
        config_path = find_package_file()
    return load_package(config_path), config_path


def run_package_action(
    action: PackageAction | str | None = None,
    config_path: Path | None = None,
    cache_path: Path | None = None,
    files_dir: Path | None = None,
    command_timeout: int | None = None,
    mock_mode: bool = False,
    store: StateStore | None = None,
    registry: AdapterRegistry | None = None,
    audit_writer: AuditWriter | None = None,
) -> RunResult:
    """Load a package definition and run an action against it.

    Args:
        action: Action to run. None = the package's declared action.
        config_path: Optional explicit path to package.yml.
        cache_path: Root of the file cache (state records, build dirs).
        files_dir: Root for relative sources (default: next to package.yml).
        command_timeout: Per-command timeout in seconds.
        mock_mode: If True, adapters report success without side effects.
        store: Optional pre-configured state store.
        registry: Optional pre-configured adapter registry.
        audit_writer: Optional audit ledger (default: next to the cache).

    Returns:
        RunResult with the stage report.
    """
    result = RunResult()

    try:
        package, config_path = _load(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.package = package
    result.action = PackageAction(action or package.action).value

    operation_id = generate_operation_id()
    start = time.monotonic()
    controller: StageController | None = None
    try:
        controller = build_controller(
            package,
            config_path=config_path,
            cache_path=cache_path,
            files_dir=files_dir,
            command_timeout=command_timeout,
            mock_mode=mock_mode,
            store=store,
            registry=registry,
        )
        result.result = controller.run(result.action)
    except (PackageDefinitionError, StoreError) as e:
        result.error = str(e)
    if controller is not None:
        result.report = controller.report

    if audit_writer is None:
        audit_writer = AuditWriter(cache_root=Path(cache_path or DEFAULT_CACHE_PATH).expanduser())
    _write_audit_entry(
        audit_writer,
        result,
        operation_id=operation_id,
        duration_ms=int((time.monotonic() - start) * 1000),
    )

    return result


def package_status(
    config_path: Path | None = None,
    cache_path: Path | None = None,
    store: StateStore | None = None,
) -> StatusResult:
    """Report the stored state of a package and which stages are stale."""
    result = StatusResult()
    try:
        package, config_path = _load(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.package = package
    try:
        controller = build_controller(
            package, config_path=config_path, cache_path=cache_path, store=store,
        )
    except StoreError as e:
        result.error = str(e)
        return result
    try:
        result.plan = controller.plan()
    except (PackageDefinitionError, StoreError) as e:
        result.error = str(e)
    result.state = controller.current_state
    return result


def _write_audit_entry(
    writer: AuditWriter,
    result: RunResult,
    operation_id: str,
    duration_ms: int,
) -> None:
    report = result.report or PipelineReport()
    errors = [r.reason for r in report.results if r.reason]
    if result.error:
        errors.append(result.error)

    writer.write(
        AuditEntry(
            operation_id=operation_id,
            package=result.package.name if result.package else "",
            version=result.package.version if result.package else None,
            action=result.action,
            status="error" if result.error else report.status,
            updated=report.updated,
            stages_ran=report.ran,
            stages_skipped=report.skipped,
            stages_failed=report.failed,
            duration_ms=duration_ms,
            errors=errors,
        )
    )


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"op-{now}-{short}"
