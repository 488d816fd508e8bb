"""
Stage controller — converge one source package through its pipeline.

    download → unpack → configure → build → install

Every stage has the same shape: ensure the previous stage succeeded,
ask its staleness predicate whether it must run, run it (or skip it),
persist the package record, report. Each stage calls the previous one
directly, so asking for ``install`` walks the whole chain and only the
stale stages do any work.

Staleness is judged against the record loaded when an operation starts
(``current_state``). The record being written (``state``) carries the
desired version/configure and the flags earned during this operation,
so a stored record always describes the inputs that produced it.
Downstream flags are never cleared eagerly: build and install compare
version and configure themselves.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from sourcepkg.adapters.registry import AdapterRegistry
from sourcepkg.core.engine.autoconf import switches
from sourcepkg.core.models.action import Action, Receipt
from sourcepkg.core.models.package import (
    ArchiveType,
    PackageAction,
    PackageDefinitionError,
    SourcePackage,
)
from sourcepkg.core.models.state import PackageState
from sourcepkg.core.persistence.package_state import load_package_state, save_package_state
from sourcepkg.core.persistence.store import StateStore

logger = logging.getLogger(__name__)

BUILD_NAMESPACE = "build-packages"

UNPACK_COMMANDS: dict[ArchiveType, str] = {
    ArchiveType.TAR: "tar xf",
    ArchiveType.GZIP: "tar xzf",
    ArchiveType.BZIP2: "tar xjf",
    ArchiveType.ZIP: "unzip",
}


class UnpackError(PackageDefinitionError):
    """No command is known for unpacking the archive."""


class Stage(str, Enum):
    DOWNLOAD = "download"
    UNPACK = "unpack"
    CONFIGURE = "configure"
    BUILD = "build"
    INSTALL = "install"


class StageStatus(str, Enum):
    RAN = "ran"            # action executed and succeeded
    SKIPPED = "skipped"    # nothing stale, nothing done
    FAILED = "failed"      # action failed, or an earlier stage did


@dataclass
class StageResult:
    """Outcome of one stage."""

    stage: Stage
    status: StageStatus
    receipt: Receipt | None = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is not StageStatus.FAILED

    @property
    def ran(self) -> bool:
        return self.status is StageStatus.RAN

    def to_dict(self) -> dict:
        result: dict = {"stage": self.stage.value, "status": self.status.value}
        if self.reason:
            result["reason"] = self.reason
        if self.receipt is not None:
            result["receipt"] = self.receipt.model_dump(mode="json")
        return result


@dataclass
class PipelineReport:
    """Every stage result of one operation, in execution order."""

    package: str = ""
    action: str = ""
    results: list[StageResult] = field(default_factory=list)

    def _stages(self, status: StageStatus) -> list[str]:
        return [r.stage.value for r in self.results if r.status is status]

    @property
    def ran(self) -> list[str]:
        return self._stages(StageStatus.RAN)

    @property
    def skipped(self) -> list[str]:
        return self._stages(StageStatus.SKIPPED)

    @property
    def failed(self) -> list[str]:
        return self._stages(StageStatus.FAILED)

    @property
    def updated(self) -> bool:
        """Whether this operation changed anything."""
        return bool(self.ran)

    @property
    def status(self) -> str:
        return "failed" if self.failed else "ok"

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "action": self.action,
            "status": self.status,
            "updated": self.updated,
            "results": [r.to_dict() for r in self.results],
        }


class StageController:
    """Drive one SourcePackage through download/unpack/configure/build/install.

    Args:
        package: Desired state.
        store: Where package records live and build directories are made.
        registry: Dispatches to the ``shell`` and ``remote_file`` adapters.
        files_dir: Root searched for sources given as relative paths.
        command_timeout: Per-command timeout in seconds (None: unbounded).
    """

    def __init__(
        self,
        package: SourcePackage,
        store: StateStore,
        registry: AdapterRegistry,
        files_dir: Path | str | None = None,
        command_timeout: int | None = None,
    ):
        self.package = package
        self.store = store
        self.registry = registry
        self.files_dir = str(files_dir) if files_dir else None
        self.command_timeout = command_timeout
        self.report = PipelineReport(package=package.name)
        self.current_state = self.load_current_state()
        self.state = PackageState.for_package(package)

    # ── State ────────────────────────────────────────────────────

    def load_current_state(self) -> PackageState:
        """Load the stored record for this package (fresh if none)."""
        return load_package_state(self.store, self.package.name)

    def _begin(self, action: PackageAction) -> None:
        self.current_state = self.load_current_state()
        self.state = PackageState.for_package(self.package)
        self.report = PipelineReport(package=self.package.name, action=action.value)

    def _persist(self) -> None:
        save_package_state(self.store, self.state)

    # ── Paths ────────────────────────────────────────────────────

    @property
    def build_dir(self) -> Path:
        return self.store.create_cache_path(BUILD_NAMESPACE)

    @property
    def download_path(self) -> Path:
        filename = self.package.filename
        if not filename:
            raise PackageDefinitionError(f"Package '{self.package.name}' has no source")
        return self.build_dir / filename

    @property
    def unpack_path(self) -> Path:
        return self.build_dir / self.package.unpacks_to

    # ── Operations ───────────────────────────────────────────────

    def run(self, action: PackageAction | str | None = None) -> StageResult:
        """Run a package action (default: the package's own ``action``)."""
        action = PackageAction(action or self.package.action)
        operations = {
            PackageAction.DOWNLOAD: self.download,
            PackageAction.UNPACK: self.unpack,
            PackageAction.CONFIGURE: self.configure,
            PackageAction.BUILD: self.build,
            PackageAction.INSTALL: self.install,
            PackageAction.UPGRADE: self.upgrade,
            PackageAction.FORCE_INSTALL: self.force_install,
        }
        return operations[action]()

    def download(self) -> StageResult:
        self._begin(PackageAction.DOWNLOAD)
        return self._download()

    def unpack(self) -> StageResult:
        self._begin(PackageAction.UNPACK)
        return self._unpack()

    def configure(self) -> StageResult:
        self._begin(PackageAction.CONFIGURE)
        return self._configure()

    def build(self) -> StageResult:
        self._begin(PackageAction.BUILD)
        return self._build()

    def install(self) -> StageResult:
        self._begin(PackageAction.INSTALL)
        return self._install()

    def upgrade(self) -> StageResult:
        self._begin(PackageAction.UPGRADE)
        return self._install()

    def force_install(self) -> StageResult:
        """Install as if nothing had ever been done."""
        self._begin(PackageAction.FORCE_INSTALL)
        self.current_state.reset()
        return self._install()

    # ── Staleness predicates ─────────────────────────────────────

    def _inputs_changed(self) -> bool:
        return (
            self.package.version != self.current_state.version
            or self.package.configure != self.current_state.configure
        )

    def should_unpack(self) -> bool:
        return not self.current_state.unpacked and not self.unpack_path.is_dir()

    def should_configure(self) -> bool:
        if self.package.configure is None or self.package.configure is False:
            return False
        return not self.current_state.configured or self._inputs_changed()

    def should_build(self) -> bool:
        return not self.current_state.built or self._inputs_changed()

    def should_install(self) -> bool:
        return not self.current_state.installed or self._inputs_changed()

    def plan(self) -> dict[str, bool]:
        """Which stages would run now, without running anything.

        The download entry only reports whether the archive is missing;
        the fetch itself decides when it actually runs.
        """
        self.current_state = self.load_current_state()
        return {
            Stage.DOWNLOAD.value: not self.download_path.exists(),
            Stage.UNPACK.value: self.should_unpack(),
            Stage.CONFIGURE.value: self.should_configure(),
            Stage.BUILD.value: self.should_build(),
            Stage.INSTALL.value: self.should_install(),
        }

    # ── Stages ───────────────────────────────────────────────────

    def _download(self) -> StageResult:
        params = {
            "source": self.package.source,
            "dest": str(self.download_path),
        }
        if self.package.checksum:
            params["checksum"] = self.package.checksum
        if self.files_dir:
            params["files_dir"] = self.files_dir
        if self.package.cookbook:
            params["cookbook"] = self.package.cookbook

        receipt = self._dispatch(Stage.DOWNLOAD, "remote_file", params)

        if receipt.failed:
            return self._record(Stage.DOWNLOAD, StageStatus.FAILED, receipt, receipt.error or "")
        if receipt.ok:
            # A new archive invalidates everything built from the old one
            self.current_state.reset()
            self._persist()
            return self._record(Stage.DOWNLOAD, StageStatus.RAN, receipt)
        return self._record(Stage.DOWNLOAD, StageStatus.SKIPPED, receipt)

    def _unpack(self) -> StageResult:
        if not self._download().ok:
            return self._short_circuit(Stage.UNPACK, Stage.DOWNLOAD)

        if not self.should_unpack():
            self.state.unpacked = True
            self._persist()
            return self._record(Stage.UNPACK, StageStatus.SKIPPED)

        archive = self.download_path
        command = f"{self.unpack_command()} {archive.name}"
        receipt = self._run_command(Stage.UNPACK, command, archive.parent)

        if receipt.ok:
            self.state.unpacked = True
            self._persist()
            return self._record(Stage.UNPACK, StageStatus.RAN, receipt)

        # Leave nothing behind, or the next run would see the directory and skip
        shutil.rmtree(self.unpack_path, ignore_errors=True)
        self.state.unpacked = False
        self._persist()
        return self._record(Stage.UNPACK, StageStatus.FAILED, receipt, receipt.error or "")

    def _configure(self) -> StageResult:
        if not self._unpack().ok:
            return self._short_circuit(Stage.CONFIGURE, Stage.UNPACK)

        if not self.should_configure():
            self.state.configured = True
            self._persist()
            return self._record(Stage.CONFIGURE, StageStatus.SKIPPED)

        command = f"{self.package.configure_command} {switches(self.package.configure)}".strip()
        receipt = self._run_command(Stage.CONFIGURE, command, self.unpack_path)
        self.state.configured = receipt.ok
        self._persist()
        return self._finish(Stage.CONFIGURE, receipt)

    def _build(self) -> StageResult:
        if not self._configure().ok:
            return self._short_circuit(Stage.BUILD, Stage.CONFIGURE)

        if not self.should_build():
            self.state.built = True
            self._persist()
            return self._record(Stage.BUILD, StageStatus.SKIPPED)

        receipt = self._run_command(Stage.BUILD, self.package.build_command, self.unpack_path)
        self.state.built = receipt.ok
        self._persist()
        return self._finish(Stage.BUILD, receipt)

    def _install(self) -> StageResult:
        if not self._build().ok:
            return self._short_circuit(Stage.INSTALL, Stage.BUILD)

        if not self.should_install():
            self.state.installed = True
            self._persist()
            return self._record(Stage.INSTALL, StageStatus.SKIPPED)

        receipt = self._run_command(Stage.INSTALL, self.package.install_command, self.unpack_path)
        self.state.installed = receipt.ok
        self._persist()
        return self._finish(Stage.INSTALL, receipt)

    # ── Helpers ──────────────────────────────────────────────────

    def unpack_command(self) -> str:
        """Command that unpacks the archive (explicit override first).

        Raises:
            UnpackError: Unknown archive type and no ``unpack_command``.
        """
        if self.package.unpack_command:
            return self.package.unpack_command
        archive_type = self.package.archive_type
        command = UNPACK_COMMANDS.get(archive_type)
        if command is None:
            raise UnpackError(
                f"don't know how to unpack {self.package.filename} of type {archive_type.value}"
            )
        return command

    def _dispatch(self, stage: Stage, adapter: str, params: dict) -> Receipt:
        action = Action(package=self.package.name, stage=stage.value, adapter=adapter, params=params)
        return self.registry.execute_action(action, environment=self.package.environment)

    def _run_command(self, stage: Stage, command: str, cwd: Path) -> Receipt:
        params: dict = {"command": command, "cwd": str(cwd)}
        if self.command_timeout:
            params["timeout"] = self.command_timeout
        return self._dispatch(stage, "shell", params)

    def _finish(self, stage: Stage, receipt: Receipt) -> StageResult:
        if receipt.ok:
            return self._record(stage, StageStatus.RAN, receipt)
        return self._record(stage, StageStatus.FAILED, receipt, receipt.error or "")

    def _short_circuit(self, stage: Stage, prerequisite: Stage) -> StageResult:
        return self._record(stage, StageStatus.FAILED, reason=f"{prerequisite.value} failed")

    def _record(
        self,
        stage: Stage,
        status: StageStatus,
        receipt: Receipt | None = None,
        reason: str = "",
    ) -> StageResult:
        result = StageResult(stage=stage, status=status, receipt=receipt, reason=reason)
        self.report.results.append(result)

        marker = {"ran": "✓", "skipped": "⊘", "failed": "✗"}[status.value]
        if status is StageStatus.FAILED:
            logger.warning("%s %s:%s → failed %s", marker, self.package.name, stage.value, reason)
        else:
            logger.info("%s %s:%s → %s", marker, self.package.name, stage.value, status.value)
        return result
