"""
Tests for the stage controller — staleness, cascading, failure, persistence.
"""

from pathlib import Path

import pytest

from sourcepkg.adapters.base import ExecutionContext
from sourcepkg.adapters.mock import MockAdapter
from sourcepkg.adapters.registry import AdapterRegistry
from sourcepkg.core.engine.controller import (
    Stage,
    StageController,
    StageStatus,
    UnpackError,
)
from sourcepkg.core.models.action import Receipt
from sourcepkg.core.models.package import PackageDefinitionError, SourcePackage
from sourcepkg.core.models.state import PackageState
from sourcepkg.core.persistence.package_state import load_package_state, save_package_state
from sourcepkg.core.persistence.store import MemoryCache


class CountingCache(MemoryCache):
    """MemoryCache that counts writes."""

    def __init__(self, root):
        super().__init__(root)
        self.writes = 0

    def store(self, key, value):
        self.writes += 1
        super().store(key, value)


def _installed(pkg: SourcePackage) -> PackageState:
    return PackageState(
        name=pkg.name,
        version=pkg.version,
        configure=pkg.configure,
        unpacked=True,
        configured=True,
        built=True,
        installed=True,
    )


@pytest.fixture
def controller(emacs, store, registry) -> StageController:
    return StageController(emacs, store, registry)


# ── End to end ───────────────────────────────────────────────────────


class TestFreshInstall:
    def test_runs_every_stage_in_order(self, controller, store, shell, fetcher):
        result = controller.install()

        assert result.status is StageStatus.RAN
        assert fetcher.call_count == 1
        assert shell.commands == [
            "tar xzf emacs.tar.gz",
            "./configure --prefix=/usr/local",
            "make",
            "make install",
        ]
        assert controller.report.ran == ["download", "unpack", "configure", "build", "install"]
        assert controller.report.updated

    def test_working_directories(self, controller, store, shell, fetcher):
        controller.install()
        build_dir = store.create_cache_path("build-packages")

        assert fetcher.call_log[0].action.params["dest"] == str(build_dir / "emacs.tar.gz")
        assert fetcher.call_log[0].action.params["source"] == "http://ftp.gnu.org/gnu/emacs/emacs.tar.gz"
        cwds = [ctx.working_dir for ctx in shell.call_log]
        assert cwds == [str(build_dir)] + [str(build_dir / "emacs")] * 3

    def test_final_state_persisted(self, controller, store, emacs):
        controller.install()
        state = load_package_state(store, "emacs")

        assert state.flags == {"unpacked": True, "configured": True, "built": True, "installed": True}
        assert state.version == "23.1"
        assert state.configure == {"prefix": "/usr/local"}

    def test_every_attempted_stage_persists(self, emacs, tmp_path, registry):
        cache = CountingCache(tmp_path)
        StageController(emacs, cache, registry).install()
        assert cache.writes == 5

    def test_environment_and_action_ids(self, store, registry, shell):
        pkg = SourcePackage(name="emacs", source="emacs.tar.gz", environment={"CFLAGS": "-O2"})
        StageController(pkg, store, registry).install()
        assert all(ctx.environment == {"CFLAGS": "-O2"} for ctx in shell.call_log)
        assert [ctx.action.id for ctx in shell.call_log] == [
            "emacs:unpack",
            "emacs:configure",
            "emacs:build",
            "emacs:install",
        ]

    def test_command_timeout_passed_to_runner(self, emacs, store, registry, shell):
        StageController(emacs, store, registry, command_timeout=900).install()
        assert all(ctx.action.params["timeout"] == 900 for ctx in shell.call_log)

    def test_files_dir_and_checksum_passed_to_fetcher(self, store, registry, fetcher):
        pkg = SourcePackage(name="emacs", source="emacs.tar.gz", cookbook="emacs", checksum="sha256:ab")
        StageController(pkg, store, registry, files_dir="/srv/files").download()
        params = fetcher.call_log[0].action.params
        assert params["files_dir"] == "/srv/files"
        assert params["cookbook"] == "emacs"
        assert params["checksum"] == "sha256:ab"


# ── Idempotence ──────────────────────────────────────────────────────


class TestIdempotence:
    def test_second_run_does_nothing(self, emacs, store, registry, shell, fetcher):
        StageController(emacs, store, registry).install()
        shell.reset()
        fetcher.set_skip("emacs:download")

        controller = StageController(emacs, store, registry)
        result = controller.install()

        assert result.ok
        assert result.status is StageStatus.SKIPPED
        assert shell.call_count == 0
        assert not controller.report.updated
        assert controller.report.skipped == ["download", "unpack", "configure", "build", "install"]

    def test_same_instance_second_run_does_nothing(self, controller, shell, fetcher):
        controller.install()
        fetcher.set_skip("emacs:download")
        shell.reset()

        assert controller.install().ok
        assert shell.call_count == 0

    def test_upgrade_is_install(self, emacs, store, registry, shell, fetcher):
        fetcher.set_skip("emacs:download")
        save_package_state(store, _installed(emacs))
        assert StageController(emacs, store, registry).upgrade().status is StageStatus.SKIPPED
        assert shell.call_count == 0


# ── Cascading invalidation ───────────────────────────────────────────


class TestCascade:
    @pytest.fixture(autouse=True)
    def _archive_present(self, fetcher):
        fetcher.set_skip("emacs:download")

    def test_new_version_reruns_configure_build_install(self, emacs, store, registry, shell):
        save_package_state(store, _installed(emacs))
        upgraded = emacs.model_copy(update={"version": "23.2"})

        controller = StageController(upgraded, store, registry)
        assert controller.install().ran
        assert shell.commands == ["./configure --prefix=/usr/local", "make", "make install"]
        assert load_package_state(store, "emacs").version == "23.2"

    def test_new_configure_reruns_configure_build_install(self, emacs, store, registry, shell):
        save_package_state(store, _installed(emacs))
        changed = emacs.model_copy(update={"configure": {"prefix": "/opt", "with-x": True}})

        StageController(changed, store, registry).install()
        assert shell.commands == ["./configure --prefix=/opt --with-x", "make", "make install"]

    def test_build_reruns_on_version_change_even_if_built(self, emacs, store, registry):
        save_package_state(store, _installed(emacs))
        controller = StageController(emacs.model_copy(update={"version": "24"}), store, registry)
        assert controller.should_configure()
        assert controller.should_build()
        assert controller.should_install()
        assert not controller.should_unpack()

    def test_new_archive_resets_stored_state(self, emacs, store, registry, shell, fetcher):
        save_package_state(store, _installed(emacs))
        fetcher.reset()  # fetch reports a fresh download

        StageController(emacs, store, registry).install()
        assert shell.commands == [
            "tar xzf emacs.tar.gz",
            "./configure --prefix=/usr/local",
            "make",
            "make install",
        ]

    def test_force_install_reruns_everything_but_existing_unpack(self, controller, emacs, store, shell):
        save_package_state(store, _installed(emacs))
        controller.unpack_path.mkdir(parents=True)

        assert controller.force_install().ran
        assert shell.commands == ["./configure --prefix=/usr/local", "make", "make install"]
        assert load_package_state(store, "emacs").installed is True


# ── Guarded configure ────────────────────────────────────────────────


class TestGuardedConfigure:
    @pytest.mark.parametrize("value", [False, None])
    def test_configure_skipped_when_not_wanted(self, store, registry, shell, value):
        pkg = SourcePackage(name="emacs", source="emacs.tar.gz", configure=value)
        controller = StageController(pkg, store, registry)
        controller.install()

        assert shell.commands == ["tar xzf emacs.tar.gz", "make", "make install"]
        assert load_package_state(store, "emacs").configured is True
        assert controller.report.skipped == ["configure"]

    def test_configure_true_runs_bare_command(self, store, registry, shell):
        pkg = SourcePackage(name="emacs", source="emacs.tar.gz", configure=True)
        StageController(pkg, store, registry).configure()
        assert shell.commands[-1] == "./configure"

    @pytest.mark.parametrize("value", [{}, [], ""])
    def test_empty_configure_still_runs(self, store, registry, shell, value):
        pkg = SourcePackage(name="emacs", source="emacs.tar.gz", configure=value)
        controller = StageController(pkg, store, registry)
        controller.install()

        assert shell.commands == ["tar xzf emacs.tar.gz", "./configure", "make", "make install"]
        assert controller.report.skipped == []

    def test_configure_with_switches_and_custom_command(self, store, registry, shell):
        pkg = SourcePackage(
            name="emacs",
            source="emacs.tar.gz",
            configure=["debug", None],
            configure_command="sh ./configure.sh",
        )
        StageController(pkg, store, registry).configure()
        assert shell.commands[-1] == "sh ./configure.sh --debug"


# ── Predicates ───────────────────────────────────────────────────────


class TestPredicates:
    @pytest.fixture
    def same(self, controller, emacs):
        controller.current_state = _installed(emacs)
        return controller

    def test_should_unpack_when_missing(self, controller):
        assert controller.should_unpack()

    def test_should_not_unpack_when_flagged(self, same):
        assert not same.should_unpack()

    def test_should_not_unpack_when_directory_exists(self, controller):
        controller.unpack_path.mkdir(parents=True)
        assert not controller.should_unpack()

    def test_nothing_stale_when_identical(self, same):
        assert not same.should_configure()
        assert not same.should_build()
        assert not same.should_install()

    @pytest.mark.parametrize("flag, predicate", [
        ("configured", "should_configure"),
        ("built", "should_build"),
        ("installed", "should_install"),
    ])
    def test_stale_when_flag_false(self, same, flag, predicate):
        setattr(same.current_state, flag, False)
        assert getattr(same, predicate)()

    @pytest.mark.parametrize("predicate", ["should_configure", "should_build", "should_install"])
    def test_stale_when_configure_differs(self, same, predicate):
        same.package = same.package.model_copy(update={"configure": {"debug": True}})
        assert getattr(same, predicate)()

    def test_should_not_configure_when_unwanted(self, same):
        same.package = same.package.model_copy(update={"configure": False})
        same.current_state.configured = False
        assert not same.should_configure()

    def test_plan_fresh(self, controller):
        assert controller.plan() == {
            "download": True,
            "unpack": True,
            "configure": True,
            "build": True,
            "install": True,
        }

    def test_plan_after_install(self, controller, shell):
        controller.install()
        controller.download_path.write_bytes(b"archive")
        assert not any(controller.plan().values())
        assert shell.call_count == 4


# ── Failures ─────────────────────────────────────────────────────────


class PartialUnpack(MockAdapter):
    """Shell double whose unpack leaves a half-written directory and fails."""

    def __init__(self, unpack_dir: Path):
        super().__init__(adapter_name="shell")
        self.unpack_dir = unpack_dir

    def execute(self, context: ExecutionContext) -> Receipt:
        self._call_log.append(context)
        if context.action.id.endswith(":unpack"):
            (self.unpack_dir / "partial").mkdir(parents=True)
            return Receipt.failure(adapter="shell", action_id=context.action.id, error="tar: truncated")
        return Receipt.success(adapter="shell", action_id=context.action.id)


class TestFailures:
    def test_download_failure_short_circuits(self, controller, store, shell, fetcher):
        fetcher.set_failure("emacs:download", error="404")
        result = controller.install()

        assert result.status is StageStatus.FAILED
        assert shell.call_count == 0
        assert controller.report.failed == ["download", "unpack", "configure", "build", "install"]
        assert store.data == {}

    def test_unpack_failure_cleans_up(self, emacs, store, fetcher):
        controller = StageController(emacs, store, AdapterRegistry())
        shell = PartialUnpack(controller.unpack_path)
        controller.registry.register(shell)
        controller.registry.register(fetcher)

        result = controller.install()

        assert not result.ok
        assert shell.call_count == 1
        assert not controller.unpack_path.exists()
        assert load_package_state(store, "emacs").unpacked is False

    def test_unpack_failure_persists(self, emacs, tmp_path, registry, shell):
        cache = CountingCache(tmp_path)
        shell.set_failure("emacs:unpack")
        StageController(emacs, cache, registry).install()
        assert cache.writes == 2  # download, unpack

    def test_configure_failure(self, controller, store, shell):
        shell.set_failure("emacs:configure", error="configure: error: no C compiler")
        result = controller.install()

        assert not result.ok
        assert result.reason == "build failed"
        assert shell.commands == ["tar xzf emacs.tar.gz", "./configure --prefix=/usr/local"]
        configure = controller.report.results[2]
        assert configure.stage is Stage.CONFIGURE
        assert configure.reason == "configure: error: no C compiler"
        state = load_package_state(store, "emacs")
        assert state.unpacked is True
        assert state.configured is False

    def test_short_circuited_stages_do_not_persist(self, emacs, tmp_path, registry, shell):
        cache = CountingCache(tmp_path)
        shell.set_failure("emacs:configure")
        StageController(emacs, cache, registry).install()
        assert cache.writes == 3  # download, unpack, configure

    def test_retry_after_build_failure_resumes_at_build(self, emacs, store, registry, shell, fetcher):
        shell.set_failure("emacs:build")
        assert not StageController(emacs, store, registry).install().ok

        shell.reset()
        fetcher.set_skip("emacs:download")
        assert StageController(emacs, store, registry).install().ran
        assert shell.commands == ["make", "make install"]

    def test_install_failure(self, controller, store, shell):
        shell.set_failure("emacs:install")
        assert controller.install().status is StageStatus.FAILED
        state = load_package_state(store, "emacs")
        assert state.built is True
        assert state.installed is False


# ── Commands and configuration errors ────────────────────────────────


class TestCommands:
    def test_custom_commands(self, store, registry, shell):
        pkg = SourcePackage(
            name="emacs",
            source="emacs.tar.gz",
            unpack_command="tar xzvf",
            build_command="rake",
            install_command="rake install",
        )
        StageController(pkg, store, registry).install()
        assert shell.commands == ["tar xzvf emacs.tar.gz", "./configure", "rake", "rake install"]

    @pytest.mark.parametrize("source, command", [
        ("pkg.tar", "tar xf pkg.tar"),
        ("pkg.tgz", "tar xzf pkg.tgz"),
        ("pkg.tar.bz2", "tar xjf pkg.tar.bz2"),
        ("pkg.zip", "unzip pkg.zip"),
    ])
    def test_default_unpack_commands(self, store, registry, shell, source, command):
        pkg = SourcePackage(name="pkg", source=source)
        StageController(pkg, store, registry).unpack()
        assert shell.commands == [command]

    def test_unknown_archive_type_aborts(self, store, registry, shell):
        pkg = SourcePackage(name="pkg", source="pkg.tar.xz", unpacks_to="pkg")
        with pytest.raises(UnpackError, match="pkg.tar.xz of type unknown"):
            StageController(pkg, store, registry).install()
        assert shell.call_count == 0

    def test_unknown_archive_type_with_override(self, store, registry, shell):
        pkg = SourcePackage(name="pkg", source="pkg.tar.xz", unpacks_to="pkg", unpack_command="tar xJf")
        assert StageController(pkg, store, registry).unpack().ran
        assert shell.commands == ["tar xJf pkg.tar.xz"]

    def test_missing_source_aborts(self, store, registry):
        with pytest.raises(PackageDefinitionError, match="no source"):
            StageController(SourcePackage(name="pkg"), store, registry).download()

    def test_run_dispatches_actions(self, controller, store, shell):
        result = controller.run("configure")
        assert result.stage is Stage.CONFIGURE
        assert controller.report.action == "configure"
        assert shell.commands == ["tar xzf emacs.tar.gz", "./configure --prefix=/usr/local"]
        assert load_package_state(store, "emacs").built is False

    def test_run_defaults_to_package_action(self, store, registry):
        pkg = SourcePackage(name="emacs", source="emacs.tar.gz", action="build")
        assert StageController(pkg, store, registry).run().stage is Stage.BUILD
