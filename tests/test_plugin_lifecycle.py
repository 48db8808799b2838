"""Tests for the Plugin lifecycle.

Tests cover:
    - Load/unload/reload state transitions
    - Duplicate detection through the manager
    - The Load export's registration contract
    - Function cache lifetime across load generations
    - Lock-free status reads and concurrent calls
"""

import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from plughost.plugins.adapters import ImportlibArtifactLoader
from plughost.plugins.base import PluginStatus
from plughost.plugins.binder import FunctionBinder
from plughost.plugins.errors import PluginError, PluginErrorCode
from plughost.plugins.lifecycle import Plugin
from plughost.plugins.manager import PluginManager


@pytest.fixture
def make_plugin(manager: PluginManager, loader: ImportlibArtifactLoader):
    """Return a factory for plugins bound to the test manager and loader."""

    def _make(path: Path, binder: FunctionBinder | None = None) -> Plugin:
        return Plugin(path, manager, loader=loader, binder=binder)

    return _make


class TestPluginInitialState:
    """Tests for a freshly constructed Plugin."""

    def test_initial_state(self, make_plugin, echo_path: Path) -> None:
        """Verify a new plugin has no identity and status NONE."""
        plugin = make_plugin(echo_path)

        assert plugin.status is PluginStatus.NONE
        assert plugin.name == ""
        assert plugin.version == 0
        assert plugin.path == str(echo_path)
        assert plugin.refs == 0

    def test_get_func_before_load(self, make_plugin, echo_path: Path) -> None:
        """Verify get_func on an unloaded plugin fails with PLUGIN_NOT_LOADED."""
        plugin = make_plugin(echo_path)

        with pytest.raises(PluginError) as exc_info:
            plugin.get_func("Echo")

        assert exc_info.value.code == PluginErrorCode.PLUGIN_NOT_LOADED


class TestPluginLoad:
    """Tests for Plugin.load."""

    def test_load_registers_identity(
        self, make_plugin, manager: PluginManager, echo_path: Path
    ) -> None:
        """Verify load adopts the self-declared name and version."""
        plugin = make_plugin(echo_path)

        plugin.load()

        assert plugin.status is PluginStatus.LOADED
        assert plugin.name == "echo"
        assert plugin.version == 0x0100
        assert manager.get_plugin("echo") is plugin
        assert manager.get_plugin_with_version("echo", 0x0100) is plugin

    def test_load_is_idempotent(
        self, make_plugin, loader: ImportlibArtifactLoader, echo_path: Path
    ) -> None:
        """Verify loading a loaded plugin does nothing."""
        plugin = make_plugin(echo_path)
        plugin.load()

        with patch.object(loader, "open", wraps=loader.open) as spy:
            plugin.load()

        spy.assert_not_called()
        assert plugin.status is PluginStatus.LOADED

    def test_load_missing_artifact(self, make_plugin, tmp_path: Path) -> None:
        """Verify a missing artifact fails with OPEN_FAILED and status NONE."""
        plugin = make_plugin(tmp_path / "missing.py")

        with pytest.raises(PluginError) as exc_info:
            plugin.load()

        assert exc_info.value.code == PluginErrorCode.OPEN_FAILED
        assert plugin.status is PluginStatus.NONE

    def test_load_without_load_export(self, make_plugin, write_artifact) -> None:
        """Verify an artifact without Load fails with SYMBOL_NOT_FOUND."""
        path = write_artifact("bare.py", "def Unload():\n    pass\n")
        plugin = make_plugin(path)

        with pytest.raises(PluginError) as exc_info:
            plugin.load()

        assert exc_info.value.code == PluginErrorCode.SYMBOL_NOT_FOUND
        assert plugin.status is PluginStatus.NONE

    def test_load_without_register(self, make_plugin, write_artifact) -> None:
        """Verify a Load that never registers leaves the plugin NONE."""
        path = write_artifact(
            "silent.py",
            """
            def Load(register):
                pass
            """,
        )
        plugin = make_plugin(path)

        with pytest.raises(PluginError) as exc_info:
            plugin.load()

        assert exc_info.value.code == PluginErrorCode.LOAD_FAILED
        assert plugin.status is PluginStatus.NONE

        with pytest.raises(PluginError) as exc_info:
            plugin.get_func("Load")
        assert exc_info.value.code == PluginErrorCode.PLUGIN_NOT_LOADED

    def test_load_raises_before_register(self, make_plugin, write_artifact) -> None:
        """Verify an exception before registration fails the load."""
        path = write_artifact(
            "early.py",
            """
            def Load(register):
                raise RuntimeError("no config")
            """,
        )
        plugin = make_plugin(path)

        with pytest.raises(PluginError) as exc_info:
            plugin.load()

        assert exc_info.value.code == PluginErrorCode.LOAD_FAILED
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert plugin.status is PluginStatus.NONE

    def test_load_fails_after_register(
        self, make_plugin, manager: PluginManager, write_artifact
    ) -> None:
        """Verify a failure after registration is raised but the plugin stays LOADED."""
        path = write_artifact(
            "late.py",
            """
            def Load(register):
                register("late", 1)
                return ValueError("warm-up failed")

            def Ping() -> str:
                return "pong"
            """,
        )
        plugin = make_plugin(path)

        with pytest.raises(PluginError) as exc_info:
            plugin.load()

        assert exc_info.value.code == PluginErrorCode.LOAD_FAILED
        assert isinstance(exc_info.value.cause, ValueError)
        assert plugin.status is PluginStatus.LOADED
        assert manager.get_plugin("late") is plugin
        assert plugin.call("Ping") == ["pong", None]

    def test_register_outside_load_rejected(
        self, make_plugin, loader: ImportlibArtifactLoader, write_artifact
    ) -> None:
        """Verify a stored register callback cannot be reused after load."""
        path = write_artifact(
            "keeper.py",
            """
            saved = None

            def Load(register):
                global saved
                saved = register
                register("keeper", 1)
            """,
        )
        plugin = make_plugin(path)
        plugin.load()

        saved = loader.open(path).module.saved
        with pytest.raises(PluginError) as exc_info:
            saved("impostor", 2)

        assert exc_info.value.code == PluginErrorCode.LOAD_FAILED
        assert plugin.name == "keeper"

    def test_load_after_failed_load_retries(
        self, make_plugin, loader: ImportlibArtifactLoader, write_artifact
    ) -> None:
        """Verify a plugin left NONE by a failed load may be loaded again."""
        path = write_artifact(
            "flaky.py",
            """
            attempts = 0

            def Load(register):
                global attempts
                attempts += 1
                if attempts == 1:
                    raise RuntimeError("first attempt fails")
                register("flaky", 1)
            """,
        )
        plugin = make_plugin(path)

        with pytest.raises(PluginError):
            plugin.load()
        plugin.load()

        assert plugin.status is PluginStatus.LOADED
        assert loader.open(path).module.attempts == 2


class TestDuplicateLoad:
    """Tests for duplicate (name, version) detection."""

    def test_second_artifact_with_same_identity_rejected(
        self,
        make_plugin,
        manager: PluginManager,
        write_artifact,
        echo_path: Path,
        echo_source: str,
    ) -> None:
        """Verify a second record registering a loaded identity fails."""
        first = make_plugin(echo_path)
        first.load()
        second = make_plugin(write_artifact("echo_copy.py", echo_source))

        with pytest.raises(PluginError) as exc_info:
            second.load()

        assert exc_info.value.code == PluginErrorCode.DUPLICATE_LOAD
        assert second.status is PluginStatus.NONE
        assert first.status is PluginStatus.LOADED
        assert manager.get_plugin("echo") is first

    def test_second_record_for_same_path_rejected(
        self, make_plugin, echo_path: Path
    ) -> None:
        """Verify two records of one artifact cannot both be loaded."""
        first = make_plugin(echo_path)
        first.load()

        with pytest.raises(PluginError) as exc_info:
            make_plugin(echo_path).load()

        assert exc_info.value.code == PluginErrorCode.DUPLICATE_LOAD

    def test_swallowed_duplicate_still_fails(
        self, make_plugin, write_artifact, echo_path: Path
    ) -> None:
        """Verify a Load that catches the duplicate error still fails."""
        make_plugin(echo_path).load()
        path = write_artifact(
            "stubborn.py",
            """
            def Load(register):
                try:
                    register("echo", 0x0100)
                except Exception:
                    pass
            """,
        )
        plugin = make_plugin(path)

        with pytest.raises(PluginError) as exc_info:
            plugin.load()

        assert exc_info.value.code == PluginErrorCode.DUPLICATE_LOAD
        assert plugin.status is PluginStatus.NONE

    def test_concurrent_registration_admits_one(
        self,
        make_plugin,
        manager: PluginManager,
        loader: ImportlibArtifactLoader,
        write_artifact,
    ) -> None:
        """Verify two records racing to register one identity yield one winner."""
        source = """
            barrier = None

            def Load(register):
                barrier.wait(5)
                register("racer", 1)

            def Unload():
                pass
            """
        paths = [write_artifact(f"racer_{i}.py", source) for i in range(2)]
        load_barrier = threading.Barrier(2)
        for path in paths:
            loader.open(path).module.barrier = load_barrier
        plugins = [make_plugin(path) for path in paths]

        register_barrier = threading.Barrier(2)
        original = manager.try_register

        def contended(*args, **kwargs):
            register_barrier.wait(5)
            return original(*args, **kwargs)

        errors: list[PluginError] = []

        def worker(plugin: Plugin) -> None:
            try:
                plugin.load()
            except PluginError as e:
                errors.append(e)

        with patch.object(manager, "try_register", side_effect=contended):
            threads = [threading.Thread(target=worker, args=(p,)) for p in plugins]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=5)

        assert len(errors) == 1
        assert errors[0].code == PluginErrorCode.DUPLICATE_LOAD
        statuses = sorted(p.status.value for p in plugins)
        assert statuses == [PluginStatus.LOADED.value, PluginStatus.NONE.value]
        winner = next(p for p in plugins if p.status is PluginStatus.LOADED)
        assert manager.get_plugin_with_version("racer", 1) is winner

    def test_same_name_new_version_allowed(
        self, make_plugin, write_artifact, echo_path: Path, echo_source: str
    ) -> None:
        """Verify a different version of a loaded name is not a duplicate."""
        make_plugin(echo_path).load()
        newer = make_plugin(
            write_artifact(
                "echo_v2.py", echo_source.replace("VERSION = 0x0100", "VERSION = 0x0200")
            )
        )

        newer.load()

        assert newer.status is PluginStatus.LOADED
        assert newer.version == 0x0200


class TestPluginUnload:
    """Tests for Plugin.unload."""

    def test_echo_round_trip(self, make_plugin, echo_path: Path) -> None:
        """Verify calls succeed while loaded and fail after unload."""
        plugin = make_plugin(echo_path)
        plugin.load()

        assert plugin.call("Echo", "hi") == ["hi", None]

        plugin.unload()

        assert plugin.status is PluginStatus.UNLOADED
        result = plugin.call("Echo", "hi")
        assert len(result) == 1
        assert result[0].code == PluginErrorCode.PLUGIN_NOT_LOADED

    def test_unload_runs_export(
        self, make_plugin, loader: ImportlibArtifactLoader, echo_path: Path
    ) -> None:
        """Verify the Unload export runs exactly once per unload."""
        plugin = make_plugin(echo_path)
        plugin.load()

        plugin.unload()
        plugin.unload()

        assert loader.open(echo_path).module.unload_calls == 1

    def test_cache_cleared_before_unload_export(
        self, make_plugin, loader: ImportlibArtifactLoader, echo_path: Path
    ) -> None:
        """Verify no cached binding survives into the Unload export."""
        plugin = make_plugin(echo_path)
        plugin.load()
        plugin.call("Echo", "hi")
        assert plugin.cached_functions() == ["Echo"]

        seen: list[tuple[PluginStatus, list[str]]] = []
        module = loader.open(echo_path).module
        module.unload_hook = lambda: seen.append(
            (plugin.status, plugin.cached_functions())
        )

        plugin.unload()

        assert seen == [(PluginStatus.UNLOADING, [])]

    def test_unload_never_loaded_is_noop(
        self, make_plugin, loader: ImportlibArtifactLoader, echo_path: Path
    ) -> None:
        """Verify unloading a never-loaded plugin does nothing."""
        plugin = make_plugin(echo_path)

        plugin.unload()

        assert plugin.status is PluginStatus.NONE
        assert loader.is_open(echo_path) is False

    def test_unload_failure_still_unloads(self, make_plugin, write_artifact) -> None:
        """Verify a raising Unload export is reported and the plugin ends UNLOADED."""
        path = write_artifact(
            "sticky.py",
            """
            def Load(register):
                register("sticky", 1)

            def Unload():
                raise RuntimeError("busy")
            """,
        )
        plugin = make_plugin(path)
        plugin.load()

        with pytest.raises(PluginError) as exc_info:
            plugin.unload()

        assert exc_info.value.code == PluginErrorCode.UNLOAD_FAILED
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert plugin.status is PluginStatus.UNLOADED

    def test_unload_returning_error(self, make_plugin, write_artifact) -> None:
        """Verify an error returned by Unload is reported as UNLOAD_FAILED."""
        path = write_artifact(
            "returns.py",
            """
            def Load(register):
                register("returns", 1)

            def Unload():
                return OSError("socket still open")
            """,
        )
        plugin = make_plugin(path)
        plugin.load()

        with pytest.raises(PluginError) as exc_info:
            plugin.unload()

        assert exc_info.value.code == PluginErrorCode.UNLOAD_FAILED
        assert isinstance(exc_info.value.cause, OSError)

    def test_unload_without_unload_export(self, make_plugin, write_artifact) -> None:
        """Verify a missing Unload export fails with SYMBOL_NOT_FOUND."""
        path = write_artifact(
            "loadonly.py",
            """
            def Load(register):
                register("loadonly", 1)
            """,
        )
        plugin = make_plugin(path)
        plugin.load()

        with pytest.raises(PluginError) as exc_info:
            plugin.unload()

        assert exc_info.value.code == PluginErrorCode.SYMBOL_NOT_FOUND
        assert plugin.status is PluginStatus.UNLOADED

    def test_load_after_unload(self, make_plugin, echo_path: Path) -> None:
        """Verify an unloaded plugin can be loaded again."""
        plugin = make_plugin(echo_path)
        plugin.load()
        plugin.unload()

        plugin.load()

        assert plugin.status is PluginStatus.LOADED
        assert plugin.call("Echo", "again") == ["again", None]


class TestPluginReload:
    """Tests for Plugin.reload."""

    def test_reload_picks_up_new_version(
        self, make_plugin, manager: PluginManager, counter_path: Path
    ) -> None:
        """Verify reload re-registers and updates the version map."""
        plugin = make_plugin(counter_path)
        plugin.load()
        assert plugin.version == 0x0100

        plugin.reload()

        assert plugin.status is PluginStatus.LOADED
        assert plugin.version == 0x0200
        assert manager.get_plugin_with_version("counter", 0x0200) is plugin
        assert manager.get_plugin_with_version("counter", 0x0100) is None
        assert plugin.call("Count") == [2, None]

    def test_reload_clears_cache(self, make_plugin, echo_path: Path) -> None:
        """Verify bindings from the previous generation are dropped."""
        plugin = make_plugin(echo_path)
        plugin.load()
        plugin.call("Echo", "hi")

        plugin.reload()

        assert plugin.cached_functions() == []

    def test_reload_never_loaded(self, make_plugin, echo_path: Path) -> None:
        """Verify reload of a never-loaded plugin simply loads it."""
        plugin = make_plugin(echo_path)

        plugin.reload()

        assert plugin.status is PluginStatus.LOADED

    def test_reload_stops_on_unload_error(
        self, make_plugin, loader: ImportlibArtifactLoader, write_artifact
    ) -> None:
        """Verify an unload failure aborts reload before loading again."""
        path = write_artifact(
            "sticky.py",
            """
            load_calls = 0

            def Load(register):
                global load_calls
                load_calls += 1
                register("sticky", 1)

            def Unload():
                raise RuntimeError("busy")
            """,
        )
        plugin = make_plugin(path)
        plugin.load()

        with pytest.raises(PluginError) as exc_info:
            plugin.reload()

        assert exc_info.value.code == PluginErrorCode.UNLOAD_FAILED
        assert plugin.status is PluginStatus.UNLOADED
        assert loader.open(path).module.load_calls == 1


class TestPluginCall:
    """Tests for Plugin.get_func and Plugin.call."""

    def test_arity_mismatch_keeps_shape(self, make_plugin, echo_path: Path) -> None:
        """Verify a bad call still returns a list of the function's arity."""
        plugin = make_plugin(echo_path)
        plugin.load()

        result = plugin.call("Join", "a", "b")

        assert len(result) == 2
        assert result[0] is None
        assert result[1].code == PluginErrorCode.ARITY_MISMATCH

    def test_unknown_function(self, make_plugin, echo_path: Path) -> None:
        """Verify an unknown function yields a single-element error list."""
        plugin = make_plugin(echo_path)
        plugin.load()

        result = plugin.call("Missing")

        assert len(result) == 1
        assert result[0].code == PluginErrorCode.SYMBOL_NOT_FOUND

    def test_postponed_annotations_keep_error_slot(
        self, make_plugin, write_artifact
    ) -> None:
        """Verify a type-checking-only import does not change the result shape."""
        path = write_artifact(
            "deferred.py",
            """
            from __future__ import annotations

            from typing import TYPE_CHECKING

            if TYPE_CHECKING:
                from deferred_types import Bar

            def Load(register):
                register("deferred", 1)

            def Echo(message: str, extra: Bar | None) -> tuple[str, Exception | None]:
                return message, None
            """,
        )
        plugin = make_plugin(path)
        plugin.load()

        assert plugin.call("Echo", "hi", None) == ["hi", None]
        result = plugin.call("Echo", 1, None)
        assert result[0] is None
        assert result[1].code == PluginErrorCode.TYPE_MISMATCH

    def test_non_callable_export(self, make_plugin, echo_path: Path) -> None:
        """Verify calling a module variable yields BIND_FAILED."""
        plugin = make_plugin(echo_path)
        plugin.load()

        result = plugin.call("NAME")

        assert result[0].code == PluginErrorCode.BIND_FAILED
        assert plugin.cached_functions() == []

    def test_get_func_returns_cached_binding(
        self, make_plugin, echo_path: Path
    ) -> None:
        """Verify repeated get_func calls reuse one binding."""
        plugin = make_plugin(echo_path)
        plugin.load()

        assert plugin.get_func("Echo") is plugin.get_func("Echo")

    def test_concurrent_calls_bind_once(self, make_plugin, echo_path: Path) -> None:
        """Verify concurrent first calls to one function bind it once."""
        binder = FunctionBinder()
        plugin = make_plugin(echo_path, binder=binder)
        plugin.load()
        barrier = threading.Barrier(8)
        results: list[list] = []

        def worker(index: int) -> None:
            barrier.wait()
            results.append(plugin.call("Echo", f"msg-{index}"))

        with patch.object(binder, "bind", wraps=binder.bind) as spy:
            threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=5)

        assert spy.call_count == 1
        assert sorted(r[0] for r in results) == [f"msg-{i}" for i in range(8)]
        assert all(r[1] is None for r in results)

    def test_call_outcome(self, make_plugin, echo_path: Path) -> None:
        """Verify call_outcome tags success and failure explicitly."""
        plugin = make_plugin(echo_path)
        plugin.load()

        ok = plugin.call_outcome("Echo", "hi")
        bad = plugin.call_outcome("Echo", 1)

        assert ok.success is True
        assert ok.values == ["hi"]
        assert bad.success is False
        assert bad.error.code == PluginErrorCode.TYPE_MISMATCH


class TestPluginConcurrency:
    """Tests for locking around transitions."""

    def test_concurrent_loads_run_load_once(
        self, make_plugin, loader: ImportlibArtifactLoader, counter_path: Path
    ) -> None:
        """Verify racing load() calls run the Load export once."""
        plugin = make_plugin(counter_path)
        barrier = threading.Barrier(8)
        errors: list[Exception] = []

        def worker() -> None:
            barrier.wait()
            try:
                plugin.load()
            except PluginError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert errors == []
        assert plugin.status is PluginStatus.LOADED
        assert loader.open(counter_path).module.load_calls == 1

    def test_status_readable_during_load(
        self, make_plugin, loader: ImportlibArtifactLoader, write_artifact
    ) -> None:
        """Verify status can be polled while another thread holds the lock."""
        path = write_artifact(
            "slow.py",
            """
            entered = None
            gate = None

            def Load(register):
                entered.set()
                gate.wait(5)
                register("slow", 1)
            """,
        )
        module = loader.open(path).module
        module.entered = threading.Event()
        module.gate = threading.Event()
        plugin = make_plugin(path)

        thread = threading.Thread(target=plugin.load)
        thread.start()
        try:
            assert module.entered.wait(5)
            assert plugin.status is PluginStatus.LOADING
        finally:
            module.gate.set()
            thread.join(timeout=5)

        assert plugin.status is PluginStatus.LOADED


class TestPluginRefs:
    """Tests for the advisory reference count."""

    def test_ref_and_unref(self, make_plugin, echo_path: Path) -> None:
        """Verify ref/unref adjust the count and never go negative."""
        plugin = make_plugin(echo_path)

        assert plugin.ref() == 1
        assert plugin.ref() == 2
        assert plugin.unref() == 1
        assert plugin.unref() == 0
        assert plugin.unref() == 0

    def test_refs_do_not_block_unload(self, make_plugin, echo_path: Path) -> None:
        """Verify a referenced plugin still unloads."""
        plugin = make_plugin(echo_path)
        plugin.load()
        plugin.ref()

        plugin.unload()

        assert plugin.status is PluginStatus.UNLOADED
        assert plugin.refs == 1
