"""Shared fixtures for plughost tests.

Artifacts are small Python modules written to ``tmp_path``; every test
gets its own loader so mappings never leak between tests.
"""

import textwrap
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from plughost.plugins.adapters import ImportlibArtifactLoader
from plughost.plugins.config import PluginHostSettings, PluginSettings
from plughost.plugins.manager import PluginManager

ECHO_ARTIFACT = """
NAME = "echo"
VERSION = 0x0100
unload_calls = 0
unload_hook = None


def Load(register):
    register(NAME, VERSION)


def Unload():
    global unload_calls
    unload_calls += 1
    if unload_hook is not None:
        unload_hook()


def Echo(message: str) -> tuple[str, Exception | None]:
    return message, None


def Join(a: str, b: str, sep: str) -> str:
    return sep.join([a, b])
"""

COUNTER_ARTIFACT = """
load_calls = 0


def Load(register):
    global load_calls
    load_calls += 1
    register("counter", 0x0100 if load_calls == 1 else 0x0200)


def Unload():
    pass


def Count() -> int:
    return load_calls
"""

ArtifactWriter = Callable[[str, str], Path]


@pytest.fixture
def write_artifact(tmp_path: Path) -> ArtifactWriter:
    """Return a helper that writes an artifact source file into tmp_path."""

    def _write(filename: str, source: str) -> Path:
        path = tmp_path / filename
        path.write_text(textwrap.dedent(source))
        return path

    return _write


@pytest.fixture
def loader() -> ImportlibArtifactLoader:
    """Create a fresh loader for each test."""
    return ImportlibArtifactLoader()


@pytest.fixture
def manager(loader: ImportlibArtifactLoader) -> Iterator[PluginManager]:
    """Create a manager with default settings and the test loader."""
    manager = PluginManager(settings=PluginHostSettings(), loader=loader)
    yield manager
    manager.stop()


@pytest.fixture
def multi_version_manager(
    loader: ImportlibArtifactLoader,
) -> Iterator[PluginManager]:
    """Create a manager that lets versions of one name coexist."""
    settings = PluginHostSettings(
        plugin_settings=PluginSettings(allow_multiple_versions=True)
    )
    manager = PluginManager(settings=settings, loader=loader)
    yield manager
    manager.stop()


@pytest.fixture
def echo_source() -> str:
    """Source of an artifact registering as ("echo", 0x0100)."""
    return ECHO_ARTIFACT


@pytest.fixture
def echo_path(write_artifact: ArtifactWriter) -> Path:
    """Write the echo artifact and return its path."""
    return write_artifact("echo.py", ECHO_ARTIFACT)


@pytest.fixture
def counter_path(write_artifact: ArtifactWriter) -> Path:
    """Write an artifact whose version changes on its second load."""
    return write_artifact("counter.py", COUNTER_ARTIFACT)
