"""Pytest configuration and fixtures for codesplit tests."""

import shutil
import sys
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from codesplit_cli.tree import SourceModule

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path_factory, monkeypatch):
    """Keep backups and user config out of the real home directory."""
    home = tmp_path_factory.mktemp("codesplit_home")
    monkeypatch.setattr("codesplit_cli.config.BASE_DIR", home)
    monkeypatch.setattr("codesplit_cli.config.BACKUP_DIR", home / "backups")
    monkeypatch.setattr("codesplit_cli.config.CONFIG_FILE", home / "config.toml")
    monkeypatch.setattr("codesplit_cli.config_manager.CONFIG_FILE", home / "config.toml")
    return home


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def dashboard_source() -> str:
    """Source of the demonstration module."""
    return (FIXTURES / "dashboard.py").read_text(encoding="utf-8")


@pytest.fixture
def dashboard_package(temp_dir: Path) -> Path:
    """Copy the demonstration module into a fresh package; returns the module path."""
    package = temp_dir / "dashpkg"
    package.mkdir()
    (package / "__init__.py").write_text("")
    target = package / "dashboard.py"
    shutil.copy(FIXTURES / "dashboard.py", target)
    return target


def make_packages(root: Path, path: Path) -> None:
    """Turn every directory between *root* (exclusive) and *path* into a package."""
    path.parent.mkdir(parents=True, exist_ok=True)
    directory = path.parent
    while directory != root and root in directory.parents:
        init = directory / "__init__.py"
        if not init.exists():
            init.write_text("")
        directory = directory.parent


@pytest.fixture
def package_layout(temp_dir: Path) -> Callable[..., None]:
    """Create the package directories holding each ``temp_dir``-relative file name."""
    def _layout(*names: str) -> None:
        for name in names:
            make_packages(temp_dir, temp_dir / name)
    return _layout


@pytest.fixture
def write_module(temp_dir: Path) -> Callable[[str, str], Path]:
    """Write source text to ``temp_dir/<name>`` and return the path.

    Directories in *name* become packages; a bare file name stays a script.
    """
    def _write(name: str, source: str) -> Path:
        path = temp_dir / name
        make_packages(temp_dir, path)
        path.write_text(source, encoding="utf-8")
        return path
    return _write


@pytest.fixture
def make_module(temp_dir: Path) -> Callable[..., SourceModule]:
    """Build an in-memory SourceModule from source text (package layout as write_module)."""
    def _make(source: str, name: str = "module.py") -> SourceModule:
        path = temp_dir / name
        make_packages(temp_dir, path)
        return SourceModule.from_source(path, source)
    return _make


@pytest.fixture
def import_package(monkeypatch):
    """Import ``<package>.<module>`` from a directory, cleaning sys.modules afterwards."""
    loaded = []

    def _import(root: Path, dotted: str):
        import importlib

        monkeypatch.syspath_prepend(str(root))
        importlib.invalidate_caches()
        module = importlib.import_module(dotted)
        loaded.append(dotted.split(".")[0])
        return module

    yield _import
    for package in loaded:
        for name in [n for n in sys.modules if n == package or n.startswith(package + ".")]:
            del sys.modules[name]
