"""Path-keyed registry of modules taking part in one run."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

import libcst as cst

from .diff_engine import DiffEngine
from .errors import ModuleLoadError, PersistenceError
from .models import FileChange
from .tree import SourceModule
from .validation_engine import ValidationEngine

logger = logging.getLogger(__name__)


class Workspace:
    """Loads, creates and persists modules.

    Modules are looked up by resolved path only; nothing holds a reference
    from a target module back to the modules importing it.
    """

    def __init__(
        self,
        dry_run: bool = False,
        diff_engine: Optional[DiffEngine] = None,
        validator: Optional[ValidationEngine] = None,
    ) -> None:
        self.dry_run = dry_run
        self.diff_engine = diff_engine or DiffEngine()
        self.validator = validator or ValidationEngine()
        self._modules: Dict[Path, SourceModule] = {}
        self._changes: Dict[Path, FileChange] = {}
        self._initial: Dict[Path, Optional[str]] = {}
        self.touched: List[Path] = []

    @staticmethod
    def _key(path: Path) -> Path:
        return Path(path).resolve()

    def load(self, path: Path) -> SourceModule:
        """Return the module at *path*, reading it from disk on first use."""
        key = self._key(path)
        module = self._modules.get(key)
        if module is None:
            module = SourceModule.load(key)
            self._modules[key] = module
            self._initial[key] = module.original_code
        return module

    def get(self, path: Path) -> Optional[SourceModule]:
        """Like :meth:`load` but returns None when nothing exists at *path*."""
        try:
            return self.load(path)
        except ModuleLoadError:
            if self._key(path).exists():
                raise
            return None

    def create(self, path: Path, source: str) -> SourceModule:
        key = self._key(path)
        module = SourceModule(key, cst.parse_module(source))
        self._modules[key] = module
        self._initial.setdefault(key, None)
        return module

    def save(self, module: SourceModule) -> None:
        """Persist *module*; raises PersistenceError on any failure."""
        if not module.changed:
            return

        code = module.code
        result = self.validator.validate_syntax(code)
        if not result.valid:
            raise PersistenceError(f"Refusing to write invalid code to {module.path}: {'; '.join(result.errors)}")

        if not self.dry_run:
            try:
                module.path.parent.mkdir(parents=True, exist_ok=True)
                module.path.write_text(code, encoding="utf-8")
            except OSError as exc:
                raise PersistenceError(f"Cannot write {module.path}: {exc}") from exc

        key = self._key(module.path)
        self._record_change(key, code)
        module.mark_saved()
        if key not in self.touched:
            self.touched.append(key)
        logger.debug("Saved %s%s", module.path, " (dry run)" if self.dry_run else "")

    def _record_change(self, key: Path, code: str) -> None:
        initial = self._initial.get(key)
        if initial is None:
            self._changes[key] = FileChange(file_path=str(key), change_type="create", new_content=code)
        else:
            self._changes[key] = FileChange(
                file_path=str(key),
                change_type="modify",
                original_content=initial,
                new_content=code,
                diff=self.diff_engine.create_diff(initial, code, key.name),
            )

    @property
    def changes(self) -> List[FileChange]:
        return [self._changes[p] for p in self.touched if p in self._changes]
