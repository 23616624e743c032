"""ModuleWriter: copies extraction candidates into a target module."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

import libcst as cst

from .imports import ImportRewriter, name_usage
from .models import DeclarationKind, ExtractionCandidate, ModuleRole
from .tree import SourceModule, with_blank_lines
from .workspace import Workspace

logger = logging.getLogger(__name__)

HEADER_TITLES = {
    ModuleRole.TYPES: "Extracted types and structural declarations.",
    ModuleRole.UTILS: "Extracted utility functions.",
}


def module_header(role: ModuleRole, origin_path: Path) -> str:
    """Source text every newly created target module starts with."""
    return (
        f'"""{HEADER_TITLES[role]}\n'
        f"\n"
        f"Auto-generated by codesplit from {origin_path.name}.\n"
        f'"""\n'
        f"\n"
        f"from __future__ import annotations\n"
    )


def _find_all_statement(module: SourceModule) -> Optional[cst.SimpleStatementLine]:
    for stmt in module.body:
        if not isinstance(stmt, cst.SimpleStatementLine) or len(stmt.body) != 1:
            continue
        small = stmt.body[0]
        if (
            isinstance(small, cst.Assign)
            and len(small.targets) == 1
            and isinstance(small.targets[0].target, cst.Name)
            and small.targets[0].target.value == "__all__"
        ):
            return stmt
    return None


def exported_names(module: SourceModule) -> List[str]:
    """Names listed in the module's literal ``__all__``."""
    stmt = _find_all_statement(module)
    if stmt is None:
        return []
    value = stmt.body[0].value
    if not isinstance(value, (cst.List, cst.Tuple)):
        return []
    names = []
    for element in value.elements:
        if isinstance(element.value, cst.SimpleString):
            names.append(element.value.evaluated_value)
    return names


def _render_all(names: Sequence[str]) -> cst.SimpleStatementLine:
    inner = "".join(f'    "{name}",\n' for name in names)
    return cst.parse_statement(f"__all__ = [\n{inner}]\n")


def ensure_exported(module: SourceModule, names: Sequence[str]) -> List[str]:
    """Add *names* to ``__all__``; returns the names that were not yet listed.

    A computed (non-literal) ``__all__`` is left alone.
    """
    stmt = _find_all_statement(module)
    if stmt is not None and not isinstance(stmt.body[0].value, (cst.List, cst.Tuple)):
        logger.warning("%s: __all__ is not a literal list; exports left unchanged", module.path.name)
        return []

    current = exported_names(module)
    added = [n for n in dict.fromkeys(names) if n not in current]
    if not added:
        return []

    new_stmt = _render_all([*current, *added])
    if stmt is None:
        new_stmt = new_stmt.with_changes(leading_lines=[cst.EmptyLine()])
        module.insert_statements(module.header_end(), [new_stmt])
    else:
        module.replace_statement(stmt, new_stmt.with_changes(leading_lines=stmt.leading_lines))
    return added


def type_names(module: SourceModule) -> List[str]:
    """Exported structural types and aliases of a types module."""
    exported = set(exported_names(module))
    return [
        decl.name
        for decl in module.declarations()
        if decl.kind in (DeclarationKind.TYPE, DeclarationKind.ALIAS) and decl.name in exported
    ]


class ModuleWriter:
    """Serializes candidates as exported declarations of a target module."""

    def __init__(self, workspace: Workspace, rewriter: ImportRewriter) -> None:
        self.workspace = workspace
        self.rewriter = rewriter

    def write(
        self,
        target_path: Path,
        candidates: Sequence[ExtractionCandidate],
        origin: SourceModule,
        role: ModuleRole,
        types_path: Optional[Path] = None,
    ) -> SourceModule:
        """Copy *candidates* into the module at *target_path* and persist it.

        Raises:
            PersistenceError: the target could not be written; callers must
                not prune the origin afterwards.
        """
        target = self.workspace.get(target_path)
        if target is None:
            target = self.workspace.create(target_path, module_header(role, origin.path))
            logger.info("Creating %s", target.path.name)

        names = []
        for candidate in candidates:
            self._place(target, candidate)
            names.append(candidate.name)

        ensure_exported(target, names)
        self._carry_imports(origin, target, candidates)
        if role is ModuleRole.UTILS and types_path is not None:
            self._import_types(target, types_path)

        self.workspace.save(target)
        return target

    def _place(self, target: SourceModule, candidate: ExtractionCandidate) -> None:
        statement = candidate.node
        existing = target.find_declaration(candidate.name)
        if existing is not None:
            # Merge-by-name: the incoming copy wins
            replacement = statement.with_changes(leading_lines=existing.statement.leading_lines)
            target.replace_statement(existing.statement, replacement)
            logger.debug("Replaced %s in %s", candidate.name, target.path.name)
        else:
            target.append_statements([with_blank_lines(statement, 2)])
            logger.debug("Appended %s to %s", candidate.name, target.path.name)

    def _carry_imports(
        self,
        origin: SourceModule,
        target: SourceModule,
        candidates: Sequence[ExtractionCandidate],
    ) -> None:
        needed: List[str] = []
        for candidate in candidates:
            needed.extend(name_usage(origin.code_for(candidate.node)).free)
        defined = target.module_level_names()
        names = [n for n in dict.fromkeys(needed) if n not in defined]
        carried = self.rewriter.carry_imports(origin, target, names)
        if carried:
            logger.debug("Carried imports into %s: %s", target.path.name, ", ".join(carried))

    def _import_types(self, target: SourceModule, types_path: Path) -> None:
        """Import the types-module names the target's code references."""
        types_module = self.workspace.get(types_path)
        if types_module is None:
            return
        available = type_names(types_module)
        if not available:
            return

        usage = name_usage(target.code)
        defined = target.module_level_names()
        referenced = [
            n for n in available
            if n not in defined and (n in usage.runtime or n in usage.annotation)
        ]
        if not referenced:
            return

        runtime = any(n in usage.runtime for n in referenced)
        type_only = not runtime and target.has_future_annotations()
        specifier = self.rewriter.specifier_for(target.path, types_path)
        self.rewriter.ensure_from_import(target, specifier, referenced, type_only=type_only)
