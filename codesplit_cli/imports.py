"""Reference rewriter: keeps import bindings consistent across split modules.

Every origin module holds at most one ``from <target> import ...`` binding
per target module. New names are merged into the existing binding (set
union, first-seen order kept) and the statement is replaced where it
stands, so re-running a split never stacks duplicate imports.
"""

from __future__ import annotations

import ast
import builtins
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import libcst as cst
from libcst.helpers import get_full_name_for_node

from . import config
from .models import ImportBinding
from .tree import SourceModule, is_docstring, is_import, is_type_checking_block

logger = logging.getLogger(__name__)

BUILTIN_NAMES = frozenset(dir(builtins))

MAX_IMPORT_LINE = 88

_SOURCE_EXTENSION = re.compile(r"\.pyi?$")


# ---------------------------------------------------------------------------
# Module specifiers
# ---------------------------------------------------------------------------

def _package_root(directory: Path) -> Path:
    """Walk up while the directory is a package; return the first non-package."""
    root = directory
    while (root / "__init__.py").exists() and root.parent != root:
        root = root.parent
    return root


def _package_depth(directory: Path) -> int:
    """Number of nested packages ending at *directory* (0 when it is not a package)."""
    depth = 0
    while (directory / "__init__.py").exists() and directory.parent != directory:
        depth += 1
        directory = directory.parent
    return depth


def _dotted_path(to_file: Path, root: Path) -> str:
    rel = os.path.relpath(to_file, root)
    parts = _SOURCE_EXTENSION.sub("", rel.replace("\\", "/")).split("/")
    if parts and parts[-1] == "__init__":
        parts.pop()
    return ".".join(parts)


def to_module_specifier(from_file: Path, to_file: Path, style: str = "relative") -> str:
    """Return the import specifier that reaches *to_file* from *from_file*.

    Relative style: ``.name`` for siblings, ``..pkg.name`` for cousins.
    Absolute style: dotted path from the nearest non-package directory.

    A relative import needs a parent package, so the relative style falls
    back to a dotted path from the origin's import root when *from_file* is
    not inside a package deep enough for the leading dots.
    """
    from_file = Path(from_file)
    to_file = Path(to_file)

    if style == "absolute":
        return _dotted_path(to_file, _package_root(to_file.parent))

    rel = os.path.relpath(to_file, from_file.parent).replace("\\", "/")
    parts = _SOURCE_EXTENSION.sub("", rel).split("/")
    ups = 0
    while parts and parts[0] == "..":
        ups += 1
        parts.pop(0)

    if ups + 1 > _package_depth(from_file.parent):
        root = _package_root(from_file.parent)
        inside = os.path.relpath(to_file, root).replace("\\", "/").split("/")[0] != ".."
        return _dotted_path(to_file, root if inside else _package_root(to_file.parent))

    parts = [p for p in parts if p not in (".", "")]
    if parts and parts[-1] == "__init__":
        parts.pop()
    return "." * (ups + 1) + ".".join(parts)


def resolve_relative(from_file: Path, specifier: str) -> Path:
    """Map a relative specifier used in *from_file* to a path without suffix."""
    dots = len(specifier) - len(specifier.lstrip("."))
    base = Path(from_file).parent
    for _ in range(dots - 1):
        base = base.parent
    rest = specifier[dots:]
    return base.joinpath(*rest.split(".")) if rest else base


def _from_specifier(node: cst.ImportFrom) -> str:
    dots = "." * len(node.relative)
    module = get_full_name_for_node(node.module) if node.module is not None else ""
    return dots + (module or "")


def _alias_entries(names: Sequence[cst.ImportAlias]) -> List[str]:
    entries = []
    for alias in names:
        name = get_full_name_for_node(alias.name) or ""
        if alias.asname is not None and isinstance(alias.asname.name, cst.Name):
            entries.append(f"{name} as {alias.asname.name.value}")
        else:
            entries.append(name)
    return entries


def _bound_name(entry: str) -> str:
    return entry.split(" as ")[-1]


def _merge(*groups: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(name for group in groups for name in group))


def _render_from(specifier: str, names: Sequence[str]) -> str:
    line = f"from {specifier} import {', '.join(names)}"
    if len(line) <= MAX_IMPORT_LINE:
        return line + "\n"
    inner = "".join(f"    {name},\n" for name in names)
    return f"from {specifier} import (\n{inner})\n"


# ---------------------------------------------------------------------------
# Name usage analysis
# ---------------------------------------------------------------------------

@dataclass
class NameUsage:
    """Names read by a piece of code, split by annotation vs runtime use.

    All fields are ordered, deduplicated dicts used as ordered sets.
    """
    runtime: Dict[str, None] = field(default_factory=dict)
    annotation: Dict[str, None] = field(default_factory=dict)
    bound: Dict[str, None] = field(default_factory=dict)

    @property
    def free(self) -> List[str]:
        """Names read but not bound locally, builtins excluded."""
        return [
            n for n in _merge(self.runtime, self.annotation)
            if n not in self.bound and n not in BUILTIN_NAMES
        ]

    @property
    def runtime_free(self) -> List[str]:
        return [n for n in self.runtime if n not in self.bound and n not in BUILTIN_NAMES]


class _UsageVisitor(ast.NodeVisitor):
    def __init__(self) -> None:
        self.usage = NameUsage()
        self._in_annotation = 0
        self._scopes: List[str] = []

    def _annotation(self, node: Optional[ast.AST]) -> None:
        if node is None:
            return
        self._in_annotation += 1
        self.visit(node)
        self._in_annotation -= 1

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, ast.Load):
            target = self.usage.annotation if self._in_annotation else self.usage.runtime
            target[node.id] = None
        else:
            self.usage.bound[node.id] = None

    def visit_Constant(self, node: ast.Constant) -> None:
        # String annotations still reference names
        if self._in_annotation and isinstance(node.value, str):
            try:
                expr = ast.parse(node.value, mode="eval")
            except SyntaxError:
                return
            self.visit(expr.body)

    def _arguments(self, args: ast.arguments) -> None:
        params = [*args.posonlyargs, *args.args, *args.kwonlyargs, args.vararg, args.kwarg]
        for param in params:
            if param is None:
                continue
            self.usage.bound[param.arg] = None
            self._annotation(param.annotation)
        for default in [*args.defaults, *args.kw_defaults]:
            if default is not None:
                self.visit(default)

    def _function(self, node) -> None:
        self.usage.bound[node.name] = None
        for decorator in node.decorator_list:
            self.visit(decorator)
        self._arguments(node.args)
        self._annotation(node.returns)
        self._scopes.append("function")
        for stmt in node.body:
            self.visit(stmt)
        self._scopes.pop()

    visit_FunctionDef = _function
    visit_AsyncFunctionDef = _function

    def visit_Lambda(self, node: ast.Lambda) -> None:
        self._arguments(node.args)
        self.visit(node.body)

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self.usage.bound[node.name] = None
        for expr in [*node.decorator_list, *node.bases, *(k.value for k in node.keywords)]:
            self.visit(expr)
        self._scopes.append("class")
        for stmt in node.body:
            self.visit(stmt)
        self._scopes.pop()

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        self.visit(node.target)
        if self._scopes and self._scopes[-1] == "class":
            # Class-body annotations count as runtime use
            self.visit(node.annotation)
        else:
            self._annotation(node.annotation)
        if node.value is not None:
            self.visit(node.value)

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self.usage.bound[alias.asname or alias.name.split(".")[0]] = None

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        for alias in node.names:
            self.usage.bound[alias.asname or alias.name] = None

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.name:
            self.usage.bound[node.name] = None
        self.generic_visit(node)


def name_usage(code: str) -> NameUsage:
    """Analyse *code* (a module or a dedented statement) for name usage."""
    visitor = _UsageVisitor()
    visitor.visit(ast.parse(code))
    return visitor.usage


# ---------------------------------------------------------------------------
# Import collection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CarriedImport:
    """One name bound by an import statement of a module."""
    kind: str  # "import" or "from"
    module: str
    entry: str = ""
    asname: Optional[str] = None
    type_only: bool = False


def _collect_from_statement(stmt: cst.SimpleStatementLine, type_only: bool, found: Dict[str, CarriedImport]) -> None:
    small = stmt.body[0]
    if isinstance(small, cst.Import):
        for alias in small.names:
            dotted = get_full_name_for_node(alias.name) or ""
            asname = alias.asname.name.value if alias.asname is not None else None
            bound = asname or dotted.split(".")[0]
            found[bound] = CarriedImport("import", dotted, asname=asname, type_only=type_only)
    elif isinstance(small, cst.ImportFrom):
        specifier = _from_specifier(small)
        if specifier == "__future__" or isinstance(small.names, cst.ImportStar):
            return
        for entry in _alias_entries(small.names):
            found[_bound_name(entry)] = CarriedImport("from", specifier, entry=entry, type_only=type_only)


def collect_imports(module: SourceModule) -> Dict[str, CarriedImport]:
    """Map every name bound by a top-level import to the import that binds it."""
    found: Dict[str, CarriedImport] = {}
    for stmt in module.body:
        if is_import(stmt):
            _collect_from_statement(stmt, False, found)
        elif is_type_checking_block(stmt) and isinstance(stmt.body, cst.IndentedBlock):
            for inner in stmt.body.body:
                if is_import(inner):
                    _collect_from_statement(inner, True, found)
    return found


def import_bindings(module: SourceModule) -> List[ImportBinding]:
    """List the ``from ... import`` bindings of *module*, one per statement."""
    bindings = []
    for stmt in module.body:
        if is_import(stmt) and isinstance(stmt.body[0], cst.ImportFrom):
            bindings.append(_binding_of(stmt.body[0], False))
        elif is_type_checking_block(stmt) and isinstance(stmt.body, cst.IndentedBlock):
            for inner in stmt.body.body:
                if is_import(inner) and isinstance(inner.body[0], cst.ImportFrom):
                    bindings.append(_binding_of(inner.body[0], True))
    return bindings


def _binding_of(node: cst.ImportFrom, type_only: bool) -> ImportBinding:
    if isinstance(node.names, cst.ImportStar):
        names: Tuple[str, ...] = ("*",)
    else:
        names = tuple(_alias_entries(node.names))
    return ImportBinding(module=_from_specifier(node), names=names, type_only=type_only)


def _matches(stmt: cst.CSTNode, specifier: str) -> bool:
    return (
        is_import(stmt)
        and isinstance(stmt.body[0], cst.ImportFrom)
        and _from_specifier(stmt.body[0]) == specifier
    )


def _entries_of(stmt: cst.SimpleStatementLine) -> List[str]:
    names = stmt.body[0].names
    if isinstance(names, cst.ImportStar):
        return ["*"]
    return _alias_entries(names)


# ---------------------------------------------------------------------------
# Rewriter
# ---------------------------------------------------------------------------

class ImportRewriter:
    """Inserts or merges import bindings in a module."""

    def __init__(self, import_style: str = config.DEFAULT_IMPORT_STYLE) -> None:
        if import_style not in config.IMPORT_STYLES:
            raise ValueError(f"Unknown import style '{import_style}'")
        self.import_style = import_style

    def specifier_for(self, from_file: Path, to_file: Path) -> str:
        return to_module_specifier(from_file, to_file, self.import_style)

    def rewrite_references(
        self,
        origin: SourceModule,
        target_path: Path,
        names: Sequence[str],
        type_only: bool = False,
    ) -> ImportBinding:
        """Make *names* from *target_path* resolvable inside *origin*."""
        specifier = self.specifier_for(origin.path, target_path)
        binding = self.ensure_from_import(origin, specifier, names, type_only=type_only)
        logger.debug("%s: %s", origin.path.name, binding)
        return binding

    def ensure_from_import(
        self,
        module: SourceModule,
        specifier: str,
        names: Sequence[str],
        type_only: bool = False,
    ) -> ImportBinding:
        """Merge *names* into the single binding of *module* for *specifier*."""
        runtime = [s for s in module.body if _matches(s, specifier)]
        guarded: List[Tuple[cst.If, cst.SimpleStatementLine]] = []
        for stmt in module.body:
            if is_type_checking_block(stmt) and isinstance(stmt.body, cst.IndentedBlock):
                guarded.extend((stmt, inner) for inner in stmt.body.body if _matches(inner, specifier))

        runtime_names = _merge(*(_entries_of(s) for s in runtime))
        guarded_names = _merge(*(_entries_of(s) for _, s in guarded))

        if "*" in runtime_names:
            return ImportBinding(specifier, tuple(runtime_names), False)

        if runtime or not type_only:
            merged = _merge(runtime_names, guarded_names, names)
            self._drop_guarded(module, guarded)
            self._put_runtime(module, specifier, merged, runtime)
            return ImportBinding(specifier, tuple(merged), False)

        merged = _merge(guarded_names, names)
        self._put_guarded(module, specifier, merged, guarded)
        return ImportBinding(specifier, tuple(merged), True)

    def ensure_module_import(self, module: SourceModule, dotted: str, asname: Optional[str] = None) -> None:
        """Add ``import dotted [as asname]`` unless an identical one exists."""
        for stmt in module.body:
            if is_import(stmt) and isinstance(stmt.body[0], cst.Import):
                for alias in stmt.body[0].names:
                    existing_as = alias.asname.name.value if alias.asname is not None else None
                    if get_full_name_for_node(alias.name) == dotted and existing_as == asname:
                        return
        text = f"import {dotted} as {asname}\n" if asname else f"import {dotted}\n"
        self._insert_runtime(module, cst.parse_statement(text))

    def carry_imports(self, origin: SourceModule, target: SourceModule, names: Iterable[str]) -> List[str]:
        """Copy the origin imports that bind *names* into *target*.

        Returns the names whose import was carried.
        """
        available = collect_imports(origin)
        target_stem = target.path.with_suffix("")
        target_names = {
            to_module_specifier(origin.path, target.path, style) for style in config.IMPORT_STYLES
        }
        same_dir = origin.path.parent == target.path.parent
        carried = []

        for name in names:
            found = available.get(name)
            if found is None:
                continue
            if found.kind == "import":
                self.ensure_module_import(target, found.module, found.asname)
                carried.append(name)
                continue

            specifier = found.module
            if specifier.startswith("."):
                resolved = resolve_relative(origin.path, specifier)
                if resolved == target_stem:
                    continue
                if not same_dir:
                    has_module = specifier.strip(".") != ""
                    to_file = resolved.with_suffix(".py") if has_module else resolved / "__init__.py"
                    specifier = to_module_specifier(target.path, to_file)
            elif specifier in target_names:
                continue
            type_only = found.type_only and target.has_future_annotations()
            self.ensure_from_import(target, specifier, [found.entry], type_only=type_only)
            carried.append(name)

        return carried

    # ------------------------------------------------------------------
    # Statement placement
    # ------------------------------------------------------------------

    def _runtime_index(self, module: SourceModule) -> int:
        body = module.body
        end = module.header_end()
        idx = 1 if body and is_docstring(body[0]) else 0
        for i in range(end):
            if is_import(body[i]):
                idx = i + 1
        return idx

    def _insert_runtime(self, module: SourceModule, stmt: cst.SimpleStatementLine) -> None:
        idx = self._runtime_index(module)
        if idx > 0 and is_docstring(module.body[idx - 1]):
            stmt = stmt.with_changes(leading_lines=[cst.EmptyLine()])
        module.insert_statements(idx, [stmt])

    def _put_runtime(
        self,
        module: SourceModule,
        specifier: str,
        names: List[str],
        existing: List[cst.SimpleStatementLine],
    ) -> None:
        new_stmt = cst.parse_statement(_render_from(specifier, names))
        if not existing:
            self._insert_runtime(module, new_stmt)
            return
        first = existing[0]
        module.replace_statement(first, new_stmt.with_changes(leading_lines=first.leading_lines))
        if len(existing) > 1:
            module.remove_statements(existing[1:])

    def _put_guarded(
        self,
        module: SourceModule,
        specifier: str,
        names: List[str],
        existing: List[Tuple[cst.If, cst.SimpleStatementLine]],
    ) -> None:
        new_stmt = cst.parse_statement(_render_from(specifier, names))

        if existing:
            block, first = existing[0]
            drop = {id(inner) for _, inner in existing[1:]}
            body = [
                new_stmt.with_changes(leading_lines=first.leading_lines) if inner is first else inner
                for inner in block.body.body
                if id(inner) not in drop
            ]
            module.replace_statement(block, block.with_changes(body=block.body.with_changes(body=body)))
            return

        blocks = [s for s in module.body if is_type_checking_block(s) and isinstance(s.body, cst.IndentedBlock)]
        if blocks:
            block = blocks[0]
            body = [*block.body.body, new_stmt]
            module.replace_statement(block, block.with_changes(body=block.body.with_changes(body=body)))
            return

        if "TYPE_CHECKING" not in collect_imports(module):
            self.ensure_from_import(module, "typing", ["TYPE_CHECKING"])
        block = cst.parse_statement("if TYPE_CHECKING:\n" + "".join(
            f"    {line}\n" for line in _render_from(specifier, names).splitlines()
        ))
        block = block.with_changes(leading_lines=[cst.EmptyLine()])
        module.insert_statements(module.header_end(), [block])

    def _drop_guarded(self, module: SourceModule, guarded: List[Tuple[cst.If, cst.SimpleStatementLine]]) -> None:
        """Remove guarded imports that are being promoted to runtime."""
        by_block: Dict[int, Tuple[cst.If, set]] = {}
        for block, inner in guarded:
            by_block.setdefault(id(block), (block, set()))[1].add(id(inner))
        for block, drop in by_block.values():
            remaining = [s for s in block.body.body if id(s) not in drop]
            if remaining:
                module.replace_statement(block, block.with_changes(body=block.body.with_changes(body=remaining)))
            else:
                module.remove_statements([block])
