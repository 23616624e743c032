"""Tree accessor: libcst-backed view of one Python module.

``SourceModule`` wraps a ``libcst.Module`` and answers the structural
queries the rest of the engine needs: which top-level declarations exist,
which declarations live inside a function body, and how many lines each
one spans. Edits never mutate a statement list in place; every change
builds a fresh sequence and swaps the tree.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Tuple

import libcst as cst
from libcst.helpers import get_full_name_for_node
from libcst.metadata import CodeRange, MetadataWrapper, PositionProvider

from .errors import ModuleLoadError
from .models import Declaration, DeclarationKind

logger = logging.getLogger(__name__)

# Bases that make a class a structural type declaration
STRUCTURAL_BASES: Set[str] = {
    "TypedDict", "Protocol", "NamedTuple",
    "Enum", "IntEnum", "StrEnum", "Flag", "IntFlag",
}

# Decorators that make a class a structural type declaration
STRUCTURAL_DECORATORS: Set[str] = {
    "dataclass", "define", "frozen", "mutable", "attrs", "s",
}

# Subscripted typing forms that make a plain assignment a type alias
TYPING_FORMS: Set[str] = {
    "Union", "Optional", "Literal", "Callable", "Annotated",
    "Dict", "List", "Set", "FrozenSet", "Tuple", "Type", "Mapping",
    "Sequence", "Iterable", "Iterator",
    "dict", "list", "set", "frozenset", "tuple", "type",
}

# Calls that create type-level objects
TYPE_FACTORIES: Set[str] = {"NewType", "TypeVar", "ParamSpec", "TypeVarTuple"}

TYPE_ALIAS_ANNOTATIONS: Set[str] = {
    "TypeAlias", "typing.TypeAlias", "typing_extensions.TypeAlias",
}


def _last_component(node: Optional[cst.CSTNode]) -> Optional[str]:
    if node is None:
        return None
    if isinstance(node, cst.Subscript):
        node = node.value
    if isinstance(node, cst.Call):
        node = node.func
    full = get_full_name_for_node(node)
    if not full:
        return None
    return full.rsplit(".", 1)[-1]


def is_structural_class(node: cst.ClassDef) -> bool:
    """Return True if *node* declares a data shape rather than behavior."""
    for base in node.bases:
        if _last_component(base.value) in STRUCTURAL_BASES:
            return True
    for decorator in node.decorators:
        if _last_component(decorator.decorator) in STRUCTURAL_DECORATORS:
            return True
    return False


def is_docstring(stmt: cst.CSTNode) -> bool:
    if not isinstance(stmt, cst.SimpleStatementLine) or len(stmt.body) != 1:
        return False
    b0 = stmt.body[0]
    return isinstance(b0, cst.Expr) and isinstance(b0.value, (cst.SimpleString, cst.ConcatenatedString))


def is_import(stmt: cst.CSTNode) -> bool:
    if not isinstance(stmt, cst.SimpleStatementLine) or len(stmt.body) != 1:
        return False
    return isinstance(stmt.body[0], (cst.Import, cst.ImportFrom))


def is_future_import(stmt: cst.CSTNode) -> bool:
    if not is_import(stmt):
        return False
    b0 = stmt.body[0]
    return isinstance(b0, cst.ImportFrom) and b0.module is not None and get_full_name_for_node(b0.module) == "__future__"


def is_type_checking_block(stmt: cst.CSTNode) -> bool:
    """``if TYPE_CHECKING:`` / ``if typing.TYPE_CHECKING:`` without else."""
    if not isinstance(stmt, cst.If) or stmt.orelse is not None:
        return False
    return get_full_name_for_node(stmt.test) in ("TYPE_CHECKING", "typing.TYPE_CHECKING")


def _single_target_name(stmt: cst.SimpleStatementLine) -> Tuple[Optional[str], Optional[cst.BaseExpression]]:
    """Return (name, value) for ``name = value`` / ``name: T = value``.

    The name is ``""`` for destructuring or chained targets.
    """
    small = stmt.body[0]
    if isinstance(small, cst.Assign):
        if len(small.targets) == 1 and isinstance(small.targets[0].target, cst.Name):
            return small.targets[0].target.value, small.value
        return "", small.value
    if isinstance(small, cst.AnnAssign):
        if isinstance(small.target, cst.Name):
            return small.target.value, small.value
        return "", small.value
    return None, None


def _is_dunder(name: str) -> bool:
    return name.startswith("__") and name.endswith("__")


def _is_alias_value(value: Optional[cst.BaseExpression]) -> bool:
    if isinstance(value, cst.Subscript):
        return _last_component(value.value) in TYPING_FORMS
    if isinstance(value, cst.Call):
        return _last_component(value.func) in TYPE_FACTORIES
    return False


class SourceModule:
    """One Python source file and its concrete syntax tree."""

    def __init__(self, path: Path, tree: cst.Module, original_code: Optional[str] = None) -> None:
        self.path = path
        self._tree = tree
        self.original_code = original_code
        self._positions = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_source(cls, path: Path, source: str, original_code: Optional[str] = None) -> "SourceModule":
        try:
            tree = cst.parse_module(source)
        except cst.ParserSyntaxError as exc:
            raise ModuleLoadError(f"Cannot parse {path}: {exc.message}") from exc
        return cls(path, tree, original_code)

    @classmethod
    def load(cls, path: Path) -> "SourceModule":
        if not path.exists():
            raise ModuleLoadError(f"File not found: {path}")
        source = path.read_text(encoding="utf-8")
        return cls.from_source(path, source, original_code=source)

    # ------------------------------------------------------------------
    # Tree state
    # ------------------------------------------------------------------

    @property
    def tree(self) -> cst.Module:
        return self._tree

    @tree.setter
    def tree(self, value: cst.Module) -> None:
        self._tree = value
        self._positions = None

    @property
    def code(self) -> str:
        return self._tree.code

    @property
    def body(self) -> Sequence[cst.BaseStatement]:
        return self._tree.body

    @property
    def is_new(self) -> bool:
        return self.original_code is None

    @property
    def changed(self) -> bool:
        return self.code != self.original_code

    def mark_saved(self) -> None:
        self.original_code = self.code

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def _position(self, node: cst.CSTNode) -> CodeRange:
        if self._positions is None:
            wrapper = MetadataWrapper(self._tree, unsafe_skip_copy=True)
            self._positions = wrapper.resolve(PositionProvider)
        return self._positions[node]

    def line_span(self, node: cst.CSTNode) -> Tuple[int, int]:
        pos = self._position(node)
        return pos.start.line, pos.end.line

    def line_count(self, node: cst.CSTNode) -> int:
        start, end = self.line_span(node)
        return end - start + 1

    def code_for(self, node: cst.CSTNode) -> str:
        return self._tree.code_for_node(node)

    # ------------------------------------------------------------------
    # Declarations
    # ------------------------------------------------------------------

    def declarations(self) -> List[Declaration]:
        """Top-level declarations in order of appearance."""
        found = []
        for stmt in self._tree.body:
            decl = self._declaration_for(stmt, parent=None)
            if decl is not None:
                found.append(decl)
        return found

    def nested_declarations(self, parent: Declaration) -> List[Declaration]:
        """Function-valued declarations directly inside *parent*'s body."""
        node = parent.statement
        if not isinstance(node, cst.FunctionDef) or not isinstance(node.body, cst.IndentedBlock):
            return []
        found = []
        for stmt in node.body.body:
            decl = self._declaration_for(stmt, parent=parent)
            if decl is not None and decl.function_valued:
                found.append(decl)
        return found

    def find_declaration(self, name: str) -> Optional[Declaration]:
        for decl in self.declarations():
            if decl.name == name:
                return decl
        return None

    def _declaration_for(self, stmt: cst.BaseStatement, parent: Optional[Declaration]) -> Optional[Declaration]:
        kind: Optional[DeclarationKind] = None
        name = ""
        function_valued = False

        if isinstance(stmt, cst.FunctionDef):
            kind, name, function_valued = DeclarationKind.FUNCTION, stmt.name.value, True
        elif isinstance(stmt, cst.ClassDef):
            if parent is None and is_structural_class(stmt):
                kind, name = DeclarationKind.TYPE, stmt.name.value
        elif isinstance(stmt, cst.SimpleStatementLine) and len(stmt.body) == 1:
            small = stmt.body[0]
            if isinstance(small, cst.TypeAlias):
                kind, name = DeclarationKind.ALIAS, small.name.value
            else:
                target, value = _single_target_name(stmt)
                if target is None or (target and _is_dunder(target)):
                    return None
                if (
                    isinstance(small, cst.AnnAssign)
                    and get_full_name_for_node(small.annotation.annotation) in TYPE_ALIAS_ANNOTATIONS
                ):
                    kind = DeclarationKind.ALIAS
                elif parent is None and target and _is_alias_value(value):
                    kind = DeclarationKind.ALIAS
                else:
                    kind = DeclarationKind.BINDING
                    function_valued = isinstance(value, cst.Lambda)
                name = target

        if kind is None:
            return None
        start, end = self.line_span(stmt)
        return Declaration(
            name=name,
            kind=kind,
            statement=stmt,
            start_line=start,
            end_line=end,
            module_path=self.path,
            function_valued=function_valued,
            parent=parent,
        )

    def module_level_names(self) -> Set[str]:
        """Names bound by top-level definitions and assignments (not imports)."""
        names: Set[str] = set()
        for stmt in self._tree.body:
            if isinstance(stmt, (cst.FunctionDef, cst.ClassDef)):
                names.add(stmt.name.value)
            elif isinstance(stmt, cst.SimpleStatementLine):
                for small in stmt.body:
                    if isinstance(small, cst.Assign):
                        for t in small.targets:
                            names.update(_target_names(t.target))
                    elif isinstance(small, cst.AnnAssign):
                        names.update(_target_names(small.target))
                    elif isinstance(small, cst.TypeAlias):
                        names.add(small.name.value)
        return {n for n in names if not _is_dunder(n)}

    def has_future_annotations(self) -> bool:
        for stmt in self._tree.body:
            if not is_future_import(stmt):
                continue
            names = stmt.body[0].names
            if isinstance(names, cst.ImportStar):
                continue
            if any(get_full_name_for_node(alias.name) == "annotations" for alias in names):
                return True
        return False

    def header_end(self) -> int:
        """Index just past the docstring, ``__future__`` imports and leading imports."""
        body = self._tree.body
        idx = 0
        if body and is_docstring(body[0]):
            idx = 1
        while idx < len(body) and (is_import(body[idx]) or is_type_checking_block(body[idx])):
            idx += 1
        return idx

    # ------------------------------------------------------------------
    # Edits (always build a new sequence)
    # ------------------------------------------------------------------

    def contains(self, stmt: cst.CSTNode) -> bool:
        return any(s is stmt for s in self._tree.body)

    def replace_statement(self, old: cst.BaseStatement, new: cst.BaseStatement) -> None:
        body = [new if s is old else s for s in self._tree.body]
        self.tree = self._tree.with_changes(body=body)

    def remove_statements(self, statements: Iterable[cst.CSTNode]) -> None:
        drop = {id(s) for s in statements}
        body = [s for s in self._tree.body if id(s) not in drop]
        self.tree = self._tree.with_changes(body=body)

    def insert_statements(self, index: int, statements: Sequence[cst.BaseStatement]) -> None:
        body = list(self._tree.body)
        body[index:index] = list(statements)
        self.tree = self._tree.with_changes(body=body)

    def append_statements(self, statements: Sequence[cst.BaseStatement]) -> None:
        self.tree = self._tree.with_changes(body=[*self._tree.body, *statements])


def _target_names(target: cst.BaseExpression) -> Set[str]:
    if isinstance(target, cst.Name):
        return {target.value}
    if isinstance(target, (cst.Tuple, cst.List)):
        names: Set[str] = set()
        for element in target.elements:
            names.update(_target_names(element.value))
        return names
    if isinstance(target, cst.StarredElement):
        return _target_names(target.value)
    return set()


def with_blank_lines(stmt: cst.BaseStatement, count: int) -> cst.BaseStatement:
    """Replace leading blank lines of *stmt* by exactly *count*, keeping comments."""
    lines = list(stmt.leading_lines)
    while lines and lines[0].comment is None:
        lines.pop(0)
    return stmt.with_changes(leading_lines=[cst.EmptyLine() for _ in range(count)] + lines)
