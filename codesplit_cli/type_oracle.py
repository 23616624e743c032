"""Type oracle: answers "what type does this declaration have?".

``TypeOracle`` is the collaborator interface the reconciler talks to. The
bundled ``InferenceOracle`` infers types with the standard ``ast`` module
from literals, explicit annotations, same-module call graphs, builtin
signatures and call-site arguments. Every answer is rendered type text:
``"Any"`` when nothing constrains the type and ``None`` when the query
itself failed (unparsable module, unknown declaration).
"""

from __future__ import annotations

import ast
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Union

from .tree import SourceModule

logger = logging.getLogger(__name__)

NO_CONSTRAINT = "Any"

MAX_DEPTH = 25

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]

CONSTANT_TYPES = {
    bool: "bool",
    int: "int",
    float: "float",
    complex: "complex",
    str: "str",
    bytes: "bytes",
}

BUILTIN_RETURNS = {
    "str": "str", "repr": "str", "ascii": "str", "chr": "str", "format": "str",
    "hex": "str", "oct": "str", "bin": "str",
    "int": "int", "len": "int", "ord": "int", "hash": "int", "id": "int",
    "float": "float", "complex": "complex",
    "bool": "bool", "isinstance": "bool", "issubclass": "bool", "callable": "bool",
    "hasattr": "bool", "any": "bool", "all": "bool",
    "bytes": "bytes", "bytearray": "bytearray",
    "list": "list", "dict": "dict", "set": "set", "frozenset": "frozenset",
    "tuple": "tuple", "range": "range", "object": "object",
}

STR_METHOD_RETURNS = {
    **dict.fromkeys(
        ["upper", "lower", "strip", "lstrip", "rstrip", "title", "capitalize", "casefold",
         "replace", "format", "format_map", "join", "zfill", "center", "ljust", "rjust",
         "swapcase", "expandtabs", "removeprefix", "removesuffix"],
        "str",
    ),
    **dict.fromkeys(["split", "rsplit", "splitlines"], "list[str]"),
    **dict.fromkeys(
        ["startswith", "endswith", "isdigit", "isalpha", "isalnum", "isspace", "isupper",
         "islower", "istitle", "isnumeric", "isdecimal", "isidentifier"],
        "bool",
    ),
    **dict.fromkeys(["find", "rfind", "index", "rindex", "count"], "int"),
    "encode": "bytes",
}

NUMERIC = ("int", "float", "complex")

# Annotation wrappers around the value type, and qualifiers that name no value type
WRAPPERS = {"Final", "Annotated"}
NON_VALUE_QUALIFIERS = {"ClassVar", "TypeAlias", "InitVar"}


class TypeOracle(ABC):
    """Collaborator interface for type queries."""

    @abstractmethod
    def return_type(self, module: SourceModule, name: str) -> Optional[str]:
        """Return type of the top-level function or lambda binding *name*."""

    @abstractmethod
    def parameter_type(self, module: SourceModule, function_name: str, parameter: str) -> Optional[str]:
        """Type of *parameter* of the top-level function or lambda binding."""

    @abstractmethod
    def binding_type(self, module: SourceModule, name: str) -> Optional[str]:
        """Type of the value bound to the top-level name *name*."""


# ---------------------------------------------------------------------------
# Union helpers
# ---------------------------------------------------------------------------

def split_union(text: str) -> List[str]:
    """Split ``A | B[C | D]`` into ``["A", "B[C | D]"]`` (bracket aware)."""
    parts, depth, current = [], 0, []
    for ch in text:
        if ch in "[(":
            depth += 1
        elif ch in "])":
            depth -= 1
        if ch == "|" and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    parts.append("".join(current).strip())
    return [p for p in parts if p]


def _split_args(text: str) -> List[str]:
    parts, depth, current = [], 0, []
    for ch in text:
        if ch in "[(":
            depth += 1
        elif ch in "])":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    parts.append("".join(current).strip())
    return parts


def union(types: List[Optional[str]]) -> Optional[str]:
    """Render the union of *types*; unknown if any member is unknown."""
    if not types or any(t is None for t in types):
        return None
    members: List[str] = []
    for text in types:
        for part in split_union(text):
            if part == NO_CONSTRAINT:
                return NO_CONSTRAINT
            if part not in members:
                members.append(part)
    if "float" in members and "int" in members:
        members.remove("int")
    if "None" in members:
        members.remove("None")
        members.append("None")
    return " | ".join(members)


def element_type(container: Optional[str]) -> Optional[str]:
    """Type produced by iterating over a value of type *container*."""
    if container is None:
        return None
    if container == "str":
        return "str"
    if container in ("range", "bytes", "bytearray"):
        return "int"
    for prefix in ("list[", "set[", "frozenset["):
        if container.startswith(prefix) and container.endswith("]"):
            return container[len(prefix):-1]
    if container.startswith("dict[") and container.endswith("]"):
        return _split_args(container[5:-1])[0]
    return None


def _qualifier_name(node: ast.expr) -> Optional[str]:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def is_bare_final(annotation: ast.expr) -> bool:
    """``x: Final = ...`` takes its type from the bound value."""
    return _qualifier_name(annotation) == "Final"


def declared_type(annotation: ast.expr) -> Optional[str]:
    """Value type named by *annotation*.

    ``Final[X]`` and ``Annotated[X, ...]`` unwrap to ``X``. A bare ``Final``
    and the qualifiers in ``NON_VALUE_QUALIFIERS`` give None.
    """
    node = annotation
    while True:
        base = node.value if isinstance(node, ast.Subscript) else node
        name = _qualifier_name(base)
        if name in NON_VALUE_QUALIFIERS:
            return None
        if name not in WRAPPERS:
            return ast.unparse(node)
        if not isinstance(node, ast.Subscript):
            return None
        inner = node.slice
        if isinstance(inner, ast.Tuple):
            if name != "Annotated" or not inner.elts:
                return None
            inner = inner.elts[0]
        node = inner


# ---------------------------------------------------------------------------
# Module index
# ---------------------------------------------------------------------------

def _own_nodes(body: List[ast.stmt]) -> Iterator[ast.AST]:
    """Walk *body* in source order without entering nested scopes."""
    stack = list(reversed(body))
    while stack:
        node = stack.pop()
        yield node
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef, ast.Lambda)):
            continue
        stack.extend(reversed(list(ast.iter_child_nodes(node))))


@dataclass
class _ModuleIndex:
    tree: ast.Module
    functions: Dict[str, FunctionNode] = field(default_factory=dict)
    lambdas: Dict[str, ast.Lambda] = field(default_factory=dict)
    classes: Set[str] = field(default_factory=set)
    bindings: Dict[str, ast.expr] = field(default_factory=dict)
    annotations: Dict[str, Optional[str]] = field(default_factory=dict)

    @classmethod
    def build(cls, source: str) -> "_ModuleIndex":
        tree = ast.parse(source)
        index = cls(tree=tree)
        assigned: Dict[str, int] = {}
        for stmt in tree.body:
            if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                index.functions[stmt.name] = stmt
            elif isinstance(stmt, ast.ClassDef):
                index.classes.add(stmt.name)
            elif isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    for node in ast.walk(target):
                        if isinstance(node, ast.Name):
                            assigned[node.id] = assigned.get(node.id, 0) + 1
                if len(stmt.targets) == 1 and isinstance(stmt.targets[0], ast.Name):
                    index.bindings[stmt.targets[0].id] = stmt.value
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                if not is_bare_final(stmt.annotation):
                    index.annotations[stmt.target.id] = declared_type(stmt.annotation)
                assigned[stmt.target.id] = assigned.get(stmt.target.id, 0) + 1
                if stmt.value is not None:
                    index.bindings[stmt.target.id] = stmt.value

        for name, count in assigned.items():
            if count > 1:
                index.bindings.pop(name, None)
        for name, value in index.bindings.items():
            if isinstance(value, ast.Lambda):
                index.lambdas[name] = value
        return index


# ---------------------------------------------------------------------------
# Inference
# ---------------------------------------------------------------------------

class InferenceOracle(TypeOracle):
    """AST-based inference over a single module."""

    def __init__(self) -> None:
        self._cache: Dict[str, _ModuleIndex] = {}
        self._active: Set[str] = set()

    def _index(self, module: SourceModule) -> Optional[_ModuleIndex]:
        code = module.code
        index = self._cache.get(code)
        if index is None:
            try:
                index = _ModuleIndex.build(code)
            except SyntaxError as exc:
                logger.warning("Cannot analyse %s: %s", module.path.name, exc)
                return None
            self._cache = {code: index}
        return index

    # -- public queries ------------------------------------------------

    def return_type(self, module: SourceModule, name: str) -> Optional[str]:
        index = self._index(module)
        if index is None:
            return None
        if name in index.functions:
            result = self._function_return(index, index.functions[name])
        elif name in index.lambdas:
            result = self._lambda_return(index, name, index.lambdas[name])
        else:
            return None
        return result or NO_CONSTRAINT

    def parameter_type(self, module: SourceModule, function_name: str, parameter: str) -> Optional[str]:
        index = self._index(module)
        if index is None:
            return None
        node = index.functions.get(function_name) or index.lambdas.get(function_name)
        if node is None:
            return None
        return self._parameter(index, function_name, node.args, parameter) or NO_CONSTRAINT

    def binding_type(self, module: SourceModule, name: str) -> Optional[str]:
        index = self._index(module)
        if index is None:
            return None
        if name not in index.bindings:
            return None
        return self._module_binding(index, name) or NO_CONSTRAINT

    # -- declarations --------------------------------------------------

    def _guarded(self, key: str):
        if key in self._active:
            return False
        self._active.add(key)
        return True

    def _function_return(self, index: _ModuleIndex, func: FunctionNode) -> Optional[str]:
        if func.returns is not None:
            return declared_type(func.returns)
        key = f"def:{func.name}"
        if not self._guarded(key):
            return None
        try:
            return self._infer_function_return(index, func)
        finally:
            self._active.discard(key)

    def _infer_function_return(self, index: _ModuleIndex, func: FunctionNode) -> Optional[str]:
        nodes = list(_own_nodes(func.body))
        if any(isinstance(n, (ast.Yield, ast.YieldFrom)) for n in nodes):
            return None

        env = self._function_env(index, func)
        returns = [n for n in nodes if isinstance(n, ast.Return)]
        types: List[Optional[str]] = []
        for ret in returns:
            types.append("None" if ret.value is None else self._infer(index, ret.value, env, 0))

        if not _always_exits(func.body):
            types.append("None")
        elif not returns:
            # Body always raises
            return None
        return union(types)

    def _lambda_return(self, index: _ModuleIndex, name: str, node: ast.Lambda) -> Optional[str]:
        key = f"lambda:{name}"
        if not self._guarded(key):
            return None
        try:
            env = {}
            for arg in _all_args(node.args):
                env[arg.arg] = self._parameter(index, name, node.args, arg.arg)
            return self._infer(index, node.body, env, 0)
        finally:
            self._active.discard(key)

    def _module_binding(self, index: _ModuleIndex, name: str) -> Optional[str]:
        key = f"var:{name}"
        if not self._guarded(key):
            return None
        try:
            value = index.bindings[name]
            if isinstance(value, ast.Lambda):
                return None
            return self._infer(index, value, {}, 0)
        finally:
            self._active.discard(key)

    def _parameter(self, index: _ModuleIndex, function_name: str, args: ast.arguments, parameter: str) -> Optional[str]:
        arg = next((a for a in _all_args(args) if a.arg == parameter), None)
        if arg is None or arg is args.vararg or arg is args.kwarg:
            return None
        if arg.annotation is not None:
            return declared_type(arg.annotation)

        key = f"param:{function_name}.{parameter}"
        if not self._guarded(key):
            return None
        try:
            default = _default_for(args, parameter)
            observed = self._call_site_types(index, function_name, args, parameter)
            if observed is None:
                return None
            if default is not None:
                default_type = self._infer(index, default, {}, 0)
                if default_type == "None" and not observed:
                    return None
                observed.append(default_type)
            return union(observed)
        finally:
            self._active.discard(key)

    def _call_site_types(
        self,
        index: _ModuleIndex,
        function_name: str,
        args: ast.arguments,
        parameter: str,
    ) -> Optional[List[Optional[str]]]:
        """Argument types passed for *parameter*; None if a call is opaque."""
        positional = [a.arg for a in [*args.posonlyargs, *args.args]]
        position = positional.index(parameter) if parameter in positional else None
        observed: List[Optional[str]] = []

        for scope, env in self._scopes(index):
            for node in _own_nodes(scope):
                if not (isinstance(node, ast.Call) and isinstance(node.func, ast.Name)):
                    continue
                if node.func.id != function_name:
                    continue
                if any(isinstance(a, ast.Starred) for a in node.args) or any(k.arg is None for k in node.keywords):
                    return None
                value = None
                if position is not None and position < len(node.args):
                    value = node.args[position]
                else:
                    value = next((k.value for k in node.keywords if k.arg == parameter), None)
                if value is not None:
                    observed.append(self._infer(index, value, env, 0))
        return observed

    def _scopes(self, index: _ModuleIndex):
        """Yield (statements, env) for module level and every top-level function."""
        yield index.tree.body, {}
        for func in index.functions.values():
            yield func.body, self._function_env(index, func)

    # -- environments --------------------------------------------------

    def _function_env(self, index: _ModuleIndex, func: FunctionNode) -> Dict[str, Optional[str]]:
        env: Dict[str, Optional[str]] = {}
        args = func.args
        for arg in _all_args(args):
            if arg.annotation is not None:
                env[arg.arg] = declared_type(arg.annotation)
            elif arg is args.vararg or arg is args.kwarg:
                env[arg.arg] = None
            else:
                default = _default_for(args, arg.arg)
                default_type = self._infer(index, default, {}, 0) if default is not None else None
                env[arg.arg] = None if default_type == "None" else default_type

        stores: Dict[str, int] = {}
        nodes = list(_own_nodes(func.body))
        for node in nodes:
            if isinstance(node, ast.Name) and not isinstance(node.ctx, ast.Load):
                stores[node.id] = stores.get(node.id, 0) + 1

        for node in nodes:
            if isinstance(node, ast.AnnAssign) and isinstance(node.target, ast.Name):
                name = node.target.id
                if is_bare_final(node.annotation) and node.value is not None and stores.get(name) == 1:
                    env[name] = self._infer(index, node.value, env, 0)
                else:
                    env[name] = declared_type(node.annotation)
            elif isinstance(node, ast.Assign) and len(node.targets) == 1 and isinstance(node.targets[0], ast.Name):
                name = node.targets[0].id
                env[name] = self._infer(index, node.value, env, 0) if stores.get(name) == 1 else None
            elif isinstance(node, (ast.For, ast.AsyncFor)) and isinstance(node.target, ast.Name):
                name = node.target.id
                iterated = self._infer(index, node.iter, env, 0)
                env[name] = element_type(iterated) if stores.get(name) == 1 else None
        return env

    # -- expressions ---------------------------------------------------

    def _infer(self, index: _ModuleIndex, node: ast.expr, env: Dict[str, Optional[str]], depth: int) -> Optional[str]:
        if depth > MAX_DEPTH:
            return None

        def infer(child: ast.expr) -> Optional[str]:
            return self._infer(index, child, env, depth + 1)

        if isinstance(node, ast.Constant):
            if node.value is None:
                return "None"
            return CONSTANT_TYPES.get(type(node.value))
        if isinstance(node, ast.JoinedStr):
            return "str"
        if isinstance(node, (ast.List, ast.Set)):
            kind = "list" if isinstance(node, ast.List) else "set"
            if not node.elts or any(isinstance(e, ast.Starred) for e in node.elts):
                return kind
            inner = union([infer(e) for e in node.elts])
            return f"{kind}[{inner}]" if inner else kind
        if isinstance(node, ast.Tuple):
            if any(isinstance(e, ast.Starred) for e in node.elts):
                return "tuple"
            parts = [infer(e) for e in node.elts]
            if any(p is None for p in parts):
                return "tuple"
            return f"tuple[{', '.join(parts)}]" if parts else "tuple[()]"
        if isinstance(node, ast.Dict):
            if not node.keys or any(k is None for k in node.keys):
                return "dict"
            keys = union([infer(k) for k in node.keys])
            values = union([infer(v) for v in node.values])
            return f"dict[{keys}, {values}]" if keys and values else "dict"
        if isinstance(node, (ast.ListComp, ast.SetComp, ast.DictComp)):
            return self._comprehension(index, node, env, depth)
        if isinstance(node, ast.GeneratorExp):
            return None
        if isinstance(node, ast.BoolOp):
            return union([infer(v) for v in node.values])
        if isinstance(node, ast.Compare):
            return "bool"
        if isinstance(node, ast.UnaryOp):
            if isinstance(node.op, ast.Not):
                return "bool"
            if isinstance(node.op, ast.Invert):
                return "int"
            return infer(node.operand)
        if isinstance(node, ast.BinOp):
            return self._binop(node, infer(node.left), infer(node.right))
        if isinstance(node, ast.IfExp):
            return union([infer(node.body), infer(node.orelse)])
        if isinstance(node, ast.Call):
            return self._call(index, node, env, depth)
        if isinstance(node, ast.Name):
            return self._name(index, node.id, env)
        if isinstance(node, ast.NamedExpr):
            return infer(node.value)
        return None

    def _comprehension(self, index, node, env, depth) -> Optional[str]:
        scope = dict(env)
        for gen in node.generators:
            iterated = self._infer(index, gen.iter, scope, depth + 1)
            if isinstance(gen.target, ast.Name):
                scope[gen.target.id] = element_type(iterated)
            else:
                for sub in ast.walk(gen.target):
                    if isinstance(sub, ast.Name):
                        scope[sub.id] = None
        if isinstance(node, ast.DictComp):
            key = self._infer(index, node.key, scope, depth + 1)
            value = self._infer(index, node.value, scope, depth + 1)
            return f"dict[{key}, {value}]" if key and value else "dict"
        kind = "list" if isinstance(node, ast.ListComp) else "set"
        inner = self._infer(index, node.elt, scope, depth + 1)
        return f"{kind}[{inner}]" if inner else kind

    @staticmethod
    def _binop(node: ast.BinOp, left: Optional[str], right: Optional[str]) -> Optional[str]:
        if left is None or right is None:
            return None
        if left in NUMERIC and right in NUMERIC:
            if isinstance(node.op, ast.Div):
                return "complex" if "complex" in (left, right) else "float"
            if "complex" in (left, right):
                return "complex"
            if "float" in (left, right):
                return "float"
            return "int"
        if left == "str":
            if isinstance(node.op, ast.Mod):
                return "str"
            if isinstance(node.op, ast.Add) and right == "str":
                return "str"
            if isinstance(node.op, ast.Mult) and right == "int":
                return "str"
        if isinstance(node.op, ast.Add) and left == right and left.split("[")[0] in ("list", "tuple"):
            return left
        return None

    def _call(self, index: _ModuleIndex, node: ast.Call, env, depth: int) -> Optional[str]:
        func = node.func
        if isinstance(func, ast.Name):
            name = func.id
            if name in env:
                return None
            if name in index.functions:
                return self._function_return(index, index.functions[name])
            if name in index.lambdas:
                return self._lambda_return(index, name, index.lambdas[name])
            if name in index.classes:
                return name
            if name == "sorted" and node.args:
                inner = element_type(self._infer(index, node.args[0], env, depth + 1))
                return f"list[{inner}]" if inner else "list"
            if name == "round":
                return "int" if len(node.args) == 1 else None
            if name == "abs" and node.args:
                return self._infer(index, node.args[0], env, depth + 1)
            return BUILTIN_RETURNS.get(name)
        if isinstance(func, ast.Attribute):
            receiver = self._infer(index, func.value, env, depth + 1)
            if receiver == "str":
                return STR_METHOD_RETURNS.get(func.attr)
        return None

    def _name(self, index: _ModuleIndex, name: str, env: Dict[str, Optional[str]]) -> Optional[str]:
        if name in env:
            return env[name]
        if name in index.annotations:
            return index.annotations[name]
        if name in index.bindings:
            return self._module_binding(index, name)
        return None


def _all_args(args: ast.arguments) -> List[ast.arg]:
    found = [*args.posonlyargs, *args.args, *args.kwonlyargs]
    if args.vararg is not None:
        found.append(args.vararg)
    if args.kwarg is not None:
        found.append(args.kwarg)
    return found


def _default_for(args: ast.arguments, parameter: str) -> Optional[ast.expr]:
    positional = [*args.posonlyargs, *args.args]
    offset = len(positional) - len(args.defaults)
    for i, arg in enumerate(positional):
        if arg.arg == parameter:
            return args.defaults[i - offset] if i >= offset else None
    for arg, default in zip(args.kwonlyargs, args.kw_defaults):
        if arg.arg == parameter:
            return default
    return None


def _always_exits(body: List[ast.stmt]) -> bool:
    """True when control can never fall off the end of *body*."""
    if not body:
        return False
    last = body[-1]
    if isinstance(last, (ast.Return, ast.Raise)):
        return True
    if isinstance(last, ast.If):
        return _always_exits(last.body) and _always_exits(last.orelse)
    if isinstance(last, (ast.With, ast.AsyncWith)):
        return _always_exits(last.body)
    if isinstance(last, ast.Try):
        if last.finalbody and _always_exits(last.finalbody):
            return True
        primary = _always_exits(last.orelse) if last.orelse else _always_exits(last.body)
        return primary and all(_always_exits(h.body) for h in last.handlers)
    if isinstance(last, ast.While):
        is_forever = isinstance(last.test, ast.Constant) and last.test.value is True
        return is_forever and not any(isinstance(n, ast.Break) for n in _own_nodes(last.body))
    return False
