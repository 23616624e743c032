"""TypeReconciler: writes inferred annotations back into a module.

Each gap is resolved on its own: a failure to infer or to apply one
annotation becomes a skipped item in the report and the run moves on.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

import libcst as cst
from libcst.helpers import get_full_name_for_node

from . import config
from .errors import AnnotationError
from .imports import ImportRewriter, collect_imports
from .models import AnnotationGap, DeclarationKind, ItemResult, ReconcileReport
from .tree import SourceModule
from .type_oracle import NO_CONSTRAINT, InferenceOracle, TypeOracle
from .workspace import Workspace
from .writer import ensure_exported, exported_names

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

BROAD_ANNOTATIONS = {"Any", "typing.Any"}
FINAL_ANNOTATIONS = {"Final", "typing.Final", "typing_extensions.Final"}


def _single_assignment(stmt: cst.CSTNode):
    if isinstance(stmt, cst.SimpleStatementLine) and len(stmt.body) == 1:
        return stmt.body[0]
    return None


def _final_str(annotation: cst.BaseExpression) -> Optional[str]:
    """Return the ``Final`` spelling when *annotation* is ``Final[str]``."""
    if not isinstance(annotation, cst.Subscript):
        return None
    final_name = get_full_name_for_node(annotation.value)
    if final_name not in FINAL_ANNOTATIONS or len(annotation.slice) != 1:
        return None
    element = annotation.slice[0].slice
    if isinstance(element, cst.Index) and get_full_name_for_node(element.value) == "str":
        return final_name
    return None


class TypeReconciler:
    """Finds annotation gaps in a module and fills the ones it can."""

    def __init__(
        self,
        workspace: Workspace,
        oracle: Optional[TypeOracle] = None,
        rewriter: Optional[ImportRewriter] = None,
        type_text_limit: int = config.DEFAULT_TYPE_TEXT_LIMIT,
    ) -> None:
        self.workspace = workspace
        self.oracle = oracle or InferenceOracle()
        self.rewriter = rewriter or ImportRewriter()
        self.type_text_limit = type_text_limit

    # ------------------------------------------------------------------
    # Gap discovery
    # ------------------------------------------------------------------

    def find_gaps(self, module: SourceModule, is_types_module: bool = False) -> List[AnnotationGap]:
        """Declarations lacking an explicit (or specific enough) type."""
        gaps: List[AnnotationGap] = []
        declarations = module.declarations()

        if is_types_module:
            exported = set(exported_names(module))
            for decl in declarations:
                if decl.kind in (DeclarationKind.TYPE, DeclarationKind.ALIAS) and decl.name not in exported:
                    gaps.append(AnnotationGap(decl.name, "export"))

        for decl in declarations:
            node = decl.statement
            if isinstance(node, cst.FunctionDef) and node.returns is None:
                gaps.append(AnnotationGap(decl.name, "return"))
            small = _single_assignment(node)
            if isinstance(small, cst.Assign) and decl.name and isinstance(small.value, cst.Lambda):
                gaps.append(AnnotationGap(decl.name, "binding"))

        for decl in declarations:
            node = decl.statement
            if not isinstance(node, cst.FunctionDef):
                continue
            params = [*node.params.posonly_params, *node.params.params, *node.params.kwonly_params]
            for param in params:
                if param.annotation is None:
                    gaps.append(AnnotationGap(decl.name, "parameter", parameter=param.name.value))

        for decl in declarations:
            small = _single_assignment(decl.statement)
            if not isinstance(small, cst.AnnAssign) or small.value is None or not decl.name:
                continue
            annotation = small.annotation.annotation
            if get_full_name_for_node(annotation) in BROAD_ANNOTATIONS:
                gaps.append(AnnotationGap(decl.name, "broad"))
            elif _final_str(annotation) and isinstance(small.value, cst.SimpleString):
                gaps.append(AnnotationGap(decl.name, "literal"))

        return gaps

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, module: SourceModule, is_types_module: bool = False) -> ReconcileReport:
        """Fill every gap that passes the acceptance filter; save if anything changed."""
        report = ReconcileReport(path=module.path)

        for gap in self.find_gaps(module, is_types_module):
            try:
                result = self._resolve(module, gap)
            except (AnnotationError, cst.ParserSyntaxError, ValueError) as exc:
                result = ItemResult.skipped(gap.label, f"{type(exc).__name__}: {exc}")
            report.results.append(result)
            if result.is_applied:
                logger.info("%s: %s %s", module.path.name, gap.label, result.detail)
            else:
                logger.debug("%s: skipped %s (%s)", module.path.name, gap.label, result.reason)

        if report.written:
            self.workspace.save(module)
            report.saved = True
        return report

    def _resolve(self, module: SourceModule, gap: AnnotationGap) -> ItemResult:
        handler = {
            "export": self._export,
            "return": self._return_type,
            "binding": self._lambda_binding,
            "parameter": self._parameter,
            "broad": self._narrow,
            "literal": self._sharpen,
        }[gap.kind]
        return handler(module, gap)

    def rejection(self, text: Optional[str]) -> Optional[str]:
        """Why inferred *text* must not be written, or None if acceptable."""
        if text is None:
            return "type checker gave no answer"
        if text == NO_CONSTRAINT:
            return "inferred type is Any"
        if len(text) >= self.type_text_limit:
            return f"inferred type is {len(text)} characters (limit {self.type_text_limit})"
        return None

    def _statement(self, module: SourceModule, name: str) -> cst.BaseStatement:
        decl = module.find_declaration(name)
        if decl is None:
            raise AnnotationError(f"{name} is no longer declared in {module.path.name}")
        return decl.statement

    def _forward_reference(self, module: SourceModule, node: cst.BaseStatement, text: str) -> Optional[str]:
        """A name in *text* defined below *node* in a module evaluating annotations eagerly."""
        if module.has_future_annotations():
            return None
        body = list(module.body)
        position = next(i for i, stmt in enumerate(body) if stmt is node)
        later = set()
        for stmt in body[position:]:
            if isinstance(stmt, (cst.ClassDef, cst.FunctionDef)):
                later.add(stmt.name.value)
        for name in _IDENTIFIER.findall(text):
            if name in later:
                return name
        return None

    def _ensure_typing_name(self, module: SourceModule, name: str) -> None:
        if name in collect_imports(module) or name in module.module_level_names():
            return
        self.rewriter.ensure_from_import(module, "typing", [name])

    # -- handlers ------------------------------------------------------

    def _export(self, module: SourceModule, gap: AnnotationGap) -> ItemResult:
        ensure_exported(module, [gap.declaration])
        return ItemResult.applied(gap.label, "added to __all__")

    def _return_type(self, module: SourceModule, gap: AnnotationGap) -> ItemResult:
        text = self.oracle.return_type(module, gap.declaration)
        reason = self.rejection(text)
        if reason:
            return ItemResult.skipped(gap.label, reason)
        node = self._statement(module, gap.declaration)
        forward = self._forward_reference(module, node, text)
        if forward:
            return ItemResult.skipped(gap.label, f"{forward} is defined later in the module")
        annotation = cst.Annotation(annotation=cst.parse_expression(text))
        module.replace_statement(node, node.with_changes(returns=annotation))
        return ItemResult.applied(gap.label, f"-> {text}")

    def _lambda_binding(self, module: SourceModule, gap: AnnotationGap) -> ItemResult:
        returned = self.oracle.return_type(module, gap.declaration)
        reason = self.rejection(returned)
        if reason:
            return ItemResult.skipped(gap.label, reason)

        stmt = self._statement(module, gap.declaration)
        small = _single_assignment(stmt)
        if not isinstance(small, cst.Assign) or not isinstance(small.value, cst.Lambda):
            raise AnnotationError(f"{gap.declaration} is no longer a lambda binding")

        params = small.value.params
        if not isinstance(params.star_arg, cst.MaybeSentinel) or params.star_kwarg is not None:
            text = f"Callable[..., {returned}]"
        else:
            names = [p.name.value for p in [*params.posonly_params, *params.params, *params.kwonly_params]]
            arg_types = [self.oracle.parameter_type(module, gap.declaration, n) for n in names]
            if any(t is None or t == NO_CONSTRAINT for t in arg_types) or params.kwonly_params:
                text = f"Callable[..., {returned}]"
            else:
                text = f"Callable[[{', '.join(arg_types)}], {returned}]"

        reason = self.rejection(text)
        if reason:
            return ItemResult.skipped(gap.label, reason)
        forward = self._forward_reference(module, stmt, text)
        if forward:
            return ItemResult.skipped(gap.label, f"{forward} is defined later in the module")

        target = small.targets[0].target
        annotated = cst.AnnAssign(
            target=target,
            annotation=cst.Annotation(annotation=cst.parse_expression(text)),
            value=small.value,
            equal=cst.AssignEqual(),
        )
        module.replace_statement(stmt, stmt.with_changes(body=[annotated]))
        self._ensure_typing_name(module, "Callable")
        return ItemResult.applied(gap.label, f": {text}")

    def _parameter(self, module: SourceModule, gap: AnnotationGap) -> ItemResult:
        text = self.oracle.parameter_type(module, gap.declaration, gap.parameter)
        reason = self.rejection(text)
        if reason:
            return ItemResult.skipped(gap.label, reason)

        node = self._statement(module, gap.declaration)
        if not isinstance(node, cst.FunctionDef):
            raise AnnotationError(f"{gap.declaration} is no longer a function")
        forward = self._forward_reference(module, node, text)
        if forward:
            return ItemResult.skipped(gap.label, f"{forward} is defined later in the module")

        def annotate(param: cst.Param) -> cst.Param:
            if param.name.value != gap.parameter or param.annotation is not None:
                return param
            changes = {"annotation": cst.Annotation(annotation=cst.parse_expression(text))}
            if param.default is not None:
                changes["equal"] = cst.AssignEqual(
                    whitespace_before=cst.SimpleWhitespace(" "),
                    whitespace_after=cst.SimpleWhitespace(" "),
                )
            return param.with_changes(**changes)

        params = node.params.with_changes(
            posonly_params=[annotate(p) for p in node.params.posonly_params],
            params=[annotate(p) for p in node.params.params],
            kwonly_params=[annotate(p) for p in node.params.kwonly_params],
        )
        module.replace_statement(node, node.with_changes(params=params))
        return ItemResult.applied(gap.label, f": {text}")

    def _narrow(self, module: SourceModule, gap: AnnotationGap) -> ItemResult:
        text = self.oracle.binding_type(module, gap.declaration)
        reason = self.rejection(text)
        if reason:
            return ItemResult.skipped(gap.label, reason)
        stmt = self._statement(module, gap.declaration)
        forward = self._forward_reference(module, stmt, text)
        if forward:
            return ItemResult.skipped(gap.label, f"{forward} is defined later in the module")
        small = _single_assignment(stmt)
        narrowed = small.with_changes(annotation=small.annotation.with_changes(annotation=cst.parse_expression(text)))
        module.replace_statement(stmt, stmt.with_changes(body=[narrowed]))
        return ItemResult.applied(gap.label, f"Any -> {text}")

    def _sharpen(self, module: SourceModule, gap: AnnotationGap) -> ItemResult:
        stmt = self._statement(module, gap.declaration)
        small = _single_assignment(stmt)
        final_name = _final_str(small.annotation.annotation)
        if final_name is None or not isinstance(small.value, cst.SimpleString):
            raise AnnotationError(f"{gap.declaration} is no longer a Final[str] literal")
        if not isinstance(small.value.evaluated_value, str):
            return ItemResult.skipped(gap.label, "not a text literal")

        literal_name = "typing.Literal" if final_name.startswith("typing.") else "Literal"
        text = f"{final_name}[{literal_name}[{small.value.value}]]"
        if len(text) >= self.type_text_limit:
            return ItemResult.skipped(gap.label, f"annotation would be {len(text)} characters")
        sharpened = small.with_changes(annotation=small.annotation.with_changes(annotation=cst.parse_expression(text)))
        module.replace_statement(stmt, stmt.with_changes(body=[sharpened]))
        if literal_name == "Literal":
            self._ensure_typing_name(module, "Literal")
        return ItemResult.applied(gap.label, f"str -> Literal[{small.value.value}]")
