"""SplitPipeline: sequences the extraction passes, reconciliation and formatting."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import libcst as cst

from . import config
from .classifier import CandidateClassifier, Thresholds
from .diff_engine import DiffEngine
from .errors import ModuleLoadError, StructuralError
from .formatter import ExternalFormatter
from .imports import ImportRewriter, name_usage
from .models import (
    CandidateCategory,
    Declaration,
    DeclarationKind,
    ExtractionCandidate,
    ItemResult,
    ModuleRole,
    PassReport,
    PipelineReport,
    PipelineState,
)
from .pruner import prune, prune_nested
from .reconciler import TypeReconciler
from .tree import SourceModule
from .type_checker import TypeChecker
from .type_oracle import TypeOracle
from .workspace import Workspace
from .writer import ModuleWriter

logger = logging.getLogger(__name__)


@dataclass
class SplitOptions:
    """Everything one split run needs to know."""
    origin: Path
    types_path: Optional[Path] = None
    utils_path: Optional[Path] = None
    min_function_lines: int = config.DEFAULT_MIN_FUNCTION_LINES
    min_variable_lines: int = config.DEFAULT_MIN_VARIABLE_LINES
    helper_pattern: str = config.DEFAULT_HELPER_PATTERN
    composite: Optional[str] = None
    type_text_limit: int = config.DEFAULT_TYPE_TEXT_LIMIT
    import_style: str = config.DEFAULT_IMPORT_STYLE
    nested: bool = True
    reconcile: bool = True
    format: bool = True
    format_commands: Optional[List[List[str]]] = None
    type_check: bool = False
    type_check_command: Optional[List[str]] = None
    dry_run: bool = False
    backup: bool = False

    def __post_init__(self):
        self.origin = Path(self.origin).resolve()
        if self.types_path is None:
            self.types_path = config.resolve_output_path(self.origin, config.TYPES_SUFFIX)
        if self.utils_path is None:
            self.utils_path = config.resolve_output_path(self.origin, config.UTILS_SUFFIX)
        self.types_path = Path(self.types_path).resolve()
        self.utils_path = Path(self.utils_path).resolve()

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds(
            min_function_lines=self.min_function_lines,
            min_variable_lines=self.min_variable_lines,
            helper_pattern=self.helper_pattern,
        )


class SplitPipeline:
    """Linear state machine from IDLE to DONE.

    Structural problems skip a state with a warning; a PersistenceError
    propagates to the caller and stops the run before anything is pruned.
    """

    def __init__(
        self,
        options: SplitOptions,
        oracle: Optional[TypeOracle] = None,
        formatter: Optional[ExternalFormatter] = None,
        diff_engine: Optional[DiffEngine] = None,
        workspace: Optional[Workspace] = None,
        type_checker: Optional[TypeChecker] = None,
    ):
        self.options = options
        self.diff_engine = diff_engine or DiffEngine()
        self.workspace = workspace or Workspace(dry_run=options.dry_run, diff_engine=self.diff_engine)
        self.rewriter = ImportRewriter(options.import_style)
        self.classifier = CandidateClassifier(options.thresholds)
        self.writer = ModuleWriter(self.workspace, self.rewriter)
        self.reconciler = TypeReconciler(self.workspace, oracle, self.rewriter, options.type_text_limit)
        self.formatter = formatter or ExternalFormatter(options.format_commands)
        self.type_checker = type_checker or TypeChecker(options.type_check_command)
        self.state = PipelineState.IDLE
        self._report: Optional[PipelineReport] = None

    def _advance(self, state: PipelineState) -> None:
        logger.debug("State %s -> %s", self.state.value, state.value)
        self.state = state
        self._report.states.append(state)

    def _warn(self, message: str) -> None:
        logger.warning(message)
        if self._report is not None:
            self._report.warnings.append(message)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> PipelineReport:
        opts = self.options
        self.state = PipelineState.IDLE
        self._report = report = PipelineReport(origin=opts.origin, states=[PipelineState.IDLE])

        if opts.backup and not opts.dry_run:
            report.backup_id = self.diff_engine.backup_files(
                [opts.origin, opts.types_path, opts.utils_path],
                description=f"codesplit split {opts.origin.name}",
            )
            logger.info("Backup created: %s", report.backup_id)

        origin = self._load_origin()

        self._advance(PipelineState.TOP_LEVEL_EXTRACTION)
        if origin is not None:
            report.passes.append(self.extract_top_level(origin))

        self._advance(PipelineState.NESTED_EXTRACTION)
        if origin is not None and opts.nested:
            report.passes.append(self.extract_nested(origin))

        self._advance(PipelineState.TYPE_RECONCILIATION)
        if opts.reconcile:
            for path in list(self.workspace.touched):
                module = self.workspace.load(path)
                report.reconciliations.append(
                    self.reconciler.reconcile(module, is_types_module=path == opts.types_path)
                )
        if opts.type_check and not opts.dry_run:
            self._check_types(report)

        self._advance(PipelineState.EXTERNAL_FORMATTING)
        if opts.format and not opts.dry_run:
            report.formatting = self.formatter.format_paths(self.workspace.touched)
            for result in report.formatting:
                if not result.success:
                    report.warnings.append(f"format {Path(result.path).name}: {result.message}")

        self._advance(PipelineState.DONE)
        report.changes = self.workspace.changes
        return report

    def _check_types(self, report: PipelineReport) -> None:
        """Type errors left in the touched files are warnings, never failures."""
        report.type_checks = self.type_checker.check_paths(self.workspace.touched)
        for result in report.type_checks:
            name = Path(result.path).name
            if not result.success:
                report.warnings.append(f"type check {name}: {result.message}")
            elif result.diagnostics:
                report.warnings.append(f"type check {name}: {len(result.diagnostics)} type error(s)")

    def _load_origin(self) -> Optional[SourceModule]:
        try:
            return self.workspace.load(self.options.origin)
        except ModuleLoadError as e:
            self._warn(f"Skipping extraction: {e}")
            return None

    # ------------------------------------------------------------------
    # Top-level extraction
    # ------------------------------------------------------------------

    def extract_top_level(self, origin: SourceModule) -> PassReport:
        """Move types and large utilities out of *origin*."""
        opts = self.options
        report = PassReport(name="top-level")
        exclude = [opts.composite] if opts.composite else []
        candidates = self.classifier.classify_top_level(origin, exclude=exclude)
        report.candidates = candidates
        self._collect_notes(report, candidates)

        types = [c for c in candidates if c.category is CandidateCategory.TYPE and c.is_extractable]
        utils = [c for c in candidates if c.category is CandidateCategory.UTILITY and c.is_extractable]
        if not types and not utils:
            logger.info("No top-level candidates in %s", origin.path.name)
            return report

        moved = [*types, *utils]
        remaining = self._remaining_usage(origin, moved)

        if types:
            names = [c.name for c in types]
            self.writer.write(opts.types_path, types, origin, ModuleRole.TYPES)
            type_only = origin.has_future_annotations() and not any(n in remaining.runtime for n in names)
            self.rewriter.rewrite_references(origin, opts.types_path, names, type_only=type_only)
            report.record_target(opts.types_path, names)

        if utils:
            names = [c.name for c in utils]
            self.writer.write(opts.utils_path, utils, origin, ModuleRole.UTILS, types_path=opts.types_path)
            self.rewriter.rewrite_references(origin, opts.utils_path, names)
            report.record_target(opts.utils_path, names)

        # Targets and the origin's imports are durable before anything is removed
        self.workspace.save(origin)
        prune(origin, moved)
        self.workspace.save(origin)

        for candidate in moved:
            target = opts.types_path if candidate in types else opts.utils_path
            report.results.append(ItemResult.applied(candidate.name, f"-> {target.name}"))
            logger.info("Extracted %s (%d lines) -> %s", candidate.name, candidate.line_count, target.name)
        return report

    @staticmethod
    def _remaining_usage(origin: SourceModule, moved: Sequence[ExtractionCandidate]):
        drop = {id(c.node) for c in moved}
        code = "".join(origin.code_for(stmt) for stmt in origin.body if id(stmt) not in drop)
        return name_usage(code)

    def _collect_notes(self, report: PassReport, candidates: List[ExtractionCandidate]) -> None:
        for candidate in candidates:
            for warning in candidate.warnings:
                self._warn(f"{candidate.name}: {warning}")
                report.warnings.append(f"{candidate.name}: {warning}")
            if candidate.category is CandidateCategory.OTHER:
                report.results.append(ItemResult.skipped(candidate.name or "<unnamed>", candidate.reason))

    # ------------------------------------------------------------------
    # Nested extraction
    # ------------------------------------------------------------------

    def select_composite(self, origin: SourceModule) -> Declaration:
        """Resolve the composite to decompose.

        Raises:
            StructuralError: no usable composite could be determined.
        """
        name = self.options.composite
        if name:
            decl = origin.find_declaration(name)
            if decl is None:
                raise StructuralError(f"Composite '{name}' not found in {origin.path.name}")
            node = decl.statement
            if decl.kind is not DeclarationKind.FUNCTION or not isinstance(node.body, cst.IndentedBlock):
                raise StructuralError(f"Composite '{name}' is not a function with a block body")
            return decl

        composites = [
            c.declaration
            for c in self.classifier.classify_top_level(origin)
            if c.category is CandidateCategory.COMPOSITE
        ]
        if not composites:
            raise StructuralError(f"No composite definition found in {origin.path.name}")
        if len(composites) > 1:
            names = ", ".join(d.name for d in composites)
            raise StructuralError(f"Several composite definitions ({names}); choose one with --composite")
        return composites[0]

    def extract_nested(self, origin: SourceModule) -> PassReport:
        """Move pattern-matching helpers out of the composite's body."""
        opts = self.options
        report = PassReport(name="nested")
        try:
            composite = self.select_composite(origin)
        except StructuralError as e:
            self._warn(f"Skipping nested extraction: {e}")
            report.skipped = True
            return report

        candidates = self.classifier.classify_nested(origin, composite)
        report.candidates = candidates
        self._collect_notes(report, candidates)

        helpers = [c for c in candidates if c.is_extractable]
        if not helpers:
            logger.info("No nested helpers matched in %s", composite.name)
            return report

        names = [c.name for c in helpers]
        self.writer.write(opts.utils_path, helpers, origin, ModuleRole.UTILS, types_path=opts.types_path)
        self.rewriter.rewrite_references(origin, opts.utils_path, names)
        report.record_target(opts.utils_path, names)

        self.workspace.save(origin)
        prune_nested(origin, composite, helpers)
        self.workspace.save(origin)

        for candidate in helpers:
            report.results.append(ItemResult.applied(candidate.name, f"-> {opts.utils_path.name}"))
            logger.info("Extracted helper %s from %s -> %s", candidate.name, composite.name, opts.utils_path.name)
        return report

    # ------------------------------------------------------------------
    # Read-only analysis
    # ------------------------------------------------------------------

    def analyze(self) -> List[ExtractionCandidate]:
        """Candidates of both passes without touching any file."""
        origin = self.workspace.load(self.options.origin)
        exclude = [self.options.composite] if self.options.composite else []
        candidates = self.classifier.classify_top_level(origin, exclude=exclude)
        try:
            composite = self.select_composite(origin)
        except StructuralError as e:
            logger.info("%s", e)
            return candidates
        return candidates + self.classifier.classify_nested(origin, composite)
