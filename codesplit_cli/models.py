"""Core data models shared by the classifier, writers and reconciler."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple

import libcst as cst


class DeclarationKind(str, Enum):
    """Closed set of declaration shapes the engine understands."""
    TYPE = "type"
    ALIAS = "alias"
    FUNCTION = "function"
    BINDING = "binding"


class CandidateCategory(str, Enum):
    TYPE = "type"
    UTILITY = "utility"
    COMPOSITE = "composite"
    OTHER = "other"


class ModuleRole(str, Enum):
    """What a written module holds; decides its header and import policy."""
    TYPES = "types"
    UTILS = "utils"


class ItemStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"


class PipelineState(str, Enum):
    IDLE = "idle"
    TOP_LEVEL_EXTRACTION = "top_level_extraction"
    NESTED_EXTRACTION = "nested_extraction"
    TYPE_RECONCILIATION = "type_reconciliation"
    EXTERNAL_FORMATTING = "external_formatting"
    DONE = "done"


@dataclass(eq=False)
class Declaration:
    """A named syntactic unit of a module.

    ``statement`` is the statement that is moved or pruned: the ``def`` or
    ``class`` itself, or the ``SimpleStatementLine`` wrapping an assignment.
    Declarations compare by identity, like the libcst nodes they wrap.
    """
    name: str
    kind: DeclarationKind
    statement: cst.BaseStatement
    start_line: int
    end_line: int
    module_path: Path
    function_valued: bool = False
    parent: Optional["Declaration"] = None

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    @property
    def is_nested(self) -> bool:
        return self.parent is not None


@dataclass(eq=False)
class ExtractionCandidate:
    """Classifier output for one declaration."""
    name: str
    declaration: Declaration
    line_count: int
    category: CandidateCategory
    reason: str = ""
    warnings: List[str] = field(default_factory=list)

    @property
    def node(self) -> cst.BaseStatement:
        """The live statement backing this candidate."""
        return self.declaration.statement

    @property
    def is_extractable(self) -> bool:
        return self.category in (CandidateCategory.TYPE, CandidateCategory.UTILITY) and bool(self.name)


@dataclass(frozen=True)
class ImportBinding:
    """Names pulled into a module from one target module."""
    module: str
    names: Tuple[str, ...]
    type_only: bool = False

    def __str__(self) -> str:
        prefix = "[type-only] " if self.type_only else ""
        return f"{prefix}from {self.module} import {', '.join(self.names)}"


@dataclass(frozen=True)
class AnnotationGap:
    """A declaration (or one of its parameters) lacking an explicit type."""
    declaration: str
    kind: Literal["return", "parameter", "binding", "literal", "broad", "export"]
    parameter: Optional[str] = None
    inferred: Optional[str] = None

    @property
    def label(self) -> str:
        if self.parameter:
            return f"{self.declaration}({self.parameter})"
        return self.declaration


@dataclass
class ItemResult:
    """Outcome of one extraction or annotation attempt."""
    name: str
    status: ItemStatus
    reason: str = ""
    detail: str = ""

    @classmethod
    def applied(cls, name: str, detail: str = "") -> "ItemResult":
        return cls(name=name, status=ItemStatus.APPLIED, detail=detail)

    @classmethod
    def skipped(cls, name: str, reason: str) -> "ItemResult":
        return cls(name=name, status=ItemStatus.SKIPPED, reason=reason)

    @property
    def is_applied(self) -> bool:
        return self.status is ItemStatus.APPLIED


@dataclass
class PassReport:
    """Results of one extraction pass."""
    name: str
    candidates: List[ExtractionCandidate] = field(default_factory=list)
    results: List[ItemResult] = field(default_factory=list)
    targets: Dict[str, List[str]] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def extracted_count(self) -> int:
        return sum(1 for r in self.results if r.is_applied)

    def record_target(self, path: Path, names: List[str]) -> None:
        self.targets.setdefault(str(path), []).extend(names)


@dataclass
class ReconcileReport:
    """Results of one type reconciliation run over a module."""
    path: Path
    results: List[ItemResult] = field(default_factory=list)
    saved: bool = False

    @property
    def written(self) -> int:
        return sum(1 for r in self.results if r.is_applied)

    @property
    def skipped(self) -> List[ItemResult]:
        return [r for r in self.results if not r.is_applied]


@dataclass
class FileChange:
    """Represents changes to a single file."""
    file_path: str
    change_type: Literal["create", "modify"]
    original_content: Optional[str] = None
    new_content: Optional[str] = None
    diff: str = ""

    def __post_init__(self):
        """Validate change type constraints."""
        if self.change_type == "create" and self.original_content is not None:
            raise ValueError("Create changes should not have original_content")
        if self.change_type == "modify" and (self.original_content is None or self.new_content is None):
            raise ValueError("Modify changes must have both original and new content")


@dataclass
class ValidationResult:
    """Result of validating generated code."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        if self.valid:
            return "✅ Validation passed"
        return f"❌ Validation failed: {', '.join(self.errors)}"


@dataclass
class FormatResult:
    """Outcome of running the external formatter on one file."""
    path: str
    success: bool
    message: str = ""


@dataclass
class TypeDiagnostic:
    """One error reported by the external type checker."""
    path: str
    line: int
    message: str


@dataclass
class TypeCheckResult:
    """Outcome of type checking one file.

    ``success`` is False only when the checker itself could not run; type
    errors it found are listed in ``diagnostics``.
    """
    path: str
    success: bool
    diagnostics: List[TypeDiagnostic] = field(default_factory=list)
    message: str = ""

    @property
    def is_clean(self) -> bool:
        return self.success and not self.diagnostics

    def preview(self, limit: int = 5) -> List[str]:
        """The first *limit* diagnostics, then a count of the rest."""
        lines = [f"Line {d.line}: {d.message}" for d in self.diagnostics[:limit]]
        hidden = len(self.diagnostics) - limit
        if hidden > 0:
            lines.append(f"... and {hidden} more")
        return lines


@dataclass
class TypeCoverage:
    """Typed vs untyped module-level declarations in one file."""
    path: str
    typed: int
    untyped: int
    any_count: int = 0

    @property
    def total(self) -> int:
        return self.typed + self.untyped

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 100
        return round(self.typed / self.total * 100)


@dataclass
class PipelineReport:
    """Everything a split run did, in order."""
    origin: Path
    states: List[PipelineState] = field(default_factory=list)
    passes: List[PassReport] = field(default_factory=list)
    reconciliations: List[ReconcileReport] = field(default_factory=list)
    formatting: List[FormatResult] = field(default_factory=list)
    type_checks: List[TypeCheckResult] = field(default_factory=list)
    changes: List[FileChange] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    backup_id: Optional[str] = None

    @property
    def extracted_count(self) -> int:
        return sum(p.extracted_count for p in self.passes)

    @property
    def annotations_written(self) -> int:
        return sum(r.written for r in self.reconciliations)

    def summary(self) -> Dict[str, Dict[str, int]]:
        """Per-file counts of extracted declarations and written annotations."""
        counts: Dict[str, Dict[str, int]] = {}
        for report in self.passes:
            for path, names in report.targets.items():
                entry = counts.setdefault(path, {"extracted": 0, "annotations": 0})
                entry["extracted"] += len(names)
        for recon in self.reconciliations:
            entry = counts.setdefault(str(recon.path), {"extracted": 0, "annotations": 0})
            entry["annotations"] += recon.written
        return counts
