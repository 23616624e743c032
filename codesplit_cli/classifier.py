"""CandidateClassifier: decides which declarations leave the origin module."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from . import config
from .imports import name_usage
from .models import CandidateCategory, Declaration, DeclarationKind, ExtractionCandidate
from .tree import SourceModule

logger = logging.getLogger(__name__)


@dataclass
class Thresholds:
    """Size and naming rules for extraction."""
    min_function_lines: int = config.DEFAULT_MIN_FUNCTION_LINES
    min_variable_lines: int = config.DEFAULT_MIN_VARIABLE_LINES
    helper_pattern: str = config.DEFAULT_HELPER_PATTERN


class CandidateClassifier:
    """Labels declarations as type, utility, composite or other candidates.

    Output always follows declaration order; size ranking is left to
    :func:`candidate_report`.
    """

    def __init__(self, thresholds: Optional[Thresholds] = None):
        self.thresholds = thresholds or Thresholds()
        self._helper_re = re.compile(self.thresholds.helper_pattern)

    def classify_top_level(self, module: SourceModule, exclude: Iterable[str] = ()) -> List[ExtractionCandidate]:
        """Classify the top-level declarations of *module*.

        Names in *exclude* (an explicitly selected composite) are never
        utility candidates.
        """
        excluded = set(exclude)
        candidates: List[ExtractionCandidate] = []

        for decl in module.declarations():
            candidate = self._classify(module, decl, excluded)
            if candidate is not None:
                candidates.append(candidate)

        self._guard_dependencies(module, candidates)
        return candidates

    def _classify(self, module: SourceModule, decl: Declaration, excluded: set):
        if decl.kind in (DeclarationKind.TYPE, DeclarationKind.ALIAS):
            return self._candidate(decl, CandidateCategory.TYPE)

        if decl.kind is DeclarationKind.FUNCTION:
            if decl.line_count <= self.thresholds.min_function_lines:
                return None
            if module.nested_declarations(decl):
                return self._candidate(decl, CandidateCategory.COMPOSITE)
            if decl.name in excluded:
                return self._candidate(decl, CandidateCategory.OTHER, "selected as composite")
            return self._candidate(decl, CandidateCategory.UTILITY)

        if decl.line_count <= self.thresholds.min_variable_lines:
            return None
        if not decl.name:
            return self._candidate(decl, CandidateCategory.OTHER, "destructuring binding")
        if decl.name in excluded:
            return self._candidate(decl, CandidateCategory.OTHER, "selected as composite")
        return self._candidate(decl, CandidateCategory.UTILITY)

    @staticmethod
    def _candidate(decl: Declaration, category: CandidateCategory, reason: str = "") -> ExtractionCandidate:
        return ExtractionCandidate(
            name=decl.name,
            declaration=decl,
            line_count=decl.line_count,
            category=category,
            reason=reason,
        )

    def _guard_dependencies(self, module: SourceModule, candidates: List[ExtractionCandidate]) -> None:
        """Hold back utilities that need origin names which stay behind.

        Runs to a fixpoint: holding one utility back can strand another.
        """
        local = module.module_level_names()
        free: Dict[int, List[str]] = {
            id(c): [n for n in name_usage(module.code_for(c.node)).free if n in local and n != c.name]
            for c in candidates
        }
        moving = {c.name for c in candidates if c.is_extractable}

        changed = True
        while changed:
            changed = False
            for candidate in candidates:
                if candidate.category is not CandidateCategory.UTILITY:
                    continue
                blocked = [n for n in free[id(candidate)] if n not in moving]
                if blocked:
                    candidate.category = CandidateCategory.OTHER
                    candidate.reason = f"depends on {', '.join(blocked)} left in {module.path.name}"
                    moving.discard(candidate.name)
                    changed = True
                    logger.info("Holding back %s: %s", candidate.name, candidate.reason)

        utility_names = {c.name for c in candidates if c.category is CandidateCategory.UTILITY}
        for candidate in candidates:
            if candidate.category is not CandidateCategory.TYPE:
                continue
            stranded = [n for n in free[id(candidate)] if n not in moving or n in utility_names]
            if stranded:
                candidate.warnings.append(f"references {', '.join(stranded)} not available in the types module")

    def classify_nested(self, module: SourceModule, composite: Declaration) -> List[ExtractionCandidate]:
        """Classify the function-valued declarations inside *composite*.

        A helper qualifies iff its name matches the helper pattern; size is
        irrelevant. Helpers that read enclosing locals or module names are
        still extracted but carry a warning.
        """
        enclosing = name_usage(module.code_for(composite.statement)).bound
        local = module.module_level_names()
        candidates = []

        for decl in module.nested_declarations(composite):
            if not decl.name or not self._helper_re.search(decl.name):
                candidates.append(self._candidate(decl, CandidateCategory.OTHER, "name does not match helper pattern"))
                continue

            candidate = self._candidate(decl, CandidateCategory.UTILITY)
            free = name_usage(module.code_for(decl.statement)).free
            captured = [n for n in free if n in enclosing and n != decl.name]
            stranded = [n for n in free if n in local and n not in enclosing]
            if captured:
                candidate.warnings.append(f"captures enclosing {', '.join(captured)}")
            if stranded:
                candidate.warnings.append(f"references {', '.join(stranded)} left in {module.path.name}")
            candidates.append(candidate)

        return candidates


def _indicator(line_count: int) -> str:
    if line_count > 50:
        return "🔴"
    if line_count > 20:
        return "🟡"
    return "🟢"


def candidate_report(candidates: List[ExtractionCandidate]) -> str:
    """Candidates grouped by category, largest first, with a line total."""
    lines = ["📋 Extraction Candidates Report", "=" * 32]
    grouped: Dict[str, List[ExtractionCandidate]] = {}
    for candidate in candidates:
        grouped.setdefault(candidate.category.value, []).append(candidate)

    for category, items in grouped.items():
        lines.append("")
        lines.append(f"{category.upper()} ({len(items)}):")
        for item in sorted(items, key=lambda c: c.line_count, reverse=True):
            suffix = f" ({item.reason})" if item.reason else ""
            lines.append(f"  {_indicator(item.line_count)} {item.name or '<unnamed>'}: {item.line_count} lines{suffix}")

    total = sum(c.line_count for c in candidates)
    lines.append("")
    lines.append(f"📊 Total lines in candidates: {total}")
    return "\n".join(lines)
