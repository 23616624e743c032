"""Origin pruner: drops relocated declarations from their origin module."""

from __future__ import annotations

import logging
from typing import Sequence

import libcst as cst

from .errors import StaleCandidateError, StructuralError
from .models import Declaration, ExtractionCandidate
from .tree import SourceModule

logger = logging.getLogger(__name__)


def prune(origin: SourceModule, candidates: Sequence[ExtractionCandidate]) -> int:
    """Remove top-level candidate statements from *origin*.

    Builds a new statement sequence; the tree is never edited by index.

    Raises:
        StaleCandidateError: a candidate no longer lives in *origin*.
    """
    for candidate in candidates:
        if not origin.contains(candidate.node):
            raise StaleCandidateError(f"{candidate.name} is no longer a statement of {origin.path.name}")
    origin.remove_statements(c.node for c in candidates)
    for candidate in candidates:
        logger.debug("Pruned %s from %s", candidate.name, origin.path.name)
    return len(candidates)


def prune_nested(origin: SourceModule, composite: Declaration, candidates: Sequence[ExtractionCandidate]) -> int:
    """Remove nested candidate statements from the body of *composite*.

    An emptied body gets a ``pass`` so the definition stays valid.
    """
    node = composite.statement
    if not isinstance(node, cst.FunctionDef) or not isinstance(node.body, cst.IndentedBlock):
        raise StructuralError(f"{composite.name} has no block body")
    if not origin.contains(node):
        raise StaleCandidateError(f"{composite.name} is no longer a statement of {origin.path.name}")

    drop = {id(c.node) for c in candidates}
    present = {id(stmt) for stmt in node.body.body}
    missing = [c.name for c in candidates if id(c.node) not in present]
    if missing:
        raise StaleCandidateError(f"Not inside {composite.name}: {', '.join(missing)}")

    body = [stmt for stmt in node.body.body if id(stmt) not in drop]
    if not body:
        body = [cst.SimpleStatementLine(body=[cst.Pass()])]
    origin.replace_statement(node, node.with_changes(body=node.body.with_changes(body=body)))
    return len(candidates)
