"""Exception hierarchy for the extraction engine."""

from __future__ import annotations


class CodesplitError(Exception):
    """Base class for all engine errors."""


class ModuleLoadError(CodesplitError):
    """A source module is missing or cannot be parsed."""


class StructuralError(CodesplitError):
    """A required declaration is missing or has an unexpected shape."""


class PersistenceError(CodesplitError):
    """A module could not be written to disk.

    Always fatal for the running pass: originals must never be pruned
    when their copy was not saved.
    """


class StaleCandidateError(CodesplitError):
    """A candidate no longer resolves to a statement of its module."""


class AnnotationError(CodesplitError):
    """A single annotation could not be applied."""
