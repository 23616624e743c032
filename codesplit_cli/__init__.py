"""codesplit: split oversized Python modules into cohesive files."""

__version__ = "0.3.0"
