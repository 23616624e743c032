"""ValidationEngine: syntax diagnostics and type coverage for split modules."""

from __future__ import annotations

import ast
import re
from pathlib import Path
from typing import List

from .models import TypeCoverage, ValidationResult

_ANY_ANNOTATION = re.compile(r":\s*(typing\.)?Any\b|->\s*(typing\.)?Any\b")


class ValidationEngine:
    """Checks that written modules still parse and measures annotation coverage."""

    def check_file(self, file_path: Path) -> List[dict]:
        """Check a single file for syntax errors.

        Args:
            file_path: Path to Python file

        Returns:
            List of errors found
        """
        errors = []

        try:
            content = file_path.read_text(encoding="utf-8")
            ast.parse(content)
        except SyntaxError as e:
            errors.append({
                "file": str(file_path),
                "line": e.lineno,
                "column": e.offset,
                "error": str(e.msg),
                "type": type(e).__name__
            })
        except (OSError, ValueError) as e:
            errors.append({
                "file": str(file_path),
                "line": 0,
                "column": 0,
                "error": str(e),
                "type": type(e).__name__
            })

        return errors

    def diagnose_files(self, paths: List[Path]) -> List[dict]:
        """Collect syntax errors for every existing file in *paths*."""
        errors = []
        for path in paths:
            if path.exists():
                errors.extend(self.check_file(path))
        return errors

    def validate_syntax(self, code: str) -> ValidationResult:
        """Check if code has valid Python syntax.

        Args:
            code: Python code to validate

        Returns:
            ValidationResult
        """
        try:
            ast.parse(code)
            return ValidationResult(valid=True)
        except SyntaxError as e:
            return ValidationResult(
                valid=False,
                errors=[f"SyntaxError at line {e.lineno}: {e.msg}"]
            )
        except ValueError as e:
            return ValidationResult(
                valid=False,
                errors=[f"{type(e).__name__}: {str(e)}"]
            )

    def type_coverage(self, file_path: Path) -> TypeCoverage:
        """Count annotated vs unannotated module-level declarations.

        Functions count as typed when they declare a return type; module
        variables count as typed when they are annotated.
        """
        content = file_path.read_text(encoding="utf-8")
        tree = ast.parse(content)
        typed = untyped = 0

        for node in tree.body:
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                if node.returns is not None:
                    typed += 1
                else:
                    untyped += 1
            elif isinstance(node, ast.AnnAssign):
                typed += 1
            elif isinstance(node, ast.Assign):
                if any(isinstance(t, ast.Name) and t.id.startswith("__") for t in node.targets):
                    continue
                untyped += 1

        return TypeCoverage(
            path=str(file_path),
            typed=typed,
            untyped=untyped,
            any_count=len(_ANY_ANNOTATION.findall(content)),
        )
