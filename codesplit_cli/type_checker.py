"""External type checker: reports the type errors left in written files."""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional

from . import config
from .models import TypeCheckResult, TypeDiagnostic

logger = logging.getLogger(__name__)

# mypy:    pkg/mod.py:12: error: Incompatible return value  [return-value]
# pyright:   pkg/mod.py:12:5 - error: Expression of type "int" ...
_DIAGNOSTIC = re.compile(
    r"^\s*(?P<path>.+?):(?P<line>\d+)(?::\d+)?(?::| -) error: (?P<message>.+?)\s*$"
)


def parse_diagnostics(output: str) -> List[TypeDiagnostic]:
    """Error lines of mypy or pyright text output; other lines are ignored."""
    found = []
    for line in output.splitlines():
        match = _DIAGNOSTIC.match(line)
        if match:
            found.append(TypeDiagnostic(match["path"], int(match["line"]), match["message"]))
    return found


class TypeChecker:
    """Black-box type checker run once per file.

    A missing or crashing checker never raises: it comes back as an
    unsuccessful ``TypeCheckResult`` and is logged as a warning.
    """

    def __init__(self, command: Optional[List[str]] = None, timeout: int = 120):
        self.command = command if command is not None else config.DEFAULT_TYPE_CHECK_COMMAND
        self.timeout = timeout

    def check_file(self, path: Path) -> TypeCheckResult:
        command = [part.replace("{path}", str(path)) for part in self.command]
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return self._failed(path, f"{command[0]} is not installed")
        except subprocess.TimeoutExpired:
            return self._failed(path, f"{command[0]} timed out after {self.timeout}s")
        except OSError as e:
            return self._failed(path, f"{command[0]} failed to start: {e}")

        diagnostics = parse_diagnostics(result.stdout)
        if result.returncode != 0 and not diagnostics:
            output = (result.stderr or result.stdout or "").strip().splitlines()
            detail = output[-1] if output else f"exit status {result.returncode}"
            return self._failed(path, f"{command[0]}: {detail}")

        if diagnostics:
            logger.warning("%s: %d type error(s)", Path(path).name, len(diagnostics))
        else:
            logger.debug("No type errors in %s", path)
        return TypeCheckResult(path=str(path), success=True, diagnostics=diagnostics)

    def check_paths(self, paths: Iterable[Path]) -> List[TypeCheckResult]:
        """Check every path; one failure does not stop the others."""
        return [self.check_file(Path(p)) for p in paths]

    @staticmethod
    def _failed(path: Path, message: str) -> TypeCheckResult:
        logger.warning("Type checking %s failed: %s", path, message)
        return TypeCheckResult(path=str(path), success=False, message=message)
