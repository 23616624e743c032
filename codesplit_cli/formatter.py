"""External formatter: runs the configured lint/format commands on written files."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional

from . import config
from .models import FormatResult

logger = logging.getLogger(__name__)


class ExternalFormatter:
    """Black-box post-processing step.

    Failures never raise; they come back as unsuccessful ``FormatResult``s
    and are logged as warnings.
    """

    def __init__(self, commands: Optional[List[List[str]]] = None, timeout: int = 60):
        self.commands = commands if commands is not None else config.DEFAULT_FORMAT_COMMANDS
        self.timeout = timeout

    def format_file(self, path: Path) -> FormatResult:
        for template in self.commands:
            command = [part.replace("{path}", str(path)) for part in template]
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

            if result.returncode != 0:
                output = (result.stderr or result.stdout or "").strip().splitlines()
                detail = output[-1] if output else f"exit status {result.returncode}"
                return self._failed(path, f"{' '.join(command[:2])}: {detail}")

        logger.debug("Formatted %s", path)
        return FormatResult(path=str(path), success=True)

    def format_paths(self, paths: Iterable[Path]) -> List[FormatResult]:
        """Format every path; one failure does not stop the others."""
        return [self.format_file(Path(p)) for p in paths]

    @staticmethod
    def _failed(path: Path, message: str) -> FormatResult:
        logger.warning("Formatting %s failed: %s", path, message)
        return FormatResult(path=str(path), success=False, message=message)
