"""Default settings and storage paths for codesplit."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("CODESPLIT_HOME", str(Path.home() / ".codesplit"))).expanduser()
BACKUP_DIR = BASE_DIR / "backups"
CONFIG_FILE = BASE_DIR / "config.toml"

SUPPORTED_EXTENSIONS = {".py", ".pyi"}

# Extraction thresholds
DEFAULT_MIN_FUNCTION_LINES = 20
DEFAULT_MIN_VARIABLE_LINES = 10
DEFAULT_HELPER_PATTERN = "^(validate|get|format|handle)"

# Output modules are written next to the origin as <stem><suffix>.py
TYPES_SUFFIX = "_types"
UTILS_SUFFIX = "_utils"

# Inferred annotations at or above this many characters are not written
DEFAULT_TYPE_TEXT_LIMIT = 100

IMPORT_STYLES = ("relative", "absolute")
DEFAULT_IMPORT_STYLE = "relative"

DEFAULT_FORMAT_COMMANDS = [
    ["ruff", "check", "--fix", "--select", "I", "{path}"],
    ["ruff", "format", "{path}"],
]

# Type checker run on written files; "{path}" is replaced by the file
DEFAULT_TYPE_CHECK_COMMAND = [
    "mypy",
    "--no-error-summary",
    "--no-color-output",
    "--follow-imports=silent",
    "{path}",
]
MAX_REPORTED_DIAGNOSTICS = 5

TOOL_NAME = "codesplit"


def resolve_output_path(origin: Path, suffix: str) -> Path:
    """``pkg/dashboard.py`` + ``_types`` -> ``pkg/dashboard_types.py``."""
    origin = Path(origin)
    extension = origin.suffix if origin.suffix in SUPPORTED_EXTENSIONS else ".py"
    return origin.with_name(f"{origin.stem}{suffix}{extension}")
