"""Configuration manager for codesplit using TOML files.

Settings are layered, later layers winning:
built-in defaults < ``~/.codesplit/config.toml`` < ``[tool.codesplit]`` in
the nearest ``pyproject.toml`` < command-line options.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from . import config
from .pipeline import SplitOptions

logger = logging.getLogger(__name__)

CONFIG_FILE = config.CONFIG_FILE

# Keys accepted in [split] / [tool.codesplit] and the type they must have
SPLIT_KEYS: Dict[str, type] = {
    "min_function_lines": int,
    "min_variable_lines": int,
    "helper_pattern": str,
    "composite": str,
    "type_text_limit": int,
    "import_style": str,
    "types_suffix": str,
    "utils_suffix": str,
    "nested": bool,
    "reconcile": bool,
    "backup": bool,
    "type_check": bool,
}

FORMAT_KEYS: Dict[str, type] = {
    "enabled": bool,
    "commands": list,
}

CHECK_KEYS: Dict[str, type] = {
    "enabled": bool,
    "command": list,
}


def _read_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as e:
        logger.warning("Ignoring malformed config %s: %s", path, e)
        return {}


def _clean(section: Dict[str, Any], allowed: Dict[str, type], source: str) -> Dict[str, Any]:
    """Keep known keys of the right type; warn about the rest."""
    cleaned = {}
    for key, value in section.items():
        expected = allowed.get(key)
        if expected is None:
            logger.warning("%s: unknown setting '%s' ignored", source, key)
            continue
        if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
            logger.warning("%s: setting '%s' should be %s", source, key, expected.__name__)
            continue
        cleaned[key] = value
    return cleaned


def load_full_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the entire user TOML config (all sections)."""
    return _read_toml(path or CONFIG_FILE)


def load_user_settings(path: Optional[Path] = None) -> Dict[str, Any]:
    """``[split]``, ``[format]`` and ``[check]`` settings from the user config file."""
    path = path or CONFIG_FILE
    data = _read_toml(path)
    settings = _clean(data.get("split", {}), SPLIT_KEYS, str(path))
    fmt = _clean(data.get("format", {}), FORMAT_KEYS, f"{path} [format]")
    check = _clean(data.get("check", {}), CHECK_KEYS, f"{path} [check]")
    return _with_check(_with_format(settings, fmt), check)


def find_pyproject(start: Path) -> Optional[Path]:
    """Nearest ``pyproject.toml`` at or above *start*."""
    start = Path(start).resolve()
    directory = start if start.is_dir() else start.parent
    for candidate in [directory, *directory.parents]:
        pyproject = candidate / "pyproject.toml"
        if pyproject.exists():
            return pyproject
    return None


def load_project_settings(origin: Path) -> Dict[str, Any]:
    """``[tool.codesplit]`` settings of the project containing *origin*."""
    pyproject = find_pyproject(origin)
    if pyproject is None:
        return {}
    table = dict(_read_toml(pyproject).get("tool", {}).get(config.TOOL_NAME, {}))
    fmt_section = table.pop("format", {})
    check_section = table.pop("check", {})
    source = f"{pyproject} [tool.{config.TOOL_NAME}]"
    settings = _clean(table, SPLIT_KEYS, source)
    fmt = _clean(fmt_section, FORMAT_KEYS, f"{source}.format")
    check = _clean(check_section, CHECK_KEYS, f"{source}.check")
    return _with_check(_with_format(settings, fmt), check)


def _with_format(settings: Dict[str, Any], fmt: Dict[str, Any]) -> Dict[str, Any]:
    if "enabled" in fmt:
        settings["format"] = fmt["enabled"]
    if "commands" in fmt:
        settings["format_commands"] = fmt["commands"]
    return settings


def _with_check(settings: Dict[str, Any], check: Dict[str, Any]) -> Dict[str, Any]:
    if "enabled" in check:
        settings["type_check"] = check["enabled"]
    if "command" in check:
        settings["type_check_command"] = check["command"]
    return settings


def build_options(origin: Path, overrides: Optional[Dict[str, Any]] = None, user_config: Optional[Path] = None) -> SplitOptions:
    """Merge every configuration layer into ``SplitOptions`` for *origin*.

    ``None`` values in *overrides* mean "not given on the command line".
    """
    merged: Dict[str, Any] = {}
    merged.update(load_user_settings(user_config))
    merged.update(load_project_settings(origin))
    merged.update({k: v for k, v in (overrides or {}).items() if v is not None})

    types_suffix = merged.pop("types_suffix", config.TYPES_SUFFIX)
    utils_suffix = merged.pop("utils_suffix", config.UTILS_SUFFIX)
    if merged.get("types_path") is None:
        merged["types_path"] = config.resolve_output_path(origin, types_suffix)
    if merged.get("utils_path") is None:
        merged["utils_path"] = config.resolve_output_path(origin, utils_suffix)

    if merged.get("import_style", config.DEFAULT_IMPORT_STYLE) not in config.IMPORT_STYLES:
        logger.warning("Unknown import style '%s'; using %s", merged["import_style"], config.DEFAULT_IMPORT_STYLE)
        merged["import_style"] = config.DEFAULT_IMPORT_STYLE

    return SplitOptions(origin=Path(origin), **merged)


def save_setting(key: str, value: Any, path: Optional[Path] = None) -> bool:
    """Store one ``[split]`` setting in the user config, keeping other sections.

    Returns:
        True if saved successfully, False otherwise
    """
    if key not in SPLIT_KEYS:
        return False
    path = path or CONFIG_FILE
    data = load_full_config(path)
    data.setdefault("split", {})[key] = value
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            toml.dump(data, f)
        return True
    except OSError as e:
        logger.warning("Cannot write %s: %s", path, e)
        return False


def parse_setting(key: str, raw: str) -> Any:
    """Convert command-line text into the type expected for *key*.

    Raises:
        ValueError: unknown key or unparsable value.
    """
    expected = SPLIT_KEYS.get(key)
    if expected is None:
        raise ValueError(f"Unknown setting '{key}'")
    if expected is bool:
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"'{raw}' is not a boolean")
    if expected is int:
        return int(raw)
    return raw
