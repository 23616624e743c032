"""DiffEngine for previewing changes and backing up files before a split."""

from __future__ import annotations

import difflib
import json
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from . import config
from .models import FileChange


class DiffEngine:
    """Handles diff previews, backups and rollback."""

    def __init__(self, backup_dir: Optional[Path] = None):
        """Initialize DiffEngine.

        Args:
            backup_dir: Directory to store backups. Defaults to ~/.codesplit/backups/
        """
        self.backup_dir = backup_dir or config.BACKUP_DIR

    def create_diff(self, original: str, modified: str, filename: str = "file") -> str:
        """Create unified diff between two versions.

        Args:
            original: Original content
            modified: Modified content
            filename: Name of file for diff header

        Returns:
            Unified diff string
        """
        original_lines = original.splitlines(keepends=True)
        modified_lines = modified.splitlines(keepends=True)

        diff = difflib.unified_diff(
            original_lines,
            modified_lines,
            fromfile=f"a/{filename}",
            tofile=f"b/{filename}",
            lineterm=""
        )

        return "".join(diff)

    def preview_changes(self, changes: List[FileChange]) -> str:
        """Generate preview of a list of file changes.

        Args:
            changes: Changes recorded by a dry run

        Returns:
            Formatted preview string
        """
        lines = []
        created = sum(1 for c in changes if c.change_type == "create")
        modified = sum(1 for c in changes if c.change_type == "modify")
        if created:
            lines.append(f"   [NEW] {created} file(s)")
        if modified:
            lines.append(f"   [MODIFY] {modified} file(s)")
        lines.append("")

        for change in changes:
            lines.append(f"{'='*60}")
            lines.append(f"[{change.change_type.upper()}] {change.file_path}")
            lines.append(f"{'='*60}")

            if change.change_type == "create":
                lines.append(change.new_content or "")
            elif change.diff:
                lines.append(change.diff)
            else:
                lines.append(self.create_diff(
                    change.original_content or "",
                    change.new_content or "",
                    change.file_path
                ))
            lines.append("")

        return "\n".join(lines)

    def backup_files(self, paths: Iterable[Path], description: str = "") -> str:
        """Copy existing files aside before they are rewritten.

        Args:
            paths: Files that may be modified; missing ones are skipped
            description: Free text stored with the backup

        Returns:
            Backup ID for rollback
        """
        backup_id = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"
        backup_path = self.backup_dir / backup_id
        backup_path.mkdir(parents=True, exist_ok=True)

        metadata = {
            "description": description,
            "timestamp": datetime.now().isoformat(),
            "files": []
        }

        for index, file_path in enumerate(paths):
            file_path = Path(file_path)
            if not file_path.exists():
                metadata["files"].append({"original": str(file_path), "backup": None})
                continue
            # Prefix keeps same-named files from different directories apart
            backup_file = backup_path / f"{index}_{file_path.name}"
            shutil.copy2(file_path, backup_file)
            metadata["files"].append({
                "original": str(file_path),
                "backup": str(backup_file),
            })

        (backup_path / "metadata.json").write_text(json.dumps(metadata, indent=2))

        return backup_id

    def rollback(self, backup_id: str) -> bool:
        """Rollback changes using a backup.

        Files that did not exist when the backup was taken are removed again.

        Args:
            backup_id: ID of backup to restore

        Returns:
            True if successful, False otherwise
        """
        backup_path = self.backup_dir / backup_id
        metadata_file = backup_path / "metadata.json"

        if not metadata_file.exists():
            return False

        try:
            metadata = json.loads(metadata_file.read_text())
        except ValueError:
            return False

        for file_info in metadata["files"]:
            original_path = Path(file_info["original"])
            backup = file_info.get("backup")

            if backup is None:
                if original_path.exists():
                    original_path.unlink()
                continue

            backup_file = Path(backup)
            if backup_file.exists():
                shutil.copy2(backup_file, original_path)

        return True

    def list_backups(self) -> list[dict]:
        """List all available backups.

        Returns:
            List of backup metadata, newest first
        """
        backups = []

        if not self.backup_dir.exists():
            return backups

        for backup_dir in self.backup_dir.iterdir():
            if backup_dir.is_dir():
                metadata_file = backup_dir / "metadata.json"
                if metadata_file.exists():
                    metadata = json.loads(metadata_file.read_text())
                    metadata["backup_id"] = backup_dir.name
                    backups.append(metadata)

        return sorted(backups, key=lambda x: x["timestamp"], reverse=True)
