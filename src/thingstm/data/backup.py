import re
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from pydantic import ValidationError

from .io import atomic_write, DATA_JSON, load_json_file
from thingstm.engine import TaskEngine
from thingstm.models import PartialBackup
from thingstm.recovery import ThingsError
from thingstm.logs import get_logger

log = get_logger('data.backup')

BACKUP_PREFIX = "things-pro-backup"
_BACKUP_NAME = re.compile(rf"^{BACKUP_PREFIX}-(\d{{4}}-\d{{2}}-\d{{2}})(?:-(\d+))?\.json$")


class BackupManager:
    """Dated JSON snapshot files in a backup directory."""

    def __init__(self, backup_dir: Union[Path, str]):
        self.backup_dir = Path(backup_dir)

    def _generate_backup_name(self, day: Optional[date] = None) -> str:
        """Return ``things-pro-backup-YYYY-MM-DD.json``, suffixed with -2, -3... when taken"""
        stem = f"{BACKUP_PREFIX}-{(day or date.today()).isoformat()}"
        name = f"{stem}.json"
        counter = 2
        while (self.backup_dir / name).exists():
            name = f"{stem}-{counter}.json"
            counter += 1
        return name

    def create_backup(self, snapshot: Union[TaskEngine, str], day: Optional[date] = None) -> Path:
        """Write the engine's current snapshot (or an encoded snapshot) to a new backup file"""
        blob = snapshot.export_json() if isinstance(snapshot, TaskEngine) else snapshot
        path = self.backup_dir / self._generate_backup_name(day)
        atomic_write(DATA_JSON, path, blob, create_dirs=True)
        log.info(f"Backup written to {path}")
        return path

    def _describe(self, path: Path) -> Dict[str, Any]:
        """Summarize one backup file; unreadable files are flagged rather than skipped"""
        match = _BACKUP_NAME.match(path.name)
        info: Dict[str, Any] = {
            "backup_id": path.name,
            "backup_path": path,
            "created_at": datetime.fromtimestamp(path.stat().st_mtime).isoformat(),
            "day": match.group(1) if match else None,
            "sequence": int(match.group(2) or 1) if match else 0,
            "size": path.stat().st_size,
        }
        try:
            data = load_json_file(path)
            backup = PartialBackup.model_validate(data or {})
        except (ThingsError, ValidationError) as e:
            log.warning(f"Backup {path.name} is unreadable: {e}")
            info["status"] = "corrupted"
            return info

        info.update({
            "status": "ok" if not backup.is_empty() else "empty",
            "version": backup.version,
            "tasks_count": len(backup.tasks or []),
            "projects_count": len(backup.projects or []),
            "templates_count": len(backup.templates or []),
        })
        return info

    def list_backups(self) -> List[Dict[str, Any]]:
        """List all available backups, newest first"""
        backups = []

        if not self.backup_dir.exists():
            return backups

        for item in self.backup_dir.glob(f"{BACKUP_PREFIX}-*.json"):
            if item.is_file():
                backups.append(self._describe(item))

        # Sort by backup day and sequence (newest first)
        backups.sort(key=lambda x: (x["day"] or "", x["sequence"], x["created_at"]), reverse=True)
        return backups

    def restore_backup(self, backup_id: str, engine: TaskEngine) -> bool:
        """Import a backup file into the engine. Returns False when the file cannot be applied"""
        path = self.backup_dir / backup_id

        if not path.is_file():
            raise FileNotFoundError(f"Backup {backup_id} not found")

        try:
            text = path.read_text(encoding='utf-8')
        except OSError as e:
            log.error(f"Cannot read backup {backup_id}: {e}")
            return False
        return engine.import_data(text)

    def delete_backup(self, backup_id: str) -> bool:
        """Delete a specific backup"""
        path = self.backup_dir / backup_id
        if path.is_file():
            path.unlink()
            return True
        return False

    def cleanup_old_backups(self, keep_count: int = 10) -> int:
        """Clean up old backups, keeping only the most recent ones"""
        deleted_count = 0
        for backup in self.list_backups()[max(0, keep_count):]:
            if self.delete_backup(backup["backup_id"]):
                deleted_count += 1
        if deleted_count:
            log.info(f"Removed {deleted_count} old backups")
        return deleted_count

    def get_backup_info(self, backup_id: str) -> Optional[Dict[str, Any]]:
        """Get detailed information about a specific backup"""
        path = self.backup_dir / backup_id
        if not path.is_file():
            return None
        return self._describe(path)
