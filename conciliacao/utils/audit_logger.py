"""
Audit logging for reconciliation decisions.
"""

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog

from ..config import Settings, get_settings
from ..models import AuditAction, AuditEntry

logger = structlog.get_logger()


class AuditLogger:
    """
    Logger for the audit trail of imports, selections and commits.
    Provides both in-memory and file-based logging.
    """

    def __init__(self, context_id: str, settings: Optional[Settings] = None):
        self.context_id = context_id
        self.entries: List[AuditEntry] = []
        self.settings = settings or get_settings()

    def log(self, entry: AuditEntry) -> None:
        """Add an audit entry."""
        self.entries.append(entry)

        # Also log to structlog
        log = logger.info if entry.success else logger.warning
        log(
            entry.message,
            action=entry.action.value,
            session_id=entry.session_id,
            transaction_ids=entry.transaction_ids,
            entry_ids=entry.entry_ids,
            success=entry.success,
            error=entry.error_message,
        )

    def record(
        self,
        action: AuditAction,
        message: str,
        transaction_ids: Optional[List[str]] = None,
        entry_ids: Optional[List[str]] = None,
        session_id: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        **details,
    ) -> AuditEntry:
        """Build and log an entry in one call."""
        entry = AuditEntry(
            action=action,
            message=message,
            transaction_ids=list(transaction_ids or []),
            entry_ids=list(entry_ids or []),
            session_id=session_id,
            details=details,
            success=success,
            error_message=error_message,
        )
        self.log(entry)
        return entry

    def get_entries(
        self,
        action_filter: Optional[AuditAction] = None,
        success_only: bool = False,
    ) -> List[AuditEntry]:
        """Get filtered audit entries."""
        entries = self.entries

        if action_filter:
            entries = [e for e in entries if e.action == action_filter]

        if success_only:
            entries = [e for e in entries if e.success]

        return entries

    def export_to_file(self, output_path: Optional[Path] = None) -> Path:
        """Export audit log to JSON file."""
        if output_path is None:
            output_path = self.settings.reports_dir / f"audit_{self.context_id}.json"

        output_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "context_id": self.context_id,
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "total_entries": len(self.entries),
            "entries": [
                {
                    "id": e.id,
                    "timestamp": e.timestamp.isoformat(),
                    "action": e.action.value,
                    "session_id": e.session_id,
                    "transaction_ids": e.transaction_ids,
                    "entry_ids": e.entry_ids,
                    "message": e.message,
                    "details": e.details,
                    "success": e.success,
                    "error_message": e.error_message,
                }
                for e in self.entries
            ],
        }

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)

        logger.info("Audit log exported", path=str(output_path))
        return output_path

    def summary(self) -> dict:
        """Get summary statistics of audit log."""
        action_counts = Counter(e.action.value for e in self.entries)
        success_count = sum(1 for e in self.entries if e.success)

        return {
            "total_entries": len(self.entries),
            "success_count": success_count,
            "error_count": len(self.entries) - success_count,
            "action_counts": dict(action_counts),
        }
