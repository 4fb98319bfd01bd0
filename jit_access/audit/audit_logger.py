"""
Audit Logging Module.

This module records every scope reconciliation (grant or revoke) as an
append-only JSON line, one file per UTC day.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from ..models import AuditRecord, ReconcileAction

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only logger for reconciliation audit records.

    Safe to share between the worker threads of one reconciliation run.
    """

    def __init__(self, audit_dir: Union[str, Path] = "audit_logs"):
        """
        Initialize the audit logger.

        Args:
            audit_dir: Directory to store audit logs
        """
        self.audit_dir = Path(audit_dir)
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log_event(self, record: AuditRecord) -> str:
        """
        Log an audit event.

        Args:
            record: The audit record to log

        Returns:
            The record ID
        """
        date_str = record.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%d")
        log_file = self.audit_dir / f"audit_{date_str}.jsonl"
        line = json.dumps(record.model_dump(mode="json"))

        with self._lock:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")

        logger.info(f"Logged audit event {record.id} ({record.action.value} on {record.resource})")
        return record.id

    def get_events(
        self,
        resource: Optional[str] = None,
        action: Optional[ReconcileAction] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        """
        Retrieve audit events with filtering, most recent first.

        Args:
            resource: Filter by scope
            action: Filter by grant/revoke
            start_date: Filter by start date
            end_date: Filter by end date
            limit: Maximum number of records to return

        Returns:
            List of matching AuditRecords
        """
        results: List[AuditRecord] = []

        for log_file in sorted(self.audit_dir.glob("audit_*.jsonl"), reverse=True):
            if len(results) >= limit:
                break

            with open(log_file, encoding="utf-8") as f:
                lines = f.readlines()

            for line in reversed(lines):
                if len(results) >= limit:
                    break

                try:
                    record = AuditRecord(**json.loads(line))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning(f"Failed to parse audit record in {log_file}: {e}")
                    continue

                if resource and record.resource != resource:
                    continue
                if action and record.action != action:
                    continue
                if start_date and record.timestamp < start_date:
                    continue
                if end_date and record.timestamp > end_date:
                    continue

                results.append(record)

        return results
