"""Structured audit logging for junkrescue."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StructuredLogger:
    """Append-only JSONL audit trail of rescue decisions."""

    def __init__(self, log_file: str | None = None):
        """Initialize structured logger.

        Args:
            log_file: Path to JSON log file for audit trail, None disables it
        """
        self.log_file = Path(log_file) if log_file else None

    def log_event(self, event_type: str, data: dict[str, Any]) -> None:
        """Log a structured event.

        Args:
            event_type: Type of event (e.g., 'message_decision', 'account_processed')
            data: Event data
        """
        if not self.log_file:
            return

        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            **data,
        }

        try:
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(event) + "\n")
        except OSError as e:
            logger.error(f"Failed to write to audit log: {e}")

    def log_message_decision(
        self,
        username: str,
        seq: int,
        message_id: str | None,
        senders: list[str],
        subject: str,
        rescued: bool,
        rule: str | None = None,
    ) -> None:
        """Log the rescue decision for one junk message."""
        self.log_event(
            "message_decision",
            {
                "username": username,
                "seq": seq,
                "message_id": self._sanitize_for_json(message_id) if message_id else None,
                "from": senders,
                "subject": self._sanitize_for_json(subject),
                "action": "rescue" if rescued else "skip",
                "rule": rule,
            },
        )

    def log_account_processed(
        self,
        username: str,
        state: str,
        examined: int,
        moved: int,
        reason: str | None = None,
        dry_run: bool = False,
    ) -> None:
        """Log the outcome of one account."""
        self.log_event(
            "account_processed",
            {
                "username": username,
                "state": state,
                "examined": examined,
                "moved": moved,
                "reason": reason,
                "dry_run": dry_run,
            },
        )

    def log_startup(self, config: dict[str, Any]) -> None:
        """Log application startup.

        Args:
            config: Sanitized configuration
        """
        self.log_event("startup", config)

    def log_shutdown(self, reason: str = "normal") -> None:
        """Log application shutdown."""
        self.log_event("shutdown", {"reason": reason})

    def _sanitize_for_json(self, value: str) -> str:
        """Strip control characters and cap the length of a logged string."""
        sanitized = "".join(c for c in value if c.isprintable() or c in [" ", "\t"])
        if len(sanitized) > 500:
            sanitized = sanitized[:497] + "..."
        return sanitized
