"""Structured JSONL logging of cycle summaries and agent outcomes."""

import json
import os
import threading
from typing import Any, Dict

from riskloop.models import CycleSummary, utc_now


class CycleLogger:
    """Handles structured logging of cycles to JSONL format."""

    SENSITIVE_PATTERNS = (
        "api_key", "api_secret", "secret", "password",
        "token", "auth", "credential",
    )

    def __init__(self, log_file: str):
        """
        Initialize logger with output file path.

        Args:
            log_file: Path to JSONL log file (will be created if doesn't exist)
        """
        self.log_file = log_file
        self._lock = threading.Lock()

        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

    def log_cycle(self, summary: CycleSummary) -> None:
        """
        Append one record for the cycle and one per agent outcome.

        Args:
            summary: Completed cycle summary
        """
        record = summary.to_dict()
        outcomes = record.pop("outcomes")
        self.write({"type": "cycle", **record})
        for outcome in outcomes:
            self.write({"type": "agent_outcome", "cycle_number": summary.cycle_number, **outcome})

    def write(self, record: Dict[str, Any]) -> None:
        """
        Append a record to the JSONL file.

        Writes one JSON object per line in append-only mode, flushing after
        each write. Secrets are redacted first.
        """
        record = self._sanitize_log(dict(record))
        record.setdefault("logged_at", utc_now().isoformat())
        with self._lock:
            with open(self.log_file, "a") as f:
                json.dump(record, f, default=str)
                f.write("\n")
                f.flush()

    def _sanitize_log(self, log_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Redact values whose key names look sensitive, recursing into nested dicts.

        Args:
            log_dict: Log dictionary to sanitize

        Returns:
            Sanitized log dictionary
        """
        for key, value in log_dict.items():
            lower_key = str(key).lower()
            if any(pattern in lower_key for pattern in self.SENSITIVE_PATTERNS):
                log_dict[key] = "[REDACTED]"
            elif isinstance(value, dict):
                log_dict[key] = self._sanitize_log(dict(value))
        return log_dict
