"""Structured event log, one JSON object per line.

Diagnostics go through the standard :mod:`logging` module; this file is for
events worth aggregating later (dispatch outcomes, provider failures, quota
resets, check-in deliveries).
"""

import json
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """One event line."""

    timestamp: str
    event: str
    chat_id: str | None = None
    provider_id: str | None = None
    outcome: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form; unset fields and an empty extra are omitted."""
        return {key: value for key, value in asdict(self).items() if value not in (None, {})}


class JSONLLogger:
    """Append-only JSONL event log with size-based rotation.

    When the active file reaches ``max_size_mb`` it is renamed to
    ``<stem>.1.jsonl``; older backups shift up by one and anything past
    ``backup_count`` is deleted.
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
        backup_count: int = 5,
    ) -> None:
        self.log_dir = Path(log_dir) if log_dir is not None else Path.home() / ".cody" / "logs"
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self.backup_count = backup_count
        # Quota resets may log from worker threads.
        self._write_lock = threading.Lock()

    @property
    def log_path(self) -> Path:
        return self.log_dir / self.filename

    def _backup_path(self, index: int) -> Path:
        return self.log_dir / f"{self.log_path.stem}.{index}.jsonl"

    def _rotate(self) -> None:
        oldest = self._backup_path(self.backup_count)
        if oldest.exists():
            oldest.unlink()
        for index in range(self.backup_count - 1, 0, -1):
            src = self._backup_path(index)
            if src.exists():
                src.rename(self._backup_path(index + 1))
        self.log_path.rename(self._backup_path(1))

    def _append(self, line: str) -> None:
        with self._write_lock:
            if self.log_path.exists() and self.log_path.stat().st_size >= self.max_size_bytes:
                self._rotate()
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def log(
        self,
        event: str,
        *,
        chat_id: str | None = None,
        provider_id: str | None = None,
        outcome: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Record an event. Keyword arguments beyond the fixed fields go under ``extra``."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            chat_id=chat_id,
            provider_id=provider_id,
            outcome=outcome,
            duration_ms=duration_ms,
            error=error,
            extra=extra,
        )
        self._append(json.dumps(entry.to_dict(), ensure_ascii=False, default=str))

    def log_dispatch(
        self,
        outcome: str,
        *,
        chat_id: str | None = None,
        provider_id: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        self.log(
            "dispatch",
            chat_id=chat_id,
            provider_id=provider_id,
            outcome=outcome,
            duration_ms=duration_ms,
        )

    def log_provider_error(
        self,
        provider_id: str,
        kind: str,
        *,
        chat_id: str | None = None,
        error: str | None = None,
    ) -> None:
        self.log("provider_error", chat_id=chat_id, provider_id=provider_id, error=error, kind=kind)

    def log_quota_reset(self, used: dict[str, int]) -> None:
        """Usage counts of the period that just ended."""
        self.log("quota_reset", used=used)

    def log_checkin(
        self,
        chat_id: str,
        batch_id: str,
        *,
        error: str | None = None,
    ) -> None:
        """One check-in attempt; an error marks it failed."""
        self.log(
            "checkin_failed" if error else "checkin_sent",
            chat_id=chat_id,
            error=error,
            batch_id=batch_id,
        )


_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Process-wide event log, created on first use."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(
    log_dir: str | Path | None = None,
    max_size_mb: float = 10.0,
    backup_count: int = 5,
) -> JSONLLogger:
    """Replace the process-wide event log."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb, backup_count=backup_count)
    return _logger
