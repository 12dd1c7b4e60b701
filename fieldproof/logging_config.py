"""
Logging setup and protocol audit events.

Records can be rendered as one JSON object per line. Audit events name the
pseudonyms, ids and hashes involved; private keys and recovery secrets
never reach a log record.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, List, Optional, TextIO

# Identifies one verification run across the records it produces
run_id_var: ContextVar[str] = ContextVar('run_id', default='')

_RECORD_FIELDS = (
    ("level", "levelname"),
    ("logger", "name"),
    ("module", "module"),
    ("function", "funcName"),
    ("line", "lineno"),
)


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {"timestamp": created.strftime('%Y-%m-%dT%H:%M:%S.%fZ')}
        entry.update((key, getattr(record, attr)) for key, attr in _RECORD_FIELDS)
        entry["message"] = record.getMessage()

        if run_id_var.get():
            entry["run_id"] = run_id_var.get()
        entry.update(getattr(record, "event", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Typed audit events.

    Each event becomes one record on the ``fieldproof.audit`` logger; the
    structured details travel in the record's ``event`` attribute.
    """

    def __init__(self, name: str = "fieldproof.audit"):
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, event_type: str, summary: str, **details: Any) -> None:
        if self._logger.isEnabledFor(level):
            details["event_type"] = event_type
            self._logger.log(level, "%s: %s", event_type, summary, extra={"event": details})

    def identity_created(self, anon_id: str) -> None:
        self._emit(logging.INFO, "IDENTITY_CREATED", f"new identity {anon_id}", anon_id=anon_id)

    def identity_imported(self, anon_id: str, previous_anon_id: Optional[str] = None) -> None:
        self._emit(
            logging.INFO, "IDENTITY_IMPORTED", f"identity replaced by {anon_id}",
            anon_id=anon_id, previous_anon_id=previous_anon_id,
        )

    def report_signed(self, report_id: str, anon_id: str, img_hash: str) -> None:
        self._emit(
            logging.INFO, "REPORT_SIGNED", report_id,
            report_id=report_id, anon_id=anon_id, img_hash=img_hash,
        )

    def pack_built(self, pack_hash: str, channel: str, report_count: int, size_bytes: int) -> None:
        self._emit(
            logging.INFO, "PACK_BUILT", f"{report_count} reports for {channel}",
            pack_hash=pack_hash, channel=channel, report_count=report_count, size_bytes=size_bytes,
        )

    def pack_published(self, pack_id: str, content_id: str, channel: str) -> None:
        self._emit(
            logging.INFO, "PACK_PUBLISHED", f"{pack_id} on {channel}",
            pack_id=pack_id, content_id=content_id, channel=channel,
        )

    def pack_verified(
        self,
        pack_hash: str,
        total: int,
        accepted: int,
        duplicates: int,
        hash_matches: Optional[bool] = None,
    ) -> None:
        # A pack with any rejected report is worth a warning
        level = logging.INFO if accepted == total else logging.WARNING
        self._emit(
            level, "PACK_VERIFIED", f"{accepted}/{total} accepted",
            pack_hash=pack_hash, total=total, accepted=accepted,
            duplicates=duplicates, hash_matches=hash_matches,
        )

    def report_rejected(self, report_id: Any, reasons: List[str]) -> None:
        self._emit(
            logging.WARNING, "REPORT_REJECTED", f"{report_id} ({', '.join(reasons)})",
            report_id=report_id, reasons=reasons,
        )

    def archive_hash_mismatch(self, expected: str, computed: str) -> None:
        self._emit(
            logging.WARNING, "ARCHIVE_HASH_MISMATCH", f"expected {expected}, got {computed}",
            expected=expected, computed=computed,
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Install handlers on the root logger, replacing any already there.

    Args:
        level: Level name such as DEBUG or WARNING
        json_format: Emit StructuredFormatter lines instead of plain text
        log_file: Also append records to this file
        stream: Console stream, stderr by default
    """
    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter('%(asctime)s %(levelname)-7s %(name)s: %(message)s')

    handlers: List[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level.upper())


def set_run_id(run_id: Optional[str] = None) -> str:
    """Tag records from the current context with a run id, generating one if needed."""
    run_id = run_id or uuid.uuid4().hex
    run_id_var.set(run_id)
    return run_id


def get_run_id() -> str:
    return run_id_var.get()


audit_log = AuditLogger()
