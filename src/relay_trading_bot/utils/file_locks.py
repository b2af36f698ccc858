"""
Shared file persistence helpers.

Exclusive ``fcntl.flock`` locking for JSONL appends, atomic JSON document
writes (tmp file + fsync + ``os.replace``) and tolerant JSONL reads. Writes
are retried with tenacity and surface as :class:`PersistenceError` once the
retries are exhausted.
"""

from __future__ import annotations

import fcntl
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List

from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from relay_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("file_locks")

WRITE_ATTEMPTS = 3
WRITE_WAIT_SECONDS = 0.05


class PersistenceError(RuntimeError):
    """Raised when a ledger or snapshot write keeps failing."""


@contextmanager
def _locked_file(path: str | Path, mode: str = "r"):
    """Open ``path`` and hold an exclusive lock for the duration of the context."""

    with open(path, mode, encoding="utf-8") as handle:
        try:
            fcntl.flock(handle, fcntl.LOCK_EX)
            yield handle
        finally:
            fcntl.flock(handle, fcntl.LOCK_UN)


@retry(
    stop=stop_after_attempt(WRITE_ATTEMPTS),
    wait=wait_fixed(WRITE_WAIT_SECONDS),
    retry=retry_if_exception_type(OSError),
)
def _append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with _locked_file(path, "a") as handle:
        handle.write(line + "\n")
        handle.flush()
        os.fsync(handle.fileno())


@retry(
    stop=stop_after_attempt(WRITE_ATTEMPTS),
    wait=wait_fixed(WRITE_WAIT_SECONDS),
    retry=retry_if_exception_type(OSError),
)
def _replace_document(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        handle.write(payload)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(tmp_path, path)


def append_jsonl(path: str | Path, row: dict[str, Any]) -> None:
    """Append ``row`` as a single JSON line, one write per record."""

    line = json.dumps(row, separators=(",", ":"), sort_keys=True)
    try:
        _append_line(Path(path), line)
    except RetryError as exc:
        cause = exc.last_attempt.exception()
        raise PersistenceError(f"append to {path} failed: {cause}") from cause


def write_json_atomic(path: str | Path, document: dict[str, Any]) -> None:
    """Replace ``path`` with ``document`` so readers never see a partial file."""

    payload = json.dumps(document, indent=2, sort_keys=True)
    try:
        _replace_document(Path(path), payload)
    except RetryError as exc:
        cause = exc.last_attempt.exception()
        raise PersistenceError(f"write of {path} failed: {cause}") from cause


def read_jsonl(path: str | Path) -> List[dict[str, Any]]:
    """Return every parseable JSON object in ``path``; malformed lines are skipped."""

    target = Path(path)
    if not target.exists():
        return []
    rows: List[dict[str, Any]] = []
    with _locked_file(target, "r") as handle:
        for lineno, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed line %d in %s", lineno, target)
                continue
            if isinstance(row, dict):
                rows.append(row)
    return rows
