"""
Snapshot persistence for relay hand-offs.

A snapshot is one JSON document replaced atomically, so a crash mid-write
leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from relay_trading_bot.utils.file_locks import write_json_atomic
from relay_trading_bot.utils.system_logger import get_system_logger

logger = get_system_logger().getChild("snapshot_store")


def save_snapshot(path: str | Path, blob: Dict[str, Any]) -> None:
    """Persist ``blob``; raises ``PersistenceError`` once retries are exhausted."""
    write_json_atomic(path, blob)
    logger.info("Snapshot saved to %s", path)


def load_snapshot(
    path: str | Path,
    max_age: Optional[timedelta] = None,
    *,
    now: Optional[datetime] = None,
) -> Optional[Dict[str, Any]]:
    """
    Return the snapshot at ``path`` or ``None``.

    ``None`` covers a missing file, an unreadable or malformed document and a
    snapshot whose ``savedAt`` is older than ``max_age``.
    """
    target = Path(path)
    if not target.exists():
        logger.info("No snapshot at %s; starting fresh", target)
        return None
    try:
        with target.open("r", encoding="utf-8") as handle:
            blob = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Snapshot %s unreadable (%s); starting fresh", target, exc)
        return None
    if not isinstance(blob, dict):
        logger.warning("Snapshot %s is not an object; starting fresh", target)
        return None

    if max_age is not None:
        saved_raw = blob.get("savedAt")
        try:
            saved_at = datetime.fromisoformat(str(saved_raw))
        except ValueError:
            logger.warning("Snapshot %s has no valid savedAt; starting fresh", target)
            return None
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=timezone.utc)
        current = now or datetime.now(timezone.utc)
        age = current - saved_at
        if age > max_age:
            logger.warning(
                "Snapshot %s is %.1f hours old (limit %.1f); discarding stale state",
                target,
                age.total_seconds() / 3600,
                max_age.total_seconds() / 3600,
            )
            return None
    return blob
