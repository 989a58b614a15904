"""Shared state helpers — session ids, timestamps, atomic writes, locking."""

from __future__ import annotations

import json
import os
import re
import tempfile
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterator

from filelock import FileLock

LOCK_TIMEOUT = 5.0

DATETIME_FMT = "%Y-%m-%d %H:%M:%S"
DATE_FMT = "%Y-%m-%d"

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9._-]")
MAX_SESSION_ID_LEN = 128


def format_datetime(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime(DATETIME_FMT)


def format_date(day: date | datetime | None = None) -> str:
    return (day or datetime.now()).strftime(DATE_FMT)


def parse_datetime(text: str) -> datetime | None:
    try:
        return datetime.strptime(text.strip(), DATETIME_FMT)
    except ValueError:
        return None


def resolve_session_id(hook_input: dict[str, Any], now: datetime | None = None) -> str:
    """Derive a filesystem-safe session id from the hook payload.

    Falls back to a per-day default when the host did not send one.
    """
    raw = hook_input.get("session_id")
    if isinstance(raw, str):
        cleaned = _UNSAFE_RE.sub("_", raw.strip()).lstrip(".")[:MAX_SESSION_ID_LEN]
        if cleaned:
            return cleaned
    return f"default-{format_date(now)}"


def safe_read_text(path: Path, limit: int = 200_000) -> str:
    try:
        data = path.read_text(encoding="utf-8", errors="replace")
        return data[:limit]
    except (FileNotFoundError, PermissionError, IsADirectoryError):
        return ""


def atomic_write_text(path: Path, text: str) -> None:
    """Write text atomically (tempfile in the same dir + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


@contextmanager
def locked(path: Path, timeout: float = LOCK_TIMEOUT) -> Iterator[None]:
    """Hold an exclusive advisory lock for one read-modify-write of `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(f"{path}.lock", timeout=timeout):
        yield


def load_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def save_json(path: Path, data: dict[str, Any]) -> None:
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def stale_locks(directory: Path, cutoff: datetime) -> list[Path]:
    """Lock files untouched since `cutoff` whose guarded file is gone or as old."""
    if not directory.is_dir():
        return []
    found = []
    for lock_path in sorted(directory.glob("*.lock")):
        target = lock_path.with_suffix("")
        try:
            if _mtime(lock_path) >= cutoff:
                continue
            if target.exists() and _mtime(target) >= cutoff:
                continue
        except FileNotFoundError:
            continue
        found.append(lock_path)
    return found


def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime)


def prune_stale_locks(directory: Path, cutoff: datetime) -> list[Path]:
    """Delete the lock files `stale_locks` reports; returns the ones removed."""
    removed: list[Path] = []
    for lock_path in stale_locks(directory, cutoff):
        try:
            lock_path.unlink()
        except FileNotFoundError:
            continue
        removed.append(lock_path)
    return removed
