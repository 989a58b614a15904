"""Tool-use counter and compaction advice.

The suggestion schedule is derived purely from the counter value: the first
suggestion fires when the count reaches the threshold, then again every
`interval` calls after it. No "already suggested" flag is stored.
"""

from __future__ import annotations

import logging
from pathlib import Path

from cchp.core.state import atomic_write_text, locked, safe_read_text

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 50
DEFAULT_INTERVAL = 25


class CounterStore:
    """One integer per session, stored as `{session_id}.count`."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory

    def path_for(self, session_id: str) -> Path:
        return self.directory / f"{session_id}.count"

    def load(self, session_id: str) -> int:
        raw = safe_read_text(self.path_for(session_id), limit=64).strip()
        if not raw:
            return 0
        try:
            value = int(raw)
        except ValueError:
            logger.warning("Corrupt counter for %s: %r, restarting at 0", session_id, raw)
            return 0
        return max(value, 0)

    def save(self, session_id: str, value: int) -> None:
        atomic_write_text(self.path_for(session_id), f"{value}\n")

    def increment(self, session_id: str) -> int:
        path = self.path_for(session_id)
        with locked(path):
            count = self.load(session_id) + 1
            self.save(session_id, count)
        return count


def should_suggest(count: int, threshold: int = DEFAULT_THRESHOLD,
                   interval: int = DEFAULT_INTERVAL) -> bool:
    if count < threshold:
        return False
    return (count - threshold) % interval == 0


def suggestion_message(count: int, threshold: int = DEFAULT_THRESHOLD) -> str:
    if count == threshold:
        return (
            f"{threshold} tool calls reached - consider /compact "
            "if you are transitioning between phases of work."
        )
    return f"{count} tool calls - good checkpoint for /compact if context is stale."


def advise(store: CounterStore, session_id: str,
           threshold: int = DEFAULT_THRESHOLD,
           interval: int = DEFAULT_INTERVAL) -> str | None:
    """Count one tool call and return a suggestion when one is due."""
    count = store.increment(session_id)
    logger.info("Tool call count for %s: %d (threshold: %d)", session_id, count, threshold)

    if not should_suggest(count, threshold, interval):
        return None

    message = suggestion_message(count, threshold)
    logger.info("SUGGESTION: %s", message)
    return message
