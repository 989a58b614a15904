"""Session journals — one human-editable markdown record per session per day.

Files live in the sessions directory as `{session_id}-{YYYY-MM-DD}.md`.
Every mutation goes through `JournalStore.update`, which locks the file,
locates or creates the record, and atomically replaces it.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator

from cchp.core.state import (
    DATE_FMT,
    atomic_write_text,
    format_date,
    format_datetime,
    locked,
    parse_datetime,
    safe_read_text,
)

logger = logging.getLogger(__name__)

JOURNAL_SUFFIX = ".md"
COMPACTION_LOG_NAME = "compaction-log.txt"
STATUS_OPEN = "open"
STATUS_CLOSED = "closed"
DEFAULT_RETENTION_DAYS = 7

# attribute, heading, template placeholder (treated as empty when parsed back)
SECTIONS = (
    ("current_state", "## Current State", "[Session context goes here]"),
    ("completed", "### Completed", "- [ ]"),
    ("in_progress", "### In Progress", "- [ ]"),
    ("notes", "### Notes for Next Session", "-"),
    ("context_to_load", "### Context to Load", "```\n[relevant files]\n```"),
)
COMPACTION_HEADING = "## Compaction Log"
COMPACTION_TEXT = "Context compaction triggered"

_HEADINGS = {heading: attr for attr, heading, _ in SECTIONS}
_ALL_HEADINGS = tuple(heading for _, heading, _ in SECTIONS) + (COMPACTION_HEADING,)
_PLACEHOLDERS = {attr: placeholder for attr, _, placeholder in SECTIONS}
_FIELD_RE = re.compile(r"^\*\*(Date|Started|Last Updated|Status):\*\*\s*(.*)$")
_MARKER_RE = re.compile(r"^-\s*\[([^\]]+)\]")
_NAME_RE = re.compile(r"^(?P<sid>.+)-(?P<day>\d{4}-\d{2}-\d{2})$")
# A body line that reads like a section heading, with any escaping backslashes
_HEADING_LINE_RE = re.compile(
    r"^(?P<indent>\s*)(?P<escapes>\\*)(?P<heading>"
    + "|".join(re.escape(h) for h in _ALL_HEADINGS)
    + r")\s*$"
)


@dataclass
class Journal:
    session_id: str
    day: str
    started: str
    last_updated: str
    status: str = STATUS_OPEN
    current_state: str = ""
    completed: str = ""
    in_progress: str = ""
    notes: str = ""
    context_to_load: str = ""
    compactions: list[str] = field(default_factory=list)

    @property
    def is_closed(self) -> bool:
        return self.status.strip().lower() == STATUS_CLOSED

    @property
    def last_updated_at(self) -> datetime | None:
        return parse_datetime(self.last_updated)


def new_journal(session_id: str, now: datetime | None = None) -> Journal:
    now = now or datetime.now()
    stamp = format_datetime(now)
    return Journal(
        session_id=session_id,
        day=format_date(now),
        started=stamp,
        last_updated=stamp,
    )


def _escape_line(line: str) -> str:
    """`## Completed` in a body becomes `\\## Completed` so it cannot end the section."""
    m = _HEADING_LINE_RE.match(line)
    if not m:
        return line
    return f"{m.group('indent')}\\{m.group('escapes')}{m.group('heading')}"


def _unescape_line(line: str) -> str:
    m = _HEADING_LINE_RE.match(line)
    if not m or not m.group("escapes"):
        return line
    return f"{m.group('indent')}{m.group('escapes')[1:]}{m.group('heading')}"


def render_journal(journal: Journal) -> str:
    lines = [
        f"# Session: {journal.session_id}",
        f"**Date:** {journal.day}",
        f"**Started:** {journal.started}",
        f"**Last Updated:** {journal.last_updated}",
        f"**Status:** {journal.status}",
        "",
        "---",
        "",
    ]
    for attr, heading, placeholder in SECTIONS:
        text = getattr(journal, attr).strip()
        body = "\n".join(_escape_line(line) for line in text.splitlines()) or placeholder
        lines += [heading, "", body, ""]

    lines += [COMPACTION_HEADING, ""]
    for ts in journal.compactions:
        lines.append(f"- [{ts}] {COMPACTION_TEXT}")
    return "\n".join(lines).rstrip() + "\n"


def parse_journal(text: str, session_id: str, day: str) -> Journal:
    """Parse a journal file. Unknown lines inside a section stay with that section."""
    fields: dict[str, str] = {}
    sections: dict[str, list[str]] = {attr: [] for attr, _, _ in SECTIONS}
    compactions: list[str] = []
    current: str | None = None

    for line in text.splitlines():
        stripped = line.strip()
        if stripped in _HEADINGS:
            current = _HEADINGS[stripped]
            continue
        if stripped == COMPACTION_HEADING:
            current = "compactions"
            continue

        if current is None:
            m = _FIELD_RE.match(stripped)
            if m:
                fields[m.group(1)] = m.group(2).strip()
        elif current == "compactions":
            m = _MARKER_RE.match(stripped)
            if m:
                compactions.append(m.group(1).strip())
        else:
            sections[current].append(_unescape_line(line))

    journal = Journal(
        session_id=session_id,
        day=day,
        started=fields.get("Started", ""),
        last_updated=fields.get("Last Updated", ""),
        status=fields.get("Status") or STATUS_OPEN,
        compactions=compactions,
    )
    for attr, body in sections.items():
        value = "\n".join(body).strip()
        if value == _PLACEHOLDERS[attr]:
            value = ""
        setattr(journal, attr, value)
    return journal


def split_journal_name(path: Path) -> tuple[str, str] | None:
    """`abc-2026-01-31.md` -> ("abc", "2026-01-31"); None for foreign files."""
    if path.suffix != JOURNAL_SUFFIX:
        return None
    m = _NAME_RE.match(path.stem)
    if not m:
        return None
    try:
        datetime.strptime(m.group("day"), DATE_FMT)
    except ValueError:
        return None
    return m.group("sid"), m.group("day")


class JournalStore:
    def __init__(self, directory: Path) -> None:
        self.directory = directory

    @property
    def compaction_log(self) -> Path:
        return self.directory / COMPACTION_LOG_NAME

    def path_for(self, session_id: str, day: str) -> Path:
        return self.directory / f"{session_id}-{day}{JOURNAL_SUFFIX}"

    def load(self, session_id: str, day: str) -> Journal | None:
        path = self.path_for(session_id, day)
        if not path.is_file():
            return None
        return parse_journal(safe_read_text(path), session_id, day)

    def save(self, journal: Journal) -> Path:
        path = self.path_for(journal.session_id, journal.day)
        atomic_write_text(path, render_journal(journal))
        return path

    @contextmanager
    def update(self, session_id: str, now: datetime | None = None) -> Iterator[Journal]:
        """Locked locate-or-create of today's journal; saved on clean exit."""
        now = now or datetime.now()
        day = format_date(now)
        path = self.path_for(session_id, day)

        with locked(path):
            journal = self.load(session_id, day)
            if journal is None:
                logger.info("Creating journal %s", path.name)
                journal = new_journal(session_id, now)
            yield journal
            journal.last_updated = format_datetime(now)
            self.save(journal)

    def close(self, session_id: str, day: str) -> bool:
        path = self.path_for(session_id, day)
        with locked(path):
            journal = self.load(session_id, day)
            if journal is None:
                return False
            journal.status = STATUS_CLOSED
            self.save(journal)
        return True

    def scan(self) -> list[tuple[Journal, datetime]]:
        if not self.directory.is_dir():
            return []

        found: list[tuple[Journal, datetime]] = []
        for path in sorted(self.directory.iterdir()):
            key = split_journal_name(path)
            if key is None or not path.is_file():
                continue
            session_id, day = key
            journal = parse_journal(safe_read_text(path), session_id, day)
            updated = journal.last_updated_at
            if updated is None:
                try:
                    updated = datetime.fromtimestamp(path.stat().st_mtime)
                except OSError:
                    continue
            found.append((journal, updated))
        return found

    def recent(self, now: datetime | None = None,
               retention_days: int = DEFAULT_RETENTION_DAYS) -> list[Journal]:
        """Journals updated within the retention window, newest first."""
        now = now or datetime.now()
        cutoff = now - timedelta(days=retention_days)

        recent = [(j, ts) for j, ts in self.scan() if ts >= cutoff]
        recent.sort(key=lambda item: (item[0].session_id, item[0].day))
        recent.sort(key=lambda item: item[1], reverse=True)
        return [j for j, _ in recent]

    def log_compaction(self, session_id: str, stamp: str, trigger: str) -> None:
        log_path = self.compaction_log
        with locked(log_path):
            with open(log_path, "a", encoding="utf-8") as f:
                f.write(f"[{stamp}] {COMPACTION_TEXT} (session {session_id}, trigger {trigger})\n")


# ---------------------------------------------------------------------------
# Lifecycle operations
# ---------------------------------------------------------------------------

def count_learned_skills(learned_dir: Path | None) -> int:
    if learned_dir is None or not learned_dir.is_dir():
        return 0
    try:
        return sum(1 for p in learned_dir.iterdir() if p.suffix == ".md" and p.is_file())
    except OSError:
        return 0


def _render_journal_context(journal: Journal) -> str:
    parts = [f"## Session {journal.session_id} ({journal.day}, last updated {journal.last_updated})"]
    if journal.current_state:
        parts.append("### Current State\n" + journal.current_state)
    if journal.notes:
        parts.append("### Notes for Next Session\n" + journal.notes)
    if journal.context_to_load:
        parts.append("### Context to Load\n" + journal.context_to_load)
    if journal.compactions:
        markers = "\n".join(f"- [{ts}] {COMPACTION_TEXT}" for ts in journal.compactions)
        parts.append("### Compactions\n" + markers)
    if len(parts) == 1:
        parts.append("(no notes recorded)")
    return "\n\n".join(parts)


def on_session_start(store: JournalStore, now: datetime | None = None,
                     retention_days: int = DEFAULT_RETENTION_DAYS,
                     learned_dir: Path | None = None) -> str:
    """Build the context to load for a new session. Read-only."""
    journals = [j for j in store.recent(now, retention_days) if not j.is_closed]
    learned = count_learned_skills(learned_dir)

    if journals:
        logger.info("Found %d unfinished session(s)", len(journals))
    else:
        logger.info("No recent sessions found")

    blocks: list[str] = []
    if journals:
        blocks.append(
            f"Unfinished sessions from the last {retention_days} days (newest first):"
        )
        blocks.extend(_render_journal_context(j) for j in journals)
    if learned:
        logger.info("%d learned skill(s) available in %s", learned, learned_dir)
        blocks.append(f"{learned} learned skill(s) available in {learned_dir}")

    if not blocks:
        return ""
    return "<session-journal>\n" + "\n\n".join(blocks) + "\n</session-journal>\n"


def on_pre_compaction(store: JournalStore, session_id: str,
                      now: datetime | None = None, trigger: str = "auto") -> Path:
    """Mark a compaction in today's journal and the global compaction log."""
    now = now or datetime.now()
    stamp = format_datetime(now)

    with store.update(session_id, now) as journal:
        journal.compactions.append(stamp)

    store.log_compaction(session_id, stamp, trigger)
    logger.info("Compaction marker added for %s at %s", session_id, stamp)
    return store.path_for(session_id, format_date(now))


def on_session_end(store: JournalStore, session_id: str,
                   now: datetime | None = None, notes: str | None = None) -> Path:
    """Refresh the journal's timestamp and, if given, replace the notes."""
    now = now or datetime.now()

    with store.update(session_id, now) as journal:
        if notes is not None and notes.strip():
            journal.notes = notes.strip()

    logger.info("Updated journal for %s at %s", session_id, format_datetime(now))
    return store.path_for(session_id, format_date(now))
