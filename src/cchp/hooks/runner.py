#!/usr/bin/env python3
"""CCHP hook runner — entry point for Claude Code hook events.

Called by Claude Code hooks with event name as argv[1] and JSON on stdin.
Outputs hook JSON to stdout only when there is context to inject; all
diagnostics go to the side log (`hooks.log` in the state directory).

Performance-critical: each hook spawns a fresh Python process, so we use lazy
imports to only load modules each handler actually needs.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from typing import Any

from cchp.core.config import ConfigError, Settings, load_settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# I/O helpers: no heavy imports needed
# ---------------------------------------------------------------------------

def read_stdin_json() -> dict[str, Any]:
    try:
        raw = sys.stdin.buffer.read()
    except AttributeError:
        raw = sys.stdin.read().encode()
    except OSError:
        return {}
    if not raw or raw.isspace():
        return {}
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.error("Hook payload is not valid JSON")
        return {}
    return data if isinstance(data, dict) else {}


def _write_stdout(data: str) -> None:
    """Write to stdout using buffer when available (faster), with fallback."""
    buf = getattr(sys.stdout, "buffer", None)
    if buf is not None:
        buf.write(data.encode())
        buf.flush()
    else:
        sys.stdout.write(data)
        sys.stdout.flush()


def out_json(obj: dict[str, Any]) -> None:
    _write_stdout(json.dumps(obj, ensure_ascii=False))


def additional_context(event_name: str, text: str) -> dict[str, Any]:
    """Build a hookSpecificOutput with additionalContext."""
    return {
        "hookSpecificOutput": {
            "hookEventName": event_name,
            "additionalContext": text,
        }
    }


def _text_field(hook_input: dict[str, Any], key: str) -> str:
    value = hook_input.get(key)
    return value if isinstance(value, str) else ""


# ---------------------------------------------------------------------------
# Event handlers: lazy imports per handler
# ---------------------------------------------------------------------------

def handle_user_prompt_submit(settings: Settings, hook_input: dict[str, Any]) -> None:
    """UserPromptSubmit — inject guides whose keywords occur in the prompt."""
    prompt = _text_field(hook_input, "prompt")
    if not prompt.strip():
        return

    from cchp.core.guides import find_guides_for_prompt

    injection = find_guides_for_prompt(settings.guide_dir, prompt)
    if injection:
        out_json(additional_context("UserPromptSubmit", injection))


def handle_pre_tool_use(settings: Settings, hook_input: dict[str, Any]) -> None:
    """PreToolUse — count the call; suggest /compact at threshold and every interval."""
    from cchp.core.counter import CounterStore, advise
    from cchp.core.state import resolve_session_id

    session_id = resolve_session_id(hook_input)
    store = CounterStore(settings.counters_dir)
    message = advise(store, session_id, settings.threshold, settings.interval)
    if message:
        out_json(additional_context("PreToolUse", message))


def handle_session_start(settings: Settings, hook_input: dict[str, Any]) -> None:
    """SessionStart — surface unfinished journals from the retention window."""
    from cchp.core.journal import JournalStore, on_session_start

    store = JournalStore(settings.sessions_dir)
    text = on_session_start(
        store,
        now=datetime.now(),
        retention_days=settings.retention_days,
        learned_dir=settings.learned_dir,
    )
    if text:
        out_json(additional_context("SessionStart", text))


def handle_pre_compact(settings: Settings, hook_input: dict[str, Any]) -> None:
    """PreCompact — mark the compaction in today's journal. Silent."""
    from cchp.core.journal import JournalStore, on_pre_compaction
    from cchp.core.state import resolve_session_id

    session_id = resolve_session_id(hook_input)
    trigger = _text_field(hook_input, "trigger") or "auto"
    on_pre_compaction(JournalStore(settings.sessions_dir), session_id, trigger=trigger)


def handle_session_end(settings: Settings, hook_input: dict[str, Any]) -> None:
    """SessionEnd — refresh the journal and store notes for the next session. Silent."""
    from cchp.core.journal import JournalStore, on_session_end
    from cchp.core.state import resolve_session_id

    session_id = resolve_session_id(hook_input)
    notes = _text_field(hook_input, "notes") or None
    on_session_end(JournalStore(settings.sessions_dir), session_id, notes=notes)


# ---------------------------------------------------------------------------
# Main dispatcher
# ---------------------------------------------------------------------------

HANDLERS = {
    "user_prompt_submit": handle_user_prompt_submit,
    "pre_tool_use": handle_pre_tool_use,
    "session_start": handle_session_start,
    "pre_compact": handle_pre_compact,
    "session_end": handle_session_end,
}


def run(event: str) -> int:
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"cchp: {e}", file=sys.stderr)
        return 1

    from cchp.core.logs import setup_logging

    setup_logging(settings.log_file, settings.log_level)
    hook_input = read_stdin_json()

    handler = HANDLERS.get(event)
    if handler is None:
        logger.warning("Unknown hook event %r", event)
        return 0

    logger.debug("%s started", event)
    try:
        handler(settings, hook_input)
    except Exception:
        logger.exception("%s failed", event)
    else:
        logger.debug("%s completed", event)
    return 0


def main() -> int:
    event = sys.argv[1] if len(sys.argv) > 1 else ""
    return run(event)


def guide_main() -> int:
    return run("user_prompt_submit")


def compact_main() -> int:
    return run("pre_tool_use")


if __name__ == "__main__":
    sys.exit(main())
