"""CCHP MCP server — exposes guides, journals and counters to Claude Code."""

from __future__ import annotations

import logging
import sys

from mcp.server.fastmcp import FastMCP

from cchp.core.config import Settings, load_settings

# Log to stderr only; stdout is reserved for MCP protocol
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [cchp-mcp] %(levelname)s %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

mcp = FastMCP("cchp")


def _get_settings() -> Settings:
    return load_settings()


@mcp.tool()
async def guide_match(prompt: str) -> str:
    """Show which guides would be injected for a prompt.

    Args:
        prompt: The text to test against guide keywords
    """
    from cchp.core.guides import find_guides_for_prompt

    text = find_guides_for_prompt(_get_settings().guide_dir, prompt)
    return text or "No guides match."


@mcp.tool()
async def guide_list() -> str:
    """List available guides with their trigger keywords."""
    from cchp.core.guides import scan_guides

    settings = _get_settings()
    docs = scan_guides(settings.guide_dir)
    if not docs:
        return f"No guides found under {settings.guide_dir}."
    return "\n".join(f"- {d.name}: {', '.join(d.keywords)}" for d in docs)


@mcp.tool()
async def journal_recent() -> str:
    """Get unfinished session journals from the retention window.

    Returns the same context the SessionStart hook injects.
    """
    from cchp.core.journal import JournalStore, on_session_start

    settings = _get_settings()
    text = on_session_start(
        JournalStore(settings.sessions_dir),
        retention_days=settings.retention_days,
        learned_dir=settings.learned_dir,
    )
    return text or "No recent session journals."


@mcp.tool()
async def journal_write_notes(session_id: str, notes: str) -> str:
    """Replace the "Notes for Next Session" of today's journal.

    Use this before ending a session so the next one picks up where this
    one left off.

    Args:
        session_id: The current session id
        notes: Markdown notes for the next session
    """
    from cchp.core.journal import JournalStore, on_session_end
    from cchp.core.state import resolve_session_id

    if not notes.strip():
        return "Notes are empty; nothing written."

    sid = resolve_session_id({"session_id": session_id})
    path = on_session_end(JournalStore(_get_settings().sessions_dir), sid, notes=notes)
    logger.info("Wrote notes for %s: %d chars", sid, len(notes))
    return f"Notes saved to {path.name} ({len(notes)} chars)"


@mcp.tool()
async def compact_status(session_id: str) -> str:
    """Show the tool-call count and when the next /compact suggestion is due.

    Args:
        session_id: The current session id
    """
    import json

    from cchp.core.counter import CounterStore
    from cchp.core.state import resolve_session_id

    settings = _get_settings()
    sid = resolve_session_id({"session_id": session_id})
    count = CounterStore(settings.counters_dir).load(sid)

    if count < settings.threshold:
        next_at = settings.threshold
    else:
        next_at = count + settings.interval - (count - settings.threshold) % settings.interval

    status = {
        "session_id": sid,
        "tool_calls": count,
        "threshold": settings.threshold,
        "interval": settings.interval,
        "next_suggestion_at": next_at,
    }
    return json.dumps(status, indent=2)


def main() -> None:
    """Run the CCHP MCP server with stdio transport."""
    logger.info("Starting CCHP MCP server")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
