"""CLI entry point for CCHP."""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

from cchp.core.config import ConfigError, Settings, load_settings
from cchp.core.counter import CounterStore
from cchp.core.guides import match_guides, scan_guides
from cchp.core.journal import JournalStore
from cchp.core.state import (
    format_date,
    load_json,
    prune_stale_locks,
    resolve_session_id,
    save_json,
    stale_locks,
)

# Claude Code event name -> (runner event, matcher, timeout seconds)
HOOK_EVENTS = {
    "UserPromptSubmit": ("user_prompt_submit", None, 5),
    "PreToolUse": ("pre_tool_use", "", 5),
    "SessionStart": ("session_start", "", 10),
    "PreCompact": ("pre_compact", "", 10),
    "SessionEnd": ("session_end", None, 10),
}


def default_settings_path() -> Path:
    return Path.home() / ".claude" / "settings.json"


def _get_python_cmd() -> str:
    """Return the python command to use in hooks."""
    exe = sys.executable
    # If running from a venv/pipx, use the full path so hooks find cchp
    if exe and Path(exe).exists():
        return exe
    return "python3"


def _build_hooks_config() -> dict:
    """Build the `hooks` section of a Claude Code settings.json."""
    py = _get_python_cmd()
    hooks: dict[str, list] = {}
    for event, (runner_event, matcher, timeout) in HOOK_EVENTS.items():
        entry: dict = {
            "hooks": [{
                "type": "command",
                "command": f"{py} -m cchp.hooks.runner {runner_event}",
                "timeout": timeout,
            }],
        }
        if matcher is not None:
            entry = {"matcher": matcher, **entry}
        hooks[event] = [entry]
    return {"hooks": hooks}


def _is_cchp_entry(entry: object) -> bool:
    if not isinstance(entry, dict):
        return False
    return any(
        isinstance(h, dict) and "cchp.hooks.runner" in str(h.get("command", ""))
        for h in entry.get("hooks", [])
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_init(args: argparse.Namespace, settings: Settings) -> int:
    """Register the hooks in settings.json and create the state directory."""
    settings_path = Path(args.settings) if args.settings else default_settings_path()
    settings_path.parent.mkdir(parents=True, exist_ok=True)

    existing = load_json(settings_path)
    hooks = existing.get("hooks")
    if not isinstance(hooks, dict):
        hooks = {}

    desired = _build_hooks_config()["hooks"]
    for event, entries in desired.items():
        # Keep hooks owned by other tools, replace our own
        kept = [e for e in hooks.get(event, []) if not _is_cchp_entry(e)]
        hooks[event] = kept + entries
    existing["hooks"] = hooks
    save_json(settings_path, existing)

    settings.sessions_dir.mkdir(parents=True, exist_ok=True)
    settings.counters_dir.mkdir(parents=True, exist_ok=True)

    print(f"Registered {len(desired)} hooks in {settings_path}")
    print(f"State directory: {settings.state_dir}")
    print(f"Guide directory: {settings.guide_dir}")
    return 0


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    """Show resolved settings, a session counter, and recent journals."""
    print(f"State dir:       {settings.state_dir}")
    print(f"Guide dir:       {settings.guide_dir}")
    print(f"Threshold:       {settings.threshold} (interval {settings.interval})")
    print(f"Retention days:  {settings.retention_days}")

    if args.session:
        session_id = resolve_session_id({"session_id": args.session})
        count = CounterStore(settings.counters_dir).load(session_id)
        print(f"\nTool calls for {session_id}: {count}")

    journals = JournalStore(settings.sessions_dir).recent(
        retention_days=settings.retention_days
    )
    print(f"\nRecent journals: {len(journals)}")
    for j in journals[:10]:
        print(f"  {j.session_id} {j.day}  [{j.status}]  updated {j.last_updated}")
    return 0


def cmd_guides(args: argparse.Namespace, settings: Settings) -> int:
    """List guides, or show which ones a prompt would inject."""
    docs = scan_guides(settings.guide_dir)
    if not docs:
        print(f"No guides found under {settings.guide_dir}")
        return 0

    if args.match is not None:
        matched = match_guides(args.match, docs)
        if not matched:
            print("No guides match.")
        for doc in matched:
            print(doc.name)
        return 0

    for doc in docs:
        print(f"{doc.name}: {', '.join(doc.keywords) or '(no keywords)'}")
    return 0


def cmd_journals(args: argparse.Namespace, settings: Settings) -> int:
    """List journals within the retention window."""
    journals = JournalStore(settings.sessions_dir).recent(
        retention_days=settings.retention_days
    )
    if not journals:
        print("No recent journals.")
        return 0
    for j in journals:
        marks = f", {len(j.compactions)} compaction(s)" if j.compactions else ""
        print(f"{j.session_id} {j.day}  [{j.status}]  updated {j.last_updated}{marks}")
    return 0


def cmd_close(args: argparse.Namespace, settings: Settings) -> int:
    """Mark a journal closed so session start stops surfacing it."""
    day = args.date or format_date(datetime.now())
    session_id = resolve_session_id({"session_id": args.session})
    store = JournalStore(settings.sessions_dir)
    if not store.close(session_id, day):
        print(f"No journal for {session_id} on {day}")
        return 1
    print(f"Closed {store.path_for(session_id, day)}")
    return 0


def _lock_cutoff(settings: Settings) -> datetime:
    return datetime.now() - timedelta(days=settings.retention_days)


def cmd_prune(args: argparse.Namespace, settings: Settings) -> int:
    """Delete lock files left behind by sessions outside the retention window."""
    cutoff = _lock_cutoff(settings)
    removed = []
    for directory in (settings.sessions_dir, settings.counters_dir):
        removed += prune_stale_locks(directory, cutoff)
    for path in removed:
        print(f"Removed {path}")
    print(f"Pruned {len(removed)} stale lock file(s)")
    return 0


def _run_checks(settings: Settings, settings_path: Path) -> tuple[list[str], list[str]]:
    """Run all doctor checks. Returns (ok, issues) lists."""
    ok: list[str] = []
    issues: list[str] = []

    state_dir = settings.state_dir
    if state_dir.is_dir() and os.access(state_dir, os.W_OK):
        ok.append(f"State dir writable: {state_dir}")
    else:
        issues.append(f"State dir missing or not writable: {state_dir}")

    if settings.guide_dir.is_dir():
        count = len(scan_guides(settings.guide_dir))
        ok.append(f"Guide dir: {settings.guide_dir} ({count} guide(s) with keywords)")
    else:
        issues.append(f"Guide dir missing: {settings.guide_dir}")

    if settings_path.exists():
        try:
            cfg = json.loads(settings_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            issues.append(f"{settings_path} is not valid JSON")
        else:
            hooks = cfg.get("hooks", {}) if isinstance(cfg, dict) else {}
            for event in HOOK_EVENTS:
                if any(_is_cchp_entry(e) for e in hooks.get(event, [])):
                    ok.append(f"  Hook: {event}")
                else:
                    issues.append(f"  Hook: {event} not registered")
    else:
        issues.append(f"{settings_path} missing, hooks won't fire")

    cutoff = _lock_cutoff(settings)
    stale = sum(
        len(stale_locks(d, cutoff)) for d in (settings.sessions_dir, settings.counters_dir)
    )
    if stale:
        issues.append(f"{stale} stale lock file(s), run 'cchp prune' to remove them")

    return ok, issues


def cmd_doctor(args: argparse.Namespace, settings: Settings) -> int:
    """Check installation health."""
    settings_path = Path(args.settings) if args.settings else default_settings_path()
    ok, issues = _run_checks(settings, settings_path)

    print(f"CCHP Doctor: {settings.state_dir}\n")
    if ok:
        print("OK:")
        for item in ok:
            print(f"  + {item}")
    if issues:
        print("\nIssues:")
        for item in issues:
            print(f"  ! {item}")
        print("\nRun 'cchp init' to register hooks and create the state directory.")
    else:
        print("\nAll checks passed.")

    return 1 if issues else 0


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cchp",
        description="Claude Code hook pipeline: guide injection, compaction advice, session journals",
    )
    sub = parser.add_subparsers(dest="command")

    p_init = sub.add_parser("init", help="Register hooks in Claude Code settings.json")
    p_init.add_argument("--settings", help="settings.json path (default: ~/.claude/settings.json)")

    p_status = sub.add_parser("status", help="Show settings, counters and journals")
    p_status.add_argument("--session", help="Show the tool-call counter for this session id")

    p_guides = sub.add_parser("guides", help="List guides or test a prompt against them")
    p_guides.add_argument("--match", metavar="PROMPT", help="Show guides this prompt would inject")

    sub.add_parser("journals", help="List journals within the retention window")

    sub.add_parser("prune", help="Delete lock files older than the retention window")

    p_close = sub.add_parser("close", help="Mark a session journal closed")
    p_close.add_argument("session", help="Session id")
    p_close.add_argument("--date", help="Journal day, YYYY-MM-DD (default: today)")

    p_doc = sub.add_parser("doctor", help="Check CCHP installation health")
    p_doc.add_argument("--settings", help="settings.json path (default: ~/.claude/settings.json)")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"cchp: {e}", file=sys.stderr)
        return 1

    commands = {
        "init": cmd_init,
        "status": cmd_status,
        "guides": cmd_guides,
        "journals": cmd_journals,
        "close": cmd_close,
        "prune": cmd_prune,
        "doctor": cmd_doctor,
    }

    return commands[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
