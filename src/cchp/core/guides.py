"""Guide matching — keyword-tagged markdown docs injected on prompt submit.

Each guide is a markdown file under the guide root with a YAML frontmatter
block declaring `keywords`. A guide matches when any keyword occurs anywhere
in the prompt (case-insensitive substring, no word boundaries).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

GUIDE_SUFFIX = ".md"
MAX_GUIDE_CHARS = 200_000


@dataclass(frozen=True)
class GuideDoc:
    path: Path
    name: str
    keywords: tuple[str, ...]
    body: str


def parse_frontmatter(text: str) -> tuple[dict[str, Any], str] | None:
    """Split `---` delimited YAML frontmatter from the body.

    Returns None when the block is absent, unterminated or not a mapping.
    """
    content = text.lstrip()
    if not content.startswith("---"):
        return None

    after_open = content[3:]
    end = after_open.find("\n---")
    if end < 0:
        return None

    block = after_open[:end]
    rest = after_open[end + 4:]
    # Drop the remainder of the closing delimiter line
    newline = rest.find("\n")
    rest = rest[newline + 1:] if newline >= 0 else ""

    try:
        meta = yaml.safe_load(block)
    except yaml.YAMLError:
        return None
    if not isinstance(meta, dict):
        return None
    return meta, rest.lstrip()


def _normalize_keywords(raw: Any) -> tuple[str, ...] | None:
    if not isinstance(raw, list):
        return None
    keywords: list[str] = []
    for item in raw:
        if item is None or isinstance(item, (dict, list)):
            continue
        kw = str(item).strip()
        if kw:
            keywords.append(kw)
    return tuple(keywords)


def load_guide(path: Path, root: Path) -> GuideDoc | None:
    """Load one guide; None if it is unreadable or has no usable keywords block."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")[:MAX_GUIDE_CHARS]
    except OSError as e:
        logger.warning("Skipping unreadable guide %s: %s", path, e)
        return None

    parsed = parse_frontmatter(text)
    if parsed is None:
        logger.debug("Skipping %s: missing or malformed frontmatter", path)
        return None

    meta, body = parsed
    keywords = _normalize_keywords(meta.get("keywords"))
    if keywords is None:
        logger.debug("Skipping %s: frontmatter has no keywords list", path)
        return None

    try:
        name = path.relative_to(root).as_posix()
    except ValueError:
        name = path.name
    return GuideDoc(path=path, name=name, keywords=keywords, body=body)


def _iter_guide_files(root: Path):
    seen_dirs: set[str] = set()
    seen_files: set[str] = set()

    def on_error(err: OSError) -> None:
        logger.warning("Cannot scan %s: %s", err.filename, err)

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error, followlinks=True):
        real_dir = os.path.realpath(dirpath)
        if real_dir in seen_dirs:
            dirnames[:] = []
            continue
        seen_dirs.add(real_dir)
        dirnames.sort()

        for fname in sorted(filenames):
            if not fname.endswith(GUIDE_SUFFIX):
                continue
            full = Path(dirpath) / fname
            if not full.is_file():
                continue
            real = os.path.realpath(full)
            if real in seen_files:
                continue
            seen_files.add(real)
            yield full


def scan_guides(root: Path) -> list[GuideDoc]:
    """Recursively load every guide under root, in sorted directory order."""
    if not root.is_dir():
        logger.debug("Guide root %s does not exist", root)
        return []

    docs: list[GuideDoc] = []
    for path in _iter_guide_files(root):
        doc = load_guide(path, root)
        if doc is not None:
            docs.append(doc)
    return docs


def match_guides(prompt: str, docs: list[GuideDoc]) -> list[GuideDoc]:
    """Return the docs with at least one keyword inside the prompt, in scan order."""
    prompt_lower = prompt.lower()
    matched: list[GuideDoc] = []
    seen: set[Path] = set()

    for doc in docs:
        if doc.path in seen:
            continue
        if any(kw.lower() in prompt_lower for kw in doc.keywords):
            matched.append(doc)
            seen.add(doc.path)

    return matched


def render_injection(matched: list[GuideDoc]) -> str:
    if not matched:
        return ""

    parts = ["<injected-guide>", "You MUST follow these guide instructions:"]
    for doc in matched:
        parts.append(f"\n## {doc.name}\n")
        parts.append(doc.body.rstrip())
    parts.append("</injected-guide>")
    return "\n".join(parts) + "\n"


def find_guides_for_prompt(root: Path, prompt: str) -> str:
    """Scan, match and render in one call. Empty string when nothing matches."""
    if not prompt or not prompt.strip():
        return ""

    docs = scan_guides(root)
    matched = match_guides(prompt, docs)

    snippet = prompt[:50]
    if not matched:
        logger.info("NO MATCH: %r", snippet)
        return ""

    logger.info("MATCHED: %s <- %r", [d.name for d in matched], snippet)
    return render_injection(matched)
