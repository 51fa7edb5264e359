"""
Spec text helpers.

Extracts the epic title from a generated specification.
"""

import re

NAME_RE = re.compile(r'<name>\s*([^<]+?)\s*</name>', re.IGNORECASE)
HEADER_RE = re.compile(r'^#+\s*')
TAG_RE = re.compile(r'<[^>]+>')

UNTITLED = "Untitled Epic"

# Lines that never carry the title
_SKIP_PREFIXES = ("<?", "<!--", "<specification", "```")


def extract_title_from_spec(spec: str) -> str:
    """Return the <name> tag, else the first meaningful line, else "Untitled Epic"."""
    match = NAME_RE.search(spec)
    if match and match.group(1).strip():
        return match.group(1).strip()

    for line in spec.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(_SKIP_PREFIXES):
            continue
        title = TAG_RE.sub("", HEADER_RE.sub("", stripped)).strip()
        if title:
            return title

    return UNTITLED
