"""Leading-comment metadata of userscripts.

A script describes itself with at most two ``//`` lines at the very top::

    // Meow script
    // @run-at settings,chat

The first line is the description shown in the settings panel; a trailing
``[Disabled]`` marks the script as switched off. The second line, when it is
an ``@run-at`` directive, restricts the pages the script is injected into.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

COMMENT_PREFIX = "//"
DISABLED_MARKER = "[Disabled]"
RUN_AT_DIRECTIVE = "@run-at "
BOM = "\ufeff"


@dataclass(frozen=True)
class ScriptMetadata:
    enabled: bool
    description: str
    page_rules: Tuple[str, ...]


def get_comments(content: str) -> List[str]:
    """Payloads of the leading comment lines, stopping at the first other line."""
    comments: List[str] = []
    for line in content.removeprefix(BOM).split("\n"):
        line = line.strip()
        if not line.startswith(COMMENT_PREFIX):
            break
        comments.append(line[len(COMMENT_PREFIX) :].strip())
    return comments


def split_disabled(comment: str) -> Tuple[str, bool]:
    """Return ``(description, enabled)`` for a first-line payload.

    The marker only counts as an exact trailing token, so a description that
    merely mentions it elsewhere stays enabled. Repeated markers collapse.
    """
    description = comment
    enabled = True
    while description == DISABLED_MARKER or description.endswith(" " + DISABLED_MARKER):
        description = description[: -len(DISABLED_MARKER)].rstrip()
        enabled = False
    return description, enabled


def join_disabled(description: str, enabled: bool) -> str:
    if enabled:
        return description
    if not description:
        return DISABLED_MARKER
    return f"{description} {DISABLED_MARKER}"


def parse_page_rules(line: str) -> Tuple[str, ...]:
    if not line.lower().startswith(RUN_AT_DIRECTIVE):
        return ()
    rules: List[str] = []
    for item in line[len(RUN_AT_DIRECTIVE) :].split(","):
        item = item.strip()
        if item and item not in rules:
            rules.append(item)
    return tuple(rules)


def parse_metadata(content: str) -> ScriptMetadata:
    comments = get_comments(content)
    first = comments[0] if comments else ""
    second = comments[1] if len(comments) > 1 else ""
    description, enabled = split_disabled(first)
    return ScriptMetadata(enabled=enabled, description=description, page_rules=parse_page_rules(second))


def set_enabled(content: str, enabled: bool) -> str:
    """Patch the first comment line so the script reads as ``enabled``.

    Only line 1 is touched; everything after its newline is kept byte for
    byte. A file without a leading comment gets a new marker line on top
    instead of losing its first line of code. A byte order mark stays first.
    """
    bom = BOM if content.startswith(BOM) else ""
    content = content[len(bom) :]
    comments = get_comments(content)
    if not comments:
        if enabled:
            return bom + content
        newline = "\r\n" if content.split("\n", 1)[0].endswith("\r") else "\n"
        return f"{bom}{COMMENT_PREFIX} {DISABLED_MARKER}{newline}{content}"

    description, current = split_disabled(comments[0])
    if current == enabled:
        return bom + content

    first_line, sep, rest = content.partition("\n")
    carriage = "\r" if first_line.endswith("\r") else ""
    indent = first_line[: len(first_line) - len(first_line.lstrip())]
    payload = join_disabled(description, enabled)
    new_first = f"{indent}{COMMENT_PREFIX} {payload}".rstrip() + carriage
    return bom + new_first + sep + rest
