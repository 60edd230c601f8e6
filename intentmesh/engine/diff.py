"""
Diff extraction — Unified diff to line-numbered excerpt

Turns one file's unified diff into the text sent to a classifier in diff
mode. Every retained line carries its absolute line number in the new file:

    @@ -40,3 +42,4 @@
     const role = user.role;
    -if (role === 'admin') {
    +if (role === 'admin' || role === 'support') {

becomes

    42: const role = user.role;
    43: if (role === 'admin' || role === 'support') {

Removed lines do not exist in the new file: they are dropped and do not
advance the counter. The counter restarts at every hunk header.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Tuple

logger = logging.getLogger(__name__)

HUNK_HEADER = re.compile(r"^@@ -\d+(?:,\d+)? \+(\d+)(?:,(\d+))? @@")
META_PREFIXES = ("diff --git", "index ", "--- ", "+++ ", "---\t", "+++\t", "new file mode",
                 "deleted file mode", "similarity index", "rename from", "rename to",
                 "old mode", "new mode")


@dataclass
class Hunk:
    new_start: int
    new_count: int = 1
    lines: List[Tuple[int, str]] = field(default_factory=list)  # (absolute line, content)


def _is_meta(line: str) -> bool:
    return line.startswith(META_PREFIXES) or line in ("---", "+++")


def parse_hunks(diff: str) -> List[Hunk]:
    """
    Parse a unified diff into hunks of retained (added + context) lines.

    Lines before the first hunk header, meta lines and
    "\\ No newline at end of file" markers are ignored. A hunk header that
    does not parse drops the lines up to the next valid header.
    """
    hunks: List[Hunk] = []
    current = None
    line_no = 0

    for line in diff.splitlines():
        if line.startswith("@@"):
            match = HUNK_HEADER.match(line)
            if not match:
                logger.warning("Skipping malformed hunk header: %r", line)
                current = None
                continue
            count = match.group(2)
            current = Hunk(new_start=int(match.group(1)),
                           new_count=int(count) if count is not None else 1)
            hunks.append(current)
            line_no = current.new_start
            continue

        if current is None or _is_meta(line):
            continue

        if line.startswith("+") or line.startswith(" "):
            current.lines.append((line_no, line[1:]))
            line_no += 1
        # "-" lines are absent from the new file; "\" markers carry no content

    return hunks


def extract_changed_code(diff: str) -> str:
    """
    Render a unified diff as "<n>: <content>" lines in new-file coordinates.

    Returns an empty string for an empty or header-only diff.
    """
    if not diff or not diff.strip():
        return ""
    return "\n".join(
        f"{number}: {content}"
        for hunk in parse_hunks(diff)
        for number, content in hunk.lines
    )
