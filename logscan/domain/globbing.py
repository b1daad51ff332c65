"""Include-pattern matching shared by every filesystem backend.

Patterns without a ``/`` are matched against the file name only. Patterns
containing a ``/`` are matched against the path relative to the location
root, where ``**`` spans any number of directories (``**/x.log`` also matches
``x.log`` at the root) and ``*``/``?`` never cross a directory separator.
"""

import re
from functools import lru_cache
from typing import Iterable, Pattern


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> Pattern[str]:
    out = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                i += 2
                if i < n and pattern[i] == "/":
                    i += 1
                    out.append("(?:.*/)?")
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z")


def matches_includes(relative_path: str, includes: Iterable[str]) -> bool:
    """True if relative_path matches any include pattern (no patterns = match all)."""
    includes = list(includes)
    if not includes:
        return True
    rel = relative_path.replace("\\", "/").lstrip("/")
    name = rel.rsplit("/", 1)[-1]
    for pattern in includes:
        pattern = pattern.replace("\\", "/")
        target = rel if "/" in pattern else name
        if glob_to_regex(pattern).match(target):
            return True
    return False
