"""Quick look at the first lines of an uploaded CSV.

This is a display convenience, not a CSV parser: no quoting, escaping or
delimiter sniffing. Lines break on "\\n" only (a trailing "\\r" is dropped).
"""

from typing import List

PREVIEW_ROWS = 10


def split_preview(text: str, row_limit: int = PREVIEW_ROWS) -> List[List[str]]:
    if not text or row_limit <= 0:
        return []
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    rows = []
    for line in lines[:row_limit]:
        if line.endswith("\r"):
            line = line[:-1]
        rows.append(line.split(","))
    return rows
