"""Plain-text preview of a tree description.

One line per entry, indented in proportion to depth, with the entered name
alongside when it differs from the unique name.
"""

from __future__ import annotations

from multitree.models import TreeDescription

NO_MATCHES = (
    "This calibration will not match a tip-taxa search on any taxa. "
    "Please include (+) more taxa."
)

# columns per depth level
DEFAULT_INDENT = 2


def render_preview(description: TreeDescription, *, indent: int = DEFAULT_INDENT) -> str:
    """Render a tree description as indented text.

    Depths are shifted so the shallowest entry starts at column 0.
    """
    if description.is_empty:
        return NO_MATCHES

    count = len(description.entries)
    lines = [
        f"This calibration will match tip-taxa searches within any of these "
        f"{count} tax{'on' if count == 1 else 'a'}:"
    ]
    min_depth = min(e.depth for e in description.entries)
    for entry in description.entries:
        line = " " * ((entry.depth - min_depth) * indent) + entry.unique_name
        if entry.entered_name and entry.entered_name != entry.unique_name:
            line += f"  (entered as '{entry.entered_name}')"
        lines.append(line)
    return "\n".join(lines)
