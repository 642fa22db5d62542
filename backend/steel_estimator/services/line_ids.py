"""
Line identifier helpers.

Lines are numbered ``L1, L2, ...``. A copied line carries ``{source}-{location}``
(e.g. ``L1-L10``) and sorts by its location number.
"""
import re
from typing import Any, Iterable, List, Optional

_NUMBER = re.compile(r"L?(\d+)")
_PLAIN_ID = re.compile(r"^L(\d+)$", re.IGNORECASE)


def _line_id(line: Any) -> str:
    if isinstance(line, dict):
        value = line.get("lineId", "")
    else:
        value = getattr(line, "line_id", "")
    return value if isinstance(value, str) else ""


def extract_line_number(line_id: str) -> int:
    """L1 -> 1, L10 -> 10, L1-L10 -> 10; unparseable -> 0."""
    if not line_id:
        return 0
    part = line_id.split("-")[-1] if "-" in line_id else line_id
    match = _NUMBER.search(part)
    return int(match.group(1)) if match else 0


def extract_line_prefix(line_id: str) -> Optional[str]:
    if "-" in line_id:
        return line_id.split("-")[0] or None
    return None


def is_copy_line(line_id: str) -> bool:
    return "-" in line_id and len(line_id.split("-")) == 2


def next_line_id(lines: Iterable[Any]) -> str:
    """Highest number in use (plain or copy ids) plus one."""
    numbers = [n for n in (extract_line_number(_line_id(line)) for line in lines) if n > 0]
    return f"L{max(numbers) + 1}" if numbers else "L1"


def next_allowance_line_id(lines: Iterable[Any]) -> str:
    """
    Id for a coach-generated allowance line.

    Only plain ``L{n}`` ids count toward the maximum, and the result is never
    lower than ``L{len(lines) + 1}`` so it cannot collide with an existing
    plain id even when some lines carry non-standard identifiers.
    """
    lines = list(lines)
    max_number = 0
    for line in lines:
        match = _PLAIN_ID.match(_line_id(line).strip())
        if match:
            max_number = max(max_number, int(match.group(1)))
    return f"L{max(max_number + 1, len(lines) + 1)}"


def create_copy_line_id(original_line_id: str, new_location_id: str) -> str:
    return f"{original_line_id}-L{extract_line_number(new_location_id)}"


def sort_lines_by_line_id(lines: Iterable[Any]) -> List[Any]:
    """Numeric order; ties broken by the full id so L1 precedes L1-L10."""
    return sorted(lines, key=lambda line: (extract_line_number(_line_id(line)), _line_id(line)))
