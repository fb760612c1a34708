"""
Hierarchical identifiers.

A HID is a materialised path: "H1-2-3" (or "1.2.3") names the third child of
the second child of root H1. Containment is decided on whole segments, so the
branch "H1-2" contains "H1-2-1" but not "H1-21".
"""

import re
from typing import Iterable, Optional

_SEPARATORS = re.compile(r"[.\-]")


def parse_hid(hid: str) -> tuple[str, ...]:
    """Split a HID into its segments."""
    segments = tuple(_SEPARATORS.split(hid.strip()))
    if not hid.strip() or any(not segment for segment in segments):
        raise ValueError(f"Malformed HID: {hid!r}")
    return segments


def generation_of(hid: Optional[str]) -> Optional[int]:
    """Generation depth (root = 1). Munasib profiles have none."""
    if not hid:
        return None
    return len(parse_hid(hid))


def separator_of(hid: str) -> str:
    return "." if "." in hid else "-"


def contains(branch_hid: Optional[str], hid: Optional[str]) -> bool:
    """True if ``hid`` lies inside the subtree rooted at ``branch_hid``."""
    if not branch_hid or not hid:
        return False
    try:
        branch = parse_hid(branch_hid)
        target = parse_hid(hid)
    except ValueError:
        return False
    return target[: len(branch)] == branch


def sibling_index(segment: str) -> int:
    digits = re.search(r"(\d+)$", segment)
    return int(digits.group(1)) if digits else 0


def next_child_hid(parent_hid: str, sibling_hids: Iterable[Optional[str]]) -> str:
    """
    HID for a new child of ``parent_hid`` given the HIDs of existing children.

    Siblings are numbered from 1 in insertion order; gaps left by deleted
    siblings are not reused.
    """
    parent = parse_hid(parent_hid)
    highest = 0
    for sibling in sibling_hids:
        if not sibling:
            continue
        try:
            segments = parse_hid(sibling)
        except ValueError:
            continue
        if len(segments) == len(parent) + 1 and segments[: len(parent)] == parent:
            highest = max(highest, sibling_index(segments[-1]))
    return f"{parent_hid}{separator_of(parent_hid)}{highest + 1}"
