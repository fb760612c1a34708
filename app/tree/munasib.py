"""Munasib (married-in spouse) rules for marriages and profile date fields."""

from typing import Any, Optional

DATE_CALENDAR_KEYS = ("hijri", "gregorian")


def normalize_origin(value: Optional[str]) -> Optional[str]:
    """Collapse whitespace and case so family names compare reliably."""
    if value is None:
        return None
    collapsed = " ".join(value.split())
    return collapsed.casefold() or None


def expected_munasib(
    husband_hid: Optional[str],
    wife_hid: Optional[str],
    husband_origin: Optional[str],
    wife_origin: Optional[str],
) -> Optional[str]:
    """
    Return the munasib value a marriage between these spouses must carry.

    Raises ValueError when neither spouse belongs to the tree.
    """
    if husband_hid and wife_hid:
        return None
    if husband_hid:
        return wife_origin
    if wife_hid:
        return husband_origin
    raise ValueError("At least one spouse must belong to the family tree")


def munasib_violation(
    husband_hid: Optional[str],
    wife_hid: Optional[str],
    husband_origin: Optional[str],
    wife_origin: Optional[str],
    munasib: Optional[str],
) -> Optional[str]:
    """Describe why ``munasib`` breaks the rule, or return None if it holds."""
    try:
        expected = expected_munasib(husband_hid, wife_hid, husband_origin, wife_origin)
    except ValueError as exc:
        return str(exc)

    if husband_hid and wife_hid:
        if munasib is not None:
            return "munasib must be empty when both spouses belong to the family tree"
        return None

    if normalize_origin(munasib) != normalize_origin(expected):
        return f"munasib must equal the external spouse's family origin ({expected!r}), got {munasib!r}"
    return None


def is_valid_date_object(value: Any) -> bool:
    """A dual-calendar date must be an object holding a hijri or gregorian part."""
    return isinstance(value, dict) and any(key in value for key in DATE_CALENDAR_KEYS)
