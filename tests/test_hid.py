"""HID parsing and subtree containment tests."""

import pytest

from app.tree.hid import contains, generation_of, next_child_hid, parse_hid


def test_parse_hid_accepts_both_separators():
    """Test parse HID accepts both separators."""
    assert parse_hid("H1-2-3") == ("H1", "2", "3")
    assert parse_hid("1.2.3") == ("1", "2", "3")


@pytest.mark.parametrize("hid", ["", "H1--2", "H1-", ".1"])
def test_parse_hid_rejects_malformed(hid):
    """Test parse HID rejects malformed."""
    with pytest.raises(ValueError):
        parse_hid(hid)


def test_generation_counts_segments():
    """Test generation counts segments."""
    assert generation_of("H1") == 1
    assert generation_of("H1-2-3") == 3
    assert generation_of(None) is None


def test_containment_is_segment_based():
    """Test containment is segment based."""
    assert contains("H2-1", "H2-1-3-4")
    assert contains("H2-1", "H2-1")
    assert not contains("H2-1", "H2-2-1")
    assert not contains("H1-2", "H1-21")
    assert not contains("H1-2", None)


def test_next_child_hid_skips_gaps_and_grandchildren():
    """Test next child HID skips gaps and grandchildren."""
    siblings = ["H1-1", "H1-3", "H1-3-1", "H1-31-1", None]
    assert next_child_hid("H1", siblings) == "H1-4"
    assert next_child_hid("H1", []) == "H1-1"
    assert next_child_hid("1.2", ["1.2.1"]) == "1.2.2"
