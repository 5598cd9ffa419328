from __future__ import annotations

from datetime import UTC, datetime

import pytest

from pylocrelay.dedup import RecencyWindow

_T0 = datetime(2024, 1, 1, tzinfo=UTC)


def test_repeat_key_is_rejected() -> None:
    window = RecencyWindow(4)

    assert window.admit(("S1", _T0)) is True
    assert window.admit(("S1", _T0)) is False
    assert len(window) == 1


def test_same_time_for_other_entity_is_distinct() -> None:
    window = RecencyWindow(4)

    assert window.admit(("S1", _T0)) is True
    assert window.admit(("S2", _T0)) is True


def test_window_forgets_oldest_key() -> None:
    window = RecencyWindow(2)
    window.admit("a")
    window.admit("b")
    window.admit("c")

    assert "a" not in window
    assert "b" in window and "c" in window
    assert window.admit("a") is True


def test_repeat_refreshes_recency() -> None:
    window = RecencyWindow(2)
    window.admit("a")
    window.admit("b")
    window.admit("a")
    window.admit("c")

    assert "a" in window
    assert "b" not in window


def test_clear_and_size_validation() -> None:
    window = RecencyWindow(1)
    window.admit("a")
    window.clear()

    assert len(window) == 0
    with pytest.raises(ValueError):
        RecencyWindow(0)
