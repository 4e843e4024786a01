import pytest

from amptop.rolling_window import RollingWindow


def test_never_exceeds_capacity():
    window = RollingWindow(4)
    for i in range(25):
        window.push(i)
        assert len(window) <= 4
    assert window.capacity == 4


def test_capacity_plus_one_evicts_oldest():
    window = RollingWindow(3)
    for i in range(3):
        assert window.push(i) is None
    evicted = window.push(3)

    assert evicted == 0
    assert 0 not in window.items()
    assert window.items() == [1, 2, 3]
    assert window.latest() == 3


def test_items_are_chronological_after_wraparound():
    window = RollingWindow(5)
    for i in range(12):
        window.push(i)
    assert window.items() == [7, 8, 9, 10, 11]
    assert list(window) == [7, 8, 9, 10, 11]


def test_resize_keeps_newest():
    window = RollingWindow(5, items=range(5))
    window.resize(2)
    assert window.items() == [3, 4]
    window.resize(4)
    window.push(5)
    assert window.items() == [3, 4, 5]
    assert window.capacity == 4


def test_clear_and_empty_window():
    window = RollingWindow(2, items=[1, 2])
    window.clear()
    assert len(window) == 0
    assert window.latest() is None
    assert window.items() == []


@pytest.mark.parametrize("capacity", [0, -1])
def test_rejects_non_positive_capacity(capacity):
    with pytest.raises(ValueError):
        RollingWindow(capacity)
