import pytest

from src.marketsim.store.ids import OrderIdGenerator


def test_ids_are_padded_and_sequential():
    gen = OrderIdGenerator()
    assert [gen.next_id() for _ in range(3)] == ["TX000001", "TX000002", "TX000003"]


def test_observe_moves_counter_forward_only():
    gen = OrderIdGenerator("ORD", width=3)
    gen.observe("ORD041")
    gen.observe("ORD007")
    gen.observe("TX999999")
    assert gen.next_id() == "ORD042"


def test_prefix_must_not_contain_delimiters():
    with pytest.raises(ValueError):
        OrderIdGenerator("T,X")
    with pytest.raises(ValueError):
        OrderIdGenerator("")
