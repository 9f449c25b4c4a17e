"""
Tests for `domain/cart.py`.
"""

from __future__ import annotations

from decimal import Decimal

from conftest import make_offer
from domain.cart import Cart


def test_add_is_idempotent_by_offer_id() -> None:
    cart = Cart()
    offer = make_offer()

    assert cart.add(offer) is True
    assert cart.add(offer) is False
    assert len(cart) == 1


def test_remove_and_clear() -> None:
    cart = Cart()
    first, second = make_offer("A"), make_offer("B")
    cart.add(first)
    cart.add(second)

    assert cart.remove(first.offer_id) is True
    assert cart.remove(first.offer_id) is False
    assert [item.name for item in cart.items()] == ["B"]

    cart.clear()
    assert cart.is_empty()


def test_items_returns_a_copy() -> None:
    cart = Cart()
    cart.add(make_offer())

    items = cart.items()
    items.clear()

    assert len(cart) == 1


def test_totals() -> None:
    cart = Cart()
    cart.add(make_offer("A", burn_cost=2, sol_price="0.5"))
    cart.add(make_offer("B", burn_cost=1, sol_price="1.25"))

    assert cart.total_burn_cost() == 3
    assert cart.total_sol_price() == Decimal("1.75")
    assert not cart.is_all_free()


def test_all_free_requires_items() -> None:
    cart = Cart()
    assert not cart.is_all_free()

    cart.add(make_offer("Free"))
    assert cart.is_all_free()


def test_subscribers_notified_in_order_with_current_items() -> None:
    cart = Cart()
    seen = []
    cart.subscribe(lambda items: seen.append(("first", len(items))))
    unsubscribe = cart.subscribe(lambda items: seen.append(("second", len(items))))

    offer = make_offer()
    cart.add(offer)
    cart.add(offer)  # no change, no notification
    unsubscribe()
    cart.remove(offer.offer_id)

    assert seen == [("first", 1), ("second", 1), ("first", 0)]


def test_failing_subscriber_does_not_block_mutation_or_others(caplog) -> None:
    cart = Cart()
    seen = []

    def broken(items):
        raise RuntimeError("badge render failed")

    cart.subscribe(broken)
    cart.subscribe(lambda items: seen.append(len(items)))

    cart.add(make_offer())
    cart.clear()

    assert seen == [1, 0]
    assert cart.is_empty()
    assert "Cart listener raised" in caplog.text
