"""
Domain: Shopping cart.

Ephemeral, session-scoped set of trait offers selected for one checkout. Never
persisted and never shared between wallets; each checkout session owns its own
Cart instance.

Subscribers are notified (in subscription order) after every mutation with a
copy of the current item list. A listener that raises is logged and skipped.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, List
from uuid import UUID

from .trait_offer import TraitOffer

logger = logging.getLogger(__name__)

CartListener = Callable[[List[TraitOffer]], None]


class Cart:
    def __init__(self) -> None:
        self._items: List[TraitOffer] = []
        self._listeners: List[CartListener] = []

    def add(self, offer: TraitOffer) -> bool:
        """Append the offer unless one with the same id is already present."""

        if self.contains(offer.offer_id):
            return False
        self._items.append(offer)
        self._notify()
        return True

    def remove(self, offer_id: UUID) -> bool:
        remaining = [item for item in self._items if item.offer_id != offer_id]
        if len(remaining) == len(self._items):
            return False
        self._items = remaining
        self._notify()
        return True

    def clear(self) -> None:
        self._items = []
        self._notify()

    def items(self) -> List[TraitOffer]:
        return list(self._items)

    def contains(self, offer_id: UUID) -> bool:
        return any(item.offer_id == offer_id for item in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def is_all_free(self) -> bool:
        return bool(self._items) and all(item.is_free for item in self._items)

    def total_burn_cost(self) -> int:
        return sum(item.burn_cost for item in self._items)

    def total_sol_price(self) -> Decimal:
        return sum((item.sol_price for item in self._items), Decimal("0"))

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.items())
            except Exception:
                logger.warning("Cart listener raised", exc_info=True)


__all__ = ["Cart", "CartListener"]
