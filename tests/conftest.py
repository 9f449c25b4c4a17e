"""
Pytest configuration and shared fixtures.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides in-memory collaborators for the
checkout: a controllable clock, a recording chain service, an image renderer
and a wallet signer.
"""

import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.nft import NFTAttribute, OwnedNFT  # noqa: E402
from domain.trait_offer import TraitOffer  # noqa: E402
from repositories.memory_store import InMemoryShopStore  # noqa: E402
from services.capabilities import MetadataUpdateResult  # noqa: E402
from services.shop_config import ShopConfig  # noqa: E402
from services.transaction_logger import TransactionLogger  # noqa: E402

COLLECTION_WALLET = "Co11ectionWa11et1111111111111111111111111111"
REIMBURSEMENT_WALLET = "Reimbursement111111111111111111111111111111"
BUYER_WALLET = "BuyerWa11et11111111111111111111111111111111"


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class FakeSigner:
    public_key: str = BUYER_WALLET

    def sign_transaction(self, transaction: Any) -> Any:
        return transaction


@dataclass
class FakeChain:
    """
    Records every chain call in order.

    fail_on: 1-based index of the transfer call that raises (None = never)
    metadata_error: raised by update_metadata when set
    """

    fail_on: Optional[int] = None
    transfer_error: Exception = field(default_factory=lambda: RuntimeError("RPC node unavailable"))
    metadata_error: Optional[Exception] = None
    calls: List[Tuple[Any, ...]] = field(default_factory=list)
    metadata_updates: List[Tuple[str, Tuple[NFTAttribute, ...], bytes, bool]] = field(default_factory=list)
    _transfers: int = 0

    def _next(self, kind: str) -> str:
        self._transfers += 1
        if self.fail_on is not None and self._transfers == self.fail_on:
            raise self.transfer_error
        return f"{kind}-sig-{self._transfers}"

    def transfer_sol(self, signer: Any, recipient: str, amount_sol: Decimal, memo: Optional[str] = None) -> str:
        signature = self._next("sol")
        self.calls.append(("sol", recipient, amount_sol, memo))
        return signature

    def transfer_nft(
        self,
        signer: Any,
        mint: str,
        recipient: str,
        collection_id: Optional[str],
        memo: Optional[str] = None,
    ) -> str:
        signature = self._next("nft")
        self.calls.append(("nft", mint, recipient, memo))
        return signature

    def update_metadata(
        self,
        target_mint: str,
        attributes: Sequence[NFTAttribute],
        image: bytes,
        use_new_logo: bool,
    ) -> MetadataUpdateResult:
        if self.metadata_error is not None:
            raise self.metadata_error
        self.metadata_updates.append((target_mint, tuple(attributes), image, use_new_logo))
        return MetadataUpdateResult(
            signature="metadata-sig",
            image_url=f"https://arweave.net/{target_mint}.png",
            metadata_url=f"https://arweave.net/{target_mint}.json",
        )


@dataclass
class FakeRenderer:
    error: Optional[Exception] = None
    renders: List[Tuple[Tuple[NFTAttribute, ...], bool]] = field(default_factory=list)

    def render(self, attributes: Sequence[NFTAttribute], use_new_logo: bool = False) -> bytes:
        if self.error is not None:
            raise self.error
        self.renders.append((tuple(attributes), use_new_logo))
        return b"\x89PNG composite"


class FailingLogRepository:
    def append(self, entry: Any) -> None:
        raise RuntimeError("transaction_logs unavailable")

    def list_for_purchase(self, purchase_id: UUID) -> list:
        return []


def make_offer(
    name: str = "Gold Chain",
    *,
    category: str = "necklace",
    burn_cost: int = 0,
    sol_price: str = "0",
    stock_quantity: Optional[int] = None,
    max_claims_per_wallet: Optional[int] = None,
    trait_value: Optional[str] = None,
    is_active: bool = True,
) -> TraitOffer:
    return TraitOffer(
        offer_id=uuid4(),
        name=name,
        category=category,
        trait_value=trait_value,
        image_url=None,
        burn_cost=burn_cost,
        sol_price=Decimal(sol_price),
        stock_quantity=stock_quantity,
        max_claims_per_wallet=max_claims_per_wallet,
        is_active=is_active,
    )


def make_nft(mint: str = "TargetMint111", **attributes: str) -> OwnedNFT:
    return OwnedNFT(
        mint=mint,
        name="Trap Star #1",
        image="https://example.com/1.png",
        attributes=tuple(NFTAttribute(trait_type=k, value=v) for k, v in attributes.items()),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ShopConfig:
    return ShopConfig(
        collection_wallet=COLLECTION_WALLET,
        reimbursement_wallet=REIMBURSEMENT_WALLET,
        collection_address="CollectionAddr111",
        service_fee=Decimal("0.01"),
        reimbursement_fee=Decimal("0.05"),
    )


@pytest.fixture
def store(clock: FakeClock) -> InMemoryShopStore:
    return InMemoryShopStore(clock=clock)


@pytest.fixture
def tx_logger(store: InMemoryShopStore) -> TransactionLogger:
    return TransactionLogger(store)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()
