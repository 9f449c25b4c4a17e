"""
External capabilities consumed by the checkout.

Wallet signing, chain transfers, metadata updates and image compositing are
implemented outside this project (wallet adapter, Solana RPC, Metaplex, the
image pipeline). The checkout only depends on these interfaces.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Protocol, Sequence

from domain.nft import NFTAttribute, OwnedNFT, normalize_owned_nft

logger = logging.getLogger(__name__)


class WalletSigner(Protocol):
    @property
    def public_key(self) -> str: ...

    def sign_transaction(self, transaction: Any) -> Any: ...


@dataclass(frozen=True, slots=True)
class MetadataUpdateResult:
    signature: str
    image_url: str
    metadata_url: str


class ChainService(Protocol):
    def transfer_sol(
        self,
        signer: WalletSigner,
        recipient: str,
        amount_sol: Decimal,
        memo: Optional[str] = None,
    ) -> str: ...

    def transfer_nft(
        self,
        signer: WalletSigner,
        mint: str,
        recipient: str,
        collection_id: Optional[str],
        memo: Optional[str] = None,
    ) -> str: ...

    def update_metadata(
        self,
        target_mint: str,
        attributes: Sequence[NFTAttribute],
        image: bytes,
        use_new_logo: bool,
    ) -> MetadataUpdateResult: ...


class ImageRenderer(Protocol):
    def render(self, attributes: Sequence[NFTAttribute], use_new_logo: bool = False) -> bytes: ...


class NFTInventorySource(Protocol):
    def list_owned_nfts(self, wallet_address: str) -> List[Mapping[str, Any]]: ...


def load_owned_nfts(source: NFTInventorySource, wallet_address: str) -> List[OwnedNFT]:
    """Fetch and normalize a wallet's NFTs; records without a mint are skipped."""

    owned: List[OwnedNFT] = []
    for raw in source.list_owned_nfts(wallet_address):
        try:
            owned.append(normalize_owned_nft(raw))
        except ValueError as e:
            logger.warning(
                f"Skipping unreadable NFT record: {e}",
                extra={"wallet_address": wallet_address},
            )
    return owned


__all__ = [
    "ChainService",
    "ImageRenderer",
    "MetadataUpdateResult",
    "NFTInventorySource",
    "WalletSigner",
    "load_owned_nfts",
]
