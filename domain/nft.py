"""
Domain: Owned NFTs and their attributes.

Wallet inventory comes back from the indexer in more than one shape (DAS
`getAssetsByOwner` results with nested `content`, or already-flattened cached
rows). normalize_owned_nft() converts either shape into one canonical OwnedNFT
at the inventory boundary so the rest of the code never re-derives fallbacks.

Trait merging rule:
- For each applied trait, an existing attribute with the same trait_type
  (case-insensitive) is replaced in place; otherwise the trait is appended.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from .trait_offer import TraitOffer

DEFAULT_NFT_NAME = "Trap Star"


@dataclass(frozen=True, slots=True)
class NFTAttribute:
    trait_type: str
    value: str

    def matches(self, trait_type: str) -> bool:
        return self.trait_type.lower() == trait_type.lower()

    def to_metadata(self) -> dict[str, str]:
        return {"trait_type": self.trait_type, "value": self.value}


@dataclass(frozen=True, slots=True)
class OwnedNFT:
    """Canonical view of an NFT held by the connected wallet."""

    mint: str
    name: str
    image: Optional[str]
    attributes: Tuple[NFTAttribute, ...] = ()

    def __post_init__(self) -> None:
        if not self.mint:
            raise ValueError("mint must not be empty")

    def attribute(self, trait_type: str) -> Optional[NFTAttribute]:
        return find_attribute(self.attributes, trait_type)


def _parse_attributes(raw: Any) -> Tuple[NFTAttribute, ...]:
    if not raw:
        return ()

    parsed: List[NFTAttribute] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        trait_type = item.get("trait_type")
        if not trait_type:
            continue
        value = item.get("value")
        parsed.append(NFTAttribute(trait_type=str(trait_type), value="" if value is None else str(value)))
    return tuple(parsed)


def normalize_owned_nft(raw: Mapping[str, Any]) -> OwnedNFT:
    """
    Normalize a raw indexer record into an OwnedNFT.

    Accepts:
    - DAS assets: {"id", "content": {"metadata": {"name", "attributes"}, "links": {"image"}}}
    - Flat rows: {"mint", "name", "image" | "cached_image_uri", "attributes"}

    Raises:
        ValueError: if the record has no mint / asset id.
    """

    content = raw.get("content") or {}
    metadata = content.get("metadata") or {}
    links = content.get("links") or {}

    mint = raw.get("mint") or raw.get("id")
    if not mint:
        raise ValueError("NFT record has no mint or asset id")

    name = metadata.get("name") or raw.get("name") or DEFAULT_NFT_NAME
    image = links.get("image") or raw.get("image") or raw.get("cached_image_uri")
    attributes = _parse_attributes(metadata.get("attributes") or raw.get("attributes"))

    return OwnedNFT(mint=str(mint), name=str(name), image=image, attributes=attributes)


def find_attribute(attributes: Iterable[NFTAttribute], trait_type: str) -> Optional[NFTAttribute]:
    for attribute in attributes:
        if attribute.matches(trait_type):
            return attribute
    return None


def merge_attributes(
    existing: Iterable[NFTAttribute],
    offers: Iterable[TraitOffer],
) -> Tuple[NFTAttribute, ...]:
    """
    Merge the offers' (category, value) pairs into an existing attribute list.

    Order is preserved: replaced attributes keep their position, new categories
    are appended in cart order. The input is not modified.
    """

    merged: List[NFTAttribute] = list(existing)

    for offer in offers:
        applied = NFTAttribute(trait_type=offer.category, value=offer.applied_value)
        for index, attribute in enumerate(merged):
            if attribute.matches(applied.trait_type):
                merged[index] = applied
                break
        else:
            merged.append(applied)

    return tuple(merged)


__all__ = [
    "DEFAULT_NFT_NAME",
    "NFTAttribute",
    "OwnedNFT",
    "find_attribute",
    "merge_attributes",
    "normalize_owned_nft",
]
