"""
Tests for `domain/nft.py`.

Covers:
- Normalization of DAS and flat indexer records into OwnedNFT.
- Attribute merging: case-insensitive replace by trait_type, else append.
"""

from __future__ import annotations

import pytest

from conftest import make_offer
from domain.nft import DEFAULT_NFT_NAME, NFTAttribute, merge_attributes, normalize_owned_nft


def test_normalize_das_asset() -> None:
    raw = {
        "id": "Mint111",
        "content": {
            "metadata": {
                "name": "Trap Star #42",
                "attributes": [{"trait_type": "Hat", "value": "Beanie"}, {"value": "orphan"}],
            },
            "links": {"image": "https://img/42.png"},
        },
    }

    nft = normalize_owned_nft(raw)

    assert nft.mint == "Mint111"
    assert nft.name == "Trap Star #42"
    assert nft.image == "https://img/42.png"
    assert nft.attributes == (NFTAttribute("Hat", "Beanie"),)


def test_normalize_flat_row_with_fallbacks() -> None:
    nft = normalize_owned_nft({"mint": "Mint222", "cached_image_uri": "https://cache/2.png", "attributes": None})

    assert nft.name == DEFAULT_NFT_NAME
    assert nft.image == "https://cache/2.png"
    assert nft.attributes == ()


def test_normalize_requires_mint() -> None:
    with pytest.raises(ValueError):
        normalize_owned_nft({"name": "no mint"})


def test_merge_replaces_matching_category_case_insensitively_and_appends_new() -> None:
    existing = (NFTAttribute("Background", "Blue"), NFTAttribute("Necklace", "None"))
    offers = [
        make_offer("Gold Chain", category="necklace", trait_value="Gold Chain"),
        make_offer("Uzi Logo", category="logo", trait_value="uzi"),
    ]

    merged = merge_attributes(existing, offers)

    assert merged == (
        NFTAttribute("Background", "Blue"),
        NFTAttribute("necklace", "Gold Chain"),
        NFTAttribute("logo", "uzi"),
    )
    assert existing[1].value == "None"


def test_merge_uses_offer_name_when_value_missing() -> None:
    merged = merge_attributes((), [make_offer("Grillz", category="mouth")])

    assert merged == (NFTAttribute("mouth", "Grillz"),)


class FakeInventory:
    def __init__(self, records):
        self.records = records

    def list_owned_nfts(self, wallet_address):
        return self.records


def test_load_owned_nfts_skips_records_without_mint() -> None:
    from services.capabilities import load_owned_nfts

    source = FakeInventory([{"mint": "Mint111", "name": "One"}, {"name": "broken"}, {"id": "Mint222"}])

    owned = load_owned_nfts(source, "wallet")

    assert [nft.mint for nft in owned] == ["Mint111", "Mint222"]
