"""
Trait application: merge purchased traits into the target NFT, render the new
composite image and push the updated metadata on-chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from domain.nft import NFTAttribute, OwnedNFT, find_attribute, merge_attributes
from domain.trait_offer import TraitOffer
from services.capabilities import ChainService, ImageRenderer, MetadataUpdateResult
from services.shop_config import ShopConfig

logger = logging.getLogger(__name__)

LOGO_TRAIT_TYPE = "logo"


@dataclass(frozen=True, slots=True)
class AppliedTraits:
    attributes: Tuple[NFTAttribute, ...]
    use_new_logo: bool
    update: MetadataUpdateResult


def uses_new_logo(attributes: Sequence[NFTAttribute], config: ShopConfig) -> bool:
    logo = find_attribute(attributes, LOGO_TRAIT_TYPE)
    return logo is not None and logo.value.lower() == config.new_logo_trait_value.lower()


def preview_traits(
    target: OwnedNFT,
    items: Sequence[TraitOffer],
    renderer: ImageRenderer,
    config: ShopConfig,
) -> Optional[bytes]:
    """
    Render the target NFT with the cart traits applied, without touching
    stock or chain state.

    Returns None when rendering fails so the caller can fall back to the
    original image.
    """

    attributes = merge_attributes(target.attributes, items)
    try:
        return renderer.render(attributes, use_new_logo=uses_new_logo(attributes, config))
    except Exception:
        logger.warning(
            "Preview render failed; falling back to original image",
            exc_info=True,
            extra={"target_nft_mint": target.mint},
        )
        return None


def apply_traits(
    target: OwnedNFT,
    items: Sequence[TraitOffer],
    renderer: ImageRenderer,
    chain: ChainService,
    config: ShopConfig,
) -> AppliedTraits:
    """
    Merge, render and update metadata for the target NFT.

    The full merged attribute set is sent with the update, not just the new
    traits. Errors from the renderer or chain service propagate to the caller.
    """

    attributes = merge_attributes(target.attributes, items)
    new_logo = uses_new_logo(attributes, config)

    image = renderer.render(attributes, use_new_logo=new_logo)
    if not image:
        raise RuntimeError("Image renderer returned an empty image")

    logger.info(
        f"Applying {len(items)} trait(s) to NFT {target.mint}",
        extra={"target_nft_mint": target.mint, "use_new_logo": new_logo},
    )

    update = chain.update_metadata(target.mint, attributes, image, new_logo)
    return AppliedTraits(attributes=attributes, use_new_logo=new_logo, update=update)


__all__ = [
    "AppliedTraits",
    "apply_traits",
    "preview_traits",
    "uses_new_logo",
]
