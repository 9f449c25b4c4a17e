"""
Payment execution.

Runs the chain transfers for one checkout, in a fixed order:

- free: no transfers; a local marker is used as the payment signature.
- burn: each selected NFT is transferred to the collection wallet (memo-tagged)
  in list order, then the service fee to the collection wallet and the
  reimbursement fee to the reimbursement wallet. The first NFT transfer's
  signature is the payment signature.
- sol: items total + service fee to the collection wallet in one transfer
  (memo = item names), then the reimbursement fee. The collection transfer's
  signature is the payment signature.

Zero-amount fee transfers are skipped. Transfers that landed in an earlier
attempt of the same checkout are not sent again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from domain.purchase import PaymentMethod
from services.capabilities import ChainService, WalletSigner
from services.pricing_service import CheckoutQuote
from services.shop_config import ShopConfig

logger = logging.getLogger(__name__)

FREE_SIGNATURE_PREFIX = "free-claim-"

_REJECTION_MARKERS = (
    "user rejected",
    "rejected the request",
    "user declined",
    "user denied",
    "user cancelled",
    "user canceled",
)
_REJECTION_CODE = 4001


def is_user_rejection(error: BaseException) -> bool:
    """Whether a wallet error means the user declined to sign."""

    if getattr(error, "code", None) == _REJECTION_CODE:
        return True
    text = str(error).lower()
    return any(marker in text for marker in _REJECTION_MARKERS)


@dataclass(frozen=True, slots=True)
class PaymentReceipt:
    signature: str
    method: PaymentMethod
    transfer_signatures: Tuple[str, ...] = ()
    burned_nft_mints: Tuple[str, ...] = ()


# Keys identifying each transfer of a checkout, in the order they are sent.
COLLECTION_TRANSFER = "collection"
SERVICE_FEE_TRANSFER = "service_fee"
REIMBURSEMENT_FEE_TRANSFER = "reimbursement_fee"
_NFT_TRANSFER_PREFIX = "nft:"


def nft_transfer_key(mint: str) -> str:
    return f"{_NFT_TRANSFER_PREFIX}{mint}"


def _burned_mints(transfers: Mapping[str, str]) -> Tuple[str, ...]:
    return tuple(key[len(_NFT_TRANSFER_PREFIX):] for key in transfers if key.startswith(_NFT_TRANSFER_PREFIX))


class PaymentError(Exception):
    """Raised when a payment transfer fails; carries what already went through."""

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException,
        completed_transfers: Optional[Mapping[str, str]] = None,
    ):
        self.cause = cause
        self.user_rejected = is_user_rejection(cause)
        self.completed_transfers: Dict[str, str] = dict(completed_transfers or {})
        super().__init__(message)

    @property
    def completed_signatures(self) -> Tuple[str, ...]:
        return tuple(self.completed_transfers.values())

    @property
    def burned_nft_mints(self) -> Tuple[str, ...]:
        return _burned_mints(self.completed_transfers)


class _TransferLog:
    """
    Sends transfers in order, reusing signatures of transfers that already
    landed in an earlier attempt.
    """

    def __init__(self, landed: Mapping[str, str]) -> None:
        self._landed = dict(landed)
        self.sent: Dict[str, str] = {}

    def send(self, key: str, transfer: Callable[[], str]) -> str:
        signature = self._landed.get(key)
        if signature is None:
            signature = transfer()
        else:
            logger.info(
                "Transfer already confirmed; not sending again",
                extra={"transfer": key, "signature": signature},
            )
        self.sent[key] = signature
        return signature

    def completed(self) -> Dict[str, str]:
        return {**self._landed, **self.sent}


def _memo(prefix: str, names: Sequence[str]) -> str:
    return f"{prefix}: {', '.join(names)}" if prefix else ", ".join(names)


def _send_fees(
    chain: ChainService,
    signer: WalletSigner,
    config: ShopConfig,
    quote: CheckoutQuote,
    transfers: _TransferLog,
    include_service_fee: bool,
) -> None:
    if include_service_fee and quote.service_fee > 0:
        transfers.send(
            SERVICE_FEE_TRANSFER,
            lambda: chain.transfer_sol(signer, config.collection_wallet, quote.service_fee, "Trait shop service fee"),
        )
    if quote.reimbursement_fee > 0:
        transfers.send(
            REIMBURSEMENT_FEE_TRANSFER,
            lambda: chain.transfer_sol(
                signer, config.reimbursement_wallet, quote.reimbursement_fee, "Trait shop reimbursement fee"
            ),
        )


def execute_payment(
    quote: CheckoutQuote,
    signer: Optional[WalletSigner],
    chain: ChainService,
    config: ShopConfig,
    burn_mints: Sequence[str] = (),
    landed_transfers: Optional[Mapping[str, str]] = None,
) -> PaymentReceipt:
    """
    Execute the payment transfers described by a quote.

    landed_transfers are transfers confirmed by an earlier attempt of the same
    checkout (PaymentError.completed_transfers); they are not sent again and
    their signatures are reused.

    Raises:
        PaymentError: if any transfer fails (wrapping the original error).
        ValueError: if a burn payment has the wrong number of NFTs.
    """

    method = quote.payment_method
    names = [item.name for item in quote.items]

    if method is PaymentMethod.FREE:
        return PaymentReceipt(signature=f"{FREE_SIGNATURE_PREFIX}{uuid4().hex}", method=method)

    if signer is None:
        raise ValueError("A wallet signer is required for paid checkouts")

    if method is PaymentMethod.BURN and (quote.burn_count == 0 or len(burn_mints) != quote.burn_count):
        raise ValueError(f"Burn payment requires exactly {quote.burn_count} NFTs, got {len(burn_mints)}")

    transfers = _TransferLog(landed_transfers or {})

    try:
        if method is PaymentMethod.BURN:
            memo = _memo("Trait shop burn", names)
            for mint in burn_mints:
                signature = transfers.send(
                    nft_transfer_key(mint),
                    lambda mint=mint: chain.transfer_nft(
                        signer, mint, config.collection_wallet, config.collection_address, memo
                    ),
                )
                logger.info(
                    "Burn transfer confirmed",
                    extra={"mint": mint, "signature": signature},
                )
            _send_fees(chain, signer, config, quote, transfers, include_service_fee=True)
            payment_signature = transfers.sent[nft_transfer_key(burn_mints[0])]

        else:
            payment_signature = transfers.send(
                COLLECTION_TRANSFER,
                lambda: chain.transfer_sol(signer, config.collection_wallet, quote.collection_amount, _memo("", names)),
            )
            _send_fees(chain, signer, config, quote, transfers, include_service_fee=False)

    except Exception as e:
        raise PaymentError(
            f"{method.value} payment failed: {e}",
            cause=e,
            completed_transfers=transfers.completed(),
        ) from e

    return PaymentReceipt(
        signature=payment_signature,
        method=method,
        transfer_signatures=tuple(transfers.sent.values()),
        burned_nft_mints=_burned_mints(transfers.sent),
    )


__all__ = [
    "COLLECTION_TRANSFER",
    "FREE_SIGNATURE_PREFIX",
    "PaymentError",
    "PaymentReceipt",
    "REIMBURSEMENT_FEE_TRANSFER",
    "SERVICE_FEE_TRANSFER",
    "execute_payment",
    "is_user_rejection",
    "nft_transfer_key",
]
