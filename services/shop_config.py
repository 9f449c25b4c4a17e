"""
Shop configuration.

Values are read from environment variables; a .env file in the project root is
loaded first (python-dotenv), the same way the Supabase client is configured.

Environment variables:
- COLLECTION_WALLET: receives burned NFTs, SOL item payments and the service fee
- REIMBURSEMENT_WALLET: receives the reimbursement fee
- COLLECTION_ADDRESS: collection id passed along with NFT transfers
- SERVICE_FEE: SOL, default 0
- REIMBURSEMENT_FEE: SOL, default 0
- RESERVATION_GRACE_MINUTES: default 10
- NEW_LOGO_TRAIT_VALUE: logo trait value that switches to the new logo, default "uzi"
- SHOP_BACKEND: "supabase" (default) or "memory"
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from repositories.base import DEFAULT_GRACE_MINUTES

env_path = Path(__file__).parent.parent / ".env"

DEFAULT_NEW_LOGO_TRAIT_VALUE = "uzi"
BACKENDS = ("supabase", "memory")


def _decimal(env: Mapping[str, str], name: str, default: str = "0") -> Decimal:
    raw = env.get(name) or default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"{name} must be a decimal number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must be >= 0")
    return value


@dataclass(frozen=True, slots=True)
class ShopConfig:
    collection_wallet: str
    reimbursement_wallet: str
    collection_address: Optional[str] = None
    service_fee: Decimal = Decimal("0")
    reimbursement_fee: Decimal = Decimal("0")
    grace_minutes: int = DEFAULT_GRACE_MINUTES
    new_logo_trait_value: str = DEFAULT_NEW_LOGO_TRAIT_VALUE
    backend: str = "supabase"

    def __post_init__(self) -> None:
        if self.service_fee < 0:
            raise ValueError("service_fee must be >= 0")
        if self.reimbursement_fee < 0:
            raise ValueError("reimbursement_fee must be >= 0")
        if self.grace_minutes <= 0:
            raise ValueError("grace_minutes must be > 0")
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}, got {self.backend!r}")

    @property
    def total_fees(self) -> Decimal:
        return self.service_fee + self.reimbursement_fee

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "ShopConfig":
        """
        Build the configuration from the environment.

        Args:
            env: mapping to read instead of os.environ (the .env file is only
                loaded when reading os.environ)

        Raises:
            ValueError: if a value is malformed or negative.
        """

        if env is None:
            load_dotenv(dotenv_path=env_path)
            env = os.environ

        grace_raw = env.get("RESERVATION_GRACE_MINUTES") or str(DEFAULT_GRACE_MINUTES)
        try:
            grace_minutes = int(grace_raw)
        except ValueError:
            raise ValueError(f"RESERVATION_GRACE_MINUTES must be an integer, got {grace_raw!r}") from None

        return ShopConfig(
            collection_wallet=env.get("COLLECTION_WALLET", ""),
            reimbursement_wallet=env.get("REIMBURSEMENT_WALLET", ""),
            collection_address=env.get("COLLECTION_ADDRESS") or None,
            service_fee=_decimal(env, "SERVICE_FEE"),
            reimbursement_fee=_decimal(env, "REIMBURSEMENT_FEE"),
            grace_minutes=grace_minutes,
            new_logo_trait_value=env.get("NEW_LOGO_TRAIT_VALUE") or DEFAULT_NEW_LOGO_TRAIT_VALUE,
            backend=(env.get("SHOP_BACKEND") or "supabase").lower(),
        )


__all__ = ["ShopConfig"]
