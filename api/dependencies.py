"""
Repository wiring for the API.

The backend is chosen by SHOP_BACKEND:
- "supabase" (default): PostgREST tables + stored procedures
- "memory": one shared in-process store (local development / demos)

Routers receive repositories through FastAPI dependencies, so tests override
them with app.dependency_overrides.
"""

from __future__ import annotations

from functools import lru_cache

from repositories.base import PurchaseRepository, StockLedger, TraitOfferRepository, TransactionLogRepository
from repositories.memory_store import InMemoryShopStore
from repositories.purchase_repository import SupabasePurchaseRepository
from repositories.stock_ledger_repository import SupabaseStockLedger
from repositories.trait_offer_repository import SupabaseTraitOfferRepository
from repositories.transaction_log_repository import SupabaseTransactionLogRepository
from services.shop_config import ShopConfig


@lru_cache(maxsize=1)
def get_config() -> ShopConfig:
    return ShopConfig.from_env()


@lru_cache(maxsize=1)
def _memory_store() -> InMemoryShopStore:
    return InMemoryShopStore(grace_minutes=get_config().grace_minutes)


def _use_memory() -> bool:
    return get_config().backend == "memory"


def get_offer_repository() -> TraitOfferRepository:
    if _use_memory():
        return _memory_store()
    return SupabaseTraitOfferRepository()


def get_purchase_repository() -> PurchaseRepository:
    if _use_memory():
        return _memory_store()
    return SupabasePurchaseRepository()


def get_stock_ledger() -> StockLedger:
    if _use_memory():
        return _memory_store()
    return SupabaseStockLedger(grace_minutes=get_config().grace_minutes)


def get_transaction_log_repository() -> TransactionLogRepository:
    if _use_memory():
        return _memory_store()
    return SupabaseTransactionLogRepository()
