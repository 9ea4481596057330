"""
Procurement configuration schema.

Typed, frozen settings for the receiving/costing/recovery core.  The fixed
rule tables (order transitions, approval ceilings, recovery strategies,
account selection) are code, not configuration; this schema covers only
the tunables around them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from procurement_kernel.domain.ledger import AccountMap, GLAccount
from procurement_kernel.domain.valuation import StockPolicy

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StockSettings:
    """Default stock policy applied when a product has none of its own."""

    prevent_negative: bool = False
    min_stock_threshold: Decimal | None = None

    def to_policy(self) -> StockPolicy:
        return StockPolicy(
            prevent_negative=self.prevent_negative,
            min_stock_threshold=self.min_stock_threshold,
        )


@dataclass(frozen=True)
class ReceivingSettings:
    default_tolerance_percentage: Decimal = Decimal("0")
    near_expiry_days: int = 30


@dataclass(frozen=True)
class CostingSettings:
    significant_variance_percentage: Decimal = Decimal("10")
    price_variance_percentage: Decimal = Decimal("5")


@dataclass(frozen=True)
class LedgerAccountSettings:
    """GL account codes; names stay those of the default account map."""

    inventory_asset: str = "1200"
    accounts_payable: str = "2000"
    cost_of_goods_sold: str = "5000"
    purchase_price_variance: str = "5100"
    inventory_adjustment: str = "5200"

    def to_account_map(self) -> AccountMap:
        defaults = AccountMap()
        return AccountMap(
            inventory_asset=GLAccount(self.inventory_asset, defaults.inventory_asset.name),
            accounts_payable=GLAccount(self.accounts_payable, defaults.accounts_payable.name),
            cost_of_goods_sold=GLAccount(self.cost_of_goods_sold, defaults.cost_of_goods_sold.name),
            purchase_price_variance=GLAccount(
                self.purchase_price_variance, defaults.purchase_price_variance.name,
            ),
            inventory_adjustment=GLAccount(
                self.inventory_adjustment, defaults.inventory_adjustment.name,
            ),
        )


@dataclass(frozen=True)
class RecoverySettings:
    backoff_base_ms: int = 1000
    backoff_cap_ms: int = 10000
    queue_delay_seconds: int = 3600
    partial_recovery_ratio: Decimal = Decimal("1.5")


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcurementConfig:
    """Resolved configuration.  ``checksum`` identifies the resolved values."""

    stock: StockSettings = field(default_factory=StockSettings)
    receiving: ReceivingSettings = field(default_factory=ReceivingSettings)
    costing: CostingSettings = field(default_factory=CostingSettings)
    ledger_accounts: LedgerAccountSettings = field(default_factory=LedgerAccountSettings)
    recovery: RecoverySettings = field(default_factory=RecoverySettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""
