"""Asset registry types: risk categories, assets, and price snapshots.

All prices are Decimal.  Serialisation helpers produce JSON-safe dicts with
string-encoded Decimals.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Iterable, Iterator, Optional

_ZERO = Decimal("0")


class RiskCategory:
    """Asset risk categories (string constants).  Category drives volatility."""

    LOW_RISK = "low_risk"
    FAKE = "fake"
    SHITCOIN = "shitcoin"

    ALL = frozenset({LOW_RISK, FAKE, SHITCOIN})

    @classmethod
    def normalize(cls, raw: Any) -> str:
        """Map ``"LowRisk"``, ``"low-risk"``, ``"ShitCoin"`` etc. to a constant.

        Case and separators (``_``, ``-``, spaces) are ignored.
        """
        token = re.sub(r"[\s_\-]+", "", str(raw or "")).lower()
        for category in cls.ALL:
            if token == category.replace("_", ""):
                return category
        known = ", ".join(sorted(cls.ALL))
        raise ValueError(f"unknown risk category {raw!r}. Expected one of: {known}")


@dataclass(frozen=True)
class Asset:
    """A tradable asset at one point in time."""

    asset_id: str
    name: str
    category: str
    price: Decimal

    def with_price(self, price: Decimal) -> "Asset":
        return replace(self, price=price)

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "name": self.name,
            "category": self.category,
            "price": str(self.price),
        }


@dataclass(frozen=True)
class PriceSnapshot:
    """Immutable point-in-time copy of every asset price.

    ``seq`` is the tick that produced the snapshot (0 = seed prices, before
    the first tick).  ``assets`` keeps registry order.
    """

    seq: int
    assets: tuple[Asset, ...]

    def __iter__(self) -> Iterator[Asset]:
        return iter(self.assets)

    def __len__(self) -> int:
        return len(self.assets)

    @property
    def asset_ids(self) -> list[str]:
        return [a.asset_id for a in self.assets]

    def get(self, asset_id: str) -> Optional[Asset]:
        for asset in self.assets:
            if asset.asset_id == asset_id:
                return asset
        return None

    def price_of(self, asset_id: str) -> Optional[Decimal]:
        asset = self.get(asset_id)
        return asset.price if asset is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "assets": [a.to_dict() for a in self.assets],
        }


#: Seed market: a few coins across every category.
DEFAULT_ASSETS: tuple[Asset, ...] = (
    Asset("SC1", "DogeFlop", RiskCategory.SHITCOIN, Decimal("0.0005")),
    Asset("SC2", "MoonRug", RiskCategory.FAKE, Decimal("0.003")),
    Asset("LR1", "BlueCoin", RiskCategory.LOW_RISK, Decimal("100")),
    Asset("LR2", "StableX", RiskCategory.LOW_RISK, Decimal("1")),
    Asset("SC3", "Pepe2.0", RiskCategory.SHITCOIN, Decimal("0.00009")),
)


def build_registry(assets: Iterable[Asset]) -> tuple[Asset, ...]:
    """Validate a seed asset list and return it as a tuple.

    Raises:
        ValueError: empty list, duplicate or blank ids, unknown category, or a
                    non-positive starting price.
    """
    registry: list[Asset] = []
    seen: set[str] = set()
    for asset in assets:
        asset_id = str(asset.asset_id).strip()
        if not asset_id:
            raise ValueError("asset_id must be a non-empty string")
        if asset_id in seen:
            raise ValueError(f"duplicate asset_id {asset_id!r}")
        if asset.category not in RiskCategory.ALL:
            raise ValueError(
                f"asset {asset_id!r} has unknown category {asset.category!r}"
            )
        if not isinstance(asset.price, Decimal) or not asset.price.is_finite() or asset.price <= _ZERO:
            raise ValueError(f"asset {asset_id!r} must have a positive Decimal price; got {asset.price!r}")
        seen.add(asset_id)
        registry.append(asset if asset_id == asset.asset_id else replace(asset, asset_id=asset_id))

    if not registry:
        raise ValueError("asset registry must contain at least one asset")
    return tuple(registry)
