"""
Loyalty Config (Canonical)
==========================

Process-wide constants for the storefront loyalty program.

Rules encoded here:
- 1 point is earned per 1 EGP of subtotal.
- Points redeem in groups of 200; each full group is worth 4 EGP.
- 1000 points waive the shipping fee.
- Redemptions must be exact multiples of 200 points.
- The points discount can never exceed 10% of the subtotal.

Non-goals:
- No DB access.
- No HTTP / FastAPI logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional


D = Decimal


def _q2(x: Decimal) -> Decimal:
    return x.quantize(D("0.01"), rounding=ROUND_HALF_UP)


def _to_decimal(v: Any, default: Decimal = D("0")) -> Decimal:
    if v is None:
        return default
    if isinstance(v, Decimal):
        return v
    try:
        return D(str(v))
    except Exception:
        return default


def _to_int(v: Any, default: int) -> int:
    if v is None:
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class LoyaltyConfig:
    """
    Immutable loyalty rules.

    points_to_currency_ratio / discount_per_ratio:
        - Every full group of `points_to_currency_ratio` points is worth
          `discount_per_ratio` currency units. Partial groups are worth nothing.
    """
    points_per_currency_unit: Decimal = D("1")
    points_to_currency_ratio: int = 200
    discount_per_ratio: Decimal = D("4")
    shipping_points_cost: int = 1000
    min_points_use: int = 200
    free_shipping_threshold: Decimal = D("300")
    shipping_fee: Decimal = D("20")
    max_points_percentage: Decimal = D("10")

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        if self.points_per_currency_unit < D("0"):
            raise ValueError("points_per_currency_unit cannot be negative")
        if self.points_to_currency_ratio <= 0:
            raise ValueError("points_to_currency_ratio must be > 0")
        if self.discount_per_ratio <= D("0"):
            raise ValueError("discount_per_ratio must be > 0")
        if self.shipping_points_cost < 0:
            raise ValueError("shipping_points_cost cannot be negative")
        if self.min_points_use <= 0:
            raise ValueError("min_points_use must be > 0")
        if self.free_shipping_threshold < D("0"):
            raise ValueError("free_shipping_threshold cannot be negative")
        if self.shipping_fee < D("0"):
            raise ValueError("shipping_fee cannot be negative")
        if self.max_points_percentage < D("0") or self.max_points_percentage > D("100"):
            raise ValueError("max_points_percentage must be between 0 and 100")

    # -----------------------------
    # Serialization
    # -----------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "points_per_currency_unit": str(self.points_per_currency_unit),
            "points_to_currency_ratio": int(self.points_to_currency_ratio),
            "discount_per_ratio": str(_q2(self.discount_per_ratio)),
            "shipping_points_cost": int(self.shipping_points_cost),
            "min_points_use": int(self.min_points_use),
            "free_shipping_threshold": str(_q2(self.free_shipping_threshold)),
            "shipping_fee": str(_q2(self.shipping_fee)),
            "max_points_percentage": str(self.max_points_percentage),
        }

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> "LoyaltyConfig":
        """
        Build a config from a dict (env overrides, stored JSON).
        Missing or unparsable fields fall back to the defaults.
        """
        data = data or {}
        base = LoyaltyConfig()
        return LoyaltyConfig(
            points_per_currency_unit=_to_decimal(data.get("points_per_currency_unit"), base.points_per_currency_unit),
            points_to_currency_ratio=_to_int(data.get("points_to_currency_ratio"), base.points_to_currency_ratio),
            discount_per_ratio=_to_decimal(data.get("discount_per_ratio"), base.discount_per_ratio),
            shipping_points_cost=_to_int(data.get("shipping_points_cost"), base.shipping_points_cost),
            min_points_use=_to_int(data.get("min_points_use"), base.min_points_use),
            free_shipping_threshold=_to_decimal(data.get("free_shipping_threshold"), base.free_shipping_threshold),
            shipping_fee=_to_decimal(data.get("shipping_fee"), base.shipping_fee),
            max_points_percentage=_to_decimal(data.get("max_points_percentage"), base.max_points_percentage),
        )


DEFAULT_LOYALTY_CONFIG = LoyaltyConfig()
