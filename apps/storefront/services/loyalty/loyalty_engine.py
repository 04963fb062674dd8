"""
Loyalty Engine (Canonical)
==========================

Purpose:
- Turn a proposed redemption (subtotal, shipping fee, balance snapshot, points
  requested, free-shipping request) into a validated financial breakdown.
- Pure functions of their arguments: no DB, no HTTP, no shared mutable state.

Rules:
- Business-rule violations never raise. They come back as a result with
  is_valid=False, a stable error code and a message.
- Points charged are re-derived from the discount actually applied, never
  taken from the request.
- calculate_points_needed_for_discount rounds up while convert_points_to_egp
  rounds down, so the two are not exact inverses. A customer redeeming is
  never short-changed.

Concurrency:
- Results depend only on the balance snapshot passed in. Callers persisting
  the deltas must re-read and update the balance atomically.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import Any, Dict, Literal, Optional

from .loyalty_config import DEFAULT_LOYALTY_CONFIG, D, LoyaltyConfig, _q2, _to_decimal


TransactionType = Literal["earn", "redeem", "shipping"]
TRANSACTION_TYPES = ("earn", "redeem", "shipping")

ErrorCode = Literal[
    "INVALID_AMOUNT",
    "INVALID_POINTS_VALUE",
    "INSUFFICIENT_BALANCE",
    "DISCOUNT_CAP_EXCEEDED",
]


def _floor(x: Decimal) -> int:
    return int(x.to_integral_value(rounding=ROUND_FLOOR))


def _ceil(x: Decimal) -> int:
    return int(x.to_integral_value(rounding=ROUND_CEILING))


def _money(x: Decimal) -> str:
    return str(_q2(x))


def _now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    error: Optional[str] = None
    code: Optional[ErrorCode] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"is_valid": self.is_valid}
        if not self.is_valid:
            out["error"] = self.error
            out["code"] = self.code
        return out


@dataclass(frozen=True)
class LoyaltyBreakdown:
    """
    Display/audit copy of the monetary figures of a calculation.
    """
    subtotal: Decimal
    shipping_fee: Decimal
    points_discount: Decimal
    final_shipping_fee: Decimal
    final_amount: Decimal
    discount_points_used: int
    shipping_points_used: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": _money(self.subtotal),
            "shipping_fee": _money(self.shipping_fee),
            "points_discount": _money(self.points_discount),
            "final_shipping_fee": _money(self.final_shipping_fee),
            "final_amount": _money(self.final_amount),
            "discount_points_used": int(self.discount_points_used),
            "shipping_points_used": int(self.shipping_points_used),
        }


@dataclass(frozen=True)
class LoyaltyCalculationResult:
    points_discount: Decimal
    final_shipping_fee: Decimal
    final_amount: Decimal
    points_earned: int
    total_points_used: int
    shipping_points_used: int
    is_valid: bool
    breakdown: LoyaltyBreakdown
    discount_points_used: int = 0
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "points_discount": _money(self.points_discount),
            "final_shipping_fee": _money(self.final_shipping_fee),
            "final_amount": _money(self.final_amount),
            "points_earned": int(self.points_earned),
            "total_points_used": int(self.total_points_used),
            "discount_points_used": int(self.discount_points_used),
            "shipping_points_used": int(self.shipping_points_used),
            "is_valid": self.is_valid,
            "error": self.error,
            "error_code": self.error_code,
            "breakdown": self.breakdown.to_dict(),
        }


@dataclass(frozen=True)
class LoyaltyTransaction:
    """
    Audit record for an accepted calculation. Built here, persisted elsewhere.
    current_balance is filled in by the persistence layer.
    """
    user_id: str
    order_id: str
    points_used: int
    points_earned: int
    transaction_type: TransactionType
    current_balance: Optional[int] = None
    timestamp: str = field(default_factory=_now_utc_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "order_id": self.order_id,
            "points_used": int(self.points_used),
            "points_earned": int(self.points_earned),
            "current_balance": None if self.current_balance is None else int(self.current_balance),
            "transaction_type": self.transaction_type,
            "timestamp": self.timestamp,
        }


class LoyaltyEngine:
    """
    Stateless calculator bound to one LoyaltyConfig.
    """

    def __init__(self, config: LoyaltyConfig = DEFAULT_LOYALTY_CONFIG) -> None:
        self.config = config

    # -----------------------------
    # Shared rules
    # -----------------------------
    def discount_for_points(self, points: int) -> Decimal:
        """
        Currency value of a points quantity. Only full ratio groups count.
        Used by validation, calculation and display conversion alike.
        """
        cfg = self.config
        ratios = _floor(D(points) / D(cfg.points_to_currency_ratio))
        return D(ratios) * cfg.discount_per_ratio

    def max_allowed_discount(self, subtotal: Any) -> Decimal:
        cfg = self.config
        return _to_decimal(subtotal) * cfg.max_points_percentage / D("100")

    def shipping_fee_for_subtotal(self, subtotal: Any) -> Decimal:
        """
        Default shipping fee for an order: free above the threshold.
        """
        cfg = self.config
        amount = _to_decimal(subtotal)
        if amount.is_finite() and amount > cfg.free_shipping_threshold:
            return D("0")
        return cfg.shipping_fee

    # -----------------------------
    # Validation
    # -----------------------------
    def validate_inputs(
        self,
        subtotal: Any,
        points_to_use: int,
        current_user_points: int,
        use_points_for_shipping: bool,
    ) -> ValidationResult:
        """
        Checks run in order and stop at the first failure.
        """
        cfg = self.config
        amount = _to_decimal(subtotal)

        if not amount.is_finite() or amount <= D("0"):
            return ValidationResult(False, "order amount must be greater than zero.", "INVALID_AMOUNT")

        if points_to_use < 0:
            return ValidationResult(False, "points used cannot be negative.", "INVALID_POINTS_VALUE")

        if points_to_use > 0 and points_to_use % cfg.min_points_use != 0:
            return ValidationResult(
                False,
                f"points used must be a multiple of {cfg.min_points_use}.",
                "INVALID_POINTS_VALUE",
            )

        required = points_to_use + (cfg.shipping_points_cost if use_points_for_shipping else 0)
        if required > current_user_points:
            return ValidationResult(False, "insufficient points.", "INSUFFICIENT_BALANCE")

        if self.discount_for_points(points_to_use) > self.max_allowed_discount(amount):
            return ValidationResult(
                False,
                f"points discount cannot exceed {cfg.max_points_percentage.normalize():f}% of the order amount.",
                "DISCOUNT_CAP_EXCEEDED",
            )

        return ValidationResult(True)

    # -----------------------------
    # Main calculation
    # -----------------------------
    def calculate_loyalty_points(
        self,
        subtotal: Any,
        points_to_use: int,
        use_points_for_shipping: bool,
        current_user_points: int,
        shipping_fee: Any = None,
    ) -> LoyaltyCalculationResult:
        cfg = self.config
        amount = _to_decimal(subtotal)
        fee = cfg.shipping_fee if shipping_fee is None else _to_decimal(shipping_fee)

        validation = self.validate_inputs(amount, points_to_use, current_user_points, use_points_for_shipping)
        if not validation.is_valid:
            # NaN or infinite subtotals are reported as 0
            shown = amount if amount.is_finite() else D("0")
            final_amount = max(D("0"), shown + fee)
            return LoyaltyCalculationResult(
                points_discount=D("0"),
                final_shipping_fee=fee,
                final_amount=final_amount,
                points_earned=0,
                total_points_used=0,
                shipping_points_used=0,
                is_valid=False,
                error=validation.error,
                error_code=validation.code,
                breakdown=LoyaltyBreakdown(
                    subtotal=shown,
                    shipping_fee=fee,
                    points_discount=D("0"),
                    final_shipping_fee=fee,
                    final_amount=final_amount,
                    discount_points_used=0,
                    shipping_points_used=0,
                ),
            )

        raw_discount = self.discount_for_points(points_to_use)
        final_discount = min(raw_discount, self.max_allowed_discount(amount))

        # points charged follow the discount actually granted
        actual_points_used = _floor(final_discount / cfg.discount_per_ratio * D(cfg.points_to_currency_ratio))

        if use_points_for_shipping and current_user_points >= actual_points_used + cfg.shipping_points_cost:
            final_shipping_fee = D("0")
            shipping_points_used = cfg.shipping_points_cost
        else:
            final_shipping_fee = fee
            shipping_points_used = 0

        final_amount = max(D("0"), amount + final_shipping_fee - final_discount)
        points_earned = _floor(amount * cfg.points_per_currency_unit)

        return LoyaltyCalculationResult(
            points_discount=final_discount,
            final_shipping_fee=final_shipping_fee,
            final_amount=final_amount,
            points_earned=points_earned,
            total_points_used=actual_points_used + shipping_points_used,
            discount_points_used=actual_points_used,
            shipping_points_used=shipping_points_used,
            is_valid=True,
            breakdown=LoyaltyBreakdown(
                subtotal=amount,
                shipping_fee=fee,
                points_discount=final_discount,
                final_shipping_fee=final_shipping_fee,
                final_amount=final_amount,
                discount_points_used=actual_points_used,
                shipping_points_used=shipping_points_used,
            ),
        )

    # -----------------------------
    # Display helpers
    # -----------------------------
    def convert_points_to_egp(self, points: int) -> Decimal:
        return self.discount_for_points(points)

    def calculate_points_needed_for_discount(self, discount_amount: Any) -> int:
        """
        Smallest multiple of the ratio group covering the discount (rounds up).
        """
        cfg = self.config
        groups = _ceil(_to_decimal(discount_amount) / cfg.discount_per_ratio)
        return groups * cfg.points_to_currency_ratio

    def can_use_shipping_points(self, user_points: int, points_used_for_discount: int = 0) -> bool:
        return (user_points - points_used_for_discount) >= self.config.shipping_points_cost

    def get_max_usable_points(self, subtotal: Any, user_points: int) -> int:
        """
        Slider limit for the UI. Never negative; 0 for a non-positive subtotal.
        """
        cfg = self.config
        amount = _to_decimal(subtotal)
        if not amount.is_finite() or amount <= D("0"):
            return 0
        by_discount = self.calculate_points_needed_for_discount(self.max_allowed_discount(amount))
        by_balance = (max(0, int(user_points)) // cfg.min_points_use) * cfg.min_points_use
        return max(0, min(by_discount, by_balance))

    # -----------------------------
    # Audit record
    # -----------------------------
    def create_loyalty_transaction(
        self,
        user_id: str,
        order_id: str,
        result: LoyaltyCalculationResult,
        transaction_type: Optional[TransactionType] = None,
    ) -> LoyaltyTransaction:
        if not result.is_valid:
            raise ValueError("cannot build a loyalty transaction from an invalid calculation")
        if transaction_type is None:
            transaction_type = self._infer_transaction_type(result)
        if transaction_type not in TRANSACTION_TYPES:
            raise ValueError(f"unknown transaction_type: {transaction_type}")

        return LoyaltyTransaction(
            user_id=user_id,
            order_id=order_id,
            points_used=int(result.total_points_used),
            points_earned=int(result.points_earned),
            transaction_type=transaction_type,
        )

    @staticmethod
    def _infer_transaction_type(result: LoyaltyCalculationResult) -> TransactionType:
        if result.total_points_used == 0:
            return "earn"
        if result.discount_points_used == 0 and result.shipping_points_used > 0:
            return "shipping"
        return "redeem"


# ---------------------------------------
# Module-level API bound to the default config
# ---------------------------------------
default_engine = LoyaltyEngine()

validate_inputs = default_engine.validate_inputs
calculate_loyalty_points = default_engine.calculate_loyalty_points
convert_points_to_egp = default_engine.convert_points_to_egp
calculate_points_needed_for_discount = default_engine.calculate_points_needed_for_discount
can_use_shipping_points = default_engine.can_use_shipping_points
get_max_usable_points = default_engine.get_max_usable_points
create_loyalty_transaction = default_engine.create_loyalty_transaction
