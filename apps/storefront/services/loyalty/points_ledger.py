"""
Points Ledger (Canonical)
=========================

Purpose:
- Model the persisted points history of a user.
- Reconcile a stored balance against that history.
- Derive the corrections and order deltas the service should persist.

Pure domain logic: no DB, no HTTP.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple

from .loyalty_engine import LoyaltyCalculationResult


LedgerType = Literal["EARNED", "USED", "REFUNDED", "DEDUCTED"]
LEDGER_TYPES = ("EARNED", "USED", "REFUNDED", "DEDUCTED")

_CREDIT_TYPES = ("EARNED", "REFUNDED")

# balance repairs move the stored balance only; history sums skip them
CORRECTION_PREFIX = "Points correction:"


@dataclass(frozen=True)
class LedgerTransaction:
    """
    One row of loyalty_transactions.
    points_amount is always a magnitude; the sign comes from transaction_type.
    """
    id: str
    user_id: str
    transaction_type: LedgerType
    points_amount: int
    points_before: int
    points_after: int
    order_id: Optional[str] = None
    description: Optional[str] = None
    created_at: str = ""
    created_by: str = "system"

    @property
    def signed_delta(self) -> int:
        amount = abs(int(self.points_amount))
        return amount if self.transaction_type in _CREDIT_TYPES else -amount

    @property
    def is_correction(self) -> bool:
        return (self.description or "").startswith(CORRECTION_PREFIX)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "transaction_type": self.transaction_type,
            "points_amount": int(self.points_amount),
            "points_before": int(self.points_before),
            "points_after": int(self.points_after),
            "description": self.description,
            "created_at": self.created_at,
            "created_by": self.created_by,
        }

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "LedgerTransaction":
        tx_type = str(row.get("transaction_type") or "").upper()
        if tx_type not in LEDGER_TYPES:
            raise ValueError(f"unknown transaction_type: {row.get('transaction_type')}")
        return LedgerTransaction(
            id=str(row.get("id")),
            user_id=str(row.get("user_id")),
            order_id=row.get("order_id"),
            transaction_type=tx_type,  # type: ignore[arg-type]
            points_amount=int(row.get("points_amount") or 0),
            points_before=int(row.get("points_before") or 0),
            points_after=int(row.get("points_after") or 0),
            description=row.get("description"),
            created_at=str(row.get("created_at") or ""),
            created_by=str(row.get("created_by") or "system"),
        )


@dataclass(frozen=True)
class PointsValidation:
    is_valid: bool
    current_points: int
    calculated_points: int
    difference: int
    error_message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "current_points": int(self.current_points),
            "calculated_points": int(self.calculated_points),
            "difference": int(self.difference),
            "error_message": self.error_message,
        }

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "PointsValidation":
        current = int(row.get("current_points") or 0)
        calculated = int(row.get("calculated_points") or 0)
        return PointsValidation(
            is_valid=bool(row.get("is_valid")),
            current_points=current,
            calculated_points=calculated,
            difference=int(row.get("difference", current - calculated) or 0),
            error_message=str(row.get("error_message") or ""),
        )


class PointsLedger:
    """
    Reconciliation rules over a user's transaction history.
    """

    def calculated_balance(self, transactions: Iterable[LedgerTransaction]) -> int:
        balance = sum(t.signed_delta for t in transactions if not t.is_correction)
        return max(0, balance)

    def validate(self, current_points: int, transactions: Iterable[LedgerTransaction]) -> PointsValidation:
        calculated = self.calculated_balance(transactions)
        difference = int(current_points) - calculated
        if difference == 0:
            return PointsValidation(True, int(current_points), calculated, 0)
        return PointsValidation(
            is_valid=False,
            current_points=int(current_points),
            calculated_points=calculated,
            difference=difference,
            error_message=f"stored balance differs from history by {difference} points",
        )

    @staticmethod
    def correction_for(validation: PointsValidation) -> Optional[Tuple[LedgerType, int]]:
        """
        Transaction that moves the stored balance to the calculated one.
        Written with a CORRECTION_PREFIX description so it does not count
        towards the history it repairs.
        """
        if validation.is_valid or validation.difference == 0:
            return None
        if validation.difference > 0:
            return "DEDUCTED", abs(validation.difference)
        return "EARNED", abs(validation.difference)

    @staticmethod
    def deltas_for_result(result: LoyaltyCalculationResult) -> List[Tuple[LedgerType, int]]:
        """
        USED first, then EARNED, skipping zero amounts.
        """
        if not result.is_valid:
            raise ValueError("invalid calculation has no ledger deltas")
        deltas: List[Tuple[LedgerType, int]] = []
        if result.total_points_used > 0:
            deltas.append(("USED", int(result.total_points_used)))
        if result.points_earned > 0:
            deltas.append(("EARNED", int(result.points_earned)))
        return deltas

