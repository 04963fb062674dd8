"""
Loyalty Service (Canonical Integration Layer)
=============================================

Purpose:
- Orchestrate the loyalty engine + points ledger with a repository (DB adapter).
- Keep routes thin. Keep domain logic in canonical modules.

This service:
- Previews redemptions against the user's current balance snapshot
- Persists order point movements (USED then EARNED) with a refund rollback
- Reconciles stored balances against transaction history (single user / all)
- Repairs mismatched balances and documents the correction
- Delegates order cancellation penalties to the database

No HTTP here. Routes should call this.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from apps.storefront.repositories.loyalty_repository import LoyaltyRepository
from apps.storefront.services.errors import LoyaltyError
from apps.storefront.services.loyalty.loyalty_config import D, _to_decimal
from apps.storefront.services.loyalty.loyalty_engine import (
    LoyaltyCalculationResult,
    LoyaltyEngine,
    LoyaltyTransaction,
    default_engine,
)
from apps.storefront.services.loyalty.points_ledger import (
    CORRECTION_PREFIX,
    LedgerTransaction,
    LedgerType,
    PointsLedger,
    PointsValidation,
)

log = logging.getLogger("storefront.loyalty")


@dataclass(frozen=True)
class CancellationResult:
    success: bool
    message: str
    points_deducted: int = 0
    points_refunded: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class AuditReport:
    total_users: int
    valid_users: int
    invalid_users: int
    invalid_details: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class FixResult:
    success: bool
    old_points: int
    new_points: int
    difference: int

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class LoyaltyService:
    """
    Repo contract:
    - get_user_points(user_id) -> int
    - list_users_with_points() -> List[Dict]
    - add_transaction(user_id, transaction_type, points_amount, order_id, description) -> Dict
    - list_transactions(user_id, limit) -> List[LedgerTransaction]
    - validate_user_points(user_id) -> PointsValidation|None
    - cancel_order(order_id) -> Dict|None
    """

    def __init__(
        self,
        repo: LoyaltyRepository,
        engine: Optional[LoyaltyEngine] = None,
        ledger: Optional[PointsLedger] = None,
    ) -> None:
        self.repo = repo
        self.engine = engine or default_engine
        self.ledger = ledger or PointsLedger()

    # -----------------------------
    # Checkout preview
    # -----------------------------
    async def preview(
        self,
        *,
        user_id: str,
        subtotal: Decimal,
        points_to_use: int,
        use_points_for_shipping: bool,
        shipping_fee: Optional[Decimal] = None,
    ) -> LoyaltyCalculationResult:
        balance = await self.repo.get_user_points(user_id)
        if shipping_fee is None:
            shipping_fee = self.engine.shipping_fee_for_subtotal(subtotal)
        # nothing to waive
        if _to_decimal(shipping_fee) <= D("0"):
            use_points_for_shipping = False
        return self.engine.calculate_loyalty_points(
            subtotal,
            points_to_use,
            use_points_for_shipping,
            balance,
            shipping_fee,
        )

    async def max_usable(self, *, user_id: str, subtotal: Decimal) -> int:
        balance = await self.repo.get_user_points(user_id)
        return self.engine.get_max_usable_points(subtotal, balance)

    # -----------------------------
    # Transactions
    # -----------------------------
    async def record_transaction(
        self,
        user_id: str,
        transaction_type: LedgerType,
        points_amount: int,
        order_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        if points_amount <= 0:
            raise LoyaltyError("points_amount must be > 0", 400, "invalid_points")
        return await self.repo.add_transaction(
            user_id,
            transaction_type,
            int(points_amount),
            order_id=order_id,
            description=description,
        )

    async def process_order_points(
        self,
        *,
        user_id: str,
        order_id: str,
        order_number: str,
        result: LoyaltyCalculationResult,
    ) -> LoyaltyTransaction:
        """
        Persist the point movements of an accepted checkout calculation.

        USED is written before EARNED. If EARNED fails after points were used,
        the used points are returned with a REFUNDED transaction and the
        original error is re-raised.
        """
        if not result.is_valid:
            raise LoyaltyError(result.error or "invalid loyalty calculation", 400, (result.error_code or "invalid").lower())

        log.info("Processing order points for order %s", order_number)

        validation = await self.validate_user(user_id)
        if not validation.is_valid:
            log.warning(
                "User points invalid before order processing: user=%s current=%s calculated=%s",
                user_id,
                validation.current_points,
                validation.calculated_points,
            )

        amount = result.final_amount
        used = 0
        for tx_type, points in self.ledger.deltas_for_result(result):
            if tx_type == "USED":
                await self.record_transaction(
                    user_id,
                    "USED",
                    points,
                    order_id=order_id,
                    description=f"Points used for order #{order_number} ({amount} EGP)",
                )
                used = points
                continue

            try:
                await self.record_transaction(
                    user_id,
                    "EARNED",
                    points,
                    order_id=order_id,
                    description=f"Points earned from order #{order_number} ({amount} EGP)",
                )
            except LoyaltyError:
                if used > 0:
                    log.warning("Rolling back %s used points for order %s", used, order_number)
                    await self.record_transaction(
                        user_id,
                        "REFUNDED",
                        used,
                        order_id=order_id,
                        description=f"Rollback: refund points due to earning failure for order #{order_number}",
                    )
                raise

        tx = self.engine.create_loyalty_transaction(user_id, order_id, result)
        balance = await self.repo.get_user_points(user_id)
        log.info("Order points processed for order %s (balance=%s)", order_number, balance)
        return dataclasses.replace(tx, current_balance=balance)

    async def history(self, user_id: str, limit: int = 50) -> List[LedgerTransaction]:
        return await self.repo.list_transactions(user_id, limit=limit)

    # -----------------------------
    # Reconciliation
    # -----------------------------
    async def validate_user(self, user_id: str) -> PointsValidation:
        """
        Server-side validation when the RPC answers, local reduction otherwise.
        """
        validation = await self.repo.validate_user_points(user_id)
        if validation is None:
            current = await self.repo.get_user_points(user_id)
            transactions = await self.repo.list_transactions(user_id, limit=None)
            validation = self.ledger.validate(current, transactions)

        if not validation.is_valid:
            log.warning(
                "Points mismatch detected for user %s: current=%s calculated=%s difference=%s",
                user_id,
                validation.current_points,
                validation.calculated_points,
                validation.difference,
            )
        return validation

    async def audit_all_users(self) -> AuditReport:
        log.info("Starting comprehensive points audit")
        users = await self.repo.list_users_with_points()

        valid = 0
        details: List[Dict[str, Any]] = []
        for user in users:
            user_id = str(user.get("id"))
            validation = await self.validate_user(user_id)
            if validation.is_valid:
                valid += 1
                continue
            details.append(
                {
                    "user_id": user_id,
                    "current_points": validation.current_points,
                    "calculated_points": validation.calculated_points,
                    "difference": validation.difference,
                }
            )

        report = AuditReport(
            total_users=len(users),
            valid_users=valid,
            invalid_users=len(details),
            invalid_details=details,
        )
        log.info("Points audit completed: %s", report.to_dict())
        return report

    async def fix_user_points(self, user_id: str) -> FixResult:
        validation = await self.validate_user(user_id)
        if validation.is_valid:
            return FixResult(True, validation.current_points, validation.current_points, 0)

        # the correction transaction is the only balance write
        correction = self.ledger.correction_for(validation)
        if correction is not None:
            tx_type, points = correction
            await self.record_transaction(
                user_id,
                tx_type,
                points,
                description=f"{CORRECTION_PREFIX} fixed mismatch ({validation.difference} points)",
            )

        persisted = await self.repo.get_user_points(user_id)
        if persisted != validation.calculated_points:
            log.warning(
                "Balance after correction differs from history for user %s: persisted=%s calculated=%s",
                user_id,
                persisted,
                validation.calculated_points,
            )

        log.info("Points fixed for user %s: old=%s new=%s", user_id, validation.current_points, persisted)
        return FixResult(True, validation.current_points, persisted, validation.current_points - persisted)

    # -----------------------------
    # Cancellation
    # -----------------------------
    async def cancel_order(self, order_id: str) -> CancellationResult:
        log.info("Processing order cancellation: %s", order_id)
        row = await self.repo.cancel_order(order_id)
        if not row:
            return CancellationResult(False, "No result returned")
        return CancellationResult(
            success=bool(row.get("success")),
            message=str(row.get("message") or ""),
            points_deducted=int(row.get("points_deducted") or 0),
            points_refunded=int(row.get("points_refunded") or 0),
        )
