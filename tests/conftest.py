from typing import Any, Dict, List, Optional

import pytest

from apps.storefront.services.errors import LoyaltyError
from apps.storefront.services.loyalty.points_ledger import LedgerTransaction, PointsValidation


class FakeRepository:
    """In-memory stand-in for LoyaltyRepository."""

    def __init__(self) -> None:
        self.users: Dict[str, int] = {}
        self.transactions: Dict[str, List[LedgerTransaction]] = {}
        self.validations: Dict[str, PointsValidation] = {}
        self.cancellations: Dict[str, Dict[str, Any]] = {}
        self.fail_on: set = set()
        self.calls: List[tuple] = []

    def seed(self, user_id: str, points: int, history: Optional[List[tuple]] = None) -> None:
        """history: (transaction_type, amount) pairs, oldest first. Defaults to one EARNED row."""
        self.users[user_id] = points
        self.transactions[user_id] = []
        if history is None:
            history = [("EARNED", points)] if points else []
        balance = 0
        for i, (tx_type, amount) in enumerate(history):
            delta = amount if tx_type in ("EARNED", "REFUNDED") else -amount
            self.transactions[user_id].append(
                LedgerTransaction(
                    id=f"{user_id}-seed-{i}",
                    user_id=user_id,
                    transaction_type=tx_type,
                    points_amount=amount,
                    points_before=balance,
                    points_after=max(0, balance + delta),
                    created_at=f"2024-01-01T00:00:{i:02d}+00:00",
                )
            )
            balance = max(0, balance + delta)

    async def get_user_points(self, user_id: str) -> int:
        if user_id not in self.users:
            raise LoyaltyError("User not found", 404, "user_not_found")
        return self.users[user_id]

    async def list_users_with_points(self) -> List[Dict[str, Any]]:
        return [{"id": uid, "loyalty_points": pts} for uid, pts in self.users.items() if pts > 0]

    async def add_transaction(self, user_id, transaction_type, points_amount, order_id=None, description=None):
        self.calls.append((transaction_type, points_amount, order_id))
        if transaction_type in self.fail_on:
            raise LoyaltyError("add_loyalty_transaction failed", 502, "upstream_error")
        before = self.users.get(user_id, 0)
        delta = points_amount if transaction_type in ("EARNED", "REFUNDED") else -points_amount
        after = max(0, before + delta)
        self.users[user_id] = after
        history = self.transactions.setdefault(user_id, [])
        tx = LedgerTransaction(
            id=f"{user_id}-{len(history)}",
            user_id=user_id,
            order_id=order_id,
            transaction_type=transaction_type,
            points_amount=points_amount,
            points_before=before,
            points_after=after,
            description=description,
            created_at=f"2024-06-01T00:00:{len(history):02d}+00:00",
        )
        history.append(tx)
        return tx.to_dict()

    async def list_transactions(self, user_id: str, limit: Optional[int] = 50) -> List[LedgerTransaction]:
        rows = list(reversed(self.transactions.get(user_id, [])))
        return rows[:limit] if limit else rows

    async def validate_user_points(self, user_id: str) -> Optional[PointsValidation]:
        return self.validations.get(user_id)

    async def cancel_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        return self.cancellations.get(order_id)

    async def ping(self) -> Dict[str, bool]:
        return {"users": True, "loyalty_transactions": True}


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()
