"""
Loyalty Repository (Supabase/Postgres Adapter)
==============================================

Purpose:
- DB-facing adapter for user balances and the loyalty transaction history.
- Balance changes go through RPCs so the read-modify-write happens inside one
  database transaction.

Expected objects:
1) public.users
   - id uuid primary key
   - loyalty_points int default 0

2) public.loyalty_transactions
   - id uuid primary key
   - user_id uuid
   - order_id uuid null
   - transaction_type text  (EARNED | USED | REFUNDED | DEDUCTED)
   - points_amount int
   - points_before int
   - points_after int
   - description text null
   - created_at timestamptz default now()
   - created_by text

3) RPCs
   - add_loyalty_transaction(p_user_id, p_order_id, p_transaction_type, p_points_amount, p_description)
   - validate_user_points(user_uuid) -> setof (is_valid, current_points, calculated_points, difference, error_message)
   - handle_order_cancellation(p_order_id) -> setof (success, message, points_deducted, points_refunded)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from apps.storefront.services.errors import LoyaltyError
from apps.storefront.services.loyalty.points_ledger import LedgerTransaction, PointsValidation

log = logging.getLogger("storefront.repository")

# rows requested per history page; PostgREST caps responses at max-rows (1000 by default)
HISTORY_PAGE_SIZE = 1000


def _first_row(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, dict):
        return data
    if isinstance(data, list) and len(data) > 0 and isinstance(data[0], dict):
        return data[0]
    return None


class LoyaltyRepository:
    def __init__(
        self,
        supabase_client: Any,
        *,
        table_users: str = "users",
        table_transactions: str = "loyalty_transactions",
    ) -> None:
        self.sb = supabase_client
        self.table_users = table_users
        self.table_transactions = table_transactions

    def _execute(self, what: str, query: Any) -> Any:
        try:
            return query.execute()
        except Exception as ex:
            log.error("Supabase %s failed: %s", what, ex)
            raise LoyaltyError(f"{what} failed: {ex}", 502, "upstream_error") from ex

    # -----------------------------
    # Balances
    # -----------------------------
    async def get_user_points(self, user_id: str) -> int:
        r = self._execute(
            "get_user_points",
            self.sb.table(self.table_users).select("loyalty_points").eq("id", user_id).limit(1),
        )
        row = _first_row(getattr(r, "data", None))
        if row is None:
            raise LoyaltyError("User not found", 404, "user_not_found")
        return int(row.get("loyalty_points") or 0)

    async def list_users_with_points(self) -> List[Dict[str, Any]]:
        r = self._execute(
            "list_users_with_points",
            self.sb.table(self.table_users).select("id, loyalty_points").gt("loyalty_points", 0),
        )
        rows = getattr(r, "data", None) or []
        return [x for x in rows if isinstance(x, dict)]

    # -----------------------------
    # Transactions
    # -----------------------------
    async def add_transaction(
        self,
        user_id: str,
        transaction_type: str,
        points_amount: int,
        order_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Dict[str, Any]:
        log.info("Adding loyalty transaction: %s %s points for user %s", transaction_type, points_amount, user_id)
        r = self._execute(
            "add_loyalty_transaction",
            self.sb.rpc(
                "add_loyalty_transaction",
                {
                    "p_user_id": user_id,
                    "p_order_id": order_id,
                    "p_transaction_type": transaction_type,
                    "p_points_amount": int(points_amount),
                    "p_description": description,
                },
            ),
        )
        return _first_row(getattr(r, "data", None)) or {}

    def _history_query(self, user_id: str) -> Any:
        return (
            self.sb.table(self.table_transactions)
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
            .order("id", desc=True)
        )

    async def list_transactions(self, user_id: str, limit: Optional[int] = 50) -> List[LedgerTransaction]:
        """
        Newest first. limit=None reads the full history page by page.
        """
        if limit:
            r = self._execute("list_transactions", self._history_query(user_id).limit(limit))
            rows = getattr(r, "data", None) or []
        else:
            rows = []
            start = 0
            while True:
                end = start + HISTORY_PAGE_SIZE - 1
                r = self._execute("list_transactions", self._history_query(user_id).range(start, end))
                page = getattr(r, "data", None) or []
                if not page:
                    break
                rows.extend(page)
                # the server may cap pages below the requested size
                start += len(page)
        return [LedgerTransaction.from_row(x) for x in rows if isinstance(x, dict)]

    # -----------------------------
    # Server-side checks
    # -----------------------------
    async def validate_user_points(self, user_id: str) -> Optional[PointsValidation]:
        r = self._execute("validate_user_points", self.sb.rpc("validate_user_points", {"user_uuid": user_id}))
        row = _first_row(getattr(r, "data", None))
        if row is None:
            return None
        return PointsValidation.from_row(row)

    async def cancel_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        r = self._execute("handle_order_cancellation", self.sb.rpc("handle_order_cancellation", {"p_order_id": order_id}))
        return _first_row(getattr(r, "data", None))

    async def ping(self) -> Dict[str, bool]:
        checks: Dict[str, bool] = {}
        for table in (self.table_users, self.table_transactions):
            try:
                self.sb.table(table).select("*").limit(1).execute()
                checks[table] = True
            except Exception as ex:
                log.warning("Health probe on %s failed: %s", table, ex)
                checks[table] = False
        return checks
