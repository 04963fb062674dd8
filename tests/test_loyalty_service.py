import pytest

from apps.storefront.services.errors import LoyaltyError
from apps.storefront.services.loyalty.loyalty_engine import calculate_loyalty_points
from apps.storefront.services.loyalty.loyalty_service import LoyaltyService
from apps.storefront.services.loyalty.points_ledger import PointsValidation


@pytest.mark.asyncio
async def test_preview_uses_balance_snapshot(repo):
    repo.seed("u1", 1500)
    svc = LoyaltyService(repo)

    res = await svc.preview(user_id="u1", subtotal=250, points_to_use=400, use_points_for_shipping=True)

    assert res.is_valid
    assert res.points_discount == 8
    assert res.final_shipping_fee == 0
    assert res.total_points_used == 1400
    assert res.final_amount == 242


@pytest.mark.asyncio
async def test_preview_skips_shipping_points_above_threshold(repo):
    repo.seed("u1", 1500)
    svc = LoyaltyService(repo)

    res = await svc.preview(user_id="u1", subtotal=500, points_to_use=400, use_points_for_shipping=True)

    assert res.is_valid
    assert res.final_shipping_fee == 0
    assert res.shipping_points_used == 0
    assert res.total_points_used == 400
    assert res.final_amount == 492


@pytest.mark.asyncio
async def test_preview_unknown_user(repo):
    svc = LoyaltyService(repo)
    with pytest.raises(LoyaltyError) as exc:
        await svc.preview(user_id="ghost", subtotal=100, points_to_use=0, use_points_for_shipping=False)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_max_usable(repo):
    repo.seed("u1", 50000)
    svc = LoyaltyService(repo)
    assert await svc.max_usable(user_id="u1", subtotal=1000) == 5000


@pytest.mark.asyncio
async def test_process_order_points_records_used_then_earned(repo):
    repo.seed("u1", 1500)
    svc = LoyaltyService(repo)
    result = calculate_loyalty_points(500, 400, True, 1500, 20)

    tx = await svc.process_order_points(user_id="u1", order_id="o1", order_number="1001", result=result)

    assert [c[:2] for c in repo.calls] == [("USED", 1400), ("EARNED", 500)]
    assert tx.transaction_type == "redeem"
    assert tx.points_used == 1400
    assert tx.points_earned == 500
    assert tx.current_balance == 600
    assert repo.users["u1"] == 600


@pytest.mark.asyncio
async def test_process_order_points_rolls_back_on_earn_failure(repo):
    repo.seed("u1", 1500)
    repo.fail_on.add("EARNED")
    svc = LoyaltyService(repo)
    result = calculate_loyalty_points(500, 400, True, 1500, 20)

    with pytest.raises(LoyaltyError):
        await svc.process_order_points(user_id="u1", order_id="o1", order_number="1001", result=result)

    assert [c[:2] for c in repo.calls] == [("USED", 1400), ("EARNED", 500), ("REFUNDED", 1400)]
    assert repo.users["u1"] == 1500


@pytest.mark.asyncio
async def test_process_order_points_rejects_invalid_result(repo):
    repo.seed("u1", 100)
    svc = LoyaltyService(repo)
    result = calculate_loyalty_points(100, 200, False, 100)

    with pytest.raises(LoyaltyError) as exc:
        await svc.process_order_points(user_id="u1", order_id="o1", order_number="1001", result=result)

    assert exc.value.status_code == 400
    assert exc.value.code == "insufficient_balance"
    assert repo.calls == []


@pytest.mark.asyncio
async def test_process_order_points_continues_on_mismatch(repo):
    repo.seed("u1", 1000, history=[("EARNED", 800)])
    svc = LoyaltyService(repo)
    result = calculate_loyalty_points(100, 0, False, 1000)

    tx = await svc.process_order_points(user_id="u1", order_id="o2", order_number="1002", result=result)

    assert tx.transaction_type == "earn"
    assert tx.current_balance == 1100


@pytest.mark.asyncio
async def test_record_transaction_requires_positive_amount(repo):
    svc = LoyaltyService(repo)
    with pytest.raises(LoyaltyError):
        await svc.record_transaction("u1", "EARNED", 0)


@pytest.mark.asyncio
async def test_validate_user_prefers_server_rpc(repo):
    repo.seed("u1", 500)
    repo.validations["u1"] = PointsValidation(False, 500, 450, 50, "mismatch")
    svc = LoyaltyService(repo)

    v = await svc.validate_user("u1")

    assert not v.is_valid
    assert v.calculated_points == 450


@pytest.mark.asyncio
async def test_validate_user_falls_back_to_history(repo):
    repo.seed("u1", 700, history=[("EARNED", 1000), ("USED", 400)])
    svc = LoyaltyService(repo)

    v = await svc.validate_user("u1")

    assert not v.is_valid
    assert v.calculated_points == 600
    assert v.difference == 100


@pytest.mark.asyncio
async def test_history_newest_first(repo):
    repo.seed("u1", 600, history=[("EARNED", 1000), ("USED", 400)])
    svc = LoyaltyService(repo)

    rows = await svc.history("u1", limit=1)

    assert len(rows) == 1
    assert rows[0].transaction_type == "USED"


@pytest.mark.asyncio
async def test_audit_all_users(repo):
    repo.seed("good", 300)
    repo.seed("bad", 900, history=[("EARNED", 600)])
    repo.seed("empty", 0)
    svc = LoyaltyService(repo)

    report = await svc.audit_all_users()

    assert report.total_users == 2
    assert report.valid_users == 1
    assert report.invalid_users == 1
    assert report.invalid_details == [
        {"user_id": "bad", "current_points": 900, "calculated_points": 600, "difference": 300}
    ]


@pytest.mark.asyncio
async def test_fix_user_points(repo):
    repo.seed("u1", 900, history=[("EARNED", 600)])
    svc = LoyaltyService(repo)

    res = await svc.fix_user_points("u1")

    assert res.success
    assert res.old_points == 900
    assert res.new_points == 600
    assert res.difference == 300
    assert repo.calls == [("DEDUCTED", 300, None)]
    assert repo.users["u1"] == res.new_points

    after = await svc.validate_user("u1")
    assert after.is_valid
    assert after.current_points == 600


@pytest.mark.asyncio
async def test_fix_user_points_credits_deficit(repo):
    repo.seed("u1", 500, history=[("EARNED", 1000), ("USED", 400)])
    svc = LoyaltyService(repo)

    res = await svc.fix_user_points("u1")

    assert res.new_points == 600
    assert res.difference == -100
    assert repo.users["u1"] == 600
    assert repo.calls == [("EARNED", 100, None)]


@pytest.mark.asyncio
async def test_fix_user_points_is_stable_when_repeated(repo):
    repo.seed("u1", 900, history=[("EARNED", 600)])
    svc = LoyaltyService(repo)

    await svc.fix_user_points("u1")
    second = await svc.fix_user_points("u1")

    assert second.difference == 0
    assert repo.users["u1"] == 600
    assert len(repo.calls) == 1


@pytest.mark.asyncio
async def test_fix_user_points_noop_when_valid(repo):
    repo.seed("u1", 600)
    svc = LoyaltyService(repo)

    res = await svc.fix_user_points("u1")

    assert res.difference == 0
    assert res.old_points == res.new_points == 600
    assert repo.calls == []


@pytest.mark.asyncio
async def test_cancel_order(repo):
    repo.cancellations["o1"] = {"success": True, "message": "cancelled", "points_deducted": 50, "points_refunded": 400}
    svc = LoyaltyService(repo)

    res = await svc.cancel_order("o1")
    missing = await svc.cancel_order("o2")

    assert res.success
    assert res.points_deducted == 50
    assert res.points_refunded == 400
    assert not missing.success
    assert missing.message == "No result returned"
