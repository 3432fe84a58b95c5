from decimal import Decimal

import pytest

from paypal_checkout.errors import RiskError, RiskErrorKind
from paypal_checkout.risk import CallableRiskGate, RiskGate, ThresholdRiskGate


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0.01", "1.00", "9.99", "10.00"])
async def test_amounts_up_to_threshold_are_always_approved(amount):
    gate = ThresholdRiskGate(auto_approve_threshold=Decimal("10.00"))

    for _ in range(20):
        assert await gate.evaluate("ORDER1", Decimal(amount)) is True


@pytest.mark.asyncio
async def test_amounts_above_review_ceiling_are_denied():
    gate = ThresholdRiskGate(Decimal("10.00"), Decimal("1000.00"))

    assert await gate.evaluate("ORDER1", Decimal("999.99")) is True
    assert await gate.evaluate("ORDER1", Decimal("1000.01")) is False


@pytest.mark.asyncio
async def test_non_positive_amounts_are_denied():
    gate = ThresholdRiskGate()

    assert await gate.evaluate("ORDER1", Decimal("0")) is False


def test_reference_policy_satisfies_the_risk_gate_contract():
    assert isinstance(ThresholdRiskGate(), RiskGate)
    assert isinstance(CallableRiskGate(lambda order_id, amount: None), RiskGate)


@pytest.mark.asyncio
async def test_callable_gate_passes_decision_through(mocker):
    func = mocker.AsyncMock(return_value=False)
    gate = CallableRiskGate(func)

    assert await gate.evaluate("ORDER1", Decimal("500.00")) is False
    func.assert_awaited_once_with("ORDER1", Decimal("500.00"))


@pytest.mark.asyncio
async def test_callable_gate_reports_evaluator_failure_as_unavailable(mocker):
    gate = CallableRiskGate(mocker.AsyncMock(side_effect=ConnectionError("down")))

    with pytest.raises(RiskError) as excinfo:
        await gate.evaluate("ORDER1", Decimal("500.00"))

    assert excinfo.value.kind is RiskErrorKind.UNAVAILABLE
    assert excinfo.value.order_id == "ORDER1"
