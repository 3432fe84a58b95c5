"""
Risk gate contract and the reference threshold policy.

The orchestrator only depends on ``RiskGate``; any object with a matching
``evaluate`` coroutine can be plugged in.
"""
from decimal import Decimal
from typing import Awaitable, Callable, Protocol, runtime_checkable

import structlog

from paypal_checkout.errors import RiskError, RiskErrorKind

logger = structlog.get_logger(__name__)


@runtime_checkable
class RiskGate(Protocol):
    async def evaluate(self, order_id: str, amount: Decimal) -> bool:
        """Return True to approve ``order_id``; raise ``RiskError`` if undecidable."""
        ...


class ThresholdRiskGate:
    """
    Deterministic reference policy.

    Amounts up to ``auto_approve_threshold`` are approved without review,
    amounts up to ``review_ceiling`` are approved after review and anything
    larger is denied.
    """

    def __init__(
        self,
        auto_approve_threshold: Decimal = Decimal("10.00"),
        review_ceiling: Decimal = Decimal("10000.00"),
    ) -> None:
        self.auto_approve_threshold = auto_approve_threshold
        self.review_ceiling = review_ceiling

    async def evaluate(self, order_id: str, amount: Decimal) -> bool:
        logger.info("risk_check", order_id=order_id, amount=str(amount))
        if amount <= 0:
            logger.info("risk_rejected", order_id=order_id, reason="non_positive_amount")
            return False
        if amount <= self.auto_approve_threshold:
            logger.info("risk_approved", order_id=order_id, reason="small_amount")
            return True
        if amount <= self.review_ceiling:
            logger.info("risk_approved", order_id=order_id, reason="within_review_ceiling")
            return True
        logger.info("risk_rejected", order_id=order_id, reason="above_review_ceiling")
        return False


class CallableRiskGate:
    """Adapt a plain ``async (order_id, amount) -> bool`` function to ``RiskGate``."""

    def __init__(self, func: Callable[[str, Decimal], Awaitable[bool]]) -> None:
        self.func = func

    async def evaluate(self, order_id: str, amount: Decimal) -> bool:
        try:
            return bool(await self.func(order_id, amount))
        except RiskError:
            raise
        except Exception as exc:
            raise RiskError(
                RiskErrorKind.UNAVAILABLE,
                f"Risk evaluator failed: {type(exc).__name__}",
                order_id=order_id,
            ) from exc
