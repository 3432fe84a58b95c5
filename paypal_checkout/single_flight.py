from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, Optional, Set

import structlog

from paypal_checkout.errors import OrderError, OrderErrorKind

logger = structlog.get_logger(__name__)


class SingleFlightGuard:
    """
    Rejects a second concurrent execution for the same key.

    The check-and-claim happens without an ``await`` in between, which makes
    it atomic on a single event loop. Keys are released when the guarded
    block exits, whatever the outcome.
    """

    def __init__(self) -> None:
        self._in_flight: Set[Hashable] = set()

    @asynccontextmanager
    async def claim(self, key: Hashable, *, order_id: Optional[str] = None) -> AsyncIterator[None]:
        if key in self._in_flight:
            logger.warning("request_already_processing", key=str(key))
            raise OrderError(
                OrderErrorKind.ALREADY_PROCESSING,
                f"Request {key!r} is already being processed",
                order_id=order_id,
            )
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)
