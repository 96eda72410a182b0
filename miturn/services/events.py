import logging
from datetime import datetime
from typing import Awaitable, Callable, List, NamedTuple

from miturn.core.exceptions import MiTurnError
from miturn.models.enums import TransactionStatus
from miturn.models.transaction import Transaction
from miturn.models.user import get_utc_now

logger = logging.getLogger(__name__)

class LedgerEvent(NamedTuple):
    transaction: Transaction
    previous_status: TransactionStatus
    ts: datetime

LedgerHandler = Callable[[LedgerEvent], Awaitable[None]]

class LedgerEventBus:
    """
    Fan-out of ledger transitions to in-process subscribers.

    Handlers run after the transition is committed, in subscription order.
    A domain error in one handler is logged and does not stop the others.
    """
    def __init__(self):
        self._subscribers: List[LedgerHandler] = []

    def subscribe(self, handler: LedgerHandler) -> None:
        if handler not in self._subscribers:
            self._subscribers.append(handler)

    def unsubscribe(self, handler: LedgerHandler) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    async def publish(self, transaction: Transaction, previous_status: TransactionStatus) -> LedgerEvent:
        event = LedgerEvent(transaction=transaction, previous_status=previous_status, ts=get_utc_now())
        for handler in list(self._subscribers):
            try:
                await handler(event)
            except MiTurnError as e:
                logger.error(f"Ledger subscriber {getattr(handler, '__qualname__', handler)} failed for transaction {transaction.id}: {e.message}")
        return event
