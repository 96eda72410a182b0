"""
Transaction ledger.

The ledger is the only writer of ``Transaction`` rows. New rows start as
``pending`` and move exactly once to ``completed``, ``failed`` or
``cancelled``; the move is a conditional UPDATE so that of two concurrent
transitions only the first one lands. Circle balances are always folded from
completed rows, never stored.
"""
import logging
import uuid
from typing import List

from sqlalchemy import case, func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from miturn.core.exceptions import CannotReopenTransaction, NotFoundError, ValidationError
from miturn.models.enums import TransactionStatus, TransactionType
from miturn.models.transaction import Transaction
from miturn.models.user import get_utc_now
from miturn.schemas.transaction import TransactionDraft, TransactionFilters, TransactionStats
from miturn.services.events import LedgerEventBus

logger = logging.getLogger(__name__)

class Ledger:
    def __init__(self, session: AsyncSession, events: LedgerEventBus | None = None):
        self.session = session
        self.events = events or LedgerEventBus()

    async def record(self, draft: TransactionDraft) -> Transaction:
        """
        Append a new ``pending`` transaction.
        """
        if draft.amount <= 0:
            raise ValidationError("Transaction amount must be positive", amount=draft.amount)
        if (draft.circle_id is None) == (draft.goal_id is None):
            raise ValidationError("A transaction belongs to exactly one circle or goal")
        if draft.type == TransactionType.PAYOUT and draft.circle_id is None:
            raise ValidationError("Payouts can only be made from a circle")

        transaction = Transaction.model_validate(draft.model_dump(exclude_none=True))
        transaction.status = TransactionStatus.PENDING
        self.session.add(transaction)
        await self.session.commit()
        await self.session.refresh(transaction)

        logger.info(f"Recorded {transaction.type} {transaction.id} of {transaction.amount} for user {transaction.user_id}")
        return transaction

    async def get(self, transaction_id: uuid.UUID) -> Transaction:
        transaction = await self.session.get(Transaction, transaction_id)
        if not transaction:
            raise NotFoundError("Transaction not found", transaction_id=transaction_id)
        return transaction

    async def transition(
        self,
        transaction_id: uuid.UUID,
        new_status: TransactionStatus,
        provider_reference: str | None = None,
    ) -> Transaction:
        """
        Move a pending transaction to a terminal status.

        Raises ``CannotReopenTransaction`` when the row is already terminal,
        including when a concurrent writer got there first.
        """
        new_status = TransactionStatus(new_status)
        if not new_status.is_terminal:
            raise ValidationError("Transactions can only move to a terminal status", status=new_status)

        transaction = await self.get(transaction_id)
        previous_status = transaction.status

        values = {"status": new_status, "updated_at": get_utc_now()}
        if provider_reference:
            values["provider_reference"] = provider_reference

        result = await self.session.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.status == TransactionStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # nothing was written; reload what the winning writer stored
            await self.session.refresh(transaction)
            raise CannotReopenTransaction(
                f"Transaction is already {transaction.status}",
                transaction_id=transaction_id,
                status=transaction.status,
                requested=new_status,
            )

        await self.session.commit()
        await self.session.refresh(transaction)
        logger.info(f"Transaction {transaction_id} moved {previous_status} -> {new_status}")

        await self.events.publish(transaction, previous_status)
        return transaction

    async def balance_of(self, circle_id: uuid.UUID) -> int:
        signed_amount = case(
            (Transaction.type == TransactionType.CONTRIBUTION, Transaction.amount),
            else_=-Transaction.amount,
        )
        query = select(func.coalesce(func.sum(signed_amount), 0)).where(
            Transaction.circle_id == circle_id,
            Transaction.status == TransactionStatus.COMPLETED,
        )
        result = await self.session.execute(query)
        return int(result.scalar_one())

    def _filtered(self, query, filters: TransactionFilters):
        if filters.circle_id:
            query = query.where(Transaction.circle_id == filters.circle_id)
        if filters.goal_id:
            query = query.where(Transaction.goal_id == filters.goal_id)
        if filters.user_id:
            query = query.where(Transaction.user_id == filters.user_id)
        if filters.type:
            query = query.where(Transaction.type == filters.type)
        if filters.status:
            query = query.where(Transaction.status == filters.status)
        if filters.date_from:
            query = query.where(Transaction.transaction_date >= filters.date_from)
        if filters.date_to:
            query = query.where(Transaction.transaction_date <= filters.date_to)
        return query

    async def list(self, filters: TransactionFilters) -> List[Transaction]:
        query = self._filtered(select(Transaction), filters)
        query = query.order_by(Transaction.transaction_date.desc()).offset(filters.offset).limit(filters.limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def stats(self, filters: TransactionFilters) -> TransactionStats:
        def total_where(condition):
            return func.coalesce(func.sum(case((condition, Transaction.amount), else_=0)), 0)

        query = self._filtered(
            select(
                total_where(Transaction.type == TransactionType.CONTRIBUTION),
                total_where(Transaction.type == TransactionType.PAYOUT),
                total_where(Transaction.status == TransactionStatus.PENDING),
                total_where(Transaction.status == TransactionStatus.COMPLETED),
                total_where(Transaction.status == TransactionStatus.FAILED),
                func.count(Transaction.id),
            ),
            filters,
        )
        row = (await self.session.execute(query)).one()
        return TransactionStats(
            total_contributions=int(row[0]),
            total_payouts=int(row[1]),
            pending_amount=int(row[2]),
            completed_amount=int(row[3]),
            failed_amount=int(row[4]),
            transaction_count=int(row[5]),
        )

    async def find_for_cycle(
        self,
        circle_id: uuid.UUID,
        cycle_number: int,
        type: TransactionType,
        user_id: uuid.UUID | None = None,
        statuses: tuple = (TransactionStatus.PENDING, TransactionStatus.COMPLETED),
    ) -> List[Transaction]:
        """
        Live (not failed or cancelled) transactions of one type for a circle cycle.
        """
        query = select(Transaction).where(
            Transaction.circle_id == circle_id,
            Transaction.cycle_number == cycle_number,
            Transaction.type == type,
            Transaction.status.in_(statuses),
        )
        if user_id:
            query = query.where(Transaction.user_id == user_id)
        result = await self.session.execute(query.order_by(Transaction.created_at))
        return list(result.scalars().all())
