"""
Member contributions: the debit side of a circle or a savings goal.

Every contribution is recorded in the ledger before the banking provider is
asked to move money, so a crash between the two leaves a ``pending`` row that
the next attempt picks up again instead of charging twice.
"""
import logging
import uuid
from datetime import datetime
from typing import Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from miturn.core.exceptions import CollaboratorError, ConflictError, NotFoundError, ValidationError
from miturn.models.circle import Circle, CircleMember
from miturn.models.enums import CircleStatus, TransactionStatus, TransactionType
from miturn.models.goal import SavingsGoal
from miturn.models.transaction import Transaction
from miturn.schemas.transaction import TransactionDraft
from miturn.services.ledger import Ledger
from miturn.services.transfers import TransferService
from miturn.utils.cycles import calculate_current_cycle

logger = logging.getLogger(__name__)

class ContributionService:
    def __init__(self, session: AsyncSession, ledger: Ledger, transfers: TransferService):
        self.session = session
        self.ledger = ledger
        self.transfers = transfers

    async def target_cycle(self, circle: Circle, user_id: uuid.UUID, now: datetime) -> Tuple[int | None, Transaction | None]:
        """
        Earliest cycle the member still owes, from the cycle being collected up
        to the current calendar cycle.

        Returns ``(cycle, pending)`` where ``pending`` is an unsent contribution
        left behind by an earlier attempt for that cycle, or ``(None, None)``
        when the member is fully paid up.
        """
        last_cycle = max(calculate_current_cycle(circle, now), circle.current_cycle)
        query = select(Transaction).where(
            Transaction.circle_id == circle.id,
            Transaction.user_id == user_id,
            Transaction.type == TransactionType.CONTRIBUTION,
            Transaction.cycle_number >= circle.current_cycle,
            Transaction.status.in_((TransactionStatus.PENDING, TransactionStatus.COMPLETED)),
        )
        result = await self.session.execute(query)
        live = {}
        for transaction in result.scalars().all():
            live.setdefault(transaction.cycle_number, []).append(transaction)

        for cycle in range(circle.current_cycle, last_cycle + 1):
            transactions = live.get(cycle)
            if not transactions:
                return cycle, None
            unsent = next(
                (t for t in transactions if t.status == TransactionStatus.PENDING and not t.provider_reference),
                None,
            )
            if unsent:
                return cycle, unsent
        return None, None

    async def contribute(
        self,
        circle: Circle,
        user_id: uuid.UUID,
        now: datetime,
        amount: int | None = None,
    ) -> Transaction:
        """
        Contribute to the earliest cycle the member owes and debit their account.

        Raises ``ConflictError`` when nothing is owed, and ``CollaboratorError``
        after marking the contribution failed when the debit is refused.
        """
        if circle.status != CircleStatus.ACTIVE:
            raise ValidationError("Circle is not active", circle_id=circle.id, status=circle.status)

        member = await self.session.get(CircleMember, (user_id, circle.id))
        if not member or not member.is_active:
            raise NotFoundError("Not an active member of this circle", circle_id=circle.id, user_id=user_id)

        cycle, transaction = await self.target_cycle(circle, user_id, now)
        if cycle is None:
            raise ConflictError(
                f"Already contributed for cycle {circle.current_cycle}",
                circle_id=circle.id,
                user_id=user_id,
            )

        if transaction is None:
            transaction = await self.ledger.record(TransactionDraft(
                user_id=user_id,
                circle_id=circle.id,
                amount=amount or circle.contribution_amount,
                type=TransactionType.CONTRIBUTION,
                cycle_number=cycle,
                transaction_date=now,
                description=f"Contribution to circle {circle.name} (Cycle {cycle})",
            ))
        else:
            logger.info(f"Resuming pending contribution {transaction.id} for cycle {cycle}")

        return await self._settle(transaction, transaction.description or circle.name)

    async def contribute_to_goal(self, goal: SavingsGoal, user_id: uuid.UUID, amount: int, now: datetime) -> Transaction:
        if goal.user_id != user_id:
            raise NotFoundError("Savings goal not found", goal_id=goal.id)
        if not goal.is_active:
            raise ValidationError("Savings goal is not active", goal_id=goal.id)

        transaction = await self.ledger.record(TransactionDraft(
            user_id=user_id,
            goal_id=goal.id,
            amount=amount,
            type=TransactionType.CONTRIBUTION,
            transaction_date=now,
            description=f"Savings toward {goal.name}",
        ))
        return await self._settle(transaction, transaction.description)

    async def _settle(self, transaction: Transaction, description: str) -> Transaction:
        try:
            reference = await self.transfers.create_transfer(
                transaction_id=transaction.id,
                user_id=transaction.user_id,
                amount=transaction.amount,
                direction="debit",
                description=description,
            )
        except CollaboratorError:
            await self.ledger.transition(transaction.id, TransactionStatus.FAILED)
            raise

        return await self.ledger.transition(transaction.id, TransactionStatus.COMPLETED, provider_reference=reference)
