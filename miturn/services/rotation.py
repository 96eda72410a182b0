"""
Payout rotation engine.

A started circle pays its whole cycle pot to one member per cycle, in payout
position order. The circle row carries the rotation state (``current_cycle``
and ``rotation_pointer``); it only ever moves forward, through a conditional
UPDATE keyed on the cycle it was read at. The payout row is recorded and the
pointer advanced before any money moves, so re-running a pass after a crash
finishes the same payout instead of starting a second one. The same UPDATE
stamps ``last_payout_id``; only the payout named there is ever credited.
"""
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from miturn.core.config import settings
from miturn.core.exceptions import (
    CollaboratorError,
    ConflictError,
    PayoutDeferred,
    ValidationError,
)
from miturn.models.circle import Circle, CircleMember
from miturn.models.enums import (
    CircleStatus,
    CycleStatus,
    MemberCycleStatus,
    PayoutPreference,
    TransactionStatus,
    TransactionType,
)
from miturn.models.transaction import Transaction
from miturn.models.user import User, get_utc_now
from miturn.schemas.passes import DeferredPayout, PayoutPassSummary
from miturn.schemas.transaction import TransactionDraft
from miturn.services.analytics import AnalyticsService
from miturn.services.events import LedgerEvent
from miturn.services.ledger import Ledger
from miturn.services.reminders import ReminderDispatcher
from miturn.services.transfers import TransferDeclined, TransferService
from miturn.utils.cycles import cycle_due_date

logger = logging.getLogger(__name__)

@dataclass
class MemberCycleState:
    user_id: uuid.UUID
    payout_position: int
    status: MemberCycleStatus
    late_by: timedelta = timedelta(0)

@dataclass
class CycleEvaluation:
    circle_id: uuid.UUID
    cycle_number: int
    status: CycleStatus
    recipient_id: Optional[uuid.UUID]
    recipient_position: Optional[int]
    due_date: datetime
    grace_ends: datetime
    collected: int
    members: List[MemberCycleState] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def overdue_members(self) -> List[MemberCycleState]:
        return [m for m in self.members if m.status == MemberCycleStatus.OVERDUE]

    @property
    def all_paid(self) -> bool:
        return bool(self.members) and all(m.status == MemberCycleStatus.PAID for m in self.members)

@dataclass
class PayoutOutcome:
    circle_id: uuid.UUID
    cycle_number: int
    status: CycleStatus
    transaction: Optional[Transaction] = None
    recovered: bool = False
    overdue_members: List[MemberCycleState] = field(default_factory=list)

class PayoutRotationEngine:
    def __init__(
        self,
        session: AsyncSession,
        ledger: Ledger,
        transfers: TransferService,
        analytics: AnalyticsService,
        reminders: ReminderDispatcher | None = None,
        grace_period_days: int | None = None,
        partial_policy: str | None = None,
    ):
        self.session = session
        self.ledger = ledger
        self.transfers = transfers
        self.analytics = analytics
        self.reminders = reminders
        self.grace_period_days = settings.PAYOUT_GRACE_PERIOD_DAYS if grace_period_days is None else grace_period_days
        self.partial_policy = partial_policy or settings.PAYOUT_PARTIAL_POLICY

    def grace_for(self, circle: Circle) -> int:
        if circle.grace_period_days is not None:
            return circle.grace_period_days
        return self.grace_period_days

    async def members_of(self, circle_id: uuid.UUID, active_only: bool = True) -> List[CircleMember]:
        query = select(CircleMember).where(CircleMember.circle_id == circle_id)
        if active_only:
            query = query.where(CircleMember.is_active == True)  # noqa: E712
        result = await self.session.execute(query.order_by(CircleMember.payout_position))
        return list(result.scalars().all())

    async def initialize(self, circle: Circle, now: datetime | None = None) -> Circle:
        """
        Freeze payout positions and start cycle 1.

        Fixed circles keep join order; random circles shuffle everyone.
        """
        if circle.status != CircleStatus.PENDING:
            raise ValidationError("Circle is already active or completed", circle_id=circle.id)

        members = await self.members_of(circle.id)
        if circle.target_members and len(members) < circle.target_members:
            raise ValidationError(
                f"Cannot start circle. Need {circle.target_members} members, but have {len(members)}",
                circle_id=circle.id,
            )
        if len(members) < 2:
            raise ValidationError("Need at least 2 members to start a circle", circle_id=circle.id)

        if circle.payout_preference == PayoutPreference.RANDOM:
            random.shuffle(members)
        else:
            members.sort(key=lambda m: (m.payout_position, m.join_date))

        # park positions out of range first so reassigning never collides on the unique index
        for index, member in enumerate(members):
            member.payout_position = -(index + 1)
            self.session.add(member)
        await self.session.flush()
        for index, member in enumerate(members):
            member.payout_position = index + 1
            self.session.add(member)

        circle.status = CircleStatus.ACTIVE
        circle.current_cycle = 1
        circle.rotation_pointer = 1
        if not circle.cycle_start_date:
            circle.cycle_start_date = now or get_utc_now()
        self.session.add(circle)
        await self.session.commit()
        await self.session.refresh(circle)

        self.analytics.track("circle_rotation_managed", circle.created_by, {
            "circle_id": circle.id,
            "action": "initialize",
            "members": len(members),
            "payout_preference": circle.payout_preference,
        })
        logger.info(f"Rotation initialized for circle {circle.id} with {len(members)} members")
        return circle

    async def member_statuses(self, circle: Circle, cycle_number: int, now: datetime) -> List[MemberCycleState]:
        due = cycle_due_date(circle, cycle_number)
        paid = await self.ledger.find_for_cycle(
            circle.id, cycle_number, TransactionType.CONTRIBUTION, statuses=(TransactionStatus.COMPLETED,)
        )
        paid_ids = {t.user_id for t in paid}

        states = []
        for member in await self.members_of(circle.id):
            if member.user_id in paid_ids:
                states.append(MemberCycleState(member.user_id, member.payout_position, MemberCycleStatus.PAID))
            elif now > due:
                states.append(MemberCycleState(member.user_id, member.payout_position, MemberCycleStatus.OVERDUE, now - due))
            else:
                states.append(MemberCycleState(member.user_id, member.payout_position, MemberCycleStatus.DUE))
        return states

    async def collected_for(self, circle_id: uuid.UUID, cycle_number: int) -> int:
        paid = await self.ledger.find_for_cycle(
            circle_id, cycle_number, TransactionType.CONTRIBUTION, statuses=(TransactionStatus.COMPLETED,)
        )
        return sum(t.amount for t in paid)

    async def evaluate(self, circle: Circle, now: datetime) -> CycleEvaluation:
        """
        Decide whether the current cycle's payout can go ahead.

        Everyone paid means ready, even before the due date. Past the due date
        the payout waits out the grace period; after that, unpaid members are
        left overdue and the payout proceeds unless the policy is ``block``.
        A ready payout is still deferred if the circle cannot cover it.
        """
        if circle.status != CircleStatus.ACTIVE:
            raise ValidationError("Circle is not active", circle_id=circle.id, status=circle.status)

        cycle = circle.current_cycle
        members = await self.member_statuses(circle, cycle, now)
        recipient = next((m for m in members if m.payout_position >= circle.rotation_pointer), None)
        due = cycle_due_date(circle, cycle)
        grace_ends = due + timedelta(days=self.grace_for(circle))
        collected = await self.collected_for(circle.id, cycle)

        evaluation = CycleEvaluation(
            circle_id=circle.id,
            cycle_number=cycle,
            status=CycleStatus.COLLECTING,
            recipient_id=recipient.user_id if recipient else None,
            recipient_position=recipient.payout_position if recipient else None,
            due_date=due,
            grace_ends=grace_ends,
            collected=collected,
            members=members,
        )

        if recipient is None:
            evaluation.status, evaluation.reason = CycleStatus.DEFERRED, "no_recipient"
        elif evaluation.all_paid:
            evaluation.status = CycleStatus.READY
        elif now <= due:
            evaluation.status = CycleStatus.COLLECTING
        elif now <= grace_ends:
            evaluation.status, evaluation.reason = CycleStatus.DEFERRED, "awaiting_contributions"
        elif self.partial_policy == "block":
            evaluation.status, evaluation.reason = CycleStatus.DEFERRED, "members_overdue"
        else:
            evaluation.status = CycleStatus.READY

        if evaluation.status == CycleStatus.READY:
            balance = await self.ledger.balance_of(circle.id)
            if collected <= 0 or collected > balance:
                evaluation.status, evaluation.reason = CycleStatus.DEFERRED, "insufficient_funds"

        return evaluation

    async def _advance(self, circle: Circle, cycle_number: int, recipient_position: int, payout_id: uuid.UUID) -> Circle:
        members = await self.members_of(circle.id)
        next_pointer = recipient_position + 1
        values = {"current_cycle": cycle_number + 1, "rotation_pointer": next_pointer, "last_payout_id": payout_id}
        if not any(m.payout_position >= next_pointer for m in members):
            values["status"] = CircleStatus.COMPLETED

        result = await self.session.execute(
            update(Circle)
            .where(Circle.id == circle.id, Circle.current_cycle == cycle_number)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.refresh(circle)
            raise ConflictError(
                f"Circle rotation already moved past cycle {cycle_number}",
                circle_id=circle.id,
                current_cycle=circle.current_cycle,
            )

        await self.session.commit()
        await self.session.refresh(circle)
        self.analytics.track("circle_rotation_managed", circle.created_by, {
            "circle_id": circle.id,
            "action": "complete" if circle.status == CircleStatus.COMPLETED else "advance",
            "cycle_number": circle.current_cycle,
            "rotation_pointer": circle.rotation_pointer,
        })
        return circle

    async def _execute(self, payout: Transaction) -> Transaction:
        """
        Send the credit for a payout the rotation has already moved past.

        A declined transfer fails the payout and raises ``PayoutDeferred``;
        any other transfer error leaves it pending for the next pass.
        """
        await self.session.refresh(payout)
        if payout.status != TransactionStatus.PENDING or payout.provider_reference:
            return payout

        try:
            reference = await self.transfers.create_transfer(
                transaction_id=payout.id,
                user_id=payout.user_id,
                amount=payout.amount,
                direction="credit",
                description=payout.description or "Circle payout",
            )
        except CollaboratorError as e:
            self.analytics.track("payout_transfer_failed", payout.user_id, {
                "transaction_id": payout.id,
                "error": e.message,
            })
            if not isinstance(e, TransferDeclined):
                raise
            payout = await self.ledger.transition(payout.id, TransactionStatus.FAILED)
            logger.warning(f"Payout {payout.id} for circle {payout.circle_id} declined: {e.message}")
            raise PayoutDeferred(
                f"Payout for cycle {payout.cycle_number} failed: {e.message}",
                reason="transfer_declined",
                circle_id=payout.circle_id,
                cycle_number=payout.cycle_number,
                transaction_id=payout.id,
            ) from e

        payout = await self.ledger.transition(payout.id, TransactionStatus.COMPLETED, provider_reference=reference)
        self.analytics.track("payout_completed", payout.user_id, {
            "transaction_id": payout.id,
            "circle_id": payout.circle_id,
            "cycle_number": payout.cycle_number,
            "amount": payout.amount,
        })
        return payout

    async def process_circle(self, circle: Circle, now: datetime | None = None) -> PayoutOutcome:
        """
        Pay the current cycle's recipient if the cycle is ready.

        Raises ``PayoutDeferred`` when it is not (or the bank declines the
        credit), ``ConflictError`` when another writer advanced the rotation
        first, and ``CollaboratorError`` when the transfer fails (the payout
        then stays pending for the next pass).
        """
        now = now or get_utc_now()
        if circle.status != CircleStatus.ACTIVE:
            raise ValidationError("Circle is not active", circle_id=circle.id, status=circle.status)

        cycle = circle.current_cycle
        existing = await self.ledger.find_for_cycle(circle.id, cycle, TransactionType.PAYOUT)
        if existing:
            # a payout was recorded but the pointer never moved
            payout = existing[0]
            recipient = await self.session.get(CircleMember, (payout.user_id, circle.id))
            position = recipient.payout_position if recipient else circle.rotation_pointer
            await self._advance(circle, cycle, position, payout.id)
            logger.warning(f"Recovered payout {payout.id} for circle {circle.id} cycle {cycle}")
            payout = await self._execute(payout)
            return PayoutOutcome(circle.id, cycle, CycleStatus.PAID, payout, recovered=True)

        evaluation = await self.evaluate(circle, now)
        if evaluation.status == CycleStatus.COLLECTING:
            return PayoutOutcome(circle.id, cycle, CycleStatus.COLLECTING)
        if evaluation.status == CycleStatus.DEFERRED:
            self.analytics.track("payout_deferred", evaluation.recipient_id, {
                "circle_id": circle.id,
                "cycle_number": cycle,
                "reason": evaluation.reason,
                "overdue_members": len(evaluation.overdue_members),
            })
            logger.info(f"Payout for circle {circle.id} cycle {cycle} deferred: {evaluation.reason}")
            raise PayoutDeferred(
                f"Payout for cycle {cycle} deferred: {evaluation.reason}",
                reason=evaluation.reason,
                overdue_members=evaluation.overdue_members,
                circle_id=circle.id,
                cycle_number=cycle,
            )

        payout = await self.ledger.record(TransactionDraft(
            user_id=evaluation.recipient_id,
            circle_id=circle.id,
            amount=evaluation.collected,
            type=TransactionType.PAYOUT,
            cycle_number=cycle,
            transaction_date=now,
            description=f"Payout from {circle.name} (Cycle {cycle})",
        ))
        try:
            await self._advance(circle, cycle, evaluation.recipient_position, payout.id)
        except ConflictError:
            # a recovering pass may have advanced the rotation for this very payout; it sends the credit
            if circle.last_payout_id != payout.id:
                await self.ledger.transition(payout.id, TransactionStatus.CANCELLED)
            raise

        logger.info(f"Payout {payout.id} of {payout.amount} to {payout.user_id} for circle {circle.id} cycle {cycle}")
        payout = await self._execute(payout)
        return PayoutOutcome(circle.id, cycle, CycleStatus.PAID, payout, overdue_members=evaluation.overdue_members)

    async def settle_pending_payouts(self, summary: PayoutPassSummary | None = None) -> int:
        """
        Retry the transfer for payouts recorded by an earlier pass that never reached the bank.

        Only payouts the rotation has already advanced for are retried; one
        that is still waiting on its circle's pointer is recovered through
        ``process_circle``. Failures are recorded on ``summary`` and do not
        hold up the payouts after them.
        """
        query = (
            select(Transaction)
            .join(Circle, Circle.last_payout_id == Transaction.id)
            .where(
                Transaction.type == TransactionType.PAYOUT,
                Transaction.status == TransactionStatus.PENDING,
                Transaction.provider_reference == None,  # noqa: E711
            )
            .order_by(Transaction.created_at)
        )
        result = await self.session.execute(query)
        settled = 0
        for payout in list(result.scalars().all()):
            circle_id, cycle = payout.circle_id, payout.cycle_number
            try:
                await self._execute(payout)
            except PayoutDeferred as e:
                if summary is not None:
                    summary.deferred.append(DeferredPayout(circle_id=circle_id, cycle_number=cycle, reason=e.reason))
                continue
            except CollaboratorError as e:
                if summary is not None:
                    summary.errors.append(f"{circle_id}: {e.message}")
                continue
            settled += 1
        return settled

    async def run_pass(self, now: datetime | None = None) -> PayoutPassSummary:
        now = now or get_utc_now()
        summary = PayoutPassSummary(run_at=now)

        summary.payouts_recovered += await self.settle_pending_payouts(summary)

        result = await self.session.execute(select(Circle.id).where(Circle.status == CircleStatus.ACTIVE))
        circle_ids = list(result.scalars().all())

        for circle_id in circle_ids:
            circle = await self.session.get(Circle, circle_id)
            if not circle or circle.status != CircleStatus.ACTIVE:
                continue
            summary.circles_checked += 1
            cycle = circle.current_cycle
            overdue = []
            try:
                outcome = await self.process_circle(circle, now)
                overdue = outcome.overdue_members
                if outcome.status == CycleStatus.PAID:
                    if outcome.recovered:
                        summary.payouts_recovered += 1
                    else:
                        summary.payouts_processed += 1
            except PayoutDeferred as e:
                overdue = e.overdue_members
                summary.deferred.append(DeferredPayout(
                    circle_id=circle_id,
                    cycle_number=cycle,
                    reason=e.reason,
                    overdue_user_ids=e.overdue_user_ids,
                ))
            except ConflictError as e:
                logger.warning(f"Skipping circle {circle_id}: {e.message}")
                continue
            except CollaboratorError as e:
                summary.errors.append(f"{circle_id}: {e.message}")
                continue

            if overdue and self.reminders:
                circle = await self.session.get(Circle, circle_id)
                sent = await self.reminders.remind_overdue(circle, cycle, overdue, self.grace_for(circle))
                summary.reminders_sent += sum(1 for r in sent if r.success)

        logger.info(
            f"Payout pass: {summary.circles_checked} circles, {summary.payouts_processed} paid, "
            f"{len(summary.deferred)} deferred, {len(summary.errors)} errors"
        )
        return summary

    async def rotation_status(self, circle: Circle) -> dict:
        members = await self.members_of(circle.id, active_only=False)
        users = {}
        if members:
            result = await self.session.execute(select(User).where(User.id.in_([m.user_id for m in members])))
            users = {u.id: u for u in result.scalars().all()}

        complete = circle.status == CircleStatus.COMPLETED
        next_member = None
        if circle.status == CircleStatus.ACTIVE:
            next_member = next(
                (m for m in members if m.is_active and m.payout_position >= circle.rotation_pointer), None
            )

        return {
            "circle_id": circle.id,
            "status": circle.status,
            "total_members": len(members),
            "current_cycle": circle.current_cycle,
            "current_payout_position": circle.rotation_pointer,
            "next_payout_member": next_member.user_id if next_member else None,
            "next_payout_date": (
                cycle_due_date(circle, circle.current_cycle)
                if circle.status == CircleStatus.ACTIVE else None
            ),
            "rotation_complete": complete,
            "members": [
                {
                    "user_id": m.user_id,
                    "display_name": users[m.user_id].display_name if m.user_id in users else None,
                    "payout_position": m.payout_position,
                    "role": m.role,
                    "is_active": m.is_active,
                    "has_received_payout": circle.status != CircleStatus.PENDING and (
                        complete or m.payout_position < circle.rotation_pointer
                    ),
                }
                for m in members
            ],
        }

    async def on_ledger_event(self, event: LedgerEvent) -> None:
        """
        Pay out as soon as the last member of the current cycle has contributed.
        """
        transaction = event.transaction
        if (
            transaction.type != TransactionType.CONTRIBUTION
            or transaction.status != TransactionStatus.COMPLETED
            or transaction.circle_id is None
        ):
            return

        circle = await self.session.get(Circle, transaction.circle_id)
        if not circle or circle.status != CircleStatus.ACTIVE or transaction.cycle_number != circle.current_cycle:
            return

        now = get_utc_now()
        evaluation = await self.evaluate(circle, now)
        if evaluation.status == CycleStatus.READY and evaluation.all_paid:
            await self.process_circle(circle, now)
