import pytest
from datetime import datetime

from miturn.core.exceptions import CannotReopenTransaction, NotFoundError, ValidationError
from miturn.models.enums import TransactionStatus, TransactionType
from miturn.schemas.transaction import TransactionDraft, TransactionFilters
from miturn.services.events import LedgerEventBus
from miturn.services.ledger import Ledger
from tests.utils import create_circle, create_user

async def setup_circle(session):
    host = await create_user(session)
    member = await create_user(session)
    circle = await create_circle(session, host, [member])
    return circle, host, member

def contribution(circle, user, amount=5000, cycle=1):
    return TransactionDraft(
        user_id=user.id,
        circle_id=circle.id,
        amount=amount,
        type=TransactionType.CONTRIBUTION,
        cycle_number=cycle,
        transaction_date=datetime(2026, 1, 6),
    )

@pytest.mark.asyncio
async def test_record_starts_pending(session):
    circle, host, _ = await setup_circle(session)
    ledger = Ledger(session)

    transaction = await ledger.record(contribution(circle, host))
    assert transaction.status == TransactionStatus.PENDING
    assert transaction.amount == 5000
    assert transaction.cycle_number == 1

@pytest.mark.asyncio
async def test_record_rejects_bad_drafts(session):
    circle, host, _ = await setup_circle(session)
    ledger = Ledger(session)

    with pytest.raises(ValidationError):
        await ledger.record(contribution(circle, host, amount=0))

    with pytest.raises(ValidationError):
        await ledger.record(TransactionDraft(user_id=host.id, amount=100, type=TransactionType.CONTRIBUTION))

    with pytest.raises(ValidationError):
        await ledger.record(TransactionDraft(
            user_id=host.id, goal_id=circle.id, amount=100, type=TransactionType.PAYOUT
        ))

@pytest.mark.asyncio
async def test_transition_is_one_way(session):
    circle, host, _ = await setup_circle(session)
    ledger = Ledger(session)
    transaction = await ledger.record(contribution(circle, host))

    completed = await ledger.transition(transaction.id, TransactionStatus.COMPLETED, provider_reference="tr_1")
    assert completed.status == TransactionStatus.COMPLETED
    assert completed.provider_reference == "tr_1"

    with pytest.raises(CannotReopenTransaction):
        await ledger.transition(transaction.id, TransactionStatus.FAILED)

    stored = await ledger.get(transaction.id)
    assert stored.status == TransactionStatus.COMPLETED

@pytest.mark.asyncio
async def test_transition_requires_terminal_status(session):
    circle, host, _ = await setup_circle(session)
    ledger = Ledger(session)
    transaction = await ledger.record(contribution(circle, host))

    with pytest.raises(ValidationError):
        await ledger.transition(transaction.id, TransactionStatus.PENDING)

@pytest.mark.asyncio
async def test_transition_unknown_transaction(session):
    import uuid
    ledger = Ledger(session)
    with pytest.raises(NotFoundError):
        await ledger.transition(uuid.uuid4(), TransactionStatus.COMPLETED)

@pytest.mark.asyncio
async def test_transition_publishes_event(session):
    circle, host, _ = await setup_circle(session)
    events = LedgerEventBus()
    received = []

    async def handler(event):
        received.append(event)

    events.subscribe(handler)
    ledger = Ledger(session, events)
    transaction = await ledger.record(contribution(circle, host))
    await ledger.transition(transaction.id, TransactionStatus.FAILED)

    assert len(received) == 1
    assert received[0].transaction.id == transaction.id
    assert received[0].previous_status == TransactionStatus.PENDING
    assert received[0].transaction.status == TransactionStatus.FAILED

@pytest.mark.asyncio
async def test_balance_folds_completed_rows_only(session):
    circle, host, member = await setup_circle(session)
    ledger = Ledger(session)

    for user in (host, member):
        t = await ledger.record(contribution(circle, user))
        await ledger.transition(t.id, TransactionStatus.COMPLETED)

    failed = await ledger.record(contribution(circle, host, cycle=2))
    await ledger.transition(failed.id, TransactionStatus.FAILED)
    await ledger.record(contribution(circle, member, cycle=2))  # still pending

    payout = await ledger.record(TransactionDraft(
        user_id=host.id, circle_id=circle.id, amount=3000, type=TransactionType.PAYOUT, cycle_number=1
    ))
    await ledger.transition(payout.id, TransactionStatus.COMPLETED)

    assert await ledger.balance_of(circle.id) == 7000

@pytest.mark.asyncio
async def test_list_and_stats(session):
    circle, host, member = await setup_circle(session)
    ledger = Ledger(session)

    first = await ledger.record(contribution(circle, host))
    await ledger.transition(first.id, TransactionStatus.COMPLETED)
    second = await ledger.record(contribution(circle, member, amount=2000))
    await ledger.transition(second.id, TransactionStatus.FAILED)
    await ledger.record(contribution(circle, member, amount=1000, cycle=2))

    everything = await ledger.list(TransactionFilters(circle_id=circle.id))
    assert len(everything) == 3

    mine = await ledger.list(TransactionFilters(user_id=member.id, status=TransactionStatus.PENDING))
    assert [t.amount for t in mine] == [1000]

    stats = await ledger.stats(TransactionFilters(circle_id=circle.id))
    assert stats.transaction_count == 3
    assert stats.total_contributions == 8000
    assert stats.total_payouts == 0
    assert stats.completed_amount == 5000
    assert stats.failed_amount == 2000
    assert stats.pending_amount == 1000

@pytest.mark.asyncio
async def test_find_for_cycle_ignores_dead_rows(session):
    circle, host, member = await setup_circle(session)
    ledger = Ledger(session)

    live = await ledger.record(contribution(circle, host))
    dead = await ledger.record(contribution(circle, member))
    await ledger.transition(dead.id, TransactionStatus.CANCELLED)

    found = await ledger.find_for_cycle(circle.id, 1, TransactionType.CONTRIBUTION)
    assert [t.id for t in found] == [live.id]
