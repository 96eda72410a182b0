import pytest
from datetime import date, datetime, timedelta

from sqlmodel import select

from miturn.core.exceptions import AllocationFailed, CollaboratorError
from miturn.models.enums import AllocationStatus
from miturn.models.goal import DailyAllocation, SavingsGoal, SavingsPreference
from miturn.services.allocations import AllocationSuggester
from tests.utils import create_user

TODAY = date(2026, 3, 1)

async def create_goal(session, user, target=100000, saved=40000, days=30, name="Emergency fund"):
    goal = SavingsGoal(
        user_id=user.id,
        name=name,
        target_amount=target,
        amount_saved=saved,
        deadline=TODAY + timedelta(days=days),
    )
    session.add(goal)
    await session.commit()
    await session.refresh(goal)
    return goal

async def set_preference(session, user, **values):
    session.add(SavingsPreference(user_id=user.id, **values))
    await session.commit()

async def allocations_for(session, goal):
    result = await session.execute(select(DailyAllocation).where(DailyAllocation.goal_id == goal.id))
    return list(result.scalars().all())

@pytest.mark.asyncio
async def test_suggests_remaining_over_days_left(session, analytics):
    user = await create_user(session)
    goal = await create_goal(session, user)
    suggester = AllocationSuggester(session, analytics)

    allocation = await suggester.suggest(goal, TODAY)

    assert allocation.suggested_amount == 2000
    assert allocation.status == AllocationStatus.PENDING
    assert allocation.date == TODAY
    assert analytics.named("allocation_calculated")[0]["properties"]["amount"] == 2000

@pytest.mark.asyncio
async def test_met_goal_gets_no_suggestion(session, analytics):
    user = await create_user(session)
    goal = await create_goal(session, user, saved=100000)
    suggester = AllocationSuggester(session, analytics)

    assert await suggester.suggest(goal, TODAY) is None
    assert await allocations_for(session, goal) == []

@pytest.mark.asyncio
async def test_rerun_updates_the_same_row(session, analytics):
    user = await create_user(session)
    goal = await create_goal(session, user)
    suggester = AllocationSuggester(session, analytics)

    first = await suggester.suggest(goal, TODAY)
    goal.amount_saved = 70000
    session.add(goal)
    await session.commit()
    second = await suggester.suggest(goal, TODAY)

    assert second.id == first.id
    assert second.suggested_amount == 1000
    assert len(await allocations_for(session, goal)) == 1

@pytest.mark.asyncio
async def test_processed_row_is_not_overwritten(session, analytics):
    user = await create_user(session)
    goal = await create_goal(session, user)
    suggester = AllocationSuggester(session, analytics)

    await suggester.suggest(goal, TODAY)
    await suggester.mark_processed(goal.id, TODAY, 2000)
    again = await suggester.suggest(goal, TODAY)

    assert again.status == AllocationStatus.PROCESSED
    assert again.suggested_amount == 2000

@pytest.mark.asyncio
async def test_passed_deadline_marks_failed(session, analytics):
    user = await create_user(session)
    goal = await create_goal(session, user, days=0)
    suggester = AllocationSuggester(session, analytics)

    with pytest.raises(AllocationFailed) as exc_info:
        await suggester.suggest(goal, TODAY)

    assert exc_info.value.allocation.status == AllocationStatus.FAILED
    assert exc_info.value.allocation.suggested_amount == 0
    assert analytics.named("allocation_failed")

@pytest.mark.asyncio
async def test_amount_is_clamped(session, analytics):
    user = await create_user(session)
    small = await create_goal(session, user, target=1000, saved=0, days=30, name="small")
    large = await create_goal(session, user, target=10_000_000, saved=0, days=10, name="large")
    suggester = AllocationSuggester(session, analytics, min_amount=100, max_amount=50000)

    assert suggester.compute(small, TODAY) == 100
    assert suggester.compute(large, TODAY) == 50000

def test_compute_rounds_half_up(analytics):
    suggester = AllocationSuggester(None, analytics, min_amount=0, max_amount=50000)
    goal = SavingsGoal(user_id=None, name="g", target_amount=1001, amount_saved=0, deadline=TODAY + timedelta(days=2))
    # 500.5 rounds up
    assert suggester.compute(goal, TODAY) == 501

def test_compute_never_exceeds_remaining(analytics):
    suggester = AllocationSuggester(None, analytics, min_amount=100, max_amount=50000)
    goal = SavingsGoal(user_id=None, name="g", target_amount=1000, amount_saved=950, deadline=TODAY + timedelta(days=10))
    assert suggester.compute(goal, TODAY) == 50

@pytest.mark.asyncio
async def test_monthly_limit_caps_daily_suggestion(session, analytics):
    user = await create_user(session)
    goal = await create_goal(session, user)
    await set_preference(session, user, max_monthly_limit=30000)
    suggester = AllocationSuggester(session, analytics)

    allocation = await suggester.suggest(goal, TODAY)
    assert allocation.suggested_amount == 1000

@pytest.mark.asyncio
async def test_percentage_of_balance(session, analytics):
    user = await create_user(session)
    goal = await create_goal(session, user)
    suggester = AllocationSuggester(session, analytics)

    allocation = await suggester.suggest(goal, TODAY, account_balance=100000)
    assert allocation.suggested_percentage == 2.0

@pytest.mark.asyncio
async def test_pass_skips_vacationing_users(session, analytics):
    user = await create_user(session)
    await create_goal(session, user)
    await set_preference(session, user, vacation_mode=True)
    suggester = AllocationSuggester(session, analytics)

    summary = await suggester.run_pass(TODAY)

    assert summary.goals_checked == 1
    assert summary.skipped == 1
    assert summary.allocations_suggested == 0

@pytest.mark.asyncio
async def test_pass_counts_outcomes(session, analytics):
    user = await create_user(session)
    await create_goal(session, user, name="on track")
    await create_goal(session, user, saved=100000, name="done")
    await create_goal(session, user, days=0, name="late")
    suggester = AllocationSuggester(session, analytics)

    summary = await suggester.run_pass(TODAY)

    assert summary.goals_checked == 3
    assert summary.allocations_suggested == 1
    assert summary.goals_met == 1
    assert summary.allocations_failed == 1

    # idempotent per day
    await suggester.run_pass(TODAY)
    result = await session.execute(select(DailyAllocation))
    assert len(result.scalars().all()) == 2

@pytest.mark.asyncio
async def test_shared_funding_splits_one_cap(session, analytics):
    user = await create_user(session)
    first = await create_goal(session, user, name="first")
    second = await create_goal(session, user, name="second")
    await set_preference(session, user, max_monthly_limit=60000)
    suggester = AllocationSuggester(session, analytics, shared_funding=True)

    await suggester.run_pass(TODAY)

    assert (await allocations_for(session, first))[0].suggested_amount == 1000
    assert (await allocations_for(session, second))[0].suggested_amount == 1000

@pytest.mark.asyncio
async def test_goal_contribution_processes_todays_allocation(services, session, transfers):
    user = await create_user(session)
    goal = await create_goal(session, user)
    now = datetime(2026, 3, 1, 12, 0)

    await services.allocations.suggest(goal, TODAY)
    transaction = await services.contributions.contribute_to_goal(goal, user.id, 2000, now)

    assert transaction.provider_reference == "tr_1"
    assert transfers.calls[0]["direction"] == "debit"
    refreshed = await session.get(SavingsGoal, goal.id)
    assert refreshed.amount_saved == 42000
    [allocation] = await allocations_for(session, goal)
    assert allocation.status == AllocationStatus.PROCESSED

@pytest.mark.asyncio
async def test_failed_goal_contribution_fails_todays_allocation(services, session, transfers):
    user = await create_user(session)
    goal = await create_goal(session, user)
    transfers.fail = True

    await services.allocations.suggest(goal, TODAY)
    with pytest.raises(CollaboratorError):
        await services.contributions.contribute_to_goal(goal, user.id, 2000, datetime(2026, 3, 1, 12, 0))

    [allocation] = await allocations_for(session, goal)
    assert allocation.status == AllocationStatus.FAILED
    assert (await session.get(SavingsGoal, goal.id)).amount_saved == 40000

@pytest.mark.asyncio
async def test_unsettled_allocation_fails_on_the_next_pass(session, analytics):
    user = await create_user(session)
    goal = await create_goal(session, user)
    suggester = AllocationSuggester(session, analytics)
    tomorrow = TODAY + timedelta(days=1)

    await suggester.run_pass(TODAY)
    summary = await suggester.run_pass(tomorrow)

    assert summary.allocations_failed == 1
    assert summary.allocations_suggested == 1
    by_day = {a.date: a.status for a in await allocations_for(session, goal)}
    assert by_day == {TODAY: AllocationStatus.FAILED, tomorrow: AllocationStatus.PENDING}
    assert analytics.named("allocation_failed")[0]["properties"]["reason"] == "no_contribution"

@pytest.mark.asyncio
async def test_late_goal_contribution_settles_a_failed_day(services, session):
    user = await create_user(session)
    goal = await create_goal(session, user)

    await services.allocations.suggest(goal, TODAY)
    await services.allocations.expire_stale(TODAY + timedelta(days=1))
    await services.contributions.contribute_to_goal(goal, user.id, 2000, datetime(2026, 3, 1, 12, 0))

    [allocation] = await allocations_for(session, goal)
    assert allocation.status == AllocationStatus.PROCESSED

@pytest.mark.asyncio
async def test_pass_survives_a_concurrent_insert(session, analytics, monkeypatch):
    user = await create_user(session)
    first_id = (await create_goal(session, user, name="first")).id
    second_id = (await create_goal(session, user, name="second", days=40)).id
    # another pass stores today's row for the first goal after we looked for it
    session.add(DailyAllocation(goal_id=first_id, user_id=user.id, date=TODAY, suggested_amount=1))
    await session.commit()
    suggester = AllocationSuggester(session, analytics)
    find = suggester._find
    missed = []

    async def find_before_insert(goal_id, day):
        if not missed:
            missed.append(goal_id)
            return None
        return await find(goal_id, day)

    monkeypatch.setattr(suggester, "_find", find_before_insert)

    summary = await suggester.run_pass(TODAY)

    assert missed == [first_id]
    assert summary.allocations_suggested == 2
    result = await session.execute(select(DailyAllocation).order_by(DailyAllocation.suggested_amount))
    assert [(a.goal_id, a.suggested_amount) for a in result.scalars().all()] == [(second_id, 1500), (first_id, 2000)]
