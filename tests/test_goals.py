import pytest
from datetime import timedelta

from miturn.models.goal import SavingsGoal
from miturn.models.user import get_utc_now
from tests.utils import auth_headers, create_user

@pytest.mark.asyncio
async def test_goal_suggestions_and_contributions(client, session, transfers):
    user = await create_user(session)
    headers = auth_headers(user)
    today = get_utc_now().date()

    resp = await client.post("/api/v1/goals/", json={
        "name": "Emergency fund",
        "target_amount": 100000,
        "deadline": (today + timedelta(days=30)).isoformat(),
    }, headers=headers)
    assert resp.status_code == 200
    goal = resp.json()["data"]
    assert goal["amount_saved"] == 0

    resp = await client.post(f"/api/v1/goals/{goal['id']}/allocations/suggest?account_balance=100000", headers=headers)
    suggestion = resp.json()["data"]
    assert suggestion["status"] == "pending"
    assert suggestion["allocation"]["suggested_amount"] == 3333
    assert suggestion["allocation"]["suggested_percentage"] == 3.33

    resp = await client.post(f"/api/v1/goals/{goal['id']}/contribute", json={"amount": 3333}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["goal_id"] == goal["id"]
    assert transfers.of_direction("debit")[0]["amount"] == 3333

    resp = await client.get("/api/v1/goals/", headers=headers)
    assert resp.json()["data"][0]["amount_saved"] == 3333

    resp = await client.get(f"/api/v1/goals/{goal['id']}/allocations?status=processed", headers=headers)
    assert [a["suggested_amount"] for a in resp.json()["data"]] == [3333]

@pytest.mark.asyncio
async def test_goal_deadline_must_be_in_the_future(client, session):
    headers = auth_headers(await create_user(session))
    resp = await client.post("/api/v1/goals/", json={
        "name": "Too late",
        "target_amount": 1000,
        "deadline": get_utc_now().date().isoformat(),
    }, headers=headers)
    assert resp.status_code == 400

@pytest.mark.asyncio
async def test_vacation_mode_pauses_suggestions(client, session):
    user = await create_user(session)
    headers = auth_headers(user)
    goal = SavingsGoal(user_id=user.id, name="Trip", target_amount=50000, deadline=get_utc_now().date() + timedelta(days=10))
    session.add(goal)
    await session.commit()

    resp = await client.put("/api/v1/goals/preferences", json={"vacation_mode": True}, headers=headers)
    assert resp.json()["data"]["vacation_mode"] is True

    resp = await client.post(f"/api/v1/goals/{goal.id}/allocations/suggest", headers=headers)
    assert resp.json()["data"]["status"] == "none"
    assert resp.json()["data"]["allocation"] is None

@pytest.mark.asyncio
async def test_missed_deadline_reports_failed_allocation(client, session):
    user = await create_user(session)
    goal = SavingsGoal(user_id=user.id, name="Late", target_amount=50000, deadline=get_utc_now().date())
    session.add(goal)
    await session.commit()

    resp = await client.post(f"/api/v1/goals/{goal.id}/allocations/suggest", headers=auth_headers(user))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "failed"
    assert data["allocation"]["status"] == "failed"

@pytest.mark.asyncio
async def test_goals_are_private(client, session):
    owner = await create_user(session)
    goal = SavingsGoal(user_id=owner.id, name="Mine", target_amount=50000, deadline=get_utc_now().date() + timedelta(days=10))
    session.add(goal)
    await session.commit()
    other = auth_headers(await create_user(session))

    assert (await client.post(f"/api/v1/goals/{goal.id}/allocations/suggest", headers=other)).status_code == 404
    assert (await client.get(f"/api/v1/goals/{goal.id}/allocations", headers=other)).status_code == 404
    assert (await client.post(f"/api/v1/goals/{goal.id}/contribute", json={"amount": 100}, headers=other)).status_code == 404
