import uuid
import pytest
from datetime import datetime

from miturn.core.exceptions import CollaboratorError
from miturn.models.enums import TransactionType, UserRole
from miturn.schemas.transaction import TransactionDraft
from tests.utils import auth_headers, create_user, started_circle

async def contribute_all(services, circle, users):
    return [await services.contributions.contribute(circle, u.id, datetime(2026, 1, 6, 10, 0)) for u in users]

@pytest.mark.asyncio
async def test_members_only_see_their_own_transactions(client, session, services):
    circle, users = await started_circle(session, services)
    mine, theirs, _ = await contribute_all(services, circle, users[:3])
    headers = auth_headers(users[0])

    # a user_id filter cannot widen the view
    resp = await client.get(f"/api/v1/transactions/?user_id={users[1].id}", headers=headers)
    assert resp.status_code == 200
    assert [t["id"] for t in resp.json()["data"]] == [str(mine.id)]

    resp = await client.get(f"/api/v1/transactions/{theirs.id}", headers=headers)
    assert resp.status_code == 404

    resp = await client.get(f"/api/v1/transactions/{mine.id}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["cycle_number"] == 1

@pytest.mark.asyncio
async def test_admin_filters_and_pages(client, session, services):
    circle, users = await started_circle(session, services)
    await contribute_all(services, circle, users[:3])
    admin = auth_headers(await create_user(session, role=UserRole.ADMIN))

    resp = await client.get(f"/api/v1/transactions/?circle_id={circle.id}&type=contribution", headers=admin)
    assert len(resp.json()["data"]) == 3

    resp = await client.get(f"/api/v1/transactions/?circle_id={circle.id}&limit=2&page=2", headers=admin)
    assert len(resp.json()["data"]) == 1

    resp = await client.get(f"/api/v1/transactions/?user_id={users[1].id}", headers=admin)
    assert [t["user_id"] for t in resp.json()["data"]] == [str(users[1].id)]

    resp = await client.get(
        "/api/v1/transactions/?date_from=2026-01-07T00:00:00", headers=admin
    )
    assert resp.json()["data"] == []

@pytest.mark.asyncio
async def test_stats(client, session, services, transfers):
    circle, users = await started_circle(session, services)
    await contribute_all(services, circle, users[:2])
    transfers.fail = True
    with pytest.raises(CollaboratorError):
        await services.contributions.contribute(circle, users[2].id, datetime(2026, 1, 6, 10, 0))
    admin = auth_headers(await create_user(session, role=UserRole.ADMIN))

    resp = await client.get(f"/api/v1/transactions/stats?circle_id={circle.id}", headers=admin)

    stats = resp.json()["data"]
    assert stats["transaction_count"] == 3
    assert stats["total_contributions"] == 30000
    assert stats["completed_amount"] == 20000
    assert stats["failed_amount"] == 10000
    assert stats["pending_amount"] == 0

@pytest.mark.asyncio
async def test_admin_settles_a_pending_transaction(client, session, services):
    circle, users = await started_circle(session, services)
    pending = await services.ledger.record(TransactionDraft(
        user_id=users[1].id,
        circle_id=circle.id,
        amount=10000,
        type=TransactionType.CONTRIBUTION,
        cycle_number=1,
    ))
    admin = auth_headers(await create_user(session, role=UserRole.ADMIN))
    url = f"/api/v1/transactions/{pending.id}/status"

    resp = await client.patch(url, json={"status": "completed", "provider_reference": "tr_manual"}, headers=auth_headers(users[1]))
    assert resp.status_code == 403

    resp = await client.patch(url, json={"status": "completed", "provider_reference": "tr_manual"}, headers=admin)
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "completed"
    assert resp.json()["data"]["provider_reference"] == "tr_manual"

    # terminal transactions stay as they are
    resp = await client.patch(url, json={"status": "failed"}, headers=admin)
    assert resp.status_code == 409
    assert resp.json()["data"]["status"] == "completed"

    resp = await client.patch(f"/api/v1/transactions/{uuid.uuid4()}/status", json={"status": "failed"}, headers=admin)
    assert resp.status_code == 404
