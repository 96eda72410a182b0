import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from starlette.exceptions import HTTPException as StarletteHTTPException

import miturn.models  # noqa: F401
from miturn.api.deps import get_analytics, get_notification_service, get_transfer_service
from miturn.api.v1.api import api_router
from miturn.core.config import settings
from miturn.core.exception_handlers import domain_exception_handler, http_exception_handler, validation_exception_handler
from miturn.core.exceptions import CollaboratorError, MiTurnError
from miturn.core.rate_limit import limiter
from miturn.db.session import get_db
from miturn.services.registry import Collaborators, Services
from miturn.services.transfers import TransferDeclined

# Disable rate limiting globally for tests
limiter.enabled = False

TEST_DATABASE_URL = "sqlite+aiosqlite://"

class FakeTransferService:
    """
    Records transfers instead of calling the bank.

    Set ``fail`` to refuse every transfer, or put user ids in ``unavailable_for``
    (transient error) or ``declined_for`` (permanent decline) to refuse only theirs.
    """

    def __init__(self):
        self.calls = []
        self.fail = False
        self.unavailable_for = set()
        self.declined_for = set()
        self.on_credit = None

    async def create_transfer(self, *, transaction_id, user_id, amount, direction, description):
        self.calls.append({
            "transaction_id": transaction_id,
            "user_id": user_id,
            "amount": amount,
            "direction": direction,
            "description": description,
        })
        if user_id in self.declined_for:
            raise TransferDeclined("Transfer authorization declined: account closed", transaction_id=transaction_id)
        if self.fail or user_id in self.unavailable_for:
            raise CollaboratorError("Banking API unavailable", transaction_id=transaction_id)
        if direction == "credit" and self.on_credit:
            await self.on_credit(transaction_id)
        return f"tr_{len(self.calls)}"

    def of_direction(self, direction):
        return [call for call in self.calls if call["direction"] == direction]

class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.attempts = 0
        self.fail = False

    async def send(self, recipient, template, data):
        self.attempts += 1
        if self.fail:
            raise CollaboratorError("Email delivery failed: connection refused", template=template)
        self.sent.append({"user_id": recipient.id, "template": template, "data": data})

class FakeAnalytics:
    def __init__(self):
        self.events = []

    def track(self, event, user_id=None, properties=None):
        self.events.append({"event": event, "user_id": user_id, "properties": properties or {}})

    def named(self, event):
        return [e for e in self.events if e["event"] == event]

    async def flush(self):
        pass

@pytest.fixture
async def engine():
    # One in-memory database per test, shared by every connection of that test
    engine = create_async_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
async def session(engine):
    session_factory = async_sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    async with session_factory() as session:
        yield session

@pytest.fixture
def transfers():
    return FakeTransferService()

@pytest.fixture
def notifier():
    return FakeNotifier()

@pytest.fixture
def analytics():
    return FakeAnalytics()

@pytest.fixture
def services(session, transfers, notifier, analytics):
    return Services(session, Collaborators(transfers=transfers, notifier=notifier, analytics=analytics))

@pytest.fixture
async def client(session, transfers, notifier, analytics):
    # Create a fresh app for each test to avoid middleware/loop issues
    new_app = FastAPI()
    new_app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    new_app.add_exception_handler(RequestValidationError, validation_exception_handler)
    new_app.add_exception_handler(MiTurnError, domain_exception_handler)
    new_app.include_router(api_router, prefix=settings.API_V1_STR)

    async def override_get_db():
        yield session

    new_app.dependency_overrides[get_db] = override_get_db
    new_app.dependency_overrides[get_transfer_service] = lambda: transfers
    new_app.dependency_overrides[get_notification_service] = lambda: notifier
    new_app.dependency_overrides[get_analytics] = lambda: analytics

    async with AsyncClient(transport=ASGITransport(app=new_app), base_url="http://test") as c:
        yield c
