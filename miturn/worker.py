"""
Celery tasks for the scheduled passes.

Each task runs one pass in a fresh event loop. The engine is created per run
with ``NullPool`` so no connection outlives the loop it was opened on.
"""
import asyncio
import logging
from datetime import date
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from miturn.core.celery_app import celery_app
from miturn.core.config import settings
from miturn.core.exceptions import CollaboratorError
from miturn.models.user import get_utc_now
from miturn.services.analytics import analytics_service
from miturn.services.notifications import notification_service
from miturn.services.registry import Collaborators, Services
from miturn.services.transfers import TransferService

logger = logging.getLogger(__name__)

T = TypeVar("T")

def build_engine() -> AsyncEngine:
    return create_async_engine(str(settings.DATABASE_URL), poolclass=NullPool)

def build_collaborators() -> Collaborators:
    return Collaborators(
        transfers=TransferService(),
        notifier=notification_service,
        analytics=analytics_service,
    )

async def run_with_services(work: Callable[[Services], Awaitable[T]]) -> T:
    engine = build_engine()
    try:
        session_factory = async_sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
        async with session_factory() as session:
            result = await work(Services(session, build_collaborators()))
        await analytics_service.flush()
        return result
    finally:
        await engine.dispose()

def raise_for_errors(name: str, errors: list) -> None:
    # autoretry_for reruns the whole pass with backoff
    if errors:
        raise CollaboratorError(f"{name} finished with {len(errors)} collaborator error(s): {errors[0]}")

@celery_app.task(acks_late=True, autoretry_for=(CollaboratorError,), retry_backoff=True, max_retries=5)
def run_allocation_pass(run_on: str | None = None) -> dict:
    today = date.fromisoformat(run_on) if run_on else get_utc_now().date()
    logger.info(f"Starting allocation pass for {today}")
    summary = asyncio.run(run_with_services(lambda services: services.allocations.run_pass(today)))
    return summary.model_dump(mode="json")

@celery_app.task(acks_late=True, autoretry_for=(CollaboratorError,), retry_backoff=True, max_retries=5)
def run_recurring_contribution_pass(run_on: str | None = None) -> dict:
    today = date.fromisoformat(run_on) if run_on else get_utc_now().date()
    logger.info(f"Starting recurring contribution pass for {today}")
    summary = asyncio.run(run_with_services(lambda services: services.schedules.run_pass(today)))
    raise_for_errors("Recurring contribution pass", summary.errors)
    return summary.model_dump(mode="json")

@celery_app.task(acks_late=True, autoretry_for=(CollaboratorError,), retry_backoff=True, max_retries=5)
def run_payout_pass() -> dict:
    logger.info("Starting payout pass")
    summary = asyncio.run(run_with_services(lambda services: services.rotation.run_pass(get_utc_now())))
    raise_for_errors("Payout pass", summary.errors)
    return summary.model_dump(mode="json")
