from datetime import datetime
from typing import Annotated, List
import uuid
from fastapi import APIRouter, Depends

from miturn.api.deps import PageParams, get_current_admin, get_current_user, get_services
from miturn.core.exceptions import NotFoundError
from miturn.models.enums import TransactionStatus, TransactionType, UserRole
from miturn.models.user import User
from miturn.schemas.response import APIResponse
from miturn.schemas.transaction import TransactionFilters, TransactionRead, TransactionStats, TransactionTransition
from miturn.services.registry import Services

router = APIRouter()

def build_filters(
    current_user: User,
    paging: PageParams,
    circle_id: uuid.UUID | None,
    goal_id: uuid.UUID | None,
    user_id: uuid.UUID | None,
    type: TransactionType | None,
    status: TransactionStatus | None,
    date_from: datetime | None,
    date_to: datetime | None,
) -> TransactionFilters:
    # members only ever see their own ledger lines; admins may look at anyone's
    if current_user.role != UserRole.ADMIN:
        user_id = current_user.id
    return TransactionFilters(
        circle_id=circle_id,
        goal_id=goal_id,
        user_id=user_id,
        type=type,
        status=status,
        date_from=date_from,
        date_to=date_to,
        limit=paging.limit,
        offset=paging.offset,
    )

@router.get("/", response_model=APIResponse[List[TransactionRead]])
async def get_transactions(
    current_user: Annotated[User, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    paging: Annotated[PageParams, Depends()],
    circle_id: uuid.UUID | None = None,
    goal_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    type: TransactionType | None = None,
    status: TransactionStatus | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
):
    """
    List ledger transactions, newest first.
    """
    filters = build_filters(current_user, paging, circle_id, goal_id, user_id, type, status, date_from, date_to)
    transactions = await services.ledger.list(filters)
    return APIResponse(message="Transactions retrieved", data=transactions)

@router.get("/stats", response_model=APIResponse[TransactionStats])
async def get_transaction_stats(
    current_user: Annotated[User, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    circle_id: uuid.UUID | None = None,
    goal_id: uuid.UUID | None = None,
    user_id: uuid.UUID | None = None,
    type: TransactionType | None = None,
    status: TransactionStatus | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
):
    """
    Totals per type and status over the same filters as the listing.
    """
    filters = build_filters(current_user, PageParams(), circle_id, goal_id, user_id, type, status, date_from, date_to)
    stats = await services.ledger.stats(filters)
    return APIResponse(message="Transaction stats retrieved", data=stats)

@router.get("/{transaction_id}", response_model=APIResponse[TransactionRead])
async def get_transaction(
    transaction_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
):
    transaction = await services.ledger.get(transaction_id)
    if current_user.role != UserRole.ADMIN and transaction.user_id != current_user.id:
        raise NotFoundError("Transaction not found", transaction_id=transaction_id)
    return APIResponse(message="Transaction retrieved", data=transaction)

@router.patch("/{transaction_id}/status", response_model=APIResponse[TransactionRead])
async def transition_transaction(
    transaction_id: uuid.UUID,
    transition_in: TransactionTransition,
    current_admin: Annotated[User, Depends(get_current_admin)],
    services: Annotated[Services, Depends(get_services)],
):
    """
    Settle a pending transaction by hand, e.g. after reconciling with the bank.

    Terminal transactions cannot be changed (409).
    """
    transaction = await services.ledger.transition(
        transaction_id, transition_in.status, provider_reference=transition_in.provider_reference
    )
    return APIResponse(message=f"Transaction marked {transaction.status}", data=transaction)
