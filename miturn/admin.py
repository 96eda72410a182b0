import logging
import uuid

from sqladmin import Admin, ModelView
from sqladmin.authentication import AuthenticationBackend
from starlette.requests import Request
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from miturn.models import (
    Circle,
    DailyAllocation,
    RecurringContribution,
    ReminderLog,
    SavingsGoal,
    Transaction,
    User,
)
from miturn.models.enums import UserRole
from miturn.core import security
from miturn.core.config import settings
from miturn.db.session import AsyncSessionLocal

logger = logging.getLogger(__name__)

class AdminAuth(AuthenticationBackend):
    """
    Session login for the operator console.

    Operators sign in with their email and an access token issued by the
    identity provider; only admins get in.
    """
    async def login(self, request: Request) -> bool:
        form = await request.form()
        email, token = form["username"], form["password"]

        subject = security.verify_token(token)
        try:
            user_id = uuid.UUID(subject) if subject else None
        except ValueError:
            user_id = None
        if not user_id:
            return False

        async with AsyncSessionLocal() as session:
            user = await session.get(User, user_id)

        if not user or user.email != email or user.role != UserRole.ADMIN:
            logger.warning(f"Rejected admin console login for {email}")
            return False

        request.session.update({"token": token})
        return True

    async def logout(self, request: Request) -> bool:
        request.session.clear()
        return True

    async def authenticate(self, request: Request) -> bool:
        token = request.session.get("token")
        return bool(token and security.verify_token(token))

class UserAdmin(ModelView, model=User):
    column_list = [User.id, User.email, User.display_name, User.role, User.is_active]
    column_searchable_list = [User.email, User.display_name]

class CircleAdmin(ModelView, model=Circle):
    column_list = [Circle.id, Circle.name, Circle.status, Circle.contribution_amount, Circle.current_cycle, Circle.rotation_pointer]
    # rotation state only moves through the payout engine
    form_excluded_columns = [Circle.current_cycle, Circle.rotation_pointer, Circle.last_payout_id]

class TransactionAdmin(ModelView, model=Transaction):
    """
    Read-only: ledger rows change only through status transitions.
    """
    column_list = [Transaction.id, Transaction.user_id, Transaction.type, Transaction.status, Transaction.amount, Transaction.cycle_number, Transaction.transaction_date]
    column_sortable_list = [Transaction.transaction_date]
    column_default_sort = ("transaction_date", True)
    can_create = False
    can_edit = False
    can_delete = False

class RecurringContributionAdmin(ModelView, model=RecurringContribution):
    column_list = [RecurringContribution.id, RecurringContribution.user_id, RecurringContribution.circle_id, RecurringContribution.frequency, RecurringContribution.is_active, RecurringContribution.next_contribution_date]
    can_delete = False

class SavingsGoalAdmin(ModelView, model=SavingsGoal):
    column_list = [SavingsGoal.id, SavingsGoal.user_id, SavingsGoal.name, SavingsGoal.target_amount, SavingsGoal.amount_saved, SavingsGoal.deadline]

class DailyAllocationAdmin(ModelView, model=DailyAllocation):
    column_list = [DailyAllocation.goal_id, DailyAllocation.date, DailyAllocation.suggested_amount, DailyAllocation.status]
    column_default_sort = ("date", True)
    can_create = False
    can_edit = False
    can_delete = False

class ReminderLogAdmin(ModelView, model=ReminderLog):
    column_list = [ReminderLog.circle_id, ReminderLog.user_id, ReminderLog.cycle_number, ReminderLog.tier, ReminderLog.status, ReminderLog.sent_at]
    column_default_sort = ("sent_at", True)
    can_create = False
    can_edit = False
    can_delete = False

def setup_admin(app: FastAPI, engine: AsyncEngine) -> Admin:
    """
    Mounts SQLAdmin at /admin.
    """
    authentication_backend = AdminAuth(secret_key=settings.SECRET_KEY)
    admin = Admin(app, engine, authentication_backend=authentication_backend)

    for view in (
        UserAdmin,
        CircleAdmin,
        TransactionAdmin,
        RecurringContributionAdmin,
        SavingsGoalAdmin,
        DailyAllocationAdmin,
        ReminderLogAdmin,
    ):
        admin.add_view(view)
    return admin
