from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from miturn.services.allocations import AllocationSuggester
from miturn.services.analytics import AnalyticsService
from miturn.services.contributions import ContributionService
from miturn.services.events import LedgerEventBus
from miturn.services.gamification import GamificationService
from miturn.services.ledger import Ledger
from miturn.services.notifications import NotificationService
from miturn.services.reminders import ReminderDispatcher
from miturn.services.rotation import PayoutRotationEngine
from miturn.services.schedules import ScheduleService
from miturn.services.transfers import TransferService

@dataclass
class Collaborators:
    transfers: TransferService
    notifier: NotificationService
    analytics: AnalyticsService

class Services:
    """
    The scheduling core wired around one database session.

    Ledger subscribers run in the order they are subscribed here: goal
    progress and loyalty first, then the rotation (which may pay out), then
    payout notifications.
    """

    def __init__(self, session: AsyncSession, collaborators: Collaborators):
        self.session = session
        self.collaborators = collaborators

        self.events = LedgerEventBus()
        self.ledger = Ledger(session, self.events)
        self.contributions = ContributionService(session, self.ledger, collaborators.transfers)
        self.reminders = ReminderDispatcher(session, collaborators.notifier, collaborators.analytics)
        self.rotation = PayoutRotationEngine(
            session, self.ledger, collaborators.transfers, collaborators.analytics, reminders=self.reminders
        )
        self.allocations = AllocationSuggester(session, collaborators.analytics)
        self.schedules = ScheduleService(session, self.contributions)
        self.gamification = GamificationService(session)

        self.events.subscribe(self.allocations.on_ledger_event)
        self.events.subscribe(self.gamification.on_ledger_event)
        self.events.subscribe(self.rotation.on_ledger_event)
        self.events.subscribe(self.reminders.on_ledger_event)
