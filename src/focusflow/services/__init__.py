"""Service layer: reminders, statistics, change events and the operation facade."""

from focusflow.services.events import DataChanged, EventBus, ReminderDue
from focusflow.services.reminder_scheduler import ReminderScheduler
from focusflow.services.stats_service import StatsAggregator
from focusflow.services.tracker_service import TrackerService

__all__ = [
    "DataChanged",
    "EventBus",
    "ReminderDue",
    "ReminderScheduler",
    "StatsAggregator",
    "TrackerService",
]
