from app.models.enums import AccountStatus, ProviderSubscriptionStatus, WarningStage, TaskPriority
from app.models.user import User
from app.models.subscription import Subscription
from app.models.deletion_schedule import UserDeletionSchedule
from app.models.memory import Memory
from app.models.task import Task
from app.models.job_lock import JobLock

__all__ = [
    "AccountStatus",
    "ProviderSubscriptionStatus",
    "WarningStage",
    "TaskPriority",
    "User",
    "Subscription",
    "UserDeletionSchedule",
    "Memory",
    "Task",
    "JobLock",
]
