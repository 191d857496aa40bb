from wishdraw.db.models import (
    Activity,
    ActivityType,
    Assignment,
    Base,
    DrawState,
    EmailPriority,
    EmailQueue,
    EmailQueueStatus,
    ExclusionRule,
    Group,
    GroupMember,
    MemberRole,
    Notification,
    NotificationType,
    User,
)
from wishdraw.db.session import SessionLocal, get_session, init_engine

__all__ = [
    "Activity",
    "ActivityType",
    "Assignment",
    "Base",
    "DrawState",
    "EmailPriority",
    "EmailQueue",
    "EmailQueueStatus",
    "ExclusionRule",
    "Group",
    "GroupMember",
    "MemberRole",
    "Notification",
    "NotificationType",
    "User",
    "SessionLocal",
    "get_session",
    "init_engine",
]
