from __future__ import annotations

import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class DrawState(str, enum.Enum):
    NOT_DRAWN = "not_drawn"
    DRAWN = "drawn"


class MemberRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class ActivityType(str, enum.Enum):
    SECRET_SANTA_DRAWN = "secret_santa_drawn"
    SECRET_SANTA_RESET = "secret_santa_reset"


class NotificationType(str, enum.Enum):
    SECRET_SANTA_DRAWN = "secret_santa_drawn"


class EmailQueueStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EmailPriority(enum.IntEnum):
    # lower sorts first
    HIGH = 0
    NORMAL = 1


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, nullable=True, unique=True)
    display_name = Column(String, nullable=True)
    locale = Column(String(8), nullable=False, default="en", server_default="en")
    notify_in_app = Column(Boolean, nullable=False, default=True, server_default="1")
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    memberships = relationship("GroupMember", back_populates="user")

    def __repr__(self) -> str:
        return "<User(id={0}, email={1}, locale={2})>".format(self.id, self.email, self.locale)


class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    is_secret_santa = Column(Boolean, nullable=False, default=True, server_default="1")
    secret_santa_drawn = Column(Boolean, nullable=False, default=False, server_default="0")
    secret_santa_draw_date = Column(DateTime, nullable=True, index=True)
    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    owner = relationship("User", foreign_keys=[owner_id])
    members = relationship("GroupMember", back_populates="group", cascade="all, delete-orphan")
    assignments = relationship("Assignment", back_populates="group", cascade="all, delete-orphan")

    @property
    def draw_state(self) -> DrawState:
        return DrawState.DRAWN if self.secret_santa_drawn else DrawState.NOT_DRAWN

    def __repr__(self) -> str:
        return f"<Group(id={self.id}, name={self.name!r}, draw_state={self.draw_state.value})>"


class GroupMember(Base):
    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role = Column(
        Enum(MemberRole, name="member_role", values_callable=_enum_values),
        nullable=False,
        default=MemberRole.MEMBER,
        server_default=MemberRole.MEMBER.value,
    )
    joined_at = Column(DateTime, server_default=func.now(), nullable=False)
    left_at = Column(DateTime, nullable=True)

    group = relationship("Group", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
    )

    @property
    def is_active(self) -> bool:
        return self.left_at is None


class ExclusionRule(Base):
    __tablename__ = "secret_santa_exclusions"

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    # stored with user_id_1 < user_id_2
    user_id_1 = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user_id_2 = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("group_id", "user_id_1", "user_id_2", name="uq_exclusions_group_pair"),
    )


class Assignment(Base):
    __tablename__ = "secret_santa_assignments"

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    giver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    receiver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    excluded_user_ids = Column(JSON, nullable=False, default=list)
    viewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    group = relationship("Group", back_populates="assignments")
    giver = relationship("User", foreign_keys=[giver_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    __table_args__ = (
        UniqueConstraint("group_id", "giver_id", name="uq_assignments_group_giver"),
        UniqueConstraint("group_id", "receiver_id", name="uq_assignments_group_receiver"),
    )


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    type = Column(Enum(ActivityType, name="activity_type", values_callable=_enum_values), nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(
        Enum(NotificationType, name="notification_type", values_callable=_enum_values),
        nullable=False,
    )
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class EmailQueue(Base):
    __tablename__ = "email_queue"

    id = Column(Integer, primary_key=True)
    type = Column(String, nullable=False)
    recipient = Column(String, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(
        Enum(EmailQueueStatus, name="email_queue_status", values_callable=_enum_values),
        nullable=False,
        default=EmailQueueStatus.PENDING,
        server_default=EmailQueueStatus.PENDING.value,
        index=True,
    )
    priority = Column(Integer, nullable=False, default=int(EmailPriority.NORMAL))
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    scheduled_for = Column(DateTime, nullable=False)
    last_error = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self) -> str:
        return (
            "<EmailQueue(id={0}, type={1}, status={2}, attempts={3}/{4})>"
        ).format(self.id, self.type, self.status, self.attempts, self.max_attempts)
