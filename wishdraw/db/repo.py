from __future__ import annotations

import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import and_, delete, func, select, update

from wishdraw.db.models import (
    Activity,
    ActivityType,
    Assignment,
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


def get_user(session, user_id: int) -> Optional[User]:
    return session.scalar(select(User).where(User.id == user_id))


def create_user(
    session,
    email: Optional[str],
    display_name: Optional[str],
    locale: str = "en",
    notify_in_app: bool = True,
) -> User:
    user = User(
        email=email,
        display_name=display_name,
        locale=locale,
        notify_in_app=notify_in_app,
    )
    session.add(user)
    session.flush()
    return user


def get_group_by_id(session, group_id: int) -> Optional[Group]:
    return session.scalar(select(Group).where(Group.id == group_id))


def create_group(
    session,
    name: str,
    owner_id: int,
    draw_date: Optional[datetime.datetime] = None,
    is_secret_santa: bool = True,
) -> Group:
    group = Group(
        name=name,
        owner_id=owner_id,
        is_secret_santa=is_secret_santa,
        secret_santa_draw_date=draw_date,
    )
    session.add(group)
    session.flush()
    add_member(session, group.id, owner_id, MemberRole.OWNER)
    return group


def set_draw_date(session, group: Group, draw_date: Optional[datetime.datetime]) -> None:
    group.secret_santa_draw_date = draw_date


def archive_group(session, group: Group, archived_at: datetime.datetime) -> None:
    group.archived_at = archived_at


def add_member(session, group_id: int, user_id: int, role: MemberRole = MemberRole.MEMBER) -> GroupMember:
    membership = session.scalar(
        select(GroupMember).where(
            and_(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        )
    )
    if membership:
        membership.left_at = None
        membership.role = role
        return membership

    membership = GroupMember(group_id=group_id, user_id=user_id, role=role)
    session.add(membership)
    session.flush()
    return membership


def remove_member(session, group_id: int, user_id: int, left_at: datetime.datetime) -> bool:
    membership = get_active_membership(session, group_id, user_id)
    if not membership:
        return False
    membership.left_at = left_at
    return True


def get_active_membership(session, group_id: int, user_id: int) -> Optional[GroupMember]:
    return session.scalar(
        select(GroupMember).where(
            and_(
                GroupMember.group_id == group_id,
                GroupMember.user_id == user_id,
                GroupMember.left_at.is_(None),
            )
        )
    )


def list_active_members(session, group_id: int) -> List[User]:
    return list(
        session.scalars(
            select(User)
            .join(GroupMember, GroupMember.user_id == User.id)
            .where(and_(GroupMember.group_id == group_id, GroupMember.left_at.is_(None)))
            .order_by(GroupMember.id)
        ).all()
    )


def count_active_members(session, group_id: int) -> int:
    return session.scalar(
        select(func.count())
        .select_from(GroupMember)
        .where(and_(GroupMember.group_id == group_id, GroupMember.left_at.is_(None)))
    )


def list_exclusions(session, group_id: int) -> List[ExclusionRule]:
    return list(
        session.scalars(
            select(ExclusionRule).where(ExclusionRule.group_id == group_id).order_by(ExclusionRule.id)
        ).all()
    )


def _ordered_pair(user_a: int, user_b: int) -> tuple[int, int]:
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


def get_exclusion(session, group_id: int, user_a: int, user_b: int) -> Optional[ExclusionRule]:
    first, second = _ordered_pair(user_a, user_b)
    return session.scalar(
        select(ExclusionRule).where(
            and_(
                ExclusionRule.group_id == group_id,
                ExclusionRule.user_id_1 == first,
                ExclusionRule.user_id_2 == second,
            )
        )
    )


def add_exclusion(session, group_id: int, user_a: int, user_b: int) -> ExclusionRule:
    first, second = _ordered_pair(user_a, user_b)
    rule = ExclusionRule(group_id=group_id, user_id_1=first, user_id_2=second)
    session.add(rule)
    session.flush()
    return rule


def delete_exclusion(session, group_id: int, user_a: int, user_b: int) -> int:
    first, second = _ordered_pair(user_a, user_b)
    result = session.execute(
        delete(ExclusionRule).where(
            and_(
                ExclusionRule.group_id == group_id,
                ExclusionRule.user_id_1 == first,
                ExclusionRule.user_id_2 == second,
            )
        )
    )
    return result.rowcount or 0


def mark_group_drawn(session, group: Group) -> bool:
    """Flip NOT_DRAWN -> DRAWN. False when another transaction already won."""
    result = session.execute(
        update(Group)
        .where(and_(Group.id == group.id, Group.secret_santa_drawn.is_(False)))
        .values(secret_santa_drawn=True, secret_santa_draw_date=None)
        .execution_options(synchronize_session=False)
    )
    session.expire(group, ["secret_santa_drawn", "secret_santa_draw_date"])
    return result.rowcount == 1


def mark_group_not_drawn(session, group: Group) -> bool:
    result = session.execute(
        update(Group)
        .where(and_(Group.id == group.id, Group.secret_santa_drawn.is_(True)))
        .values(secret_santa_drawn=False)
        .execution_options(synchronize_session=False)
    )
    session.expire(group, ["secret_santa_drawn"])
    return result.rowcount == 1


def create_assignments(
    session,
    group_id: int,
    assignments: Mapping[int, int],
    excluded_snapshots: Mapping[int, List[int]],
) -> List[Assignment]:
    rows = [
        Assignment(
            group_id=group_id,
            giver_id=giver_id,
            receiver_id=receiver_id,
            excluded_user_ids=list(excluded_snapshots.get(receiver_id, [])),
        )
        for giver_id, receiver_id in assignments.items()
    ]
    session.add_all(rows)
    session.flush()
    return rows


def list_assignments(session, group_id: int) -> List[Assignment]:
    return list(session.scalars(select(Assignment).where(Assignment.group_id == group_id)).all())


def count_assignments(session, group_id: int) -> int:
    return session.scalar(
        select(func.count()).select_from(Assignment).where(Assignment.group_id == group_id)
    )


def get_assignment_for_giver(session, group_id: int, giver_id: int) -> Optional[Assignment]:
    return session.scalar(
        select(Assignment).where(
            and_(Assignment.group_id == group_id, Assignment.giver_id == giver_id)
        )
    )


def mark_assignment_viewed(session, assignment: Assignment, viewed_at: datetime.datetime) -> bool:
    result = session.execute(
        update(Assignment)
        .where(and_(Assignment.id == assignment.id, Assignment.viewed_at.is_(None)))
        .values(viewed_at=viewed_at)
        .execution_options(synchronize_session=False)
    )
    session.refresh(assignment)
    return result.rowcount == 1


def clear_assignments(session, group_id: int) -> int:
    result = session.execute(delete(Assignment).where(Assignment.group_id == group_id))
    return result.rowcount or 0


def add_activity(
    session,
    group_id: int,
    user_id: Optional[int],
    activity_type: ActivityType,
    details: Optional[Dict[str, Any]] = None,
) -> Activity:
    activity = Activity(group_id=group_id, user_id=user_id, type=activity_type, details=details)
    session.add(activity)
    session.flush()
    return activity


def list_activities(session, group_id: int) -> List[Activity]:
    return list(
        session.scalars(
            select(Activity).where(Activity.group_id == group_id).order_by(Activity.id)
        ).all()
    )


def create_notification(
    session,
    user_id: int,
    notification_type: NotificationType,
    title: str,
    body: str,
    group_id: Optional[int] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=notification_type,
        title=title,
        body=body,
        group_id=group_id,
    )
    session.add(notification)
    session.flush()
    return notification


def list_notifications(session, user_id: int) -> List[Notification]:
    return list(
        session.scalars(
            select(Notification).where(Notification.user_id == user_id).order_by(Notification.id)
        ).all()
    )


def enqueue_email(
    session,
    email_type: str,
    recipient: str,
    payload: Dict[str, Any],
    priority: EmailPriority,
    scheduled_for: datetime.datetime,
    max_attempts: int,
) -> EmailQueue:
    email = EmailQueue(
        type=email_type,
        recipient=recipient,
        payload=payload,
        priority=int(priority),
        scheduled_for=scheduled_for,
        max_attempts=max_attempts,
        status=EmailQueueStatus.PENDING,
        attempts=0,
    )
    session.add(email)
    session.flush()
    return email


def get_email(session, email_id: int) -> Optional[EmailQueue]:
    return session.scalar(select(EmailQueue).where(EmailQueue.id == email_id))


def list_emails(session, recipient: Optional[str] = None) -> List[EmailQueue]:
    statement = select(EmailQueue).order_by(EmailQueue.id)
    if recipient is not None:
        statement = statement.where(EmailQueue.recipient == recipient)
    return list(session.scalars(statement).all())


def list_due_email_ids(session, now: datetime.datetime, limit: int) -> List[int]:
    return list(
        session.scalars(
            select(EmailQueue.id)
            .where(
                and_(
                    EmailQueue.status == EmailQueueStatus.PENDING,
                    EmailQueue.scheduled_for <= now,
                    EmailQueue.attempts < EmailQueue.max_attempts,
                )
            )
            .order_by(EmailQueue.priority.asc(), EmailQueue.scheduled_for.asc(), EmailQueue.id.asc())
            .limit(limit)
        ).all()
    )


def claim_email(session, email_id: int) -> Optional[EmailQueue]:
    """PENDING -> PROCESSING with the attempt counted up front."""
    result = session.execute(
        update(EmailQueue)
        .where(and_(EmailQueue.id == email_id, EmailQueue.status == EmailQueueStatus.PENDING))
        .values(status=EmailQueueStatus.PROCESSING, attempts=EmailQueue.attempts + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    email = get_email(session, email_id)
    session.refresh(email)
    return email


def complete_email(session, email_id: int, processed_at: datetime.datetime) -> None:
    session.execute(
        update(EmailQueue)
        .where(EmailQueue.id == email_id)
        .values(status=EmailQueueStatus.COMPLETED, processed_at=processed_at, last_error=None)
        .execution_options(synchronize_session=False)
    )


def fail_email(
    session,
    email_id: int,
    error: str,
    retry_at: Optional[datetime.datetime],
) -> None:
    values: Dict[str, Any] = {"last_error": error}
    if retry_at is None:
        values["status"] = EmailQueueStatus.FAILED
    else:
        values["status"] = EmailQueueStatus.PENDING
        values["scheduled_for"] = retry_at
    session.execute(
        update(EmailQueue)
        .where(EmailQueue.id == email_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def count_emails_by_status(session) -> Dict[EmailQueueStatus, int]:
    rows = session.execute(
        select(EmailQueue.status, func.count()).group_by(EmailQueue.status)
    ).all()
    counts = {status: 0 for status in EmailQueueStatus}
    for status, count in rows:
        counts[EmailQueueStatus(status)] = count
    return counts


def count_completed_since(session, since: datetime.datetime) -> int:
    return session.scalar(
        select(func.count())
        .select_from(EmailQueue)
        .where(and_(EmailQueue.status == EmailQueueStatus.COMPLETED, EmailQueue.processed_at >= since))
    )


def count_failed_since(session, since: datetime.datetime) -> int:
    return session.scalar(
        select(func.count())
        .select_from(EmailQueue)
        .where(and_(EmailQueue.status == EmailQueueStatus.FAILED, EmailQueue.updated_at >= since))
    )


def delete_completed_emails_before(session, cutoff: datetime.datetime) -> int:
    result = session.execute(
        delete(EmailQueue).where(
            and_(EmailQueue.status == EmailQueueStatus.COMPLETED, EmailQueue.processed_at < cutoff)
        )
    )
    return result.rowcount or 0


def list_groups_due_for_draw(session, now: datetime.datetime) -> List[Group]:
    return list(
        session.scalars(
            select(Group)
            .where(
                and_(
                    Group.archived_at.is_(None),
                    Group.is_secret_santa.is_(True),
                    Group.secret_santa_drawn.is_(False),
                    Group.secret_santa_draw_date.is_not(None),
                    Group.secret_santa_draw_date <= now,
                )
            )
            .order_by(Group.secret_santa_draw_date, Group.id)
        ).all()
    )
