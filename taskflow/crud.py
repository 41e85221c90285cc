import logging
import re
import secrets
import string
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, List, Optional, Tuple
from urllib.parse import quote

from passlib.hash import bcrypt
from sqlalchemy.orm import Session, selectinload

from . import models, schemas
from .errors import AlreadyMemberError, ConflictError, InvalidJoinCodeError
from .roles import resolve_space_role

logger = logging.getLogger(__name__)

JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits
JOIN_CODE_LENGTH = 6

# columns a PATCH may not null out
REQUIRED_TASK_FIELDS = {"space_id", "title", "due_date", "status", "priority"}


def _value(value):
    return value.value if isinstance(value, Enum) else value


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ---- users / profiles

def create_user(db: Session, user: schemas.UserCreate):
    hashed = bcrypt.hash(user.password)
    display = user.full_name or user.username
    db_user = models.Profile(
        username=user.username,
        email=user.email.lower(),
        hashed_password=hashed,
        full_name=user.full_name,
        department=user.department,
        avatar_url=f"https://ui-avatars.com/api/?name={quote(display)}&background=random",
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


def get_user_by_email(db: Session, email: str):
    return db.query(models.Profile).filter(models.Profile.email == email.lower()).first()


def get_user_by_username(db: Session, username: str):
    return db.query(models.Profile).filter(models.Profile.username == username).first()


def get_user_by_id(db: Session, user_id: str):
    return db.query(models.Profile).filter(models.Profile.id == user_id).first()


def get_all_employees(db: Session):
    return db.query(models.Profile).order_by(models.Profile.full_name, models.Profile.username).all()


def update_profile(db: Session, user_id: str, updates: schemas.ProfileUpdate):
    profile = get_user_by_id(db, user_id)
    if not profile:
        return None
    # blank form fields leave the stored value alone
    for field, value in updates.model_dump(exclude_unset=True).items():
        if value:
            setattr(profile, field, value.lower() if field == "email" else value)
    db.commit()
    db.refresh(profile)
    return profile


def set_super_admin(db: Session, user_id: str, is_super_admin: bool):
    profile = get_user_by_id(db, user_id)
    if not profile:
        return None
    profile.is_super_admin = is_super_admin
    db.commit()
    db.refresh(profile)
    return profile


def delete_user(db: Session, user_id: str) -> bool:
    profile = get_user_by_id(db, user_id)
    if not profile:
        return False
    for space in db.query(models.Space).filter(models.Space.owner_id == user_id).all():
        _delete_space_rows(db, space)
    db.query(models.Task).filter(models.Task.assignee_id == user_id).update({models.Task.assignee_id: None})
    db.query(models.Comment).filter(models.Comment.author_id == user_id).delete()
    db.delete(profile)
    db.commit()
    return True


def get_users_with_roles(db: Session) -> List[schemas.UserWithRole]:
    rows = []
    for profile in get_all_employees(db):
        base = schemas.Employee.model_validate(profile).model_dump()
        if not profile.memberships:
            rows.append(schemas.UserWithRole(**base, is_super_admin=profile.is_super_admin))
            continue
        for membership in profile.memberships:
            rows.append(schemas.UserWithRole(
                **base,
                space_id=membership.space_id,
                space_name=membership.space.name,
                role=membership.role,
                is_super_admin=profile.is_super_admin,
            ))
    return rows


# ---- spaces

def normalize_join_code(code: str) -> str:
    return re.sub(r"[\s-]", "", code or "").upper()


def _generate_join_code(db: Session) -> str:
    while True:
        code = "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))
        if not db.query(models.Space.id).filter(models.Space.join_code == code).first():
            return code


def create_space(db: Session, name: str, owner_id: str, description: Optional[str] = None):
    space = models.Space(
        name=name.strip(),
        description=description or None,
        join_code=_generate_join_code(db),
        owner_id=owner_id,
    )
    db.add(space)
    db.flush()
    db.add(models.SpaceMember(space_id=space.id, user_id=owner_id, role=schemas.SpaceRole.ADMIN.value))
    db.commit()
    db.refresh(space)
    return space


def get_space(db: Session, space_id: str):
    return (
        db.query(models.Space)
        .options(selectinload(models.Space.memberships))
        .filter(models.Space.id == space_id)
        .first()
    )


def get_user_spaces(db: Session, user_id: str):
    return (
        db.query(models.Space)
        .join(models.SpaceMember, models.SpaceMember.space_id == models.Space.id)
        .filter(models.SpaceMember.user_id == user_id)
        .options(selectinload(models.Space.memberships))
        .order_by(models.Space.created_at)
        .all()
    )


def get_all_spaces(db: Session):
    return (
        db.query(models.Space)
        .options(selectinload(models.Space.memberships))
        .order_by(models.Space.created_at.desc())
        .all()
    )


def update_space(db: Session, space_id: str, updates: schemas.SpaceUpdate):
    space = get_space(db, space_id)
    if not space:
        return None
    for field, value in updates.model_dump(exclude_unset=True).items():
        if value:
            setattr(space, field, value)
    db.commit()
    db.refresh(space)
    return space


def _delete_space_rows(db: Session, space):
    # self references inside the space would otherwise block the cascade
    db.query(models.Task).filter(models.Task.space_id == space.id).update({models.Task.blocked_by_id: None})
    db.delete(space)


def delete_space(db: Session, space_id: str) -> bool:
    space = get_space(db, space_id)
    if not space:
        return False
    _delete_space_rows(db, space)
    db.commit()
    return True


def get_membership(db: Session, space_id: str, user_id: str):
    return db.query(models.SpaceMember).filter(
        models.SpaceMember.space_id == space_id,
        models.SpaceMember.user_id == user_id,
    ).first()


def get_memberships(db: Session, space_ids: Iterable[str]):
    space_ids = list(space_ids)
    if not space_ids:
        return []
    return db.query(models.SpaceMember).filter(models.SpaceMember.space_id.in_(space_ids)).all()


def join_space(db: Session, code: str, user_id: str):
    """Join by shareable code. Joining a space twice is a no-op."""
    normalized = normalize_join_code(code)
    space = db.query(models.Space).filter(models.Space.join_code == normalized).first()
    if not space:
        raise InvalidJoinCodeError("Invalid join code. Please check the code and try again.")
    if get_membership(db, space.id, user_id) is None:
        db.add(models.SpaceMember(space_id=space.id, user_id=user_id, role=schemas.SpaceRole.MEMBER.value))
        db.commit()
        logger.info("user %s joined space %s", user_id, space.id)
    return get_space(db, space.id)


def add_member(db: Session, space_id: str, user_id: str, role: schemas.SpaceRole = schemas.SpaceRole.MEMBER):
    if get_membership(db, space_id, user_id) is not None:
        raise AlreadyMemberError("User is already a member of this workspace")
    membership = models.SpaceMember(space_id=space_id, user_id=user_id, role=_value(role))
    db.add(membership)
    db.commit()
    db.refresh(membership)
    return membership


def remove_member(db: Session, space_id: str, user_id: str) -> bool:
    space = get_space(db, space_id)
    if space and space.owner_id == user_id:
        raise ValueError("The workspace owner cannot be removed")
    membership = get_membership(db, space_id, user_id)
    if not membership:
        return False
    db.delete(membership)
    db.commit()
    return True


def update_member_role(db: Session, space_id: str, user_id: str, role: schemas.SpaceRole):
    membership = get_membership(db, space_id, user_id)
    if not membership:
        return None
    membership.role = _value(role)
    db.commit()
    db.refresh(membership)
    return membership


def space_role(db: Session, space, user) -> Optional[schemas.SpaceRole]:
    """Role of ``user`` in ``space``; None when they are not allowed in at all."""
    membership = get_membership(db, space.id, user.id)
    if membership is None and not user.is_super_admin and space.owner_id != user.id:
        return None
    return resolve_space_role(
        user_id=user.id,
        is_super_admin=user.is_super_admin,
        owner_id=space.owner_id,
        membership_role=membership.role if membership else None,
    )


# ---- lists

def get_lists(db: Session, space_id: str):
    return (
        db.query(models.TaskList)
        .filter(models.TaskList.space_id == space_id)
        .order_by(models.TaskList.position, models.TaskList.id)
        .all()
    )


def create_list(db: Session, space_id: str, name: str, color: Optional[str] = None):
    position = db.query(models.TaskList).filter(models.TaskList.space_id == space_id).count()
    task_list = models.TaskList(space_id=space_id, name=name.strip(), color=color, position=position)
    db.add(task_list)
    db.commit()
    db.refresh(task_list)
    return task_list


# ---- tasks

def _task_query(db: Session):
    return db.query(models.Task).options(
        selectinload(models.Task.subtasks),
        selectinload(models.Task.comments),
        selectinload(models.Task.time_logs),
    )


def get_task(db: Session, task_id: int):
    return _task_query(db).filter(models.Task.id == task_id).first()


def get_tasks(db: Session, space_id: str):
    return (
        _task_query(db)
        .filter(models.Task.space_id == space_id)
        .order_by(models.Task.created_at.desc(), models.Task.id.desc())
        .all()
    )


def get_all_tasks(db: Session):
    return _task_query(db).order_by(models.Task.created_at.desc(), models.Task.id.desc()).all()


def get_overdue_tasks(db: Session, today: date):
    return db.query(models.Task).filter(
        models.Task.due_date < today,
        models.Task.status != schemas.TaskStatus.DONE.value,
        models.Task.assignee_id.isnot(None),
    ).all()


def _apply_completion(task, previous_status: str, completed_at_given: bool):
    done = schemas.TaskStatus.DONE.value
    if task.status != done:
        task.completed_at = None
    elif previous_status != done and not completed_at_given:
        task.completed_at = models.utcnow()


def _sync_subtasks(task, items: List[schemas.SubtaskIn]):
    existing = {subtask.id: subtask for subtask in task.subtasks}
    kept = set()
    for item in items:
        current = existing.get(item.id) if item.id is not None else None
        if current is not None and current.id not in kept:
            current.title = item.title
            current.is_completed = item.is_completed
            kept.add(current.id)
        else:
            task.subtasks.append(models.Subtask(title=item.title, is_completed=item.is_completed))
    for subtask_id, subtask in existing.items():
        if subtask_id not in kept:
            task.subtasks.remove(subtask)


def create_task(db: Session, payload: schemas.TaskUpsert, default_assignee_id: Optional[str] = None):
    data = payload.model_dump(exclude_unset=True)
    title = (data.get("title") or "").strip()
    if not title:
        raise ValueError("title is required")
    if not data.get("space_id"):
        raise ValueError("space_id is required")

    status = _value(data.get("status") or schemas.TaskStatus.TODO)
    db_task = models.Task(
        space_id=data["space_id"],
        list_id=data.get("list_id"),
        title=title,
        description=data.get("description") or "",
        assignee_id=data.get("assignee_id") or default_assignee_id,
        due_date=data.get("due_date") or models.utcnow().date(),
        status=status,
        priority=_value(data.get("priority") or schemas.Priority.MEDIUM),
        tags=data.get("tags") or [],
        timer_start_time=_naive_utc(data.get("timer_start_time")),
        blocked_by_id=data.get("blocked_by_id"),
        is_unplanned=bool(data.get("is_unplanned")),
        completed_at=_naive_utc(data.get("completed_at")),
        version=1,
    )
    _apply_completion(db_task, schemas.TaskStatus.TODO.value, db_task.completed_at is not None)
    for item in payload.subtasks or []:
        db_task.subtasks.append(models.Subtask(title=item.title, is_completed=item.is_completed))
    db.add(db_task)
    db.commit()
    return get_task(db, db_task.id)


def update_task(db: Session, task_id: int, payload: schemas.TaskUpsert):
    """Partial update: only fields the caller set are written."""
    task = get_task(db, task_id)
    if not task:
        return None
    if payload.expected_version is not None and payload.expected_version != task.version:
        raise ConflictError(
            f"Task {task_id} was changed by someone else (version {task.version}, expected {payload.expected_version})"
        )

    fields = payload.model_dump(exclude_unset=True, exclude={"id", "subtasks", "expected_version"})
    for field in REQUIRED_TASK_FIELDS & fields.keys():
        if fields[field] is None:
            raise ValueError(f"{field} cannot be null")
    if "title" in fields and not fields["title"].strip():
        raise ValueError("title cannot be empty")
    if fields.get("blocked_by_id") is not None and fields["blocked_by_id"] == task.id:
        raise ValueError("a task cannot block itself")

    previous_status = task.status
    for field, value in fields.items():
        value = _value(value)
        if field in ("timer_start_time", "completed_at"):
            value = _naive_utc(value)
        elif field == "tags":
            value = value or []
        elif field == "description":
            value = value or ""
        setattr(task, field, value)
    _apply_completion(task, previous_status, "completed_at" in fields)

    if payload.subtasks is not None:
        _sync_subtasks(task, payload.subtasks)

    task.version = (task.version or 0) + 1
    db.commit()
    return get_task(db, task_id)


def upsert_task(db: Session, payload: schemas.TaskUpsert, default_assignee_id: Optional[str] = None):
    if payload.id is not None:
        return update_task(db, payload.id, payload)
    return create_task(db, payload, default_assignee_id)


def delete_task(db: Session, task_id: int) -> bool:
    task = get_task(db, task_id)
    if not task:
        return False
    db.query(models.Task).filter(models.Task.blocked_by_id == task_id).update({models.Task.blocked_by_id: None})
    db.delete(task)
    db.commit()
    return True


def add_comment(db: Session, task_id: int, author_id: str, content: str):
    if not get_task(db, task_id):
        return None
    comment = models.Comment(task_id=task_id, author_id=author_id, content=content)
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return comment


def start_timer(db: Session, task_id: int, started_at: Optional[datetime] = None):
    task = get_task(db, task_id)
    if not task:
        return None
    if task.timer_start_time is None:
        task.timer_start_time = _naive_utc(started_at) or models.utcnow()
        task.version = (task.version or 0) + 1
        db.commit()
    return get_task(db, task_id)


def stop_timer(db: Session, task_id: int, ended_at: Optional[datetime] = None) -> Optional[Tuple]:
    """Close the running timer: log entry and timer reset commit together."""
    task = get_task(db, task_id)
    if not task:
        return None
    if task.timer_start_time is None:
        raise ValueError("timer is not running")
    start = task.timer_start_time
    end = _naive_utc(ended_at) or models.utcnow()
    duration = max(0, (end - start) // timedelta(milliseconds=1))
    entry = models.TimeLog(task_id=task_id, start_time=start, end_time=end, duration=duration)
    db.add(entry)
    task.timer_start_time = None
    task.version = (task.version or 0) + 1
    db.commit()
    db.refresh(entry)
    return get_task(db, task_id), entry


def log_time(db: Session, task_id: int, start_time: datetime, end_time: datetime):
    if not get_task(db, task_id):
        return None
    start, end = _naive_utc(start_time), _naive_utc(end_time)
    if end < start:
        raise ValueError("end_time is before start_time")
    entry = models.TimeLog(task_id=task_id, start_time=start, end_time=end, duration=(end - start) // timedelta(milliseconds=1))
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


# ---- daily tasks / scratchpad

def get_daily_tasks(db: Session, user_id: str):
    return (
        db.query(models.DailyTask)
        .filter(models.DailyTask.user_id == user_id)
        .order_by(models.DailyTask.created_at.desc())
        .all()
    )


def upsert_daily_task(db: Session, user_id: str, item: schemas.DailyTaskIn):
    row = None
    if item.id:
        row = db.query(models.DailyTask).filter(
            models.DailyTask.id == item.id, models.DailyTask.user_id == user_id
        ).first()
    if row is None:
        row = models.DailyTask(user_id=user_id)
        db.add(row)
    row.text = item.text
    row.status = _value(item.status)
    row.priority = _value(item.priority)
    row.schedule = item.schedule or None
    row.is_unplanned = item.is_unplanned
    db.commit()
    db.refresh(row)
    return row


def delete_daily_task(db: Session, user_id: str, task_id: str) -> bool:
    deleted = db.query(models.DailyTask).filter(
        models.DailyTask.id == task_id, models.DailyTask.user_id == user_id
    ).delete()
    db.commit()
    return bool(deleted)


def get_scratchpad(db: Session, user_id: str) -> str:
    row = db.query(models.Scratchpad).filter(models.Scratchpad.user_id == user_id).first()
    return row.content if row else ""


def sync_scratchpad(db: Session, user_id: str, content: str) -> str:
    row = db.query(models.Scratchpad).filter(models.Scratchpad.user_id == user_id).first()
    if row is None:
        row = models.Scratchpad(user_id=user_id)
        db.add(row)
    row.content = content
    row.updated_at = models.utcnow()
    db.commit()
    return row.content


# ---- notifications

def create_notification(db: Session, user_id: str, title: str, message: str, type: str = "system", target_id: Optional[str] = None):
    notification = models.Notification(
        user_id=user_id, title=title, message=message, type=type, target_id=target_id
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def get_notifications(db: Session, user_id: str, limit: int = 50):
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id)
        .order_by(models.Notification.created_at.desc())
        .limit(limit)
        .all()
    )


def mark_notification_read(db: Session, user_id: str, notification_id: str) -> bool:
    updated = db.query(models.Notification).filter(
        models.Notification.id == notification_id,
        models.Notification.user_id == user_id,
    ).update({models.Notification.is_read: True})
    db.commit()
    return bool(updated)


def mark_all_notifications_read(db: Session, user_id: str) -> int:
    updated = db.query(models.Notification).filter(
        models.Notification.user_id == user_id,
        models.Notification.is_read.is_(False),
    ).update({models.Notification.is_read: True})
    db.commit()
    return updated
