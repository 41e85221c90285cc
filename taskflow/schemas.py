from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class TaskStatus(str, Enum):
    TODO = "To Do"
    IN_PROGRESS = "In Progress"
    DONE = "Done"


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class SpaceRole(str, Enum):
    ADMIN = "admin"
    MEMBER = "member"


class DailyTaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


TASK_STATUSES = [TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.DONE]
PRIORITIES = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.URGENT]


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored and compared datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _unique_tags(tags):
    seen, out = set(), []
    for tag in tags or []:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.add(tag)
            out.append(tag)
    return out


# ---- people

class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    username: str
    full_name: Optional[str] = None
    department: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class Employee(BaseModel):
    id: str
    name: str
    full_name: Optional[str] = None
    email: str = ""
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    position: Optional[str] = None

    class Config:
        from_attributes = True


class CurrentUser(Employee):
    username: str
    department: Optional[str] = None
    is_super_admin: bool = False


class EmployeeWithRole(Employee):
    role: SpaceRole = SpaceRole.MEMBER


class UserWithRole(Employee):
    space_id: Optional[str] = None
    space_name: Optional[str] = None
    role: SpaceRole = SpaceRole.MEMBER
    is_super_admin: bool = False


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    phone: Optional[str] = None
    position: Optional[str] = None
    email: Optional[EmailStr] = None


class SuperAdminUpdate(BaseModel):
    is_super_admin: bool


# ---- spaces

class Space(BaseModel):
    id: str
    name: str
    join_code: str
    owner_id: str
    members: List[str] = []
    description: Optional[str] = None
    theme: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SpaceCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None


class SpaceUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    theme: Optional[str] = None


class JoinRequest(BaseModel):
    code: str


class Membership(BaseModel):
    space_id: str
    user_id: str
    role: SpaceRole

    class Config:
        from_attributes = True


class MemberAdd(BaseModel):
    user_id: str
    role: SpaceRole = SpaceRole.MEMBER


class RoleUpdate(BaseModel):
    role: SpaceRole


class TaskListOut(BaseModel):
    id: int
    space_id: str
    name: str
    color: Optional[str] = None
    position: int = 0
    created_at: datetime

    class Config:
        from_attributes = True


class ListCreate(BaseModel):
    name: str = Field(min_length=1)
    color: Optional[str] = None


# ---- tasks

class SubtaskIn(BaseModel):
    id: Optional[int] = None
    title: str
    is_completed: bool = False


class Subtask(BaseModel):
    id: int
    title: str
    is_completed: bool

    class Config:
        from_attributes = True


class Comment(BaseModel):
    id: int
    author_id: str
    content: str
    created_at: datetime

    class Config:
        from_attributes = True


class CommentCreate(BaseModel):
    content: str = Field(min_length=1)


class TimeLogEntry(BaseModel):
    id: int
    start_time: datetime
    end_time: datetime
    duration: int

    class Config:
        from_attributes = True


class TimeLogCreate(BaseModel):
    start_time: datetime
    end_time: datetime


class TimerStart(BaseModel):
    started_at: Optional[datetime] = None


class TimerStop(BaseModel):
    ended_at: Optional[datetime] = None


class Task(BaseModel):
    id: int
    space_id: str
    list_id: Optional[int] = None
    title: str
    description: str = ""
    assignee_id: Optional[str] = None
    due_date: date
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    tags: List[str] = []
    subtasks: List[Subtask] = []
    comments: List[Comment] = []
    time_logs: List[TimeLogEntry] = []
    timer_start_time: Optional[datetime] = None
    blocked_by_id: Optional[int] = None
    is_unplanned: bool = False
    created_at: datetime
    completed_at: Optional[datetime] = None
    version: int = 1

    class Config:
        from_attributes = True

    @field_validator("description", mode="before")
    @classmethod
    def _description_default(cls, value):
        return value or ""

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_default(cls, value):
        return value or []

    def total_logged_ms(self) -> int:
        return sum(entry.duration for entry in self.time_logs)

    def running_ms(self, now: datetime) -> int:
        if self.timer_start_time is None:
            return 0
        return max(0, int((now - self.timer_start_time).total_seconds() * 1000))


class TaskUpsert(BaseModel):
    """Partial task payload.

    Only the fields explicitly set by the caller are written on update;
    ``model_dump(exclude_unset=True)`` is the PATCH body.
    """
    id: Optional[int] = None
    space_id: Optional[str] = None
    list_id: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date: Optional[date] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    tags: Optional[List[str]] = None
    subtasks: Optional[List[SubtaskIn]] = None
    timer_start_time: Optional[datetime] = None
    blocked_by_id: Optional[int] = None
    completed_at: Optional[datetime] = None
    is_unplanned: Optional[bool] = None
    expected_version: Optional[int] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value):
        return None if value is None else _unique_tags(value)


class TimerStopResult(BaseModel):
    task: Task
    entry: TimeLogEntry


class TaskDraft(BaseModel):
    title: str
    description: str = ""
    assignee_id: Optional[str] = None
    due_date: Optional[date] = None


# ---- personal data

class DailyTaskIn(BaseModel):
    id: Optional[str] = None
    text: str = Field(min_length=1)
    status: DailyTaskStatus = DailyTaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    schedule: Optional[str] = None
    is_unplanned: bool = False


class DailyTask(BaseModel):
    id: str
    text: str
    status: DailyTaskStatus = DailyTaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    schedule: Optional[str] = None
    is_unplanned: bool = False

    class Config:
        from_attributes = True


class ScratchpadContent(BaseModel):
    content: str = ""

    class Config:
        from_attributes = True


class Notification(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    type: str = "system"
    target_id: Optional[str] = None
    is_read: bool = False
    created_at: datetime

    class Config:
        from_attributes = True
