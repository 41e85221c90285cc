import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base
from .schemas import utcnow


def new_uuid() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_uuid)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String)
    avatar_url = Column(String)
    phone = Column(String)
    position = Column(String)
    department = Column(String)
    is_super_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    memberships = relationship("SpaceMember", back_populates="user", cascade="all, delete-orphan")
    daily_tasks = relationship("DailyTask", cascade="all, delete-orphan")
    scratchpad = relationship("Scratchpad", uselist=False, cascade="all, delete-orphan")
    notifications = relationship("Notification", cascade="all, delete-orphan")

    @property
    def name(self) -> str:
        return self.full_name or self.username or "Unknown"


class Space(Base):
    __tablename__ = "spaces"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    description = Column(Text)
    theme = Column(String)
    join_code = Column(String(16), unique=True, index=True, nullable=False)
    owner_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    owner = relationship("Profile")
    memberships = relationship("SpaceMember", back_populates="space", cascade="all, delete-orphan")
    lists = relationship("TaskList", back_populates="space", cascade="all, delete-orphan")
    tasks = relationship("Task", back_populates="space", cascade="all, delete-orphan")

    @property
    def members(self):
        return [m.user_id for m in self.memberships]


class SpaceMember(Base):
    __tablename__ = "space_members"
    __table_args__ = (UniqueConstraint("space_id", "user_id", name="uq_space_member"),)

    id = Column(Integer, primary_key=True, index=True)
    space_id = Column(String(36), ForeignKey("spaces.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    role = Column(String, default="member", nullable=False)
    joined_at = Column(DateTime, default=utcnow, nullable=False)

    space = relationship("Space", back_populates="memberships")
    user = relationship("Profile", back_populates="memberships")


class TaskList(Base):
    __tablename__ = "lists"

    id = Column(Integer, primary_key=True, index=True)
    space_id = Column(String(36), ForeignKey("spaces.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String)
    position = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    space = relationship("Space", back_populates="lists")


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    space_id = Column(String(36), ForeignKey("spaces.id"), nullable=False, index=True)
    list_id = Column(Integer, ForeignKey("lists.id"), nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, default="")
    assignee_id = Column(String(36), ForeignKey("profiles.id"), nullable=True)
    due_date = Column(Date, nullable=False)
    status = Column(String, default="To Do", nullable=False)
    priority = Column(String, default="Medium", nullable=False)
    tags = Column(JSON, default=list, nullable=False)
    timer_start_time = Column(DateTime, nullable=True)
    blocked_by_id = Column(Integer, ForeignKey("tasks.id"), nullable=True)
    is_unplanned = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    version = Column(Integer, default=1, nullable=False)

    space = relationship("Space", back_populates="tasks")
    subtasks = relationship("Subtask", cascade="all, delete-orphan", order_by="Subtask.id")
    comments = relationship("Comment", cascade="all, delete-orphan", order_by="Comment.created_at")
    time_logs = relationship("TimeLog", cascade="all, delete-orphan", order_by="TimeLog.start_time.desc()")


class Subtask(Base):
    __tablename__ = "subtasks"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    author_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class TimeLog(Base):
    __tablename__ = "time_logs"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)  # milliseconds


class DailyTask(Base):
    __tablename__ = "daily_tasks"

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    text = Column(String, nullable=False)
    status = Column(String, default="TODO", nullable=False)
    priority = Column(String, default="Medium", nullable=False)
    schedule = Column(String, nullable=True)
    is_unplanned = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Scratchpad(Base):
    __tablename__ = "scratchpads"

    user_id = Column(String(36), ForeignKey("profiles.id"), primary_key=True)
    content = Column(Text, default="", nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String, default="system", nullable=False)
    target_id = Column(String, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
