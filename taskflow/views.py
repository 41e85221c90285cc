"""
Derived data for the workspace views.

Pure functions from controller state to what each view shows, plus the
user-management panel, which loads its own data because it is reachable
outside a workspace.
"""

import asyncio
import calendar
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

from . import schemas
from .errors import TaskFlowError
from .notifications import Toaster
from .results import MutationResult

logger = logging.getLogger(__name__)

GANTT_DAYS = 14
PRIORITY_RANK = {p: i for i, p in enumerate(reversed(schemas.PRIORITIES))}


def render_setup_required(missing: Iterable[str]) -> str:
    names = "\n".join(f"  - {name}" for name in missing)
    return (
        "Setup required\n\n"
        "TaskFlow cannot reach its backend because these settings are missing:\n"
        f"{names}\n\n"
        "Add them to your environment or .env file and restart."
    )


def format_duration(ms: int) -> str:
    seconds = max(0, ms) // 1000
    hours, rest = divmod(seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def tracked_time(task: schemas.Task, now: datetime) -> str:
    """Logged time plus the running timer, as HH:MM:SS."""
    return format_duration(task.total_logged_ms() + task.running_ms(now))


# ---- board / list / calendar / gantt

def board_columns(tasks: Iterable[schemas.Task]) -> Dict[schemas.TaskStatus, List[schemas.Task]]:
    columns = {status: [] for status in schemas.TASK_STATUSES}
    for task in tasks:
        columns[task.status].append(task)
    return columns


def list_rows(tasks: Iterable[schemas.Task], sort_by: str = "due_date", descending: bool = False) -> List[schemas.Task]:
    if sort_by == "priority":
        key = lambda t: (PRIORITY_RANK[t.priority], t.due_date)
    elif sort_by == "title":
        key = lambda t: t.title.lower()
    elif sort_by == "status":
        key = lambda t: (schemas.TASK_STATUSES.index(t.status), t.due_date)
    elif sort_by == "due_date":
        key = lambda t: (t.due_date, PRIORITY_RANK[t.priority])
    else:
        raise ValueError(f"Unknown sort key: {sort_by}")
    return sorted(tasks, key=key, reverse=descending)


def calendar_month(tasks: Iterable[schemas.Task], year: int, month: int) -> Dict[date, List[schemas.Task]]:
    """Every day of the month mapped to the tasks due that day."""
    days = {date(year, month, day): [] for day in range(1, calendar.monthrange(year, month)[1] + 1)}
    for task in tasks:
        if task.due_date in days:
            days[task.due_date].append(task)
    return days


@dataclass
class GanttBar:
    task: schemas.Task
    start: int
    span: int


def gantt_window(reference: date) -> List[date]:
    """Fourteen days starting on the Sunday of ``reference``'s week."""
    start = reference - timedelta(days=(reference.weekday() + 1) % 7)
    return [start + timedelta(days=i) for i in range(GANTT_DAYS)]


def gantt_rows(tasks: Iterable[schemas.Task], reference: date) -> Dict[str, List[GanttBar]]:
    """Bars from creation to due date, clipped to the window, grouped by assignee."""
    window = gantt_window(reference)
    first, last = window[0], window[-1]
    rows: Dict[str, List[GanttBar]] = {}
    for task in tasks:
        start = task.created_at.date() if task.created_at else task.due_date - timedelta(days=3)
        end = max(task.due_date, start)
        if end < first or start > last:
            continue
        start_index = (max(start, first) - first).days
        end_index = (min(end, last) - first).days
        rows.setdefault(task.assignee_id or "unassigned", []).append(
            GanttBar(task=task, start=start_index, span=end_index - start_index + 1)
        )
    return rows


# ---- people

def member_directory(employees: Iterable[schemas.Employee], memberships: Iterable[schemas.Membership],
                     space: Optional[schemas.Space]) -> List[schemas.EmployeeWithRole]:
    if space is None:
        return []
    roles = {m.user_id: m.role for m in memberships if m.space_id == space.id}
    members = []
    for employee in employees:
        if employee.id not in space.members:
            continue
        role = schemas.SpaceRole.ADMIN if employee.id == space.owner_id else roles.get(employee.id, schemas.SpaceRole.MEMBER)
        members.append(schemas.EmployeeWithRole(**employee.model_dump(), role=role))
    return members


@dataclass
class MemberWorkload:
    employee: schemas.Employee
    tasks: List[schemas.Task]


@dataclass
class SpaceOverview:
    space: schemas.Space
    members: List[MemberWorkload]
    total_tasks: int


def admin_overview(spaces: Iterable[schemas.Space], tasks: Iterable[schemas.Task],
                   employees: Iterable[schemas.Employee], today: date,
                   search_term: str = "") -> List[SpaceOverview]:
    """Per space and member: tasks due today or in progress.

    A search term replaces the today/in-progress filter with a text match,
    and hides spaces with neither matching tasks nor matching member names.
    """
    term = search_term.strip().lower()
    tasks = list(tasks)
    employees = list(employees)
    if term:
        visible = [
            t for t in tasks
            if term in t.title.lower()
            or term in t.description.lower()
            or any(term in tag.lower() for tag in t.tags)
        ]
    else:
        visible = [t for t in tasks if t.due_date == today or t.status == schemas.TaskStatus.IN_PROGRESS]

    overview = []
    for space in spaces:
        space_tasks = [t for t in visible if t.space_id == space.id]
        members = [e for e in employees if e.id in space.members]
        if term and not space_tasks and not any(term in m.name.lower() for m in members):
            continue
        overview.append(SpaceOverview(
            space=space,
            members=[MemberWorkload(e, [t for t in space_tasks if t.assignee_id == e.id]) for e in members],
            total_tasks=len(space_tasks),
        ))
    return overview


# ---- dashboard

@dataclass
class DashboardStats:
    total: int = 0
    overdue: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_priority: Dict[str, int] = field(default_factory=dict)
    per_employee: Dict[str, int] = field(default_factory=dict)
    completion_history: List[tuple] = field(default_factory=list)


def dashboard_stats(tasks: Iterable[schemas.Task], employees: Iterable[schemas.Employee], today: date) -> DashboardStats:
    tasks = list(tasks)
    names = {e.id: e.name for e in employees}
    by_status = Counter(t.status.value for t in tasks)
    by_priority = Counter(t.priority.value for t in tasks)
    per_employee = Counter(names.get(t.assignee_id, "Unassigned") for t in tasks)

    completed_on = Counter(
        t.completed_at.date() for t in tasks if t.status == schemas.TaskStatus.DONE and t.completed_at
    )
    history = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        history.append((day, completed_on.get(day, 0)))

    return DashboardStats(
        total=len(tasks),
        overdue=sum(1 for t in tasks if t.due_date < today and t.status != schemas.TaskStatus.DONE),
        by_status={s.value: by_status.get(s.value, 0) for s in schemas.TASK_STATUSES},
        by_priority={p.value: by_priority.get(p.value, 0) for p in schemas.PRIORITIES},
        per_employee=dict(per_employee),
        completion_history=history,
    )


# ---- user management

class UserManagementPanel:
    """Super-admin panel over every user and their workspace roles."""

    def __init__(self, session, toaster: Optional[Toaster] = None):
        self.session = session
        self.toaster = toaster or Toaster()
        self.users: List[schemas.UserWithRole] = []
        self.spaces: List[schemas.Space] = []
        self.loading = True

    @property
    def gateway(self):
        return self.session.gateway

    def _failed(self, message: str) -> MutationResult:
        self.toaster.error(message)
        return MutationResult.failure(message)

    async def load(self) -> MutationResult:
        self.loading = True
        try:
            self.users, self.spaces = await asyncio.gather(
                asyncio.to_thread(self.gateway.get_users_with_roles),
                asyncio.to_thread(self.gateway.get_all_spaces),
            )
        except TaskFlowError as e:
            logger.error("Failed to load users: %s", e)
            return self._failed(f"Could not load users: {e}")
        finally:
            self.loading = False
        return MutationResult.success(self.users)

    async def _run(self, message: str, fn, *args) -> MutationResult:
        try:
            value = await asyncio.to_thread(fn, *args)
        except TaskFlowError as e:
            logger.error("%s: %s", message, e)
            return self._failed(f"{message}: {e}")
        await self.load()
        return MutationResult.success(value)

    async def change_role(self, user_id: str, space_id: str, role: schemas.SpaceRole) -> MutationResult:
        return await self._run("Could not change the role", self.gateway.update_member_role, space_id, user_id, role)

    async def set_super_admin(self, user_id: str, is_super_admin: bool) -> MutationResult:
        return await self._run("Could not update super-admin access", self.gateway.set_super_admin, user_id, is_super_admin)

    async def remove_from_space(self, user_id: str, space_id: str) -> MutationResult:
        return await self._run("Could not remove the user", self.gateway.remove_member, space_id, user_id)

    async def enroll(self, user_id: str, space_id: str, role: schemas.SpaceRole = schemas.SpaceRole.MEMBER) -> MutationResult:
        return await self._run("Could not add the user", self.gateway.add_member, space_id, user_id, role)

    async def delete_user(self, user_id: str) -> MutationResult:
        return await self._run("Could not delete the user", self.gateway.delete_user, user_id)
