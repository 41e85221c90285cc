"""
Workspace controller.

Holds what the signed-in user sees: employees, spaces, lists, memberships,
the active space's tasks and the cross-space "my tasks" slice. The active
space and view are derived from the current path. Every user action goes
through an async handler that calls the gateway, merges the authoritative
row the store sends back into both task slices and returns a
``MutationResult``; failures are toasted and local changes reverted.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from . import routing, schemas, views
from .errors import (
    AIError,
    AlreadyMemberError,
    ConflictError,
    InvalidJoinCodeError,
    TaskBlockedError,
    TaskFlowError,
)
from .notifications import Toaster
from .results import MutationResult
from .roles import can_edit_task, resolve_space_role
from .schemas import utcnow

logger = logging.getLogger(__name__)

STALE_TIMER_AGE = timedelta(hours=12)
ACTIVITY_LOG_LIMIT = 50


@dataclass
class ActivityEntry:
    at: datetime
    message: str


class WorkspaceController:

    def __init__(self, session, toaster: Optional[Toaster] = None, assistant=None,
                 clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self.toaster = toaster or Toaster(clock)
        self.assistant = assistant

        self.employees: List[schemas.Employee] = []
        self.spaces: List[schemas.Space] = []
        self.lists: List[schemas.TaskListOut] = []
        self.memberships: List[schemas.Membership] = []
        self.tasks: List[schemas.Task] = []
        self.all_user_tasks: List[schemas.Task] = []
        self.overseer_spaces: List[schemas.Space] = []
        self.overseer_tasks: List[schemas.Task] = []
        self.activity: List[ActivityEntry] = []

        self.path = routing.HOME_PATH
        self.active_list_id: Optional[int] = None
        self.search_term = ""
        self._loaded_space_id = ""

    # ---- session

    @property
    def gateway(self):
        return self.session.gateway

    @property
    def user(self) -> schemas.CurrentUser:
        return self.session.user

    @property
    def is_super_admin(self) -> bool:
        return self.user.is_super_admin

    async def _call(self, fn, *args, **kwargs):
        return await asyncio.to_thread(fn, *args, **kwargs)

    def _failed(self, message: str) -> MutationResult:
        self.toaster.error(message)
        return MutationResult.failure(message)

    def _log(self, message: str):
        self.activity.insert(0, ActivityEntry(at=self.clock(), message=message))
        del self.activity[ACTIVITY_LOG_LIMIT:]

    # ---- derived state

    @property
    def active_space_id(self) -> str:
        return routing.resolve_active_space_id(self.spaces, self.path)

    @property
    def current_view(self) -> str:
        return routing.parse_path(self.path).view

    def get_space(self, space_id: str) -> Optional[schemas.Space]:
        for space in self.spaces:
            if space.id == space_id:
                return space
        return None

    @property
    def current_space(self) -> Optional[schemas.Space]:
        return self.get_space(self.active_space_id)

    def role_in(self, space_id: str) -> schemas.SpaceRole:
        space = self.get_space(space_id)
        membership = next(
            (m for m in self.memberships if m.space_id == space_id and m.user_id == self.user.id), None
        )
        return resolve_space_role(
            user_id=self.user.id,
            is_super_admin=self.is_super_admin,
            owner_id=space.owner_id if space else None,
            membership_role=membership.role.value if membership else None,
        )

    @property
    def current_space_role(self) -> schemas.SpaceRole:
        if not self.active_space_id:
            return schemas.SpaceRole.ADMIN if self.is_super_admin else schemas.SpaceRole.MEMBER
        return self.role_in(self.active_space_id)

    def can_edit(self, task: schemas.Task) -> bool:
        return can_edit_task(user_id=self.user.id, role=self.role_in(task.space_id), assignee_id=task.assignee_id)

    @property
    def space_lists(self) -> List[schemas.TaskListOut]:
        return [l for l in self.lists if l.space_id == self.active_space_id]

    @property
    def filtered_tasks(self) -> List[schemas.Task]:
        tasks = self.tasks
        if self.active_list_id:
            tasks = [t for t in tasks if t.list_id == self.active_list_id]
        term = self.search_term.strip().lower()
        if term:
            tasks = [
                t for t in tasks
                if term in t.title.lower()
                or term in t.description.lower()
                or any(term in tag.lower() for tag in t.tags)
            ]
        return tasks

    @property
    def space_members(self) -> List[schemas.EmployeeWithRole]:
        return views.member_directory(self.employees, self.memberships, self.current_space)

    def find_task(self, task_id: int) -> Optional[schemas.Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        for task in self.all_user_tasks:
            if task.id == task_id:
                return task
        return None

    def blocker_of(self, task: schemas.Task) -> Optional[schemas.Task]:
        """The unfinished task blocking ``task``, if it is loaded and not Done."""
        if task.blocked_by_id is None:
            return None
        blocker = self.find_task(task.blocked_by_id)
        if blocker is None or blocker.status == schemas.TaskStatus.DONE:
            return None
        return blocker

    def is_blocked(self, task: schemas.Task) -> bool:
        return self.blocker_of(task) is not None

    def ensure_unblocked(self, task: schemas.Task):
        blocker = self.blocker_of(task)
        if blocker is not None:
            raise TaskBlockedError(task.id, blocker.id)

    def _blocked(self, task: schemas.Task, error: TaskBlockedError) -> MutationResult:
        logger.info(str(error))
        blocker = self.find_task(error.blocker_id)
        return self._failed(f'"{task.title}" is blocked by "{blocker.title}". Finish that task first.')

    def stale_timers(self, max_age: timedelta = STALE_TIMER_AGE) -> List[schemas.Task]:
        """Tasks whose timer has been running longer than ``max_age``."""
        now = self.clock()
        seen, stale = set(), []
        for task in self.tasks + self.all_user_tasks:
            if task.id in seen:
                continue
            seen.add(task.id)
            if task.timer_start_time is not None and now - task.timer_start_time > max_age:
                stale.append(task)
        return stale

    def needs_daily_standup(self) -> bool:
        """True inside a workspace where the user has created no task today."""
        if not self.active_space_id:
            return False
        today = self.clock().date()
        return not any(
            t.created_at.date() == today and t.assignee_id == self.user.id for t in self.tasks
        )

    # ---- loading

    async def load(self) -> bool:
        try:
            self.employees, self.spaces = await asyncio.gather(
                self._call(self.gateway.get_all_employees),
                self._call(self.gateway.get_spaces),
            )
        except TaskFlowError as e:
            logger.error("Failed to load data: %s", e)
            return False

        if self.spaces:
            space_ids = [s.id for s in self.spaces]
            try:
                list_groups, self.memberships = await asyncio.gather(
                    asyncio.gather(*(self._call(self.gateway.get_lists, sid) for sid in space_ids)),
                    self._call(self.gateway.get_memberships, space_ids),
                )
                self.lists = [l for group in list_groups for l in group]
                await self.refresh_all_user_tasks()
            except TaskFlowError as e:
                logger.error("Failed to load workspace data: %s", e)
        else:
            self.lists, self.memberships, self.all_user_tasks = [], [], []

        await self._sync_active_space()
        return True

    async def refresh_all_user_tasks(self):
        if not self.spaces:
            self.all_user_tasks = []
            return
        groups = await asyncio.gather(*(self._call(self.gateway.get_tasks, s.id) for s in self.spaces))
        self.all_user_tasks = [t for group in groups for t in group]

    async def load_space_tasks(self, space_id: str):
        try:
            self.tasks = await self._call(self.gateway.get_tasks, space_id)
        except TaskFlowError as e:
            logger.error("Failed to load tasks for space %s: %s", space_id, e)

    async def _sync_active_space(self):
        active = self.active_space_id
        if active == self._loaded_space_id:
            return
        self._loaded_space_id = active
        self.active_list_id = None
        if active:
            await self.load_space_tasks(active)
        else:
            self.tasks = []

    async def _reload_tasks(self):
        if self.active_space_id:
            await self.load_space_tasks(self.active_space_id)
        try:
            await self.refresh_all_user_tasks()
        except TaskFlowError as e:
            logger.error("Failed to reload tasks: %s", e)

    # ---- navigation

    async def navigate(self, path: str):
        self.path = path
        await self._sync_active_space()

    async def select_space(self, space_id: str):
        space = self.get_space(space_id)
        if space is None:
            await self.navigate(routing.HOME_PATH)
            return
        await self.navigate(routing.space_path(space))

    async def change_view(self, view: str):
        await self.navigate(routing.path_for_view(view, self.current_space))

    def set_active_list(self, list_id: Optional[int]):
        self.active_list_id = list_id

    def set_search_term(self, term: str):
        self.search_term = term

    # ---- task slices

    def _merge(self, task: schemas.Task):
        """Put the store's copy of ``task`` into both slices."""
        my_space_ids = {s.id for s in self.spaces}
        self.tasks = self._merged(self.tasks, task, task.space_id == self.active_space_id)
        self.all_user_tasks = self._merged(self.all_user_tasks, task, task.space_id in my_space_ids)

    @staticmethod
    def _merged(tasks: List[schemas.Task], task: schemas.Task, belongs: bool) -> List[schemas.Task]:
        out, found = [], False
        for existing in tasks:
            if existing.id == task.id:
                found = True
                if belongs:
                    out.append(task)
            else:
                out.append(existing)
        if not found and belongs:
            out.insert(0, task)
        return out

    def _drop(self, task_id: int):
        self.tasks = [t for t in self.tasks if t.id != task_id]
        self.all_user_tasks = [t for t in self.all_user_tasks if t.id != task_id]

    async def _write_task(self, payload: schemas.TaskUpsert, previous: Optional[schemas.Task] = None) -> MutationResult:
        try:
            task = await self._call(self.gateway.upsert_task, payload)
        except ConflictError as e:
            logger.error("Conflicting task update: %s", e)
            await self._reload_tasks()
            return self._failed("This task was changed by someone else. The latest version has been loaded.")
        except TaskFlowError as e:
            logger.error("Failed to save task: %s", e)
            if previous is not None:
                self._merge(previous)
            return self._failed(f"Could not save the task: {e}")
        self._merge(task)
        return MutationResult.success(task)

    # ---- task handlers

    async def update_task_status(self, task_id: int, status: schemas.TaskStatus) -> MutationResult:
        task = self.find_task(task_id)
        if task is None:
            return self._failed("Task not found")
        status = schemas.TaskStatus(status)
        if status == task.status:
            return MutationResult.success(task)
        try:
            self.ensure_unblocked(task)
        except TaskBlockedError as e:
            return self._blocked(task, e)

        self._merge(task.model_copy(update={"status": status}))
        result = await self._write_task(
            schemas.TaskUpsert(id=task.id, status=status, expected_version=task.version), previous=task
        )
        if result:
            self._log(f'Moved "{task.title}" to {status.value}')
        return result

    async def save_task(self, fields: Dict[str, Any], task_id: Optional[int] = None) -> MutationResult:
        """Create (no ``task_id``) or edit a task from the task form."""
        data = dict(fields)
        previous = None
        if task_id is None:
            space_id = fields.get("space_id") or self.active_space_id or (self.spaces[0].id if self.spaces else "")
            if not space_id:
                return self._failed("Create or join a workspace first")
            data["space_id"] = space_id
        else:
            # edits only move a task when the form names a space
            if not data.get("space_id"):
                data.pop("space_id", None)
            previous = self.find_task(task_id)
            data["id"] = task_id
            if previous is not None:
                data["expected_version"] = previous.version
        try:
            payload = schemas.TaskUpsert(**data)
        except ValueError as e:
            return self._failed(f"Invalid task: {e}")

        result = await self._write_task(payload, previous=previous)
        if result:
            verb = "Updated" if task_id is not None else "Created"
            self._log(f'{verb} task "{result.value.title}"')
        return result

    async def create_task(self, **fields) -> MutationResult:
        return await self.save_task(fields)

    async def update_task(self, task_id: int, updates: Dict[str, Any]) -> MutationResult:
        """Apply a partial update; fields not in ``updates`` stay as stored."""
        existing = self.find_task(task_id)
        if existing is None:
            return self._failed("Task not found")
        try:
            payload = schemas.TaskUpsert(id=task_id, expected_version=existing.version, **updates)
        except ValueError as e:
            return self._failed(f"Invalid task: {e}")
        if "status" in payload.model_fields_set and payload.status != existing.status:
            try:
                self.ensure_unblocked(existing)
            except TaskBlockedError as e:
                return self._blocked(existing, e)

        scalar = payload.model_dump(exclude_unset=True, exclude={"id", "expected_version", "subtasks"})
        self._merge(existing.model_copy(update=scalar))
        result = await self._write_task(payload, previous=existing)
        if result:
            self._log(f'Updated task "{result.value.title}"')
        return result

    async def delete_task(self, task_id: int) -> MutationResult:
        existing = self.find_task(task_id)
        if existing is None:
            return self._failed("Task not found")
        self._drop(task_id)
        try:
            await self._call(self.gateway.delete_task, task_id)
        except TaskFlowError as e:
            logger.error("Failed to delete task %s: %s", task_id, e)
            self._merge(existing)
            return self._failed(f"Could not delete the task: {e}")
        # tasks it was blocking are no longer blocked
        for task in self.tasks + self.all_user_tasks:
            if task.blocked_by_id == task_id:
                self._merge(task.model_copy(update={"blocked_by_id": None}))
        self._log(f'Deleted task "{existing.title}"')
        return MutationResult.success(existing)

    async def toggle_timer(self, task_id: int) -> MutationResult:
        task = self.find_task(task_id)
        if task is None:
            return self._failed("Task not found")
        try:
            if task.timer_start_time is not None:
                stopped = await self._call(self.gateway.stop_timer, task_id, self.clock())
                updated = stopped.task
                minutes = stopped.entry.duration // 60000
                self._log(f'Logged {minutes}m on "{task.title}"')
            else:
                updated = await self._call(self.gateway.start_timer, task_id, self.clock())
                self._log(f'Started timer on "{task.title}"')
        except TaskFlowError as e:
            logger.error("Failed to toggle timer on task %s: %s", task_id, e)
            return self._failed(f"Could not update the timer: {e}")
        self._merge(updated)
        return MutationResult.success(updated)

    async def reconcile_timer(self, task_id: int, ended_at: datetime) -> MutationResult:
        """Close a forgotten timer at ``ended_at`` instead of now."""
        try:
            stopped = await self._call(self.gateway.stop_timer, task_id, ended_at)
        except TaskFlowError as e:
            logger.error("Failed to reconcile timer on task %s: %s", task_id, e)
            return self._failed(f"Could not stop the timer: {e}")
        self._merge(stopped.task)
        return MutationResult.success(stopped)

    async def add_comment(self, task_id: int, content: str) -> MutationResult:
        content = content.strip()
        if not content:
            return MutationResult.failure("Comment is empty")
        task = self.find_task(task_id)
        try:
            comment = await self._call(self.gateway.add_comment, task_id, content)
        except TaskFlowError as e:
            logger.error("Failed to add comment to task %s: %s", task_id, e)
            return self._failed(f"Could not add the comment: {e}")
        if task is not None:
            self._merge(task.model_copy(update={"comments": task.comments + [comment]}))
        return MutationResult.success(comment)

    async def log_time(self, task_id: int, start_time: datetime, end_time: datetime) -> MutationResult:
        task = self.find_task(task_id)
        try:
            entry = await self._call(self.gateway.log_time, task_id, start_time, end_time)
        except TaskFlowError as e:
            logger.error("Failed to log time on task %s: %s", task_id, e)
            return self._failed(f"Could not log time: {e}")
        if task is not None:
            self._merge(task.model_copy(update={"time_logs": [entry] + task.time_logs}))
        return MutationResult.success(entry)

    # ---- spaces, lists, profile

    async def create_space(self, name: str, description: str = None) -> MutationResult:
        try:
            space = await self._call(self.gateway.create_space, name, description)
        except TaskFlowError as e:
            logger.error("Failed to create space: %s", e)
            return self._failed(f"Could not create the workspace: {e}")
        await self.load()
        self.toaster.success(f'Workspace "{space.name}" created')
        self._log(f'Created workspace "{space.name}"')
        return MutationResult.success(space)

    async def join_space(self, code: str) -> MutationResult:
        try:
            space = await self._call(self.gateway.join_space, code)
        except InvalidJoinCodeError as e:
            return self._failed(str(e))
        except TaskFlowError as e:
            logger.error("Failed to join space: %s", e)
            return self._failed(f"Could not join the workspace: {e}")
        await self.load()
        self.toaster.success(f'Joined "{space.name}"')
        self._log(f'Joined workspace "{space.name}"')
        return MutationResult.success(space)

    async def update_space(self, space_id: str, **fields) -> MutationResult:
        try:
            space = await self._call(self.gateway.update_space, space_id, schemas.SpaceUpdate(**fields))
        except TaskFlowError as e:
            logger.error("Failed to update space %s: %s", space_id, e)
            return self._failed(f"Could not update the workspace: {e}")
        self.spaces = [space if s.id == space_id else s for s in self.spaces]
        return MutationResult.success(space)

    async def delete_space(self, space_id: str) -> MutationResult:
        space = self.get_space(space_id)
        try:
            await self._call(self.gateway.delete_space, space_id)
        except TaskFlowError as e:
            logger.error("Failed to delete space %s: %s", space_id, e)
            return self._failed(f"Could not delete the workspace: {e}")
        if space_id == self.active_space_id:
            self.path = routing.HOME_PATH
        await self.load()
        if space is not None:
            self._log(f'Deleted workspace "{space.name}"')
        return MutationResult.success()

    async def create_list(self, name: str, color: str = None, space_id: str = None) -> MutationResult:
        space_id = space_id or self.active_space_id
        if not space_id:
            return self._failed("Select a workspace first")
        try:
            task_list = await self._call(self.gateway.create_list, space_id, name, color)
        except TaskFlowError as e:
            logger.error("Failed to create list: %s", e)
            return self._failed(f"Could not create the list: {e}")
        self.lists.append(task_list)
        return MutationResult.success(task_list)

    async def save_profile(self, **fields) -> MutationResult:
        try:
            updates = schemas.ProfileUpdate(**fields)
            await self._call(self.gateway.update_profile, updates)
            await self._call(self.session.refresh_user)
        except ValueError as e:
            return self._failed(f"Invalid profile: {e}")
        except TaskFlowError as e:
            logger.error("Failed to save profile: %s", e)
            return self._failed(f"Could not save your profile: {e}")
        await self.load()
        return MutationResult.success(self.user)

    # ---- members

    async def add_member(self, user_id: str, role: schemas.SpaceRole = schemas.SpaceRole.MEMBER,
                         space_id: str = None) -> MutationResult:
        space_id = space_id or self.active_space_id
        try:
            membership = await self._call(self.gateway.add_member, space_id, user_id, role)
        except AlreadyMemberError as e:
            return self._failed(str(e))
        except TaskFlowError as e:
            logger.error("Failed to add member: %s", e)
            return self._failed(f"Could not add the member: {e}")
        await self.load()
        return MutationResult.success(membership)

    async def remove_member(self, user_id: str, space_id: str = None) -> MutationResult:
        space_id = space_id or self.active_space_id
        try:
            await self._call(self.gateway.remove_member, space_id, user_id)
        except TaskFlowError as e:
            logger.error("Failed to remove member: %s", e)
            return self._failed(f"Could not remove the member: {e}")
        await self.load()
        return MutationResult.success()

    async def change_member_role(self, user_id: str, role: schemas.SpaceRole, space_id: str = None) -> MutationResult:
        space_id = space_id or self.active_space_id
        try:
            membership = await self._call(self.gateway.update_member_role, space_id, user_id, role)
        except TaskFlowError as e:
            logger.error("Failed to change role: %s", e)
            return self._failed(f"Could not change the role: {e}")
        self.memberships = [
            membership if (m.space_id == space_id and m.user_id == user_id) else m for m in self.memberships
        ]
        return MutationResult.success(membership)

    # ---- super-admin overseer

    async def load_overseer(self) -> MutationResult:
        if not self.is_super_admin:
            return self._failed("Super-admin access required")
        try:
            self.overseer_spaces, self.overseer_tasks = await asyncio.gather(
                self._call(self.gateway.get_all_spaces),
                self._call(self.gateway.get_all_tasks),
            )
        except TaskFlowError as e:
            logger.error("Failed to load overseer data: %s", e)
            return self._failed(f"Could not load all workspaces: {e}")
        return MutationResult.success()

    # ---- AI

    async def _assist(self, method: str, *args) -> MutationResult:
        if self.assistant is None:
            return MutationResult.failure("AI assistant is not configured")
        try:
            return MutationResult.success(await self._call(getattr(self.assistant, method), *args))
        except AIError as e:
            return MutationResult.failure(str(e))

    async def generate_tasks(self, goal: str) -> MutationResult:
        return await self._assist("generate_tasks", goal, self.employees)

    async def create_generated_tasks(self, drafts: List[schemas.TaskDraft]) -> MutationResult:
        created = []
        for draft in drafts:
            result = await self.save_task(draft.model_dump(exclude_none=True))
            if not result:
                return result
            created.append(result.value)
        return MutationResult.success(created)

    async def task_advice(self, task_id: int, question: str) -> MutationResult:
        task = self.find_task(task_id)
        if task is None:
            return MutationResult.failure("Task not found")
        return await self._assist("task_advice", task.title, task.description, question)

    async def suggest_priority(self, title: str, description: str = "") -> MutationResult:
        return await self._assist("suggest_priority", title, description)

    async def weekly_summary(self) -> MutationResult:
        tasks = self.tasks if self.active_space_id else self.all_user_tasks
        return await self._assist("weekly_summary", tasks, self.employees)

    async def generate_subtasks(self, task_id: int) -> MutationResult:
        """Ask for a checklist and append it to the task's subtasks."""
        task = self.find_task(task_id)
        if task is None:
            return MutationResult.failure("Task not found")
        suggestion = await self._assist("generate_subtasks", task.title, task.description)
        if not suggestion:
            return suggestion
        subtasks = [{"id": s.id, "title": s.title, "is_completed": s.is_completed} for s in task.subtasks]
        subtasks += [{"title": title} for title in suggestion.value]
        return await self.update_task(task_id, {"subtasks": subtasks})
