import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import ValidationError

from . import schemas
from .errors import TaskFlowError
from .local_cache import LocalCache
from .notifications import Toaster
from .results import MutationResult
from .schemas import utcnow

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "temp-"


def is_temp_id(task_id: str) -> bool:
    return task_id.startswith(TEMP_ID_PREFIX)


class DailyTasks:
    """The signed-in user's personal to-do list.

    Memory is what renders, the local cache is the offline fallback and the
    remote store is authoritative. Mutations apply locally first and are
    reverted when the remote write fails.
    """

    def __init__(self, session, cache: LocalCache, toaster: Optional[Toaster] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.cache = cache
        self.toaster = toaster or Toaster(clock)
        self.clock = clock
        self.tasks: List[schemas.DailyTask] = []
        self.loading = True

    @property
    def cache_key(self) -> str:
        return f"today_tasks_{self.session.user_id}"

    def _persist(self):
        if self.tasks:
            self.cache.set(self.cache_key, [t.model_dump(mode="json") for t in self.tasks])
        elif not self.loading:
            self.cache.remove(self.cache_key)

    def _from_cache(self) -> List[schemas.DailyTask]:
        try:
            return [schemas.DailyTask(**row) for row in self.cache.get(self.cache_key) or []]
        except (TypeError, ValidationError) as e:
            logger.warning("Discarding cached daily tasks: %s", e)
            return []

    def _failed(self, message: str) -> MutationResult:
        self.toaster.error(message)
        return MutationResult.failure(message)

    def _temp_id(self) -> str:
        stamp = int(self.clock().timestamp() * 1000)
        taken = {t.id for t in self.tasks}
        while f"{TEMP_ID_PREFIX}{stamp}" in taken:
            stamp += 1
        return f"{TEMP_ID_PREFIX}{stamp}"

    def _index(self, task_id: str) -> int:
        for i, task in enumerate(self.tasks):
            if task.id == task_id:
                return i
        return -1

    async def load(self):
        self.loading = True
        try:
            self.tasks = await asyncio.to_thread(self.session.gateway.get_daily_tasks)
        except TaskFlowError as e:
            logger.error("Failed to load daily tasks from the store: %s", e)
            self.tasks = self._from_cache()
        finally:
            self.loading = False
        self._persist()

    async def add_task(self, text: str, schedule: str = None, is_unplanned: bool = False,
                       priority: schemas.Priority = schemas.Priority.MEDIUM) -> MutationResult:
        text = text.strip()
        if not text:
            return MutationResult.failure("Task text is required")

        effective = schemas.Priority.URGENT if is_unplanned else schemas.Priority(priority)
        draft = schemas.DailyTask(
            id=self._temp_id(),
            text=text,
            priority=effective,
            schedule=schedule,
            is_unplanned=is_unplanned,
        )
        if is_unplanned or effective == schemas.Priority.URGENT:
            self.tasks.insert(0, draft)
        else:
            self.tasks.append(draft)
        self._persist()

        payload = schemas.DailyTaskIn(**draft.model_dump(exclude={"id"}))
        try:
            saved = await asyncio.to_thread(self.session.gateway.upsert_daily_task, payload)
        except TaskFlowError as e:
            logger.error("Failed to sync new daily task: %s", e)
            self.tasks = [t for t in self.tasks if t.id != draft.id]
            self._persist()
            return self._failed("Could not save the task")

        index = self._index(draft.id)
        if index < 0:
            # deleted while the insert was in flight
            return await self._remove_remote(saved.id, saved)
        current = self.tasks[index].model_copy(update={"id": saved.id})
        self.tasks[index] = current
        self._persist()
        if current != saved:
            # edited while the insert was in flight
            return await self._push(current, saved)
        return MutationResult.success(current)

    async def _push(self, updated: schemas.DailyTask, previous: schemas.DailyTask) -> MutationResult:
        try:
            await asyncio.to_thread(self.session.gateway.upsert_daily_task, schemas.DailyTaskIn(**updated.model_dump()))
        except TaskFlowError as e:
            logger.error("Failed to sync daily task %s: %s", updated.id, e)
            index = self._index(updated.id)
            if index >= 0:
                self.tasks[index] = previous
            self._persist()
            return self._failed("Could not update the task")
        return MutationResult.success(updated)

    async def _remove_remote(self, task_id: str, removed: schemas.DailyTask) -> MutationResult:
        try:
            await asyncio.to_thread(self.session.gateway.delete_daily_task, task_id)
        except TaskFlowError as e:
            logger.error("Failed to delete daily task %s: %s", task_id, e)
            return self._failed("Could not delete the task")
        return MutationResult.success(removed)

    async def _update(self, task_id: str, **changes) -> MutationResult:
        index = self._index(task_id)
        if index < 0:
            return self._failed("Task not found")
        previous = self.tasks[index]
        updated = previous.model_copy(update=changes)
        self.tasks[index] = updated
        self._persist()

        if is_temp_id(task_id):
            # pushed by add_task once the insert returns a stored id
            return MutationResult.success(updated)
        return await self._push(updated, previous)

    async def update_status(self, task_id: str, status: schemas.DailyTaskStatus) -> MutationResult:
        return await self._update(task_id, status=schemas.DailyTaskStatus(status))

    async def update_priority(self, task_id: str, priority: schemas.Priority) -> MutationResult:
        return await self._update(task_id, priority=schemas.Priority(priority))

    async def delete_task(self, task_id: str) -> MutationResult:
        index = self._index(task_id)
        if index < 0:
            return self._failed("Task not found")
        removed = self.tasks.pop(index)
        self._persist()

        if is_temp_id(task_id):
            return MutationResult.success(removed)
        try:
            await asyncio.to_thread(self.session.gateway.delete_daily_task, task_id)
        except TaskFlowError as e:
            logger.error("Failed to delete daily task %s: %s", task_id, e)
            self.tasks.insert(min(index, len(self.tasks)), removed)
            self._persist()
            return self._failed("Could not delete the task")
        return MutationResult.success(removed)

    def clear_all(self):
        """Empty the local list and cache; stored rows are left alone."""
        self.tasks = []
        self.cache.remove(self.cache_key)
