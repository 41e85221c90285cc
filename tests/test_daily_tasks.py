"""
Daily task list: optimistic updates, temp ids and the offline cache.
"""
import asyncio
import threading

import pytest

from taskflow import schemas
from taskflow.daily_tasks import DailyTasks, is_temp_id
from taskflow.errors import GatewayError


def fail(*args, **kwargs):
    raise GatewayError("store unavailable", 503)


def hold_inserts(session, monkeypatch):
    """Make new-row upserts wait until ``release`` is set."""
    started, release = threading.Event(), threading.Event()
    upsert = session.gateway.upsert_daily_task

    def held(item):
        if item.id is None:
            started.set()
            release.wait(5)
        return upsert(item)

    monkeypatch.setattr(session.gateway, "upsert_daily_task", held)
    return started, release


@pytest.fixture
def daily(alice, cache, toaster):
    hook = DailyTasks(alice, cache, toaster)
    asyncio.run(hook.load())
    return hook


class TestDailyTasks:
    """Test DailyTasks."""

    def test_add_swaps_temp_id_for_stored_id(self, daily, alice):
        result = asyncio.run(daily.add_task("Write standup notes"))
        assert result.ok
        assert not is_temp_id(result.value.id)
        assert [t.id for t in alice.gateway.get_daily_tasks()] == [result.value.id]
        assert daily.cache.get(daily.cache_key)[0]["id"] == result.value.id

    def test_blank_text_is_ignored(self, daily, toaster):
        result = asyncio.run(daily.add_task("   "))
        assert not result.ok
        assert daily.tasks == []
        assert toaster.toasts == []

    def test_unplanned_goes_first_as_urgent(self, daily):
        asyncio.run(daily.add_task("Planned"))
        result = asyncio.run(daily.add_task("Fire drill", is_unplanned=True))
        assert result.value.priority == schemas.Priority.URGENT
        assert [t.text for t in daily.tasks] == ["Fire drill", "Planned"]

    def test_urgent_goes_first(self, daily):
        asyncio.run(daily.add_task("Planned"))
        asyncio.run(daily.add_task("Hotfix", priority=schemas.Priority.URGENT))
        assert daily.tasks[0].text == "Hotfix"

    def test_failed_add_is_reverted(self, daily, alice, toaster, monkeypatch):
        monkeypatch.setattr(alice.gateway, "upsert_daily_task", fail)
        result = asyncio.run(daily.add_task("Lost"))
        assert not result.ok
        assert daily.tasks == []
        assert [t.kind for t in toaster.toasts] == ["error"]

    def test_status_update(self, daily, alice):
        task = asyncio.run(daily.add_task("Review PR")).value
        assert asyncio.run(daily.update_status(task.id, schemas.DailyTaskStatus.DONE)).ok
        assert alice.gateway.get_daily_tasks()[0].status == schemas.DailyTaskStatus.DONE

    def test_failed_update_is_reverted(self, daily, alice, monkeypatch, caplog):
        task = asyncio.run(daily.add_task("Review PR")).value
        monkeypatch.setattr(alice.gateway, "upsert_daily_task", fail)
        result = asyncio.run(daily.update_priority(task.id, schemas.Priority.HIGH))
        assert not result.ok
        assert daily.tasks[0].priority == schemas.Priority.MEDIUM
        record = [r for r in caplog.records if r.name == "taskflow.daily_tasks"][-1]
        assert record.msg == "Failed to sync daily task %s: %s"
        assert record.args[0] == task.id

    def test_delete_and_failed_delete(self, daily, alice, monkeypatch):
        first = asyncio.run(daily.add_task("First")).value
        second = asyncio.run(daily.add_task("Second")).value

        assert asyncio.run(daily.delete_task(first.id)).ok
        assert [t.id for t in alice.gateway.get_daily_tasks()] == [second.id]

        monkeypatch.setattr(alice.gateway, "delete_daily_task", fail)
        assert not asyncio.run(daily.delete_task(second.id)).ok
        assert [t.id for t in daily.tasks] == [second.id]

    def test_edit_during_insert_reaches_the_store(self, daily, alice, monkeypatch):
        started, release = hold_inserts(alice, monkeypatch)

        async def scenario():
            adding = asyncio.create_task(daily.add_task("Write report"))
            await asyncio.to_thread(started.wait, 5)
            temp_id = daily.tasks[0].id
            assert is_temp_id(temp_id)
            assert (await daily.update_status(temp_id, schemas.DailyTaskStatus.DONE)).ok
            release.set()
            return await adding

        result = asyncio.run(scenario())
        assert result.value.status == schemas.DailyTaskStatus.DONE
        assert [t.status for t in alice.gateway.get_daily_tasks()] == [schemas.DailyTaskStatus.DONE]

    def test_delete_during_insert_removes_stored_row(self, daily, alice, monkeypatch):
        started, release = hold_inserts(alice, monkeypatch)

        async def scenario():
            adding = asyncio.create_task(daily.add_task("Never mind"))
            await asyncio.to_thread(started.wait, 5)
            assert (await daily.delete_task(daily.tasks[0].id)).ok
            release.set()
            return await adding

        assert asyncio.run(scenario()).ok
        assert daily.tasks == []
        assert alice.gateway.get_daily_tasks() == []

    def test_load_falls_back_to_cache(self, daily, alice, cache, toaster, monkeypatch):
        asyncio.run(daily.add_task("Cached"))
        monkeypatch.setattr(alice.gateway, "get_daily_tasks", fail)

        offline = DailyTasks(alice, cache, toaster)
        asyncio.run(offline.load())
        assert [t.text for t in offline.tasks] == ["Cached"]
        assert offline.loading is False

    def test_corrupt_cache_is_discarded(self, alice, cache, toaster, monkeypatch):
        monkeypatch.setattr(alice.gateway, "get_daily_tasks", fail)
        hook = DailyTasks(alice, cache, toaster)
        cache.set(hook.cache_key, [{"unexpected": True}])
        asyncio.run(hook.load())
        assert hook.tasks == []

    def test_clear_all(self, daily):
        asyncio.run(daily.add_task("Gone"))
        daily.clear_all()
        assert daily.tasks == []
        assert daily.cache.get(daily.cache_key) is None
