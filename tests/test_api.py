"""
HTTP API behaviour through the typed gateway.
"""
from datetime import date, datetime, timedelta

import pytest

from taskflow import schemas
from taskflow.config import server_settings
from taskflow.errors import (
    AlreadyMemberError,
    AuthenticationError,
    ConflictError,
    InvalidJoinCodeError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)
from taskflow.session import UserSession

from conftest import PASSWORD


@pytest.fixture
def space(alice):
    return alice.gateway.create_space("AI Interviewer", "Hiring pipeline")


@pytest.fixture
def shared_space(alice, bob, space):
    bob.gateway.join_space(space.join_code)
    return space


class TestAuth:
    """Registration, login and API key checks."""

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_register_and_login(self, alice):
        user = alice.user
        assert user.username == "alice"
        assert user.name == "Alice Adams"
        assert user.is_super_admin is False

    def test_duplicate_email(self, alice, make_gateway):
        with pytest.raises(ValidationFailedError):
            make_gateway().register("alice@taskflow.io", PASSWORD, "alice2")

    def test_wrong_password(self, alice, make_gateway):
        with pytest.raises(AuthenticationError):
            UserSession.open(make_gateway(), "alice@taskflow.io", "wrong-password")

    def test_requests_need_a_token(self, make_gateway):
        with pytest.raises(AuthenticationError):
            make_gateway().get_spaces()

    def test_api_key_is_enforced_when_configured(self, alice, client, monkeypatch):
        monkeypatch.setattr(server_settings, "api_key", "k-123")
        assert client.get("/health").status_code == 401
        assert client.get("/health", headers={"apikey": "k-123"}).status_code == 200

    def test_update_profile(self, alice):
        alice.gateway.update_profile(schemas.ProfileUpdate(phone="555-0100", full_name=""))
        user = alice.refresh_user()
        assert user.phone == "555-0100"
        assert user.full_name == "Alice Adams"


class TestSpaces:
    """Workspace membership over HTTP."""

    def test_create_space_lists_owner(self, alice, space):
        assert space.owner_id == alice.user_id
        assert [s.id for s in alice.gateway.get_spaces()] == [space.id]

    def test_join_is_idempotent(self, bob, shared_space):
        again = bob.gateway.join_space(shared_space.join_code.lower())
        assert again.members.count(bob.user_id) == 1

    def test_invalid_join_code(self, bob, space):
        with pytest.raises(InvalidJoinCodeError):
            bob.gateway.join_space("000000" if space.join_code != "000000" else "111111")

    def test_outsider_cannot_read_space(self, bob, space):
        with pytest.raises(PermissionDeniedError):
            bob.gateway.get_tasks(space.id)

    def test_member_roles(self, alice, bob, shared_space):
        members = {m.id: m.role for m in alice.gateway.get_space_members(shared_space.id)}
        assert members == {alice.user_id: schemas.SpaceRole.ADMIN, bob.user_id: schemas.SpaceRole.MEMBER}

        alice.gateway.update_member_role(shared_space.id, bob.user_id, schemas.SpaceRole.ADMIN)
        memberships = alice.gateway.get_memberships([shared_space.id])
        assert {m.user_id: m.role for m in memberships}[bob.user_id] == schemas.SpaceRole.ADMIN

    def test_member_cannot_manage_members(self, bob, shared_space, register):
        carol = register("carol")
        with pytest.raises(PermissionDeniedError):
            bob.gateway.add_member(shared_space.id, carol.user_id)

    def test_add_member_twice(self, alice, bob, space):
        alice.gateway.add_member(space.id, bob.user_id)
        with pytest.raises(AlreadyMemberError):
            alice.gateway.add_member(space.id, bob.user_id)

    def test_adding_a_member_notifies_them(self, alice, bob, space):
        alice.gateway.add_member(space.id, bob.user_id)
        notifications = bob.gateway.get_notifications()
        assert [n.type for n in notifications] == ["space_invite"]
        assert notifications[0].target_id == space.id

    def test_member_can_leave(self, bob, shared_space):
        bob.gateway.remove_member(shared_space.id, bob.user_id)
        assert bob.gateway.get_spaces() == []

    def test_only_owner_deletes_space(self, alice, bob, shared_space):
        with pytest.raises(PermissionDeniedError):
            bob.gateway.delete_space(shared_space.id)
        alice.gateway.delete_space(shared_space.id)
        assert alice.gateway.get_spaces() == []

    def test_lists(self, alice, space):
        created = alice.gateway.create_list(space.id, "Backlog", "#ff0000")
        assert [l.id for l in alice.gateway.get_lists(space.id)] == [created.id]


class TestTasks:
    """Task endpoints."""

    def test_round_trip(self, alice, space):
        created = alice.gateway.upsert_task(schemas.TaskUpsert(
            space_id=space.id,
            title="Q3 Report",
            description="Numbers for the board",
            due_date=date(2025, 9, 30),
            priority=schemas.Priority.HIGH,
            tags=["finance"],
            subtasks=[schemas.SubtaskIn(title="Collect numbers")],
        ))
        [loaded] = alice.gateway.get_tasks(space.id)
        assert loaded == created
        assert loaded.assignee_id == alice.user_id
        assert loaded.status == schemas.TaskStatus.TODO

    def test_missing_title_is_rejected(self, alice, space):
        with pytest.raises(ValidationFailedError):
            alice.gateway.upsert_task({"space_id": space.id})

    def test_patch_keeps_unset_fields(self, alice, space):
        created = alice.gateway.upsert_task({"space_id": space.id, "title": "Keep", "description": "details", "tags": ["x"]})
        updated = alice.gateway.upsert_task({"id": created.id, "status": schemas.TaskStatus.IN_PROGRESS})
        assert updated.description == "details"
        assert updated.tags == ["x"]
        assert updated.version == created.version + 1

    def test_subtasks_match_payload(self, alice, space):
        created = alice.gateway.upsert_task({
            "space_id": space.id, "title": "Checklist",
            "subtasks": [{"title": "a"}, {"title": "b"}],
        })
        keep = created.subtasks[1]
        updated = alice.gateway.upsert_task({
            "id": created.id,
            "subtasks": [{"id": keep.id, "title": "b", "is_completed": True}, {"title": "c"}],
        })
        assert [(s.title, s.is_completed) for s in updated.subtasks] == [("b", True), ("c", False)]

    def test_stale_write_is_a_conflict(self, alice, space):
        created = alice.gateway.upsert_task({"space_id": space.id, "title": "Shared"})
        alice.gateway.upsert_task({"id": created.id, "title": "First", "expected_version": created.version})
        with pytest.raises(ConflictError):
            alice.gateway.upsert_task({"id": created.id, "title": "Second", "expected_version": created.version})

    def test_member_edits_only_own_tasks(self, alice, bob, shared_space):
        mine = bob.gateway.upsert_task({"space_id": shared_space.id, "title": "Bob's"})
        theirs = alice.gateway.upsert_task({"space_id": shared_space.id, "title": "Alice's"})

        assert bob.gateway.upsert_task({"id": mine.id, "title": "Renamed"}).title == "Renamed"
        with pytest.raises(PermissionDeniedError):
            bob.gateway.upsert_task({"id": theirs.id, "title": "Hijacked"})
        with pytest.raises(PermissionDeniedError):
            bob.gateway.delete_task(theirs.id)

    def test_assignment_notifies_assignee(self, alice, bob, shared_space):
        task = alice.gateway.upsert_task({"space_id": shared_space.id, "title": "Review"})
        alice.gateway.upsert_task({"id": task.id, "assignee_id": bob.user_id})
        [notification] = bob.gateway.get_notifications()
        assert notification.type == "task_assigned"
        assert notification.target_id == str(task.id)

    def test_comments(self, alice, bob, shared_space):
        task = alice.gateway.upsert_task({"space_id": shared_space.id, "title": "Discuss"})
        comment = bob.gateway.add_comment(task.id, "Looks good")
        assert comment.author_id == bob.user_id
        [loaded] = alice.gateway.get_tasks(shared_space.id)
        assert [c.content for c in loaded.comments] == ["Looks good"]

    def test_timer_logs_elapsed_time(self, alice, space):
        task = alice.gateway.upsert_task({"space_id": space.id, "title": "Timed"})
        started = datetime(2025, 1, 1, 9, 0, 0)
        running = alice.gateway.start_timer(task.id, started)
        assert running.timer_start_time == started

        result = alice.gateway.stop_timer(task.id, started + timedelta(milliseconds=90000))
        assert result.entry.duration == 90000
        assert result.task.timer_start_time is None
        assert result.task.total_logged_ms() == 90000

    def test_stopping_an_idle_timer(self, alice, space):
        task = alice.gateway.upsert_task({"space_id": space.id, "title": "Idle"})
        with pytest.raises(ValidationFailedError):
            alice.gateway.stop_timer(task.id)

    def test_manual_time_log(self, alice, space):
        task = alice.gateway.upsert_task({"space_id": space.id, "title": "Logged"})
        start = datetime(2025, 1, 1, 9, 0)
        entry = alice.gateway.log_time(task.id, start, start + timedelta(minutes=30))
        assert entry.duration == 30 * 60 * 1000

    def test_delete_missing_task(self, alice):
        with pytest.raises(NotFoundError):
            alice.gateway.delete_task(999)


class TestPersonalData:
    """Daily tasks, scratchpad and notifications over HTTP."""

    def test_daily_tasks(self, alice, bob):
        saved = alice.gateway.upsert_daily_task(schemas.DailyTaskIn(text="Inbox zero"))
        assert [t.id for t in alice.gateway.get_daily_tasks()] == [saved.id]
        assert bob.gateway.get_daily_tasks() == []
        alice.gateway.delete_daily_task(saved.id)
        assert alice.gateway.get_daily_tasks() == []

    def test_scratchpad(self, alice):
        assert alice.gateway.get_scratchpad() == ""
        alice.gateway.sync_scratchpad("remember the milk")
        assert alice.gateway.get_scratchpad() == "remember the milk"

    def test_mark_notifications_read(self, alice, bob, space):
        alice.gateway.add_member(space.id, bob.user_id)
        [notification] = bob.gateway.get_notifications()
        bob.gateway.mark_notification_read(notification.id)
        assert bob.gateway.get_notifications()[0].is_read is True
        assert bob.gateway.mark_all_notifications_read() == 0

    def test_notification_socket_rejects_bad_token(self, client):
        from starlette.websockets import WebSocketDisconnect

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/notifications?token=garbage") as websocket:
                websocket.receive_json()



class TestSuperAdmin:
    """Cross-workspace endpoints."""

    def test_requires_super_admin(self, alice):
        with pytest.raises(PermissionDeniedError):
            alice.gateway.get_all_spaces()

    def test_super_admin_is_admin_everywhere(self, alice, bob, space, make_super_admin):
        make_super_admin(bob)
        task = alice.gateway.upsert_task({"space_id": space.id, "title": "Alice's"})

        assert [s.id for s in bob.gateway.get_all_spaces()] == [space.id]
        assert bob.gateway.upsert_task({"id": task.id, "title": "Edited"}).title == "Edited"
        assert [t.id for t in bob.gateway.get_all_tasks()] == [task.id]

    def test_users_with_roles(self, alice, bob, space, make_super_admin):
        make_super_admin(alice)
        rows = alice.gateway.get_users_with_roles()
        by_user = {(r.id, r.space_id): r for r in rows}
        assert by_user[(alice.user_id, space.id)].role == schemas.SpaceRole.ADMIN
        assert (bob.user_id, None) in by_user

    def test_delete_user(self, alice, bob, make_super_admin):
        make_super_admin(alice)
        alice.gateway.delete_user(bob.user_id)
        assert bob.user_id not in [e.id for e in alice.gateway.get_all_employees()]
        with pytest.raises(ValidationFailedError):
            alice.gateway.delete_user(alice.user_id)
