"""
HTTP gateway to the TaskFlow store.

One method per remote operation. Methods translate between the pydantic
entity schemas and the JSON the service speaks; they never retry and never
cache. Any non-2xx answer is raised as a ``GatewayError`` subclass.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

import requests

from . import schemas
from .config import ClientSettings
from .errors import (
    AlreadyMemberError,
    AuthenticationError,
    ConflictError,
    GatewayError,
    InvalidJoinCodeError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

STATUS_ERRORS = {
    400: ValidationFailedError,
    403: PermissionDeniedError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationFailedError,
}


def _detail(response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    if isinstance(detail, list):
        detail = "; ".join(str(item.get("msg", item)) if isinstance(item, dict) else str(item) for item in detail)
    return detail or response.text or f"HTTP {response.status_code}"


class Gateway:
    """Typed client for the remote store.

    ``http`` is anything with a requests-style ``request()`` method; a
    ``requests.Session`` is created when none is given.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None, http=None, timeout: Optional[float] = 15.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http = http if http is not None else requests.Session()
        self.timeout = timeout
        self.token: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "Gateway":
        settings.require()
        return cls(settings.api_url, settings.api_key, timeout=settings.request_timeout)

    # ---- plumbing

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.api_key:
            headers["apikey"] = self.api_key
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, json: Any = None, params: Any = None, errors: Dict[int, type] = None):
        kwargs = {"headers": self._headers()}
        if json is not None:
            kwargs["json"] = json
        if params is not None:
            kwargs["params"] = params
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout

        try:
            response = self.http.request(method, f"{self.base_url}{path}", **kwargs)
        except requests.RequestException as e:
            raise GatewayError(f"Network error: {e}") from e
        if response.status_code >= 400:
            message = _detail(response)
            logger.debug("%s %s failed with %s: %s", method, path, response.status_code, message)
            if response.status_code == 401:
                raise AuthenticationError(message)
            error_cls = (errors or {}).get(response.status_code) or STATUS_ERRORS.get(response.status_code, GatewayError)
            raise error_cls(message, response.status_code)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ---- auth / profiles

    def register(self, email: str, password: str, username: str, full_name: str = None, department: str = None) -> schemas.CurrentUser:
        payload = schemas.UserCreate(email=email, password=password, username=username, full_name=full_name, department=department)
        return schemas.CurrentUser(**self._request("POST", "/register", json=payload.model_dump(mode="json")))

    def login(self, email: str, password: str) -> str:
        data = self._request("POST", "/login", json={"email": email, "password": password})
        self.token = data["access_token"]
        return self.token

    def logout(self):
        self.token = None

    def get_current_user(self) -> schemas.CurrentUser:
        return schemas.CurrentUser(**self._request("GET", "/me"))

    def update_profile(self, updates: schemas.ProfileUpdate) -> schemas.CurrentUser:
        return schemas.CurrentUser(**self._request("PATCH", "/me", json=updates.model_dump(mode="json", exclude_unset=True)))

    def get_all_employees(self) -> List[schemas.Employee]:
        return [schemas.Employee(**row) for row in self._request("GET", "/employees")]

    # ---- spaces

    def get_spaces(self) -> List[schemas.Space]:
        return [schemas.Space(**row) for row in self._request("GET", "/spaces")]

    def get_space(self, space_id: str) -> schemas.Space:
        return schemas.Space(**self._request("GET", f"/spaces/{space_id}"))

    def create_space(self, name: str, description: str = None) -> schemas.Space:
        return schemas.Space(**self._request("POST", "/spaces", json={"name": name, "description": description}))

    def update_space(self, space_id: str, updates: schemas.SpaceUpdate) -> schemas.Space:
        data = self._request("PATCH", f"/spaces/{space_id}", json=updates.model_dump(exclude_unset=True))
        return schemas.Space(**data)

    def delete_space(self, space_id: str):
        self._request("DELETE", f"/spaces/{space_id}")

    def join_space(self, code: str) -> schemas.Space:
        data = self._request("POST", "/spaces/join", json={"code": code}, errors={404: InvalidJoinCodeError})
        return schemas.Space(**data)

    def get_space_members(self, space_id: str) -> List[schemas.EmployeeWithRole]:
        return [schemas.EmployeeWithRole(**row) for row in self._request("GET", f"/spaces/{space_id}/members")]

    def add_member(self, space_id: str, user_id: str, role: schemas.SpaceRole = schemas.SpaceRole.MEMBER) -> schemas.Membership:
        data = self._request(
            "POST", f"/spaces/{space_id}/members",
            json={"user_id": user_id, "role": schemas.SpaceRole(role).value},
            errors={409: AlreadyMemberError},
        )
        return schemas.Membership(**data)

    def update_member_role(self, space_id: str, user_id: str, role: schemas.SpaceRole) -> schemas.Membership:
        data = self._request("PATCH", f"/spaces/{space_id}/members/{user_id}", json={"role": schemas.SpaceRole(role).value})
        return schemas.Membership(**data)

    def remove_member(self, space_id: str, user_id: str):
        self._request("DELETE", f"/spaces/{space_id}/members/{user_id}")

    def get_memberships(self, space_ids: Iterable[str]) -> List[schemas.Membership]:
        space_ids = list(space_ids)
        if not space_ids:
            return []
        return [schemas.Membership(**row) for row in self._request("GET", "/memberships", params={"space_id": space_ids})]

    # ---- lists

    def get_lists(self, space_id: str) -> List[schemas.TaskListOut]:
        return [schemas.TaskListOut(**row) for row in self._request("GET", f"/spaces/{space_id}/lists")]

    def create_list(self, space_id: str, name: str, color: str = None) -> schemas.TaskListOut:
        data = self._request("POST", f"/spaces/{space_id}/lists", json={"name": name, "color": color})
        return schemas.TaskListOut(**data)

    # ---- tasks

    def get_tasks(self, space_id: str) -> List[schemas.Task]:
        return [schemas.Task(**row) for row in self._request("GET", f"/spaces/{space_id}/tasks")]

    def upsert_task(self, task: Union[schemas.TaskUpsert, Dict[str, Any]]) -> schemas.Task:
        """Insert when ``task`` has no id, otherwise PATCH only the fields it sets."""
        if isinstance(task, dict):
            task = schemas.TaskUpsert(**task)
        body = task.model_dump(mode="json", exclude_unset=True, exclude={"id"})
        if task.id is None:
            return schemas.Task(**self._request("POST", "/tasks", json=body))
        return schemas.Task(**self._request("PATCH", f"/tasks/{task.id}", json=body))

    def delete_task(self, task_id: int):
        self._request("DELETE", f"/tasks/{task_id}")

    def add_comment(self, task_id: int, content: str) -> schemas.Comment:
        return schemas.Comment(**self._request("POST", f"/tasks/{task_id}/comments", json={"content": content}))

    def start_timer(self, task_id: int, started_at: datetime = None) -> schemas.Task:
        body = {"started_at": started_at.isoformat() if started_at else None}
        return schemas.Task(**self._request("POST", f"/tasks/{task_id}/timer/start", json=body))

    def stop_timer(self, task_id: int, ended_at: datetime = None) -> schemas.TimerStopResult:
        body = {"ended_at": ended_at.isoformat() if ended_at else None}
        return schemas.TimerStopResult(**self._request("POST", f"/tasks/{task_id}/timer/stop", json=body))

    def log_time(self, task_id: int, start_time: datetime, end_time: datetime) -> schemas.TimeLogEntry:
        body = {"start_time": start_time.isoformat(), "end_time": end_time.isoformat()}
        return schemas.TimeLogEntry(**self._request("POST", f"/tasks/{task_id}/time-logs", json=body))

    # ---- daily tasks / scratchpad

    def get_daily_tasks(self) -> List[schemas.DailyTask]:
        return [schemas.DailyTask(**row) for row in self._request("GET", "/daily-tasks")]

    def upsert_daily_task(self, item: schemas.DailyTaskIn) -> schemas.DailyTask:
        return schemas.DailyTask(**self._request("PUT", "/daily-tasks", json=item.model_dump(mode="json")))

    def delete_daily_task(self, daily_task_id: str):
        self._request("DELETE", f"/daily-tasks/{daily_task_id}")

    def get_scratchpad(self) -> str:
        return self._request("GET", "/scratchpad")["content"]

    def sync_scratchpad(self, content: str) -> str:
        return self._request("PUT", "/scratchpad", json={"content": content})["content"]

    # ---- notifications

    def get_notifications(self) -> List[schemas.Notification]:
        return [schemas.Notification(**row) for row in self._request("GET", "/notifications")]

    def mark_notification_read(self, notification_id: str):
        self._request("POST", f"/notifications/{notification_id}/read")

    def mark_all_notifications_read(self) -> int:
        return self._request("POST", "/notifications/read-all")["updated"]

    def notifications_url(self) -> str:
        if self.base_url.startswith("https://"):
            ws_base = "wss://" + self.base_url[len("https://"):]
        else:
            ws_base = "ws://" + self.base_url.split("://", 1)[-1]
        return f"{ws_base}/ws/notifications?token={self.token}"

    # ---- super-admin

    def get_all_spaces(self) -> List[schemas.Space]:
        return [schemas.Space(**row) for row in self._request("GET", "/admin/spaces")]

    def get_all_tasks(self) -> List[schemas.Task]:
        return [schemas.Task(**row) for row in self._request("GET", "/admin/tasks")]

    def get_users_with_roles(self) -> List[schemas.UserWithRole]:
        return [schemas.UserWithRole(**row) for row in self._request("GET", "/admin/users")]

    def set_super_admin(self, user_id: str, is_super_admin: bool) -> schemas.CurrentUser:
        data = self._request("PATCH", f"/admin/users/{user_id}/super-admin", json={"is_super_admin": is_super_admin})
        return schemas.CurrentUser(**data)

    def delete_user(self, user_id: str):
        self._request("DELETE", f"/admin/users/{user_id}")
