"""URL <-> (active space, view) mapping for the workspace UI."""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

HOME_PATH = "/app/home"
USER_MANAGEMENT_PATH = "/app/user-management"
USER_MANAGEMENT_VIEW = "user-management"
DEFAULT_VIEW = "home"

VIEW_TO_URL = {
    "home": "overview",
    "board": "task-board",
    "list": "task-list",
    "whiteboard": "whiteboard",
    "timeline": "calendar",
    "members": "members",
    "overview": "analytics",
    "settings": "settings",
}
URL_TO_VIEW = {url: view for view, url in VIEW_TO_URL.items()}

_WORKSPACE_RE = re.compile(r"/app/workspace/([^/]+)(?:/(.+))?")


def slugify(name: str) -> str:
    """Lowercase, non-alphanumeric runs to hyphens: AI Interviewer -> ai-interviewer."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


@dataclass
class Route:
    view: str
    space_segment: Optional[str] = None


def parse_path(path: str) -> Route:
    path = path.rstrip("/") or "/"
    if path == USER_MANAGEMENT_PATH:
        return Route(view=USER_MANAGEMENT_VIEW)
    match = _WORKSPACE_RE.match(path)
    if match:
        segment, url_view = match.groups()
        if not url_view:
            return Route(view=DEFAULT_VIEW, space_segment=segment)
        return Route(view=URL_TO_VIEW.get(url_view, url_view), space_segment=segment)
    return Route(view=DEFAULT_VIEW)


def resolve_active_space_id(spaces: Iterable, path: str) -> str:
    """Active space for ``path``: exact id match first, then slug match, else ''."""
    segment = parse_path(path).space_segment
    if not segment:
        return ""
    spaces = list(spaces)
    for space in spaces:
        if space.id == segment:
            return space.id
    for space in spaces:
        if slugify(space.name) == segment:
            return space.id
    return ""


def space_path(space, view: str = DEFAULT_VIEW) -> str:
    return f"/app/workspace/{slugify(space.name)}/{VIEW_TO_URL.get(view, view)}"


def path_for_view(view: str, active_space=None) -> str:
    if view == USER_MANAGEMENT_VIEW:
        return USER_MANAGEMENT_PATH
    if active_space is None:
        return HOME_PATH
    return space_path(active_space, view)
