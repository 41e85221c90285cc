from typing import Optional

from .schemas import SpaceRole


def resolve_space_role(
    *,
    user_id: str,
    is_super_admin: bool,
    owner_id: Optional[str] = None,
    membership_role: Optional[str] = None,
) -> SpaceRole:
    """Effective role of a user inside one space.

    Super-admins are admins everywhere, owners are admins of their own
    space, everyone else gets their membership row's role (member if none).
    """
    if is_super_admin:
        return SpaceRole.ADMIN
    if owner_id is not None and owner_id == user_id:
        return SpaceRole.ADMIN
    if membership_role:
        return SpaceRole(membership_role)
    return SpaceRole.MEMBER


def can_edit_task(*, user_id: str, role: SpaceRole, assignee_id: Optional[str]) -> bool:
    return role == SpaceRole.ADMIN or (assignee_id is not None and assignee_id == user_id)
