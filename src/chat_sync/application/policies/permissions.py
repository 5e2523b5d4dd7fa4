from __future__ import annotations

from chat_sync.application.exceptions import ForbiddenError, NotFoundError
from chat_sync.domain.entities.group import Group


def assert_group_member(group: Group | None, user_id: str) -> Group:
    """Raise if the group doesn't exist or ``user_id`` is not a member."""
    if group is None:
        raise NotFoundError("Group not found")

    if not group.is_member(user_id):
        raise ForbiddenError("Not a member of this group")

    return group
