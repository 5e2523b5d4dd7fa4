"""Import all models so Base.metadata sees every table."""
from chat_sync.infrastructure.db.models.group import GroupMemberModel, GroupModel
from chat_sync.infrastructure.db.models.message import MessageModel
from chat_sync.infrastructure.db.models.push_token import PushTokenModel
from chat_sync.infrastructure.db.models.user import UserModel

__all__ = [
    "GroupMemberModel",
    "GroupModel",
    "MessageModel",
    "PushTokenModel",
    "UserModel",
]
