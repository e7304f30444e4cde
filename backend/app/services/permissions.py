"""Channel membership gate deciding which mutations a viewer may perform."""

from __future__ import annotations

from app.core.errors import PermissionDeniedError
from app.models.enums import ChannelAction, ChannelRole
from app.schemas.messages import Message

# Default actions for channel roles
# ADMIN may do everything, including removing messages outright
# MODERATOR may delete anyone's message
# MEMBER manages only their own messages
DEFAULT_ROLE_ACTIONS: dict[ChannelRole, frozenset[ChannelAction]] = {
    ChannelRole.ADMIN: frozenset(ChannelAction),
    ChannelRole.MODERATOR: frozenset(
        {
            ChannelAction.SEND_MESSAGES,
            ChannelAction.ADD_REACTIONS,
            ChannelAction.EDIT_OWN_MESSAGES,
            ChannelAction.DELETE_OWN_MESSAGES,
            ChannelAction.DELETE_ANY_MESSAGE,
        }
    ),
    ChannelRole.MEMBER: frozenset(
        {
            ChannelAction.SEND_MESSAGES,
            ChannelAction.ADD_REACTIONS,
            ChannelAction.EDIT_OWN_MESSAGES,
            ChannelAction.DELETE_OWN_MESSAGES,
        }
    ),
}


class MembershipGate:
    """Answers permission questions for one viewer in one channel."""

    def __init__(self, viewer_id: str, role: ChannelRole | None) -> None:
        self.viewer_id = viewer_id
        self.role = role

    @property
    def actions(self) -> frozenset[ChannelAction]:
        if self.role is None:
            return frozenset()
        return DEFAULT_ROLE_ACTIONS[self.role]

    def allows(self, action: ChannelAction) -> bool:
        return action in self.actions

    def is_author(self, message: Message) -> bool:
        return message.user_id is not None and message.user_id == self.viewer_id

    def can_edit(self, message: Message) -> bool:
        if self.is_author(message) and self.allows(ChannelAction.EDIT_OWN_MESSAGES):
            return True
        return self.allows(ChannelAction.EDIT_ANY_MESSAGE)

    def can_delete(self, message: Message, *, hard: bool = False) -> bool:
        if hard:
            return self.allows(ChannelAction.REMOVE_MESSAGES)
        if self.is_author(message) and self.allows(ChannelAction.DELETE_OWN_MESSAGES):
            return True
        return self.allows(ChannelAction.DELETE_ANY_MESSAGE)

    def ensure(self, action: ChannelAction) -> None:
        if not self.allows(action):
            raise PermissionDeniedError(action.value)

    def ensure_can_edit(self, message: Message) -> None:
        if not self.can_edit(message):
            raise PermissionDeniedError(ChannelAction.EDIT_ANY_MESSAGE.value)

    def ensure_can_delete(self, message: Message, *, hard: bool = False) -> None:
        if not self.can_delete(message, hard=hard):
            action = ChannelAction.REMOVE_MESSAGES if hard else ChannelAction.DELETE_ANY_MESSAGE
            raise PermissionDeniedError(action.value)
