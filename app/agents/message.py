# =============================================================================
# Agent Message — Dispatcher ↔ Worker Communication Unit
# =============================================================================
#
# Every hop in the system (coordinator → expert, expert → coordinator,
# orchestrator → reflector) is an AgentMessage. It carries routing
# metadata (sender, receiver, type, priority, parent link, session) plus
# a text payload and a free-form `data` side channel for typed
# parameters such as `userId` or `draftAnswer`.
#
# Messages are immutable by convention: only `add_data()` mutates one,
# and only while it is being built.
#
# Ids are "MSG-" + uuid4 hex and must stay unique under concurrent
# creation from many tasks.
# =============================================================================

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.agents.roles import AgentRole

DEFAULT_PRIORITY = 5
COLLABORATION_PRIORITY = 7
URGENT_PRIORITY = 8


class MessageType(enum.Enum):
    """What a message is for."""

    TASK_ASSIGNMENT = "task_assignment"              # Coordinator → Expert
    TASK_RESULT = "task_result"                      # Expert → Coordinator
    COLLABORATION_REQUEST = "collaboration_request"  # Expert → Expert
    INFORMATION_QUERY = "information_query"          # Agent → Agent
    CONFIRMATION = "confirmation"                    # Agent → Agent
    ERROR_REPORT = "error_report"                    # Agent → Coordinator


def generate_message_id() -> str:
    """Return a process-unique message id."""
    return f"MSG-{uuid.uuid4().hex}"


@dataclass
class AgentMessage:
    """
    A single message between agents.

    A response built with `create_response()` always has sender and
    receiver swapped, `parent_message_id` set to the original id, type
    TASK_RESULT and `requires_response=False`. The parent link is a
    reference only; messages never own each other.
    """

    sender: AgentRole
    receiver: AgentRole
    message_type: MessageType
    content: str
    session_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    priority: int = DEFAULT_PRIORITY
    requires_response: bool = True
    parent_message_id: str | None = None
    message_id: str = field(default_factory=generate_message_id)
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        if not 0 <= self.priority <= 10:
            raise ValueError(
                f"Message priority must be between 0 and 10, got {self.priority}"
            )

    # -----------------------------------------------------------------------
    # Factories
    # -----------------------------------------------------------------------

    @classmethod
    def create_task_assignment(
        cls,
        sender: AgentRole,
        receiver: AgentRole,
        content: str,
        session_id: str | None,
    ) -> AgentMessage:
        """Build a task handed from a dispatcher to a worker."""
        return cls(
            sender=sender,
            receiver=receiver,
            message_type=MessageType.TASK_ASSIGNMENT,
            content=content,
            session_id=session_id,
            requires_response=True,
        )

    @classmethod
    def create_task_result(
        cls,
        sender: AgentRole,
        receiver: AgentRole,
        content: str,
        parent_message_id: str | None,
        session_id: str | None,
    ) -> AgentMessage:
        """Build a result message that answers `parent_message_id`."""
        return cls(
            sender=sender,
            receiver=receiver,
            message_type=MessageType.TASK_RESULT,
            content=content,
            parent_message_id=parent_message_id,
            session_id=session_id,
            requires_response=False,
        )

    @classmethod
    def create_collaboration_request(
        cls,
        sender: AgentRole,
        receiver: AgentRole,
        content: str,
        session_id: str | None,
    ) -> AgentMessage:
        """Build an expert-to-expert request. Ranks above the baseline."""
        return cls(
            sender=sender,
            receiver=receiver,
            message_type=MessageType.COLLABORATION_REQUEST,
            content=content,
            session_id=session_id,
            requires_response=True,
            priority=COLLABORATION_PRIORITY,
        )

    def create_response(self, content: str) -> AgentMessage:
        """Build the TASK_RESULT reply to this message."""
        return AgentMessage.create_task_result(
            sender=self.receiver,
            receiver=self.sender,
            content=content,
            parent_message_id=self.message_id,
            session_id=self.session_id,
        )

    # -----------------------------------------------------------------------
    # Side-channel data
    # -----------------------------------------------------------------------

    def add_data(self, key: str, value: Any) -> AgentMessage:
        """Store `value` under `key` and return self for chaining."""
        self.data[key] = value
        return self

    def get_data(
        self,
        key: str,
        default: Any = None,
        expected_type: type | None = None,
    ) -> Any:
        """
        Read a side-channel value.

        Returns `default` when the key is absent. When `expected_type` is
        given, a present value of another type raises TypeError.
        """
        if key not in self.data:
            return default
        value = self.data[key]
        if (
            expected_type is not None
            and value is not None
            and not isinstance(value, expected_type)
        ):
            raise TypeError(
                f"Message data '{key}' is {type(value).__name__}, "
                f"expected {expected_type.__name__}"
            )
        return value

    def is_urgent(self) -> bool:
        return self.priority >= URGENT_PRIORITY

    def to_dict(self) -> dict[str, Any]:
        """Serialisable view for logs and status endpoints."""
        return {
            "message_id": self.message_id,
            "sender": self.sender.name,
            "receiver": self.receiver.name,
            "message_type": self.message_type.value,
            "content": self.content,
            "data": {k: _describe(v) for k, v in self.data.items()},
            "priority": self.priority,
            "requires_response": self.requires_response,
            "parent_message_id": self.parent_message_id,
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
        }


def _describe(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, AgentRole):
        return value.name
    if isinstance(value, AgentMessage):
        return value.message_id
    if isinstance(value, (list, tuple)):
        return [_describe(v) for v in value]
    return str(value)
